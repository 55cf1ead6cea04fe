from enum import Enum


class SideEffect(str, Enum):
    """
    Actions requested by a reconciliation decision.

    The reconciler only lists them; OrderLifecycleService executes them, in list order,
    after the state change has been committed.
    """
    STOP_MONITOR = "stop_monitor"
    CREATE_FULFILLMENT = "create_fulfillment"
    CANCEL_FULFILLMENT = "cancel_fulfillment"
    NOTIFY_CONFIRMED = "notify_confirmed"
    NOTIFY_UNDERPAID = "notify_underpaid"
    NOTIFY_CANCELLED = "notify_cancelled"
    NOTIFY_SHIPPED = "notify_shipped"
    NOTIFY_OPERATOR = "notify_operator"
