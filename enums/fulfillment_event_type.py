from enum import Enum


class FulfillmentEventType(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    FAILED = "failed"
    CANCELLED = "cancelled"
    ON_HOLD = "on_hold"

    @staticmethod
    def from_printful(event_type: str) -> 'FulfillmentEventType | None':
        mapping = {
            "order_created": FulfillmentEventType.CREATED,
            "order_updated": FulfillmentEventType.UPDATED,
            "package_shipped": FulfillmentEventType.SHIPPED,
            "package_delivered": FulfillmentEventType.DELIVERED,
            "order_failed": FulfillmentEventType.FAILED,
            "order_canceled": FulfillmentEventType.CANCELLED,
            "order_put_hold": FulfillmentEventType.ON_HOLD,
        }
        return mapping.get(event_type)
