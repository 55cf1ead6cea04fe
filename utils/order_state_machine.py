"""
Order State Machine for validating order status transitions and maintaining consistency.

This module implements a finite state machine to ensure valid order_status transitions
and provide audit logging for all status changes. It covers the fulfillment side of an
order; payment_status moves are decided by services/reconciler.py.
"""

import logging
from typing import Dict, List, Optional, Set

from enums.order_status import OrderStatus

logger = logging.getLogger(__name__)


class OrderStatusTransition:
    """Represents a valid status transition with metadata"""

    def __init__(self, from_status: str, to_status: str, requires_admin: bool = False,
                 description: str = ""):
        self.from_status = from_status
        self.to_status = to_status
        self.requires_admin = requires_admin
        self.description = description

    def __repr__(self):
        admin_flag = " (Admin)" if self.requires_admin else ""
        return f"{self.from_status} -> {self.to_status}{admin_flag}"


class OrderStateMachine:
    """
    Finite state machine for order status transitions with validation and audit logging.

    Valid status transitions:
    - PENDING_PAYMENT -> PAID (automatic on payment confirmation)
    - PENDING_PAYMENT -> CANCELLED (payment expiry or admin)
    - PAID -> PRODUCTION (fulfillment order created)
    - PRODUCTION -> SHIPPED -> DELIVERED (fulfillment partner events)
    - PAID/PRODUCTION -> CANCELLED (fulfillment partner cancelled)
    - CANCELLED -> PAID (admin only, manual payment verification)
    - PAID/PRODUCTION/SHIPPED/DELIVERED/CANCELLED -> REFUNDED (admin only)

    Invalid transitions (will be rejected):
    - REFUNDED -> any status (final state)
    - DELIVERED -> anything but REFUNDED
    - any backwards move along the fulfillment pipeline
    """

    VALID_TRANSITIONS: List[OrderStatusTransition] = [
        # From PENDING_PAYMENT
        OrderStatusTransition(
            OrderStatus.PENDING_PAYMENT.value,
            OrderStatus.PAID.value,
            requires_admin=False,
            description="Payment received and confirmed"
        ),
        OrderStatusTransition(
            OrderStatus.PENDING_PAYMENT.value,
            OrderStatus.CANCELLED.value,
            requires_admin=False,
            description="Payment expired or order cancelled by admin"
        ),

        # From PAID
        OrderStatusTransition(
            OrderStatus.PAID.value,
            OrderStatus.PRODUCTION.value,
            requires_admin=False,
            description="Fulfillment order created"
        ),
        OrderStatusTransition(
            OrderStatus.PAID.value,
            OrderStatus.CANCELLED.value,
            requires_admin=False,
            description="Fulfillment partner cancelled the order"
        ),
        OrderStatusTransition(
            OrderStatus.PAID.value,
            OrderStatus.REFUNDED.value,
            requires_admin=True,
            description="Payment refunded by admin"
        ),

        # From PRODUCTION
        OrderStatusTransition(
            OrderStatus.PRODUCTION.value,
            OrderStatus.SHIPPED.value,
            requires_admin=False,
            description="Package handed to carrier"
        ),
        OrderStatusTransition(
            OrderStatus.PRODUCTION.value,
            OrderStatus.CANCELLED.value,
            requires_admin=False,
            description="Fulfillment partner cancelled the order"
        ),
        OrderStatusTransition(
            OrderStatus.PRODUCTION.value,
            OrderStatus.REFUNDED.value,
            requires_admin=True,
            description="Payment refunded by admin"
        ),

        # From SHIPPED
        OrderStatusTransition(
            OrderStatus.SHIPPED.value,
            OrderStatus.DELIVERED.value,
            requires_admin=False,
            description="Package delivered"
        ),
        OrderStatusTransition(
            OrderStatus.SHIPPED.value,
            OrderStatus.REFUNDED.value,
            requires_admin=True,
            description="Payment refunded by admin"
        ),

        # From DELIVERED
        OrderStatusTransition(
            OrderStatus.DELIVERED.value,
            OrderStatus.REFUNDED.value,
            requires_admin=True,
            description="Payment refunded by admin"
        ),

        # From CANCELLED
        OrderStatusTransition(
            OrderStatus.CANCELLED.value,
            OrderStatus.PAID.value,
            requires_admin=True,
            description="Late payment verified manually by admin"
        ),
        OrderStatusTransition(
            OrderStatus.CANCELLED.value,
            OrderStatus.REFUNDED.value,
            requires_admin=True,
            description="Late or partial payment refunded by admin"
        ),
    ]

    # Build transition map for fast lookup
    _transition_map: Dict[str, Set[str]] = {}
    _admin_required_transitions: Set[tuple] = set()
    _transition_descriptions: Dict[tuple, str] = {}

    @classmethod
    def _build_transition_map(cls):
        """Build internal transition maps for performance"""
        if cls._transition_map:
            return  # Already built

        for transition in cls.VALID_TRANSITIONS:
            if transition.from_status not in cls._transition_map:
                cls._transition_map[transition.from_status] = set()
            cls._transition_map[transition.from_status].add(transition.to_status)

            if transition.requires_admin:
                cls._admin_required_transitions.add(
                    (transition.from_status, transition.to_status)
                )

            cls._transition_descriptions[(transition.from_status, transition.to_status)] = transition.description

    @classmethod
    def is_valid_transition(cls, from_status: str, to_status: str) -> bool:
        """
        Check if a status transition is valid according to the state machine.

        Args:
            from_status: Current order status
            to_status: Desired new status

        Returns:
            True if transition is valid, False otherwise
        """
        cls._build_transition_map()

        # Allow staying in same status (no-op)
        if from_status == to_status:
            return True

        valid_destinations = cls._transition_map.get(from_status, set())
        return to_status in valid_destinations

    @classmethod
    def requires_admin(cls, from_status: str, to_status: str) -> bool:
        cls._build_transition_map()
        return (from_status, to_status) in cls._admin_required_transitions

    @classmethod
    def get_valid_transitions(cls, from_status: str) -> List[str]:
        cls._build_transition_map()
        return list(cls._transition_map.get(from_status, set()))

    @classmethod
    def get_transition_description(cls, from_status: str, to_status: str) -> str:
        cls._build_transition_map()
        return cls._transition_descriptions.get(
            (from_status, to_status),
            f"Transition from {from_status} to {to_status}"
        )

    @classmethod
    def is_final_status(cls, status: str) -> bool:
        """No automatic transition may leave a final status."""
        return status in {s.value for s in OrderStatus.terminal()}

    @classmethod
    def validate_and_log_transition(cls, order_id: str, from_status: str, to_status: str,
                                    admin_id: Optional[int] = None, source: Optional[str] = None) -> bool:
        """
        Validate a status transition and create audit log entry.

        Args:
            order_id: ID of the order being transitioned
            from_status: Current order status
            to_status: Desired new status
            admin_id: ID of admin performing transition (if applicable)
            source: Automatic trigger (payment monitor, sweeper, fulfillment webhook)

        Returns:
            True if transition is valid and logged, False otherwise
        """
        from_status = OrderStatus(from_status).value
        to_status = OrderStatus(to_status).value

        if not cls.is_valid_transition(from_status, to_status):
            logger.error(f"Invalid status transition for order {order_id}: {from_status} -> {to_status}")
            return False

        if cls.requires_admin(from_status, to_status) and admin_id is None:
            logger.error(f"Admin required for transition {from_status} -> {to_status} on order {order_id}")
            return False

        if from_status == to_status:
            return True

        transition_desc = cls.get_transition_description(from_status, to_status)
        performer = f"admin {admin_id}" if admin_id else source or "system"

        logger.info(f"ORDER_STATUS_TRANSITION: Order {order_id} {from_status} -> {to_status} by {performer}: {transition_desc}")
        return True
