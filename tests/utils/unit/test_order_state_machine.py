"""
Order State Machine Tests

Run with:
    pytest tests/utils/unit/test_order_state_machine.py -v
"""

import pytest

from enums.order_status import OrderStatus
from utils.order_state_machine import OrderStateMachine


class TestTransitions:

    @pytest.mark.parametrize("from_status,to_status", [
        (OrderStatus.PENDING_PAYMENT, OrderStatus.PAID),
        (OrderStatus.PENDING_PAYMENT, OrderStatus.CANCELLED),
        (OrderStatus.PAID, OrderStatus.PRODUCTION),
        (OrderStatus.PRODUCTION, OrderStatus.SHIPPED),
        (OrderStatus.SHIPPED, OrderStatus.DELIVERED),
        (OrderStatus.PRODUCTION, OrderStatus.CANCELLED),
    ])
    def test_automatic_transitions(self, from_status, to_status):
        assert OrderStateMachine.is_valid_transition(from_status.value, to_status.value)
        assert not OrderStateMachine.requires_admin(from_status.value, to_status.value)

    @pytest.mark.parametrize("from_status,to_status", [
        (OrderStatus.PENDING_PAYMENT, OrderStatus.SHIPPED),
        (OrderStatus.SHIPPED, OrderStatus.PRODUCTION),
        (OrderStatus.DELIVERED, OrderStatus.CANCELLED),
        (OrderStatus.REFUNDED, OrderStatus.PAID),
        (OrderStatus.PENDING_PAYMENT, OrderStatus.REFUNDED),
    ])
    def test_rejected_transitions(self, from_status, to_status):
        assert not OrderStateMachine.is_valid_transition(from_status.value, to_status.value)
        assert not OrderStateMachine.validate_and_log_transition("AA-2024-000001", from_status, to_status, admin_id=1)

    def test_same_status_is_a_no_op(self):
        assert OrderStateMachine.is_valid_transition("paid", "paid")

    def test_reopening_cancelled_order_needs_admin(self):
        assert OrderStateMachine.requires_admin("cancelled", "paid")
        assert not OrderStateMachine.validate_and_log_transition("AA-2024-000001", "cancelled", "paid")
        assert OrderStateMachine.validate_and_log_transition("AA-2024-000001", "cancelled", "paid", admin_id=42)

    def test_refund_needs_admin(self):
        assert not OrderStateMachine.validate_and_log_transition("AA-2024-000001", "delivered", "refunded",
                                                                 source="sweeper")
        assert OrderStateMachine.validate_and_log_transition("AA-2024-000001", "delivered", "refunded", admin_id=42)

    def test_final_statuses(self):
        assert OrderStateMachine.is_final_status("cancelled")
        assert OrderStateMachine.is_final_status("delivered")
        assert OrderStateMachine.is_final_status("refunded")
        assert not OrderStateMachine.is_final_status("shipped")

    def test_refunded_has_no_way_out(self):
        assert OrderStateMachine.get_valid_transitions("refunded") == []
