from enum import Enum


class OrderStatus(str, Enum):
    PENDING_PAYMENT = "pending_payment"   # Waiting for payment
    PAID = "paid"                         # Payment settled, fulfillment order not yet created
    PRODUCTION = "production"             # Fulfillment order created at print partner
    SHIPPED = "shipped"                   # Handed to carrier (tracking known)
    DELIVERED = "delivered"
    CANCELLED = "cancelled"               # Admin cancellation, payment expiry or partner cancellation
    REFUNDED = "refunded"

    @staticmethod
    def terminal() -> set['OrderStatus']:
        """Statuses that no automatic transition may leave."""
        return {OrderStatus.CANCELLED, OrderStatus.DELIVERED, OrderStatus.REFUNDED}

    def is_terminal(self) -> bool:
        return self in OrderStatus.terminal()
