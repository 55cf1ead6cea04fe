"""
Fulfillment-related exceptions.
"""

from .base import OrderBackendException


class FulfillmentException(OrderBackendException):
    """Base exception for fulfillment errors."""
    pass


class FulfillmentProviderException(FulfillmentException):
    """Raised when the print-on-demand provider rejects or fails a request."""

    def __init__(self, order_id: str, reason: str, status_code: int | None = None):
        super().__init__(
            f"Fulfillment request for order {order_id} failed: {reason}",
            details={'order_id': order_id, 'reason': reason, 'status_code': status_code}
        )
        self.order_id = order_id
        self.reason = reason
        self.status_code = status_code
