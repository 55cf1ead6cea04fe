"""
Order-related exceptions.
"""

from .base import OrderBackendException


class OrderException(OrderBackendException):
    """Base exception for order-related errors."""
    pass


class OrderNotFoundException(OrderException):
    """Raised when order is not found in database."""

    def __init__(self, order_id: str):
        super().__init__(
            f"Order {order_id} not found",
            details={'order_id': order_id}
        )
        self.order_id = order_id


class InvalidOrderStateException(OrderException):
    """Raised when order is in invalid state for requested operation."""

    def __init__(self, order_id: str, current_state: str, required_state: str):
        super().__init__(
            f"Order {order_id} is in state '{current_state}', required '{required_state}'",
            details={'order_id': order_id, 'current_state': current_state, 'required_state': required_state}
        )
        self.order_id = order_id
        self.current_state = current_state
        self.required_state = required_state


class InvalidOrderDataException(OrderException):
    """Raised when an order request fails validation before any state machine work."""

    def __init__(self, reason: str):
        super().__init__(
            f"Invalid order: {reason}",
            details={'reason': reason}
        )
        self.reason = reason


class StaleOrderStateException(OrderException):
    """Raised when a compare-and-set update lost against a concurrent writer."""

    def __init__(self, order_id: str, expected_version: int):
        super().__init__(
            f"Order {order_id} changed concurrently (expected version {expected_version})",
            details={'order_id': order_id, 'expected_version': expected_version}
        )
        self.order_id = order_id
        self.expected_version = expected_version


class OrderIdAllocationException(OrderException):
    """Raised when no free order id could be found for a prefix and year."""

    def __init__(self, prefix: str, year: int, attempts: int):
        super().__init__(
            f"Could not allocate an order id for {prefix}-{year} after {attempts} attempts",
            details={'prefix': prefix, 'year': year, 'attempts': attempts}
        )
        self.prefix = prefix
        self.year = year
        self.attempts = attempts
