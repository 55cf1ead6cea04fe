"""
Payment-related exceptions.
"""

from .base import OrderBackendException


class PaymentException(OrderBackendException):
    """Base exception for payment-related errors."""
    pass


class PaymentNotFoundException(PaymentException):
    """Raised when no payment record exists for an order."""

    def __init__(self, order_id: str):
        super().__init__(
            f"Payment for order {order_id} not found",
            details={'order_id': order_id}
        )
        self.order_id = order_id


class UnsupportedCryptocurrencyException(PaymentException):
    """Raised when no payment backend is configured for the requested cryptocurrency."""

    def __init__(self, cryptocurrency: str):
        super().__init__(
            f"Unsupported cryptocurrency: {cryptocurrency}",
            details={'cryptocurrency': cryptocurrency}
        )
        self.cryptocurrency = cryptocurrency


class InvalidPaymentAmountException(PaymentException):
    """Raised when a computed or supplied payment amount is not positive."""

    def __init__(self, amount: float, currency: str):
        super().__init__(
            f"Invalid payment amount: {amount} {currency}",
            details={'amount': amount, 'currency': currency}
        )
        self.amount = amount
        self.currency = currency


class PaymentBackendException(PaymentException):
    """
    Raised when a payment backend (wallet RPC, BTCPay, Coinbase Commerce, rate source)
    cannot be reached or answers with an error.

    Transient by nature: monitors log it and retry on the next tick.
    """

    def __init__(self, backend: str, reason: str):
        super().__init__(
            f"{backend} request failed: {reason}",
            details={'backend': backend, 'reason': reason}
        )
        self.backend = backend
        self.reason = reason
