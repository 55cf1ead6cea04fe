"""
Custom exceptions for the order backend.

Exception Hierarchy:
--------------------
OrderBackendException (base)
├── OrderException
│   ├── OrderNotFoundException
│   ├── InvalidOrderStateException
│   ├── InvalidOrderDataException
│   ├── StaleOrderStateException
│   └── OrderIdAllocationException
├── PaymentException
│   ├── PaymentNotFoundException
│   ├── UnsupportedCryptocurrencyException
│   ├── InvalidPaymentAmountException
│   └── PaymentBackendException
└── FulfillmentException
    └── FulfillmentProviderException

Usage:
------
Services raise specific exceptions:
    raise OrderNotFoundException(order_id="AA-2024-001234")

Callers (webhook routes, admin tooling) catch and map them:
    try:
        await lifecycle.cancel_order(order_id)
    except InvalidOrderStateException as e:
        raise HTTPException(status_code=409, detail=str(e))
"""

from .base import OrderBackendException
from .fulfillment import FulfillmentException, FulfillmentProviderException
from .order import (
    OrderException,
    OrderNotFoundException,
    InvalidOrderStateException,
    InvalidOrderDataException,
    StaleOrderStateException,
    OrderIdAllocationException,
)
from .payment import (
    PaymentException,
    PaymentNotFoundException,
    UnsupportedCryptocurrencyException,
    InvalidPaymentAmountException,
    PaymentBackendException,
)

__all__ = [
    # Base
    'OrderBackendException',

    # Order
    'OrderException',
    'OrderNotFoundException',
    'InvalidOrderStateException',
    'InvalidOrderDataException',
    'StaleOrderStateException',
    'OrderIdAllocationException',

    # Payment
    'PaymentException',
    'PaymentNotFoundException',
    'UnsupportedCryptocurrencyException',
    'InvalidPaymentAmountException',
    'PaymentBackendException',

    # Fulfillment
    'FulfillmentException',
    'FulfillmentProviderException',
]
