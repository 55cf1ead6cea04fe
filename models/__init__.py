"""
Models Package

This file ensures all SQLAlchemy models are imported and registered,
which is required for relationships to work correctly.
"""

from models.base import Base
from models.order import Order
from models.payment import Payment

__all__ = [
    'Base',
    'Order',
    'Payment',
]
