from datetime import datetime

from pydantic import BaseModel
from sqlalchemy import Column, Integer, Float, DateTime, String, ForeignKey, func, CheckConstraint, Enum as SQLEnum
from sqlalchemy.orm import relationship

from enums.cryptocurrency import Cryptocurrency
from enums.payment_backend import PaymentBackend
from enums.payment_status import PaymentStatus
from models.base import Base


class Payment(Base):
    __tablename__ = 'payments'

    id = Column(Integer, primary_key=True, unique=True)
    order_id = Column(String(32), ForeignKey('orders.order_id', ondelete='CASCADE'), nullable=False, index=True)
    cryptocurrency = Column(SQLEnum(Cryptocurrency), nullable=False)
    payment_address = Column(String(255), nullable=False, index=True)
    backend = Column(SQLEnum(PaymentBackend), nullable=False)
    provider_reference = Column(String(128), nullable=True, index=True)  # BTCPay invoice id / Coinbase charge code
    expected_amount = Column(Float, nullable=False)
    received_amount = Column(Float, nullable=True)
    usd_rate = Column(Float, nullable=False)
    transaction_hash = Column(String(255), nullable=True)
    confirmations = Column(Integer, nullable=False, default=0)
    status = Column(SQLEnum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)

    # Fixed at creation, never extended
    expires_at = Column(DateTime, nullable=False)
    detected_at = Column(DateTime, nullable=True)
    confirmed_at = Column(DateTime, nullable=True)

    refund_tx_hash = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    order = relationship('Order', back_populates='payments')

    __table_args__ = (
        CheckConstraint('expected_amount > 0', name='check_payment_expected_amount_positive'),
        CheckConstraint('confirmations >= 0', name='check_payment_confirmations_non_negative'),
    )


class PaymentDTO(BaseModel):
    id: int | None = None
    order_id: str | None = None
    cryptocurrency: Cryptocurrency | None = None
    payment_address: str | None = None
    backend: PaymentBackend | None = None
    provider_reference: str | None = None
    expected_amount: float | None = None
    received_amount: float | None = None
    usd_rate: float | None = None
    transaction_hash: str | None = None
    confirmations: int | None = 0
    status: PaymentStatus | None = None
    expires_at: datetime | None = None
    detected_at: datetime | None = None
    confirmed_at: datetime | None = None
    refund_tx_hash: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class PaymentRequestDTO(BaseModel):
    """What a payment backend hands back when asked for a place to pay."""
    address: str
    provider_reference: str | None = None
    checkout_url: str | None = None
    # Crypto amount the backend itself quoted (hosted invoices); replaces our own conversion
    amount: float | None = None
