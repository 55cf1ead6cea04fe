from datetime import datetime

from pydantic import BaseModel, Field
from sqlalchemy import Column, Integer, Float, DateTime, String, Text, JSON, func, CheckConstraint, Enum as SQLEnum
from sqlalchemy.orm import relationship

from enums.cryptocurrency import Cryptocurrency
from enums.order_status import OrderStatus
from enums.payment_status import PaymentStatus
from models.base import Base


class Order(Base):
    __tablename__ = 'orders'

    id = Column(Integer, primary_key=True, unique=True)
    order_id = Column(String(32), nullable=False, unique=True, index=True)  # AA-2024-001234

    # Customer / shipping
    customer_email = Column(String(255), nullable=False)
    customer_name = Column(String(255), nullable=False)
    shipping_address = Column(JSON, nullable=False)
    items = Column(JSON, nullable=False)
    notes = Column(Text, nullable=True)

    # Amounts
    total_usd = Column(Float, nullable=False)
    crypto_currency = Column(SQLEnum(Cryptocurrency), nullable=False)
    crypto_amount = Column(Float, nullable=False)
    payment_address = Column(String(255), nullable=True, index=True)
    transaction_hash = Column(String(255), nullable=True)

    # Two status fields: payment side and fulfillment side
    payment_status = Column(SQLEnum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)
    order_status = Column(SQLEnum(OrderStatus), nullable=False, default=OrderStatus.PENDING_PAYMENT)

    # Fulfillment (print-on-demand partner)
    fulfillment_order_id = Column(String(64), nullable=True)
    fulfillment_claimed_at = Column(DateTime, nullable=True)
    fulfillment_attempts = Column(Integer, nullable=False, default=0)
    last_fulfillment_error = Column(Text, nullable=True)

    # Shipment tracking
    tracking_number = Column(String(128), nullable=True)
    tracking_url = Column(String(512), nullable=True)
    carrier = Column(String(64), nullable=True)

    # Optimistic concurrency: bumped on every state write
    version = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())
    paid_at = Column(DateTime, nullable=True)
    shipped_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    payments = relationship('Payment', back_populates='order', cascade='all, delete-orphan')

    __table_args__ = (
        CheckConstraint('total_usd > 0', name='check_order_total_usd_positive'),
        CheckConstraint('crypto_amount > 0', name='check_order_crypto_amount_positive'),
    )


class OrderItemDTO(BaseModel):
    product_id: str
    variant_id: int | None = None  # Fulfillment partner catalog variant
    name: str
    quantity: int
    unit_price_usd: float

    @property
    def line_total(self) -> float:
        return round(self.quantity * self.unit_price_usd, 2)


class ShippingAddressDTO(BaseModel):
    """Recipient in the shape the fulfillment partner expects."""
    name: str
    address1: str
    address2: str | None = None
    city: str
    state_code: str | None = None
    country_code: str
    zip: str
    phone: str | None = None


class OrderCreateDTO(BaseModel):
    customer_email: str
    customer_name: str
    shipping_address: ShippingAddressDTO
    items: list[OrderItemDTO] = Field(default_factory=list)
    cryptocurrency: Cryptocurrency
    notes: str | None = None


class OrderDTO(BaseModel):
    id: int | None = None
    order_id: str | None = None
    customer_email: str | None = None
    customer_name: str | None = None
    shipping_address: dict | None = None
    items: list[dict] | None = None
    notes: str | None = None
    total_usd: float | None = None
    crypto_currency: Cryptocurrency | None = None
    crypto_amount: float | None = None
    payment_address: str | None = None
    transaction_hash: str | None = None
    payment_status: PaymentStatus | None = None
    order_status: OrderStatus | None = None
    fulfillment_order_id: str | None = None
    fulfillment_claimed_at: datetime | None = None
    fulfillment_attempts: int | None = 0
    last_fulfillment_error: str | None = None
    tracking_number: str | None = None
    tracking_url: str | None = None
    carrier: str | None = None
    version: int | None = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None
    paid_at: datetime | None = None
    shipped_at: datetime | None = None
    delivered_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None


class OrderSummaryDTO(BaseModel):
    """
    Customer-facing snapshot of an order.

    Only statuses, totals and tracking; internal error detail
    (fulfillment errors, claim timestamps, versions) never leaves the service.
    """
    order_id: str
    order_status: OrderStatus
    payment_status: PaymentStatus
    total_usd: float
    crypto_currency: Cryptocurrency
    crypto_amount: float
    payment_address: str | None = None
    payment_uri: str | None = None
    expires_at: datetime | None = None
    tracking_number: str | None = None
    tracking_url: str | None = None
    carrier: str | None = None
    created_at: datetime | None = None
