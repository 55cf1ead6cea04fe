"""
Pytest configuration and fixtures for tests.

This file is automatically loaded by pytest and provides shared fixtures,
test doubles for the external collaborators and configuration for all tests.
"""

import asyncio
import os
import sys
from datetime import datetime, timedelta

# Add parent directory to Python path so tests can import modules
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

# Environment must be in place before config is imported anywhere
os.environ.setdefault("RUNTIME_ENVIRONMENT", "TEST")
os.environ.setdefault("DB_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("TOKEN", "123456:ABC-DEF1234ghIkl-zyx57W2v1u123ew11")
os.environ.setdefault("ADMIN_ID_LIST", "123456789")
os.environ.setdefault("INTERNAL_WEBHOOK_SECRET", "test_internal_secret_0123456789abcdef")
os.environ.setdefault("BTCPAY_WEBHOOK_SECRET", "test_btcpay_secret_0123456789abcdef")
os.environ.setdefault("COINBASE_COMMERCE_WEBHOOK_SECRET", "test_coinbase_secret_0123456789abcdef")
os.environ.setdefault("PRINTFUL_WEBHOOK_SECRET", "test_printful_secret_0123456789abcdef")

import pytest
import pytest_asyncio
from fakeredis import FakeAsyncRedis

import db
from enums.cryptocurrency import Cryptocurrency
from enums.order_status import OrderStatus
from enums.payment_backend import PaymentBackend
from enums.payment_status import PaymentStatus
from exceptions.fulfillment import FulfillmentProviderException
from models.base import Base
from models.order import OrderCreateDTO, OrderDTO, OrderItemDTO, ShippingAddressDTO
from models.payment import PaymentDTO, PaymentRequestDTO
from repositories.order import OrderRepository
from repositories.payment import PaymentRepository
from services.decred_wallet import WalletBalance
from services.exchange_rate import ExchangeRateProvider
from services.fulfillment import FulfillmentProvider
from services.notification import Notifier
from services.order_lifecycle import OrderLifecycleService
from services.payment_gateway import PaymentGateway
from services.payment_monitor import PaymentMonitorRegistry
from services.reconciler import PaymentReconciler
from utils.transaction_manager import TransactionManager


# ============================================================================
# Test doubles
# ============================================================================

class FakeFulfillmentProvider(FulfillmentProvider):
    """Counts calls; fails the first `fail_times` creations, each call takes `delay` seconds."""

    def __init__(self, fail_times: int = 0, delay: float = 0):
        self.fail_times = fail_times
        self.delay = delay
        self.create_calls = 0
        self.created: list[str] = []
        self.cancelled: list[str] = []

    async def create_fulfillment_order(self, order: OrderDTO) -> str:
        self.create_calls += 1
        # Give concurrent callers a chance to interleave
        await asyncio.sleep(self.delay)
        if self.fail_times > 0:
            self.fail_times -= 1
            raise FulfillmentProviderException(order.order_id, "HTTP 500: partner unavailable", 500)
        self.created.append(order.order_id)
        return f"PF-{len(self.created)}"

    async def cancel_fulfillment_order(self, fulfillment_order_id: str) -> None:
        self.cancelled.append(fulfillment_order_id)


class RecordingNotifier(Notifier):
    def __init__(self):
        self.events: list[tuple[str, str]] = []

    def count(self, kind: str) -> int:
        return sum(1 for event_kind, _ in self.events if event_kind == kind)

    async def payment_pending(self, order, payment) -> None:
        self.events.append(("payment_pending", order.order_id))

    async def payment_confirmed(self, order) -> None:
        self.events.append(("payment_confirmed", order.order_id))

    async def payment_underpaid(self, order, payment) -> None:
        self.events.append(("payment_underpaid", order.order_id))

    async def order_cancelled(self, order, reason: str) -> None:
        self.events.append(("order_cancelled", order.order_id))

    async def order_shipped(self, order) -> None:
        self.events.append(("order_shipped", order.order_id))

    async def operator_alert(self, order_id: str, message: str) -> None:
        self.events.append(("operator_alert", order_id))


class FakeRateProvider(ExchangeRateProvider):
    def __init__(self, prices: dict | None = None):
        self.prices = prices or {
            Cryptocurrency.DCR: 20.0,
            Cryptocurrency.BTC: 50000.0,
            Cryptocurrency.LTC: 100.0,
            Cryptocurrency.ETH: 2500.0,
        }
        self.calls = 0

    async def get_current_price(self, cryptocurrency: Cryptocurrency) -> float:
        self.calls += 1
        return self.prices[cryptocurrency]


class FakeWallet(PaymentGateway):
    """
    Polling backend double.

    `balances` is a script consumed one entry per check; the last entry
    repeats. An Exception entry is raised instead of returned.
    """

    backend = PaymentBackend.DCRWALLET

    def __init__(self, balances: list | None = None, transactions: list[dict] | None = None):
        self.balances = balances or [WalletBalance(confirmed=0.0, total=0.0)]
        self.transactions = transactions or []
        self.checks = 0
        self.addresses_issued = 0

    async def create_payment(self, order_id, cryptocurrency, crypto_amount, total_usd, customer_email, expires_at):
        self.addresses_issued += 1
        return PaymentRequestDTO(address=f"DsTestAddress{self.addresses_issued:04d}")

    async def check_payment(self, address: str) -> WalletBalance:
        self.checks += 1
        entry = self.balances.pop(0) if len(self.balances) > 1 else self.balances[0]
        if isinstance(entry, Exception):
            raise entry
        return entry

    async def list_transactions(self, order_id: str, count: int = 10) -> list[dict]:
        return self.transactions


class FakeInvoiceGateway(PaymentGateway):
    """Webhook-driven backend double (hosted invoices), optionally quoting its own crypto amount."""

    backend = PaymentBackend.BTCPAY

    def __init__(self, quoted_amount: float | None = None):
        self.invoices = 0
        self.quoted_amount = quoted_amount

    async def create_payment(self, order_id, cryptocurrency, crypto_amount, total_usd, customer_email, expires_at):
        self.invoices += 1
        return PaymentRequestDTO(
            address=f"bc1qtestaddress{self.invoices:04d}",
            provider_reference=f"INV-{self.invoices}",
            checkout_url=f"https://btcpay.test/i/INV-{self.invoices}",
            amount=self.quoted_amount,
        )


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest_asyncio.fixture
async def database(tmp_path):
    """
    Fresh sqlite file per test.

    A file (not :memory:) so that every session gets its own connection and
    concurrent transactions behave as they do in production.
    """
    engine = db.init_engine(f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


# ============================================================================
# Redis Fixtures
# ============================================================================

@pytest_asyncio.fixture
async def redis_client():
    """Create fake Redis client for testing (no real Redis server needed)."""
    client = FakeAsyncRedis(decode_responses=True)
    yield client
    await client.aclose()


# ============================================================================
# Service Fixtures
# ============================================================================

@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def fulfillment_provider():
    return FakeFulfillmentProvider()


@pytest.fixture
def wallet():
    return FakeWallet()


@pytest.fixture
def invoice_gateway():
    return FakeInvoiceGateway()


@pytest_asyncio.fixture
async def observation_queue():
    return asyncio.Queue()


@pytest_asyncio.fixture
async def monitor_registry(observation_queue):
    registry = PaymentMonitorRegistry(observation_queue, poll_interval_seconds=0.01,
                                      underpayment_tolerance_percent=1.0)
    yield registry
    registry.stop_all()


@pytest.fixture
def reconciler():
    return PaymentReconciler(underpayment_tolerance_percent=1.0, overpayment_tolerance_percent=1.0)


@pytest_asyncio.fixture
async def lifecycle_factory(database, notifier, fulfillment_provider, wallet, invoice_gateway, monitor_registry,
                            reconciler):
    """Build a lifecycle on the shared doubles; keyword arguments override the defaults."""

    def _build(**overrides) -> OrderLifecycleService:
        settings = dict(
            rate_provider=FakeRateProvider(),
            fulfillment_provider=fulfillment_provider,
            notifier=notifier,
            monitor_registry=monitor_registry,
            payment_gateways={
                Cryptocurrency.DCR: wallet,
                Cryptocurrency.BTC: invoice_gateway,
            },
            reconciler=reconciler,
            payment_expiry_minutes=60,
            markup_percent=0.0,
            order_id_prefix="AA",
            fulfillment_claim_timeout_minutes=10,
            fulfillment_max_attempts=5,
        )
        settings.update(overrides)
        return OrderLifecycleService(**settings)

    return _build


@pytest_asyncio.fixture
async def lifecycle(lifecycle_factory):
    """Lifecycle without markup, so a $100 DCR order costs exactly 5.0 DCR."""
    return lifecycle_factory()


# ============================================================================
# Data helpers
# ============================================================================

def order_request(cryptocurrency: Cryptocurrency = Cryptocurrency.DCR) -> OrderCreateDTO:
    """$100.00 order: 2 x $25 shirts and 1 x $50 hoodie."""
    return OrderCreateDTO(
        customer_email="ada@example.com",
        customer_name="Ada Lovelace",
        shipping_address=ShippingAddressDTO(
            name="Ada Lovelace",
            address1="12 St James's Square",
            city="London",
            country_code="GB",
            zip="SW1Y 4JH",
        ),
        items=[
            OrderItemDTO(product_id="tee-black", variant_id=4012, name="Black Tee", quantity=2, unit_price_usd=25.0),
            OrderItemDTO(product_id="hoodie-grey", variant_id=5530, name="Grey Hoodie", quantity=1,
                         unit_price_usd=50.0),
        ],
        cryptocurrency=cryptocurrency,
    )


@pytest_asyncio.fixture
async def make_order(database):
    """
    Insert an order with its payment directly, bypassing create_order.

    Useful when a test needs a specific deadline or status.
    """
    counter = {"n": 0}

    async def _make(expected_amount: float = 5.0,
                    expires_at: datetime | None = None,
                    payment_status: PaymentStatus = PaymentStatus.PENDING,
                    order_status: OrderStatus = OrderStatus.PENDING_PAYMENT,
                    backend: PaymentBackend = PaymentBackend.DCRWALLET,
                    cryptocurrency: Cryptocurrency = Cryptocurrency.DCR) -> tuple[OrderDTO, PaymentDTO]:
        counter["n"] += 1
        order_id = f"AA-2024-{counter['n']:06d}"
        address = f"DsMadeAddress{counter['n']:04d}"
        expires_at = expires_at or datetime.utcnow() + timedelta(minutes=60)
        async with TransactionManager.atomic_transaction() as session:
            order = await OrderRepository.create(OrderDTO(
                order_id=order_id,
                customer_email="grace@example.com",
                customer_name="Grace Hopper",
                shipping_address={"name": "Grace Hopper", "address1": "1 Navy Way", "city": "Arlington",
                                  "country_code": "US", "state_code": "VA", "zip": "22202"},
                items=[{"product_id": "cap", "variant_id": 77, "name": "Cap", "quantity": 1,
                        "unit_price_usd": 100.0}],
                total_usd=100.0,
                crypto_currency=cryptocurrency,
                crypto_amount=expected_amount,
                payment_address=address,
                payment_status=payment_status,
                order_status=order_status,
            ), session)
            payment = await PaymentRepository.create(PaymentDTO(
                order_id=order_id,
                cryptocurrency=cryptocurrency,
                payment_address=address,
                backend=backend,
                expected_amount=expected_amount,
                usd_rate=20.0,
                status=payment_status,
                expires_at=expires_at,
            ), session)
        return order, payment

    return _make


async def wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


def drain(queue: asyncio.Queue) -> list:
    items = []
    while not queue.empty():
        items.append(queue.get_nowait())
    return items


async def load(order_id: str) -> tuple[OrderDTO, PaymentDTO]:
    async with db.get_db_session() as session:
        order = await OrderRepository.get_by_order_id(order_id, session)
        payment = await PaymentRepository.get_by_order_id(order_id, session)
    return order, payment
