import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from fastapi import FastAPI
from redis.asyncio import Redis

import config
from bot_instance import close_bot
from db import create_db_and_tables
from enums.cryptocurrency import Cryptocurrency
from processing.orders import order_router
from processing.webhooks import webhook_router
from services.background_tasks import BackgroundTaskService, ExpirySweeper
from services.btcpay import BTCPayClient
from services.coinbase_commerce import CoinbaseCommerceClient
from services.decred_wallet import DecredWalletClient
from services.exchange_rate import CachedExchangeRateProvider, KrakenRateProvider
from services.fulfillment import PrintfulFulfillmentProvider
from services.notification import TelegramNotifier
from services.order_lifecycle import OrderLifecycleService
from services.payment_gateway import PaymentGateway
from services.payment_monitor import PaymentMonitorRegistry
from services.reconciler import PaymentReconciler
from services.webhook_monitors import BTCPayWebhookMonitor, CoinbaseWebhookMonitor

logger = logging.getLogger(__name__)


@dataclass
class AppServices:
    queue: asyncio.Queue
    monitor_registry: PaymentMonitorRegistry
    lifecycle: OrderLifecycleService
    background_tasks: BackgroundTaskService
    btcpay_monitor: BTCPayWebhookMonitor
    coinbase_monitor: CoinbaseWebhookMonitor
    redis: Redis
    clients: list = field(default_factory=list)

    async def close(self) -> None:
        for client in self.clients:
            await client.close()
        await self.redis.aclose()


def build_services() -> AppServices:
    """Construct every collaborator once and wire them together."""
    redis = Redis(host=config.REDIS_HOST, port=config.REDIS_PORT, password=config.REDIS_PASSWORD)
    kraken = KrakenRateProvider()
    rate_provider = CachedExchangeRateProvider(kraken, redis)
    fulfillment_provider = PrintfulFulfillmentProvider()
    wallet = DecredWalletClient()
    btcpay = BTCPayClient()
    coinbase = CoinbaseCommerceClient()

    gateways: dict[Cryptocurrency, PaymentGateway] = {}
    if config.DCR_RPC_USER:
        gateways[Cryptocurrency.DCR] = wallet
    if btcpay.is_configured():
        gateways[Cryptocurrency.BTC] = btcpay
    if config.COINBASE_COMMERCE_API_KEY:
        for cryptocurrency in (Cryptocurrency.BTC, Cryptocurrency.ETH, Cryptocurrency.LTC):
            gateways.setdefault(cryptocurrency, coinbase)
    logger.info(f"Payment backends: {', '.join(f'{c.value}={g.backend.value}' for c, g in gateways.items()) or 'none'}")

    queue: asyncio.Queue = asyncio.Queue()
    monitor_registry = PaymentMonitorRegistry(queue)
    lifecycle = OrderLifecycleService(
        rate_provider=rate_provider,
        fulfillment_provider=fulfillment_provider,
        notifier=TelegramNotifier(),
        monitor_registry=monitor_registry,
        payment_gateways=gateways,
        reconciler=PaymentReconciler(),
    )
    return AppServices(
        queue=queue,
        monitor_registry=monitor_registry,
        lifecycle=lifecycle,
        background_tasks=BackgroundTaskService(ExpirySweeper(lifecycle), lifecycle),
        btcpay_monitor=BTCPayWebhookMonitor(btcpay),
        coinbase_monitor=CoinbaseWebhookMonitor(coinbase),
        redis=redis,
        clients=[kraken, fulfillment_provider, wallet, btcpay, coinbase],
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown."""
    services = build_services()
    app.state.services = services

    # Startup
    await create_db_and_tables()
    consumer_task = asyncio.create_task(services.lifecycle.consume_observations(services.queue))
    await services.lifecycle.resume_monitoring()
    scheduler_task = asyncio.create_task(services.background_tasks.schedule_background_tasks())
    logger.info("[Startup] Observation consumer and background scheduler started")

    yield

    # Shutdown
    logger.warning('Shutting down..')
    services.monitor_registry.stop_all()
    for task in (scheduler_task, consumer_task):
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
    await services.close()
    await close_bot()
    logger.warning('Bye!')


app = FastAPI(lifespan=lifespan)
app.include_router(webhook_router)
app.include_router(order_router)
