import logging
from abc import ABC, abstractmethod
from typing import Optional

import aiohttp
from redis.asyncio import Redis

import config
from enums.cryptocurrency import Cryptocurrency
from exceptions.payment import PaymentBackendException, InvalidPaymentAmountException
from services.http_client import ApiClient

logger = logging.getLogger(__name__)


class ExchangeRateProvider(ABC):

    @abstractmethod
    async def get_current_price(self, cryptocurrency: Cryptocurrency) -> float:
        """USD price of one unit of `cryptocurrency`."""
        ...

    async def close(self) -> None:
        pass


class KrakenRateProvider(ApiClient, ExchangeRateProvider):
    """Last trade price from Kraken's public Ticker endpoint."""

    NAME = "kraken"

    def __init__(self, base_url: str | None = None, session: Optional[aiohttp.ClientSession] = None):
        super().__init__(base_url or config.KRAKEN_API_URL, session)

    async def get_current_price(self, cryptocurrency: Cryptocurrency) -> float:
        pair = cryptocurrency.get_kraken_pair()
        data = await self._request("GET", "/0/public/Ticker", params={"pair": pair})
        if data.get("error"):
            raise PaymentBackendException(self.NAME, f"{pair}: {', '.join(data['error'])}")
        result = data.get("result") or {}
        # Kraken may answer under an alternate pair name
        pair_data = result.get(pair) or next(iter(result.values()), None)
        if not pair_data:
            raise PaymentBackendException(self.NAME, f"no price data for {cryptocurrency.value}")
        price = float(pair_data["c"][0])
        logger.debug(f"Kraken {pair} last price: {price}")
        return price


class CachedExchangeRateProvider(ExchangeRateProvider):
    """Keeps rates in Redis for a short TTL so order bursts do not hammer the exchange."""

    KEY_PREFIX = "crypto_rate"

    def __init__(self, provider: ExchangeRateProvider, redis: Redis, ttl_seconds: int | None = None):
        self.provider = provider
        self.redis = redis
        self.ttl_seconds = ttl_seconds or config.CRYPTO_RATE_CACHE_SECONDS

    def _key(self, cryptocurrency: Cryptocurrency) -> str:
        return f"{self.KEY_PREFIX}:{cryptocurrency.value}:USD"

    async def get_current_price(self, cryptocurrency: Cryptocurrency) -> float:
        key = self._key(cryptocurrency)
        cached = await self.redis.get(key)
        if cached is not None:
            return float(cached)

        price = await self.provider.get_current_price(cryptocurrency)
        await self.redis.setex(key, self.ttl_seconds, str(price))
        return price

    async def close(self) -> None:
        await self.provider.close()


def calculate_crypto_amount(usd_amount: float,
                            usd_rate: float,
                            cryptocurrency: Cryptocurrency,
                            markup_percent: float | None = None) -> float:
    """
    Convert a USD total into the amount of crypto to request.

    A small markup covers rate movement between quoting and settlement.
    """
    if usd_rate <= 0:
        raise InvalidPaymentAmountException(usd_rate, "USD")
    if markup_percent is None:
        markup_percent = config.PAYMENT_MARKUP_PERCENT
    amount = cryptocurrency.normalize(usd_amount * (1 + markup_percent / 100) / usd_rate)
    if amount <= 0:
        raise InvalidPaymentAmountException(amount, cryptocurrency.value)
    return amount
