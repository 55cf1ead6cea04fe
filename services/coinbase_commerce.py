import logging
from datetime import datetime
from typing import Optional

import aiohttp

import config
from enums.cryptocurrency import Cryptocurrency
from enums.payment_backend import PaymentBackend
from exceptions.payment import PaymentBackendException
from models.payment import PaymentRequestDTO
from services.http_client import ApiClient
from services.payment_gateway import PaymentGateway

logger = logging.getLogger(__name__)


class CoinbaseCommerceClient(ApiClient, PaymentGateway):
    """Coinbase Commerce charges API client."""

    NAME = "coinbase"
    backend = PaymentBackend.COINBASE
    API_VERSION = "2018-03-22"

    def __init__(self,
                 base_url: str | None = None,
                 api_key: str | None = None,
                 session: Optional[aiohttp.ClientSession] = None):
        super().__init__(base_url or config.COINBASE_COMMERCE_API_URL, session)
        self.api_key = api_key or config.COINBASE_COMMERCE_API_KEY

    def _headers(self) -> dict:
        return {
            "X-CC-Api-Key": self.api_key,
            "X-CC-Version": self.API_VERSION,
            "Content-Type": "application/json",
        }

    async def create_charge(self,
                            order_id: str,
                            cryptocurrency: Cryptocurrency,
                            amount_usd: float,
                            customer_email: str) -> dict:
        response = await self._request(
            "POST",
            "/charges",
            json={
                "name": f"Order {order_id}",
                "description": f"Payment for order {order_id}",
                "pricing_type": "fixed_price",
                "local_price": {"amount": f"{amount_usd:.2f}", "currency": "USD"},
                "metadata": {
                    "order_id": order_id,
                    "cryptocurrency": cryptocurrency.value,
                    "customer_email": customer_email,
                },
            },
        )
        charge = response["data"]
        logger.info(f"Coinbase charge {charge.get('code')} created for order {order_id}")
        return charge

    async def get_charge(self, charge_code: str) -> dict:
        response = await self._request("GET", f"/charges/{charge_code}")
        return response["data"]

    async def create_payment(self,
                             order_id: str,
                             cryptocurrency: Cryptocurrency,
                             crypto_amount: float,
                             total_usd: float,
                             customer_email: str,
                             expires_at: datetime) -> PaymentRequestDTO:
        charge = await self.create_charge(order_id, cryptocurrency, total_usd, customer_email)
        # Charge addresses are keyed by network name (bitcoin, ethereum, litecoin)
        address = (charge.get("addresses") or {}).get(cryptocurrency.get_uri_scheme())
        if not address:
            raise PaymentBackendException(self.NAME, f"charge {charge.get('code')} has no {cryptocurrency.value} address")
        # Pricing is keyed the same way; the charge bills exactly this amount
        quoted = ((charge.get("pricing") or {}).get(cryptocurrency.get_uri_scheme()) or {}).get("amount")
        return PaymentRequestDTO(
            address=address,
            provider_reference=charge["code"],
            checkout_url=charge.get("hosted_url"),
            amount=float(quoted) if quoted else None,
        )
