import logging
from datetime import datetime
from typing import Optional

import aiohttp

import config
from enums.cryptocurrency import Cryptocurrency
from enums.observation_status import ObservationStatus
from enums.payment_backend import PaymentBackend
from exceptions.payment import PaymentBackendException
from models.payment import PaymentRequestDTO
from services.http_client import ApiClient
from services.payment_gateway import PaymentGateway

logger = logging.getLogger(__name__)


class BTCPayClient(ApiClient, PaymentGateway):
    """BTCPay Server Greenfield API client (store-scoped invoices)."""

    NAME = "btcpay"
    backend = PaymentBackend.BTCPAY

    # Invoice status -> observation; New means nothing paid yet
    STATUS_MAP: dict[str, ObservationStatus | None] = {
        "New": None,
        "Processing": ObservationStatus.CONFIRMING,
        "Settled": ObservationStatus.CONFIRMED,
        "Complete": ObservationStatus.CONFIRMED,
        "Expired": ObservationStatus.EXPIRED,
        "Invalid": ObservationStatus.EXPIRED,
    }

    def __init__(self,
                 base_url: str | None = None,
                 api_key: str | None = None,
                 store_id: str | None = None,
                 expiration_minutes: int | None = None,
                 session: Optional[aiohttp.ClientSession] = None):
        super().__init__(base_url or config.BTCPAY_URL, session)
        self.api_key = api_key or config.BTCPAY_API_KEY
        self.store_id = store_id or config.BTCPAY_STORE_ID
        self.expiration_minutes = expiration_minutes or config.PAYMENT_EXPIRY_MINUTES

    def _headers(self) -> dict:
        return {
            "Authorization": f"token {self.api_key}",
            "Content-Type": "application/json",
        }

    def is_configured(self) -> bool:
        return bool(self.base_url and self.api_key and self.store_id)

    async def create_invoice(self, order_id: str, amount_usd: float, customer_email: str) -> dict:
        invoice = await self._request(
            "POST",
            f"/api/v1/stores/{self.store_id}/invoices",
            json={
                "amount": str(amount_usd),
                "currency": "USD",
                "metadata": {"orderId": order_id, "buyerEmail": customer_email},
                "checkout": {
                    "speedPolicy": "MediumSpeed",
                    "paymentMethods": ["BTC"],
                    "expirationMinutes": self.expiration_minutes,
                },
            },
        )
        logger.info(f"BTCPay invoice {invoice.get('id')} created for order {order_id}")
        return invoice

    async def get_invoice(self, invoice_id: str) -> dict:
        return await self._request("GET", f"/api/v1/stores/{self.store_id}/invoices/{invoice_id}")

    async def get_invoice_payment_methods(self, invoice_id: str) -> list[dict]:
        return await self._request("GET", f"/api/v1/stores/{self.store_id}/invoices/{invoice_id}/payment-methods") or []

    @staticmethod
    def map_status(status: str) -> ObservationStatus | None:
        return BTCPayClient.STATUS_MAP.get(status)

    async def create_payment(self,
                             order_id: str,
                             cryptocurrency: Cryptocurrency,
                             crypto_amount: float,
                             total_usd: float,
                             customer_email: str,
                             expires_at: datetime) -> PaymentRequestDTO:
        invoice = await self.create_invoice(order_id, total_usd, customer_email)
        methods = await self.get_invoice_payment_methods(invoice["id"])
        for method in methods:
            method_name = method.get("paymentMethod") or method.get("paymentMethodId") or ""
            if method_name.split("-")[0] == cryptocurrency.value and method.get("destination"):
                return PaymentRequestDTO(
                    address=method["destination"],
                    provider_reference=invoice["id"],
                    checkout_url=invoice.get("checkoutLink"),
                    amount=float(method["amount"]) if method.get("amount") else None,
                )
        raise PaymentBackendException(self.NAME, f"invoice {invoice['id']} has no {cryptocurrency.value} destination")
