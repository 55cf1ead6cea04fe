import logging
import time
from datetime import datetime
from typing import Any, Optional

import aiohttp
from pydantic import BaseModel

import config
from enums.cryptocurrency import Cryptocurrency
from enums.payment_backend import PaymentBackend
from exceptions.payment import PaymentBackendException
from models.payment import PaymentRequestDTO
from services.http_client import ApiClient
from services.payment_gateway import PaymentGateway

logger = logging.getLogger(__name__)


class WalletBalance(BaseModel):
    """What an address has received, at the wallet's confirmation threshold and at zero."""
    confirmed: float
    total: float

    @property
    def pending(self) -> float:
        return max(self.total - self.confirmed, 0.0)


class DecredWalletClient(ApiClient, PaymentGateway):
    """
    dcrwallet JSON-RPC client.

    Every order gets a fresh address labelled `order_<id>`, and the payment
    monitor polls it with `check_payment`.
    """

    NAME = "dcrwallet"
    backend = PaymentBackend.DCRWALLET

    def __init__(self,
                 rpc_url: str | None = None,
                 rpc_user: str | None = None,
                 rpc_password: str | None = None,
                 min_confirmations: int | None = None,
                 session: Optional[aiohttp.ClientSession] = None):
        super().__init__(rpc_url or config.DCR_RPC_URL, session)
        self._auth = aiohttp.BasicAuth(rpc_user or config.DCR_RPC_USER, rpc_password or config.DCR_RPC_PASSWORD)
        self.min_confirmations = min_confirmations if min_confirmations is not None else config.DCR_MIN_CONFIRMATIONS

    async def rpc_call(self, method: str, params: list | None = None) -> Any:
        payload = {
            "jsonrpc": "1.0",
            "id": f"dcr-{int(time.time() * 1000)}",
            "method": method,
            "params": params or [],
        }
        data = await self._request("POST", json=payload, auth=self._auth)
        if not isinstance(data, dict):
            raise PaymentBackendException(self.NAME, f"{method}: malformed RPC response")
        if data.get("error"):
            error = data["error"]
            message = error.get("message", "RPC error") if isinstance(error, dict) else str(error)
            raise PaymentBackendException(self.NAME, f"{method}: {message}")
        return data.get("result")

    async def generate_address(self, order_id: str) -> str:
        address = await self.rpc_call("getnewaddress", [f"order_{order_id}"])
        logger.info(f"Generated DCR payment address for order {order_id}")
        return address

    async def check_payment(self, address: str) -> WalletBalance:
        received = await self.rpc_call("getreceivedbyaddress", [address, self.min_confirmations])
        unconfirmed = await self.rpc_call("getreceivedbyaddress", [address, 0])
        return WalletBalance(confirmed=float(received or 0), total=float(unconfirmed or 0))

    async def list_transactions(self, order_id: str, count: int = 10) -> list[dict]:
        transactions = await self.rpc_call("listtransactions", [f"order_{order_id}", count]) or []
        return [
            {
                "hash": tx.get("txid"),
                "amount": tx.get("amount"),
                "confirmations": tx.get("confirmations", 0),
                "category": tx.get("category"),
                "address": tx.get("address"),
            }
            for tx in transactions
        ]

    async def validate_address(self, address: str) -> bool:
        result = await self.rpc_call("validateaddress", [address])
        return bool(result and result.get("isvalid") is True)

    async def create_payment(self,
                             order_id: str,
                             cryptocurrency: Cryptocurrency,
                             crypto_amount: float,
                             total_usd: float,
                             customer_email: str,
                             expires_at: datetime) -> PaymentRequestDTO:
        address = await self.generate_address(order_id)
        return PaymentRequestDTO(address=address)
