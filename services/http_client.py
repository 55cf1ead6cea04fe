import asyncio
import json
import logging
from typing import Any, Optional

import aiohttp

from exceptions.payment import PaymentBackendException

logger = logging.getLogger(__name__)


class ApiClient:
    """
    Thin JSON-over-HTTP client shared by the wallet RPC, payment processors,
    the fulfillment partner and the rate source.

    The aiohttp session is created lazily on first use and reused until close().
    Transport errors and HTTP error statuses surface as the exception returned
    by `_error()`, so callers only ever deal with the service's own hierarchy.
    """

    NAME = "http"
    TIMEOUT_SECONDS = 30

    def __init__(self, base_url: str, session: Optional[aiohttp.ClientSession] = None):
        self.base_url = base_url.rstrip("/")
        self._session = session

    async def _get_session(self) -> aiohttp.ClientSession:
        if not self._session or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _headers(self) -> dict:
        return {"Content-Type": "application/json"}

    def _error(self, reason: str, status_code: int | None = None, reference: str = "") -> Exception:
        return PaymentBackendException(self.NAME, reason)

    async def _request(self, method: str, path: str = "", reference: str = "", **kwargs) -> Any:
        session = await self._get_session()
        url = f"{self.base_url}{path}"
        try:
            async with session.request(
                    method,
                    url,
                    headers=self._headers(),
                    timeout=aiohttp.ClientTimeout(total=self.TIMEOUT_SECONDS),
                    **kwargs
            ) as resp:
                text = await resp.text()
                body = json.loads(text) if text else None
                if resp.status >= 400:
                    logger.warning(f"{self.NAME} {method} {path} returned HTTP {resp.status}")
                    raise self._error(f"HTTP {resp.status}: {self._describe(body)}", resp.status, reference)
                return body
        except (aiohttp.ClientError, asyncio.TimeoutError, json.JSONDecodeError) as e:
            raise self._error(f"{type(e).__name__}: {e}", reference=reference) from e

    @staticmethod
    def _describe(body: Any) -> str:
        if isinstance(body, dict):
            error = body.get("error") or body.get("message") or body.get("result")
            if isinstance(error, dict):
                return str(error.get("message") or error)
            if error:
                return str(error)
        return "no error detail"
