import logging
from abc import ABC, abstractmethod
from typing import Optional

import aiohttp

import config
from enums.fulfillment_event_type import FulfillmentEventType
from exceptions.fulfillment import FulfillmentProviderException
from models.fulfillment import FulfillmentEvent
from models.order import OrderDTO
from services.http_client import ApiClient

logger = logging.getLogger(__name__)


class FulfillmentProvider(ABC):
    """Print-on-demand partner that produces and ships paid orders."""

    @abstractmethod
    async def create_fulfillment_order(self, order: OrderDTO) -> str:
        """Submit the order; returns the partner's order id."""
        ...

    @abstractmethod
    async def cancel_fulfillment_order(self, fulfillment_order_id: str) -> None:
        ...

    async def close(self) -> None:
        pass


class PrintfulFulfillmentProvider(ApiClient, FulfillmentProvider):
    NAME = "printful"
    TIMEOUT_SECONDS = 60

    def __init__(self,
                 base_url: str | None = None,
                 api_key: str | None = None,
                 session: Optional[aiohttp.ClientSession] = None):
        super().__init__(base_url or config.PRINTFUL_API_URL, session)
        self.api_key = api_key or config.PRINTFUL_API_KEY

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _error(self, reason: str, status_code: int | None = None, reference: str = "") -> Exception:
        return FulfillmentProviderException(reference, reason, status_code)

    @staticmethod
    def build_order_payload(order: OrderDTO) -> dict:
        shipping = order.shipping_address or {}
        return {
            "external_id": order.order_id,
            "recipient": {
                "name": shipping.get("name"),
                "address1": shipping.get("address1"),
                "address2": shipping.get("address2") or "",
                "city": shipping.get("city"),
                "state_code": shipping.get("state_code"),
                "country_code": shipping.get("country_code"),
                "zip": shipping.get("zip"),
                "phone": shipping.get("phone") or "",
                "email": order.customer_email,
            },
            "items": [
                {
                    "variant_id": item.get("variant_id"),
                    "quantity": item.get("quantity"),
                    "retail_price": f"{item.get('unit_price_usd', 0):.2f}",
                    "name": item.get("name"),
                }
                for item in order.items or []
            ],
            "retail_costs": {
                "currency": "USD",
                "subtotal": f"{order.total_usd:.2f}",
                "discount": "0",
                "shipping": "0",
                "tax": "0",
            },
        }

    async def get_order(self, order_ref: str) -> dict:
        response = await self._request("GET", f"/orders/{order_ref}", reference=order_ref)
        return response["result"]

    async def create_fulfillment_order(self, order: OrderDTO) -> str:
        try:
            response = await self._request("POST", "/orders", reference=order.order_id,
                                           json=self.build_order_payload(order))
        except FulfillmentProviderException as e:
            if e.status_code not in (400, 409):
                raise
            # A previous attempt may have gone through before its response was lost;
            # external_id is unique at the partner, so look it up instead of failing.
            existing = await self._find_by_external_id(order.order_id)
            if existing is None:
                raise
            logger.warning(f"Printful order for {order.order_id} already exists ({existing}), reusing it")
            return existing
        fulfillment_order_id = str(response["result"]["id"])
        logger.info(f"Printful order {fulfillment_order_id} created for order {order.order_id}")
        return fulfillment_order_id

    async def _find_by_external_id(self, order_id: str) -> str | None:
        try:
            existing = await self.get_order(f"@{order_id}")
        except FulfillmentProviderException as e:
            if e.status_code == 404:
                return None
            raise
        return str(existing["id"]) if existing and existing.get("id") else None

    async def cancel_fulfillment_order(self, fulfillment_order_id: str) -> None:
        await self._request("DELETE", f"/orders/{fulfillment_order_id}", reference=fulfillment_order_id)
        logger.info(f"Printful order {fulfillment_order_id} cancelled")


def parse_printful_event(payload: dict) -> FulfillmentEvent | None:
    """
    Reduce a Printful webhook body to a FulfillmentEvent.

    Returns None for event types the order lifecycle does not track and for
    events without an external id (orders not created by this service).
    """
    event_type = FulfillmentEventType.from_printful(payload.get("type", ""))
    data = payload.get("data") or {}
    order = data.get("order") or {}
    external_id = order.get("external_id")
    if event_type is None or not external_id:
        logger.info(f"Ignoring Printful event {payload.get('type')} (external_id={external_id})")
        return None

    shipment = data.get("shipment") or {}
    return FulfillmentEvent(
        event_type=event_type,
        order_id=external_id,
        fulfillment_order_id=str(order["id"]) if order.get("id") is not None else None,
        tracking_number=shipment.get("tracking_number"),
        tracking_url=shipment.get("tracking_url"),
        carrier=shipment.get("carrier"),
        reason=data.get("reason"),
    )
