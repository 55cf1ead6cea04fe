"""
Printful Provider Unit Tests

Run with:
    pytest tests/fulfillment/unit/test_printful_provider.py -v
"""

from unittest.mock import AsyncMock, patch

import pytest

from enums.cryptocurrency import Cryptocurrency
from enums.fulfillment_event_type import FulfillmentEventType
from exceptions.fulfillment import FulfillmentProviderException
from models.order import OrderDTO
from services.fulfillment import PrintfulFulfillmentProvider, parse_printful_event


@pytest.fixture
def order():
    return OrderDTO(
        order_id="AA-2024-000321",
        customer_email="ada@example.com",
        customer_name="Ada Lovelace",
        shipping_address={"name": "Ada Lovelace", "address1": "12 St James's Square", "city": "London",
                          "country_code": "GB", "zip": "SW1Y 4JH"},
        items=[{"product_id": "tee-black", "variant_id": 4012, "name": "Black Tee", "quantity": 2,
                "unit_price_usd": 25.0}],
        total_usd=50.0,
        crypto_currency=Cryptocurrency.DCR,
        crypto_amount=2.5,
    )


@pytest.fixture
def provider():
    return PrintfulFulfillmentProvider(base_url="https://printful.test", api_key="pf_test_key")


class TestPrintfulFulfillmentProvider:

    def test_payload_uses_order_id_as_external_id(self, order):
        payload = PrintfulFulfillmentProvider.build_order_payload(order)

        assert payload["external_id"] == "AA-2024-000321"
        assert payload["recipient"]["country_code"] == "GB"
        assert payload["recipient"]["email"] == "ada@example.com"
        assert payload["items"] == [
            {"variant_id": 4012, "quantity": 2, "retail_price": "25.00", "name": "Black Tee"},
        ]
        assert payload["retail_costs"]["subtotal"] == "50.00"

    @pytest.mark.asyncio
    async def test_create_returns_partner_id(self, provider, order):
        with patch.object(provider, "_request", AsyncMock(return_value={"result": {"id": 9001}})) as request:
            assert await provider.create_fulfillment_order(order) == "9001"

        assert request.await_args.args == ("POST", "/orders")
        assert request.await_args.kwargs["reference"] == "AA-2024-000321"

    @pytest.mark.asyncio
    async def test_duplicate_external_id_reuses_existing_order(self, provider, order):
        conflict = FulfillmentProviderException(order.order_id, "HTTP 409: duplicate external_id", 409)
        request = AsyncMock(side_effect=[conflict, {"result": {"id": 777, "external_id": order.order_id}}])

        with patch.object(provider, "_request", request):
            assert await provider.create_fulfillment_order(order) == "777"

        assert request.await_args_list[1].args == ("GET", f"/orders/@{order.order_id}")

    @pytest.mark.asyncio
    async def test_server_error_propagates(self, provider, order):
        failure = FulfillmentProviderException(order.order_id, "HTTP 503: unavailable", 503)

        with patch.object(provider, "_request", AsyncMock(side_effect=failure)):
            with pytest.raises(FulfillmentProviderException) as exc_info:
                await provider.create_fulfillment_order(order)

        assert exc_info.value.status_code == 503

    def test_transport_errors_carry_order_reference(self, provider):
        error = provider._error("ClientConnectorError: refused", reference="AA-2024-000321")

        assert isinstance(error, FulfillmentProviderException)
        assert error.order_id == "AA-2024-000321"


class TestParsePrintfulEvent:

    def test_package_shipped(self):
        event = parse_printful_event({
            "type": "package_shipped",
            "data": {
                "order": {"id": 9001, "external_id": "AA-2024-000321"},
                "shipment": {"carrier": "DHL", "tracking_number": "JD0146000", "tracking_url": "https://dhl.test/JD"},
            },
        })

        assert event.event_type == FulfillmentEventType.SHIPPED
        assert event.order_id == "AA-2024-000321"
        assert event.fulfillment_order_id == "9001"
        assert event.carrier == "DHL"
        assert event.tracking_number == "JD0146000"

    def test_failure_reason(self):
        event = parse_printful_event({
            "type": "order_failed",
            "data": {"order": {"id": 9001, "external_id": "AA-2024-000321"}, "reason": "Invalid address"},
        })

        assert event.event_type == FulfillmentEventType.FAILED
        assert event.reason == "Invalid address"

    def test_unknown_type_is_ignored(self):
        assert parse_printful_event({"type": "product_synced", "data": {}}) is None

    def test_order_without_external_id_is_ignored(self):
        assert parse_printful_event({"type": "package_shipped", "data": {"order": {"id": 1}}}) is None
