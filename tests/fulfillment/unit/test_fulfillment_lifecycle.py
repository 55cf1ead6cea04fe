"""
Fulfillment Lifecycle Unit Tests

Covers the at-most-once creation protocol (claim, partner call, record or
release), the scheduled retry, and partner webhook events moving the order
through production, shipping and delivery.

Run with:
    pytest tests/fulfillment/unit/test_fulfillment_lifecycle.py -v
"""

import asyncio
from datetime import datetime, timedelta

import pytest

from conftest import load, order_request
from enums.fulfillment_event_type import FulfillmentEventType
from enums.observation_status import ObservationStatus
from enums.order_status import OrderStatus
from enums.payment_status import PaymentStatus
from enums.side_effect import SideEffect
from enums.transition_outcome import TransitionOutcome
from exceptions.order import InvalidOrderStateException
from models.fulfillment import FulfillmentEvent
from models.observation import PaymentObservation
from repositories.order import OrderRepository
from utils.transaction_manager import TransactionManager


async def paid_order(lifecycle) -> str:
    order = await lifecycle.create_order(order_request())
    await lifecycle.apply_observation(PaymentObservation(
        order_id=order.order_id, status=ObservationStatus.CONFIRMED, received_amount=5.0, source="test",
    ))
    return order.order_id


class TestFulfillmentCreation:

    @pytest.mark.asyncio
    async def test_partner_failure_keeps_order_paid(self, lifecycle, fulfillment_provider, notifier):
        fulfillment_provider.fail_times = 1
        order = await lifecycle.create_order(order_request())

        result = await lifecycle.apply_observation(PaymentObservation(
            order_id=order.order_id, status=ObservationStatus.CONFIRMED, received_amount=5.0,
        ))

        assert result.outcome == TransitionOutcome.APPLIED
        assert SideEffect.CREATE_FULFILLMENT not in result.executed_side_effects
        stored_order, payment = await load(order.order_id)
        assert payment.status == PaymentStatus.CONFIRMED
        assert stored_order.order_status == OrderStatus.PAID
        assert stored_order.fulfillment_order_id is None
        assert stored_order.fulfillment_claimed_at is None
        assert stored_order.fulfillment_attempts == 1
        assert "HTTP 500" in stored_order.last_fulfillment_error
        assert notifier.count("operator_alert") == 1

    @pytest.mark.asyncio
    async def test_scheduled_retry_sends_order_to_production(self, lifecycle, fulfillment_provider):
        fulfillment_provider.fail_times = 1
        order_id = await paid_order(lifecycle)

        created = await lifecycle.retry_unfulfilled_orders()

        assert created == 1
        stored_order, _ = await load(order_id)
        assert stored_order.order_status == OrderStatus.PRODUCTION
        assert stored_order.fulfillment_order_id == "PF-1"
        assert stored_order.last_fulfillment_error is None
        assert fulfillment_provider.create_calls == 2

    @pytest.mark.asyncio
    async def test_retry_stops_after_max_attempts(self, lifecycle, fulfillment_provider):
        fulfillment_provider.fail_times = 100
        order_id = await paid_order(lifecycle)

        for _ in range(lifecycle.fulfillment_max_attempts + 2):
            await lifecycle.retry_unfulfilled_orders()

        stored_order, _ = await load(order_id)
        assert stored_order.fulfillment_attempts == lifecycle.fulfillment_max_attempts
        assert fulfillment_provider.create_calls == lifecycle.fulfillment_max_attempts
        assert stored_order.order_status == OrderStatus.PAID

    @pytest.mark.asyncio
    async def test_operator_retry_of_produced_order_is_rejected(self, lifecycle):
        order_id = await paid_order(lifecycle)

        with pytest.raises(InvalidOrderStateException):
            await lifecycle.retry_fulfillment(order_id)

    @pytest.mark.asyncio
    async def test_racing_retries_create_once(self, lifecycle, fulfillment_provider, make_order):
        order, _ = await make_order(payment_status=PaymentStatus.CONFIRMED, order_status=OrderStatus.PAID)

        await asyncio.gather(
            lifecycle.retry_unfulfilled_orders(),
            lifecycle.retry_fulfillment(order.order_id),
            lifecycle.retry_unfulfilled_orders(),
            return_exceptions=True,
        )

        assert fulfillment_provider.create_calls == 1
        stored_order, _ = await load(order.order_id)
        assert stored_order.order_status == OrderStatus.PRODUCTION

    @pytest.mark.asyncio
    async def test_live_claim_blocks_retry(self, lifecycle, fulfillment_provider, make_order):
        order, _ = await make_order(payment_status=PaymentStatus.CONFIRMED, order_status=OrderStatus.PAID)
        now = datetime.utcnow()
        async with TransactionManager.atomic_transaction() as session:
            assert await OrderRepository.claim_fulfillment(order.order_id, now - timedelta(minutes=1),
                                                           now - timedelta(minutes=10), session)

        assert await lifecycle.retry_unfulfilled_orders() == 0
        assert fulfillment_provider.create_calls == 0

    @pytest.mark.asyncio
    async def test_abandoned_claim_is_taken_over(self, lifecycle, fulfillment_provider, make_order):
        order, _ = await make_order(payment_status=PaymentStatus.CONFIRMED, order_status=OrderStatus.PAID)
        now = datetime.utcnow()
        async with TransactionManager.atomic_transaction() as session:
            assert await OrderRepository.claim_fulfillment(order.order_id, now - timedelta(minutes=30),
                                                           now - timedelta(minutes=40), session)

        assert await lifecycle.retry_unfulfilled_orders() == 1
        stored_order, _ = await load(order.order_id)
        assert stored_order.order_status == OrderStatus.PRODUCTION


class TestFulfillmentEvents:

    @pytest.mark.asyncio
    async def test_shipment_then_delivery(self, lifecycle, notifier):
        order_id = await paid_order(lifecycle)

        shipped = await lifecycle.handle_fulfillment_event(FulfillmentEvent(
            event_type=FulfillmentEventType.SHIPPED, order_id=order_id, fulfillment_order_id="PF-1",
            tracking_number="1Z999AA10123456784", tracking_url="https://track.example.com/1Z999",
            carrier="UPS",
        ))
        delivered = await lifecycle.handle_fulfillment_event(FulfillmentEvent(
            event_type=FulfillmentEventType.DELIVERED, order_id=order_id,
        ))

        assert shipped.outcome == TransitionOutcome.APPLIED
        assert delivered.outcome == TransitionOutcome.APPLIED
        stored_order, _ = await load(order_id)
        assert stored_order.order_status == OrderStatus.DELIVERED
        assert stored_order.tracking_number == "1Z999AA10123456784"
        assert stored_order.carrier == "UPS"
        assert stored_order.shipped_at is not None
        assert stored_order.delivered_at is not None
        assert notifier.count("order_shipped") == 1

    @pytest.mark.asyncio
    async def test_duplicate_shipment_is_no_op(self, lifecycle, notifier):
        order_id = await paid_order(lifecycle)
        event = FulfillmentEvent(event_type=FulfillmentEventType.SHIPPED, order_id=order_id,
                                 tracking_number="1Z999AA10123456784", carrier="UPS")

        await lifecycle.handle_fulfillment_event(event)
        again = await lifecycle.handle_fulfillment_event(event)

        assert again.outcome == TransitionOutcome.NO_OP
        assert notifier.count("order_shipped") == 1

    @pytest.mark.asyncio
    async def test_shipment_for_unpaid_order_is_discarded(self, lifecycle):
        order = await lifecycle.create_order(order_request())

        result = await lifecycle.handle_fulfillment_event(FulfillmentEvent(
            event_type=FulfillmentEventType.SHIPPED, order_id=order.order_id, tracking_number="X1",
        ))

        assert result.outcome == TransitionOutcome.DISCARDED
        stored_order, _ = await load(order.order_id)
        assert stored_order.order_status == OrderStatus.PENDING_PAYMENT

    @pytest.mark.asyncio
    async def test_partner_cancellation_alerts_operator(self, lifecycle, notifier):
        order_id = await paid_order(lifecycle)

        result = await lifecycle.handle_fulfillment_event(FulfillmentEvent(
            event_type=FulfillmentEventType.CANCELLED, order_id=order_id, reason="Artwork rejected",
        ))

        assert result.outcome == TransitionOutcome.APPLIED
        stored_order, _ = await load(order_id)
        assert stored_order.order_status == OrderStatus.CANCELLED
        assert "Artwork rejected" in stored_order.cancellation_reason
        assert notifier.count("order_cancelled") == 1
        assert notifier.count("operator_alert") == 1

    @pytest.mark.asyncio
    async def test_partner_failure_is_recorded_once(self, lifecycle, notifier):
        order_id = await paid_order(lifecycle)
        event = FulfillmentEvent(event_type=FulfillmentEventType.FAILED, order_id=order_id,
                                 reason="Out of stock")

        first = await lifecycle.handle_fulfillment_event(event)
        second = await lifecycle.handle_fulfillment_event(event)

        assert first.outcome == TransitionOutcome.APPLIED
        assert second.outcome == TransitionOutcome.NO_OP
        stored_order, _ = await load(order_id)
        assert stored_order.order_status == OrderStatus.PRODUCTION
        assert stored_order.last_fulfillment_error == "failed: Out of stock"
        assert notifier.count("operator_alert") == 1

    @pytest.mark.asyncio
    async def test_created_event_records_reference_after_lost_response(self, lifecycle, fulfillment_provider):
        fulfillment_provider.fail_times = 1
        order_id = await paid_order(lifecycle)

        result = await lifecycle.handle_fulfillment_event(FulfillmentEvent(
            event_type=FulfillmentEventType.CREATED, order_id=order_id, fulfillment_order_id="PF-77",
        ))

        assert result.outcome == TransitionOutcome.APPLIED
        stored_order, _ = await load(order_id)
        assert stored_order.order_status == OrderStatus.PRODUCTION
        assert stored_order.fulfillment_order_id == "PF-77"
        assert await lifecycle.retry_unfulfilled_orders() == 0
