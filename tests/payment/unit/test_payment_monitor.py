"""
Payment Monitor Unit Tests

Exercises PaymentMonitorRegistry with a scripted wallet: one handle per
order, stop() cancelling both loop and timer, exactly one expiry per
timeout, transient backend errors never turning into an expiry.

Run with:
    pytest tests/payment/unit/test_payment_monitor.py -v
"""

import asyncio

import pytest

from conftest import FakeWallet, drain, wait_until
from enums.observation_status import ObservationStatus
from exceptions.payment import PaymentBackendException
from services.decred_wallet import WalletBalance
from services.payment_monitor import PaymentMonitorRegistry

ORDER_ID = "AA-2024-000001"
ADDRESS = "DsMonitoredAddress0001"


class TestClassifyBalance:

    def test_nothing_received(self):
        assert PaymentMonitorRegistry.classify_balance(ORDER_ID, WalletBalance(confirmed=0, total=0), 5.0) is None

    def test_unconfirmed_funds_are_confirming(self):
        observation = PaymentMonitorRegistry.classify_balance(
            ORDER_ID, WalletBalance(confirmed=0.0, total=5.0), 5.0)

        assert observation.status == ObservationStatus.CONFIRMING
        assert observation.received_amount == 5.0
        assert observation.confirmations == 0

    def test_confirmed_funds_reach_threshold(self):
        observation = PaymentMonitorRegistry.classify_balance(
            ORDER_ID, WalletBalance(confirmed=4.96, total=4.96), 5.0, underpayment_tolerance_percent=1.0)

        assert observation.status == ObservationStatus.CONFIRMED
        assert observation.received_amount == 4.96

    def test_short_confirmed_funds_are_reported_for_classification(self):
        observation = PaymentMonitorRegistry.classify_balance(
            ORDER_ID, WalletBalance(confirmed=4.0, total=4.0), 5.0, underpayment_tolerance_percent=1.0)

        assert observation.status == ObservationStatus.CONFIRMED
        assert observation.received_amount == 4.0

    def test_top_up_in_flight_is_confirming(self):
        observation = PaymentMonitorRegistry.classify_balance(
            ORDER_ID, WalletBalance(confirmed=4.0, total=5.0), 5.0)

        assert observation.status == ObservationStatus.CONFIRMING
        assert observation.received_amount == 5.0


class TestMonitorRegistry:

    @pytest.mark.asyncio
    async def test_restart_replaces_existing_monitor(self, monitor_registry):
        first = monitor_registry.start(ORDER_ID, FakeWallet(), ADDRESS, 5.0, timeout_seconds=60)
        second = monitor_registry.start(ORDER_ID, FakeWallet(), ADDRESS, 5.0, timeout_seconds=60)

        await wait_until(first.task.done)
        assert monitor_registry.active_order_ids() == [ORDER_ID]
        assert first.timer.cancelled()
        assert not second.task.done()

    @pytest.mark.asyncio
    async def test_stop_cancels_loop_and_timer(self, monitor_registry, observation_queue):
        handle = monitor_registry.start(ORDER_ID, FakeWallet(), ADDRESS, 5.0, timeout_seconds=0.05)

        assert monitor_registry.stop(ORDER_ID) is True
        await asyncio.sleep(0.15)

        assert handle.task.done()
        assert handle.timer.cancelled()
        assert not monitor_registry.is_monitoring(ORDER_ID)
        assert drain(observation_queue) == []
        assert monitor_registry.stop(ORDER_ID) is False

    @pytest.mark.asyncio
    async def test_timeout_emits_single_expiry(self, monitor_registry, observation_queue):
        handle = monitor_registry.start(ORDER_ID, FakeWallet(), ADDRESS, 5.0, timeout_seconds=0.05)

        await wait_until(handle.task.done)
        await asyncio.sleep(0.05)

        observations = drain(observation_queue)
        assert [o.status for o in observations] == [ObservationStatus.EXPIRED]
        assert observations[0].order_id == ORDER_ID
        assert not monitor_registry.is_monitoring(ORDER_ID)

    @pytest.mark.asyncio
    async def test_transient_errors_never_expire(self, monitor_registry, observation_queue):
        wallet = FakeWallet(balances=[
            PaymentBackendException("dcrwallet", "connection refused"),
            PaymentBackendException("dcrwallet", "connection refused"),
            WalletBalance(confirmed=0.0, total=0.0),
        ])

        monitor_registry.start(ORDER_ID, wallet, ADDRESS, 5.0, timeout_seconds=60)
        await wait_until(lambda: wallet.checks >= 4)

        assert monitor_registry.is_monitoring(ORDER_ID)
        assert drain(observation_queue) == []

    @pytest.mark.asyncio
    async def test_unexpected_wallet_error_keeps_polling(self, monitor_registry, observation_queue):
        wallet = FakeWallet(balances=[
            ValueError("could not convert string to float: 'n/a'"),
            WalletBalance(confirmed=5.0, total=5.0),
        ])

        handle = monitor_registry.start(ORDER_ID, wallet, ADDRESS, 5.0, timeout_seconds=60)
        await wait_until(handle.task.done)

        assert handle.task.exception() is None
        assert wallet.checks >= 2
        observations = drain(observation_queue)
        assert [o.status for o in observations] == [ObservationStatus.CONFIRMED]
        assert not monitor_registry.is_monitoring(ORDER_ID)

    @pytest.mark.asyncio
    async def test_confirmation_finishes_monitoring(self, monitor_registry, observation_queue):
        wallet = FakeWallet(
            balances=[WalletBalance(confirmed=0.0, total=5.0), WalletBalance(confirmed=5.0, total=5.0)],
            transactions=[
                {"hash": "11" * 32, "category": "send", "confirmations": 9},
                {"hash": "ab" * 32, "category": "receive", "confirmations": 2},
            ],
        )

        handle = monitor_registry.start(ORDER_ID, wallet, ADDRESS, 5.0, timeout_seconds=60)
        await wait_until(handle.task.done)

        observations = drain(observation_queue)
        assert [o.status for o in observations] == [ObservationStatus.CONFIRMING, ObservationStatus.CONFIRMED]
        assert observations[1].received_amount == 5.0
        assert observations[1].transaction_hash == "ab" * 32
        assert observations[1].confirmations == 2
        assert handle.timer.cancelled()
        assert not monitor_registry.is_monitoring(ORDER_ID)

    @pytest.mark.asyncio
    async def test_unchanged_balance_is_reported_once(self, monitor_registry, observation_queue):
        wallet = FakeWallet(balances=[WalletBalance(confirmed=0.0, total=2.0)])

        monitor_registry.start(ORDER_ID, wallet, ADDRESS, 5.0, timeout_seconds=60)
        await wait_until(lambda: wallet.checks >= 5)

        assert len(drain(observation_queue)) == 1

    @pytest.mark.asyncio
    async def test_underpayment_keeps_polling(self, monitor_registry, observation_queue):
        wallet = FakeWallet(balances=[WalletBalance(confirmed=4.0, total=4.0)])

        monitor_registry.start(ORDER_ID, wallet, ADDRESS, 5.0, timeout_seconds=60)
        await wait_until(lambda: wallet.checks >= 3)

        observations = drain(observation_queue)
        assert [o.received_amount for o in observations] == [4.0]
        assert monitor_registry.is_monitoring(ORDER_ID)

    @pytest.mark.asyncio
    async def test_stop_all(self, monitor_registry):
        handles = [monitor_registry.start(f"AA-2024-00000{i}", FakeWallet(), ADDRESS, 5.0, timeout_seconds=60)
                   for i in range(3)]

        monitor_registry.stop_all()

        assert monitor_registry.active_order_ids() == []
        for handle in handles:
            await wait_until(handle.task.done)
