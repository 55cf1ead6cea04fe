import asyncio
import logging
from dataclasses import dataclass, field
from typing import Protocol

import config
from enums.observation_status import ObservationStatus
from exceptions.payment import PaymentBackendException
from models.observation import PaymentObservation
from services.decred_wallet import WalletBalance

logger = logging.getLogger(__name__)


class PollableWallet(Protocol):
    async def check_payment(self, address: str) -> WalletBalance: ...

    async def list_transactions(self, order_id: str, count: int = 10) -> list[dict]: ...


@dataclass
class MonitorHandle:
    order_id: str
    address: str
    expected_amount: float
    task: asyncio.Task | None = None
    timer: asyncio.TimerHandle | None = None
    polls: int = field(default=0)
    last_reported: tuple | None = None

    def cancel(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
        if self.task is not None and not self.task.done():
            self.task.cancel()


class PaymentMonitorRegistry:
    """
    Process-wide map of order id -> running poll loop and expiry timer.

    Monitors never touch the database. Every result is a PaymentObservation
    put on `queue`, which the lifecycle service consumes. At most one handle
    exists per order id: start() replaces, stop() cancels both the loop
    and the timer.

    A poll tick already in flight when stop() runs is not interrupted at an
    arbitrary point; it simply finds that its handle is no longer current
    and drops its result.
    """

    def __init__(self,
                 queue: asyncio.Queue,
                 poll_interval_seconds: float | None = None,
                 underpayment_tolerance_percent: float | None = None):
        self.queue = queue
        self.poll_interval_seconds = poll_interval_seconds or config.PAYMENT_POLL_INTERVAL_SECONDS
        if underpayment_tolerance_percent is None:
            underpayment_tolerance_percent = config.PAYMENT_UNDERPAYMENT_TOLERANCE_PERCENT
        self.underpayment_tolerance_percent = underpayment_tolerance_percent
        self._handles: dict[str, MonitorHandle] = {}

    def start(self,
              order_id: str,
              wallet: PollableWallet,
              address: str,
              expected_amount: float,
              timeout_seconds: float) -> MonitorHandle:
        """Start (or restart) monitoring for an order. Requires a running event loop."""
        previous = self._handles.pop(order_id, None)
        if previous is not None:
            previous.cancel()
            logger.info(f"Replaced existing payment monitor for order {order_id}")

        loop = asyncio.get_running_loop()
        handle = MonitorHandle(order_id=order_id, address=address, expected_amount=expected_amount)
        self._handles[order_id] = handle
        handle.timer = loop.call_later(timeout_seconds, self._on_timeout, handle)
        handle.task = loop.create_task(self._poll(handle, wallet), name=f"payment-monitor-{order_id}")

        logger.info(f"Monitoring {address} for order {order_id}: expecting {expected_amount}, "
                    f"polling every {self.poll_interval_seconds}s, timeout in {timeout_seconds:.0f}s")
        return handle

    def stop(self, order_id: str) -> bool:
        handle = self._handles.pop(order_id, None)
        if handle is None:
            return False
        handle.cancel()
        logger.info(f"Stopped payment monitor for order {order_id}")
        return True

    def stop_all(self) -> None:
        for order_id in list(self._handles):
            self.stop(order_id)

    def is_monitoring(self, order_id: str) -> bool:
        return order_id in self._handles

    def active_order_ids(self) -> list[str]:
        return list(self._handles)

    def _is_current(self, handle: MonitorHandle) -> bool:
        return self._handles.get(handle.order_id) is handle

    def _emit(self, handle: MonitorHandle, observation: PaymentObservation) -> bool:
        if not self._is_current(handle):
            logger.debug(f"Dropping {observation.status.value} observation from stopped monitor "
                         f"for order {handle.order_id}")
            return False
        self.queue.put_nowait(observation)
        return True

    def _on_timeout(self, handle: MonitorHandle) -> None:
        if not self._is_current(handle):
            return
        self._emit(handle, PaymentObservation(
            order_id=handle.order_id,
            status=ObservationStatus.EXPIRED,
            source="dcrwallet timeout",
        ))
        # Polling ends for good; the reconciler owns what happens next
        self._handles.pop(handle.order_id, None)
        if handle.task is not None and not handle.task.done():
            handle.task.cancel()
        logger.info(f"Payment window elapsed for order {handle.order_id}")

    async def _poll(self, handle: MonitorHandle, wallet: PollableWallet) -> None:
        while self._is_current(handle):
            handle.polls += 1
            try:
                balance = await wallet.check_payment(handle.address)
                observation = self.classify_balance(handle.order_id, balance, handle.expected_amount,
                                                    self.underpayment_tolerance_percent)
                if observation is not None and observation.status == ObservationStatus.CONFIRMED:
                    await self._attach_transaction(handle, wallet, observation)
            except PaymentBackendException as e:
                # Retried on the next tick; never turns into an expiry
                logger.warning(f"Payment check failed for order {handle.order_id} "
                               f"(poll {handle.polls}): {e}")
                observation = None
            except Exception as e:
                # A malformed wallet reply must not end monitoring for the order
                logger.error(f"Unexpected error checking payment for order {handle.order_id} "
                             f"(poll {handle.polls}): {e}", exc_info=True)
                observation = None

            if observation is not None and self._is_new(handle, observation):
                emitted = self._emit(handle, observation)
                sufficient = observation.status == ObservationStatus.CONFIRMED and \
                    observation.received_amount >= self._threshold(handle.expected_amount)
                if emitted and sufficient:
                    self._finish(handle)
                    return

            await asyncio.sleep(self.poll_interval_seconds)

    @staticmethod
    def _is_new(handle: MonitorHandle, observation: PaymentObservation) -> bool:
        """Repeated identical balances are reported once."""
        reported = (observation.status, observation.received_amount, observation.confirmations)
        if reported == handle.last_reported:
            return False
        handle.last_reported = reported
        return True

    def _finish(self, handle: MonitorHandle) -> None:
        if self._is_current(handle):
            self._handles.pop(handle.order_id)
        if handle.timer is not None:
            handle.timer.cancel()
        logger.info(f"Payment confirmed on chain for order {handle.order_id}, polling finished")

    async def _attach_transaction(self,
                                  handle: MonitorHandle,
                                  wallet: PollableWallet,
                                  observation: PaymentObservation) -> None:
        try:
            transactions = await wallet.list_transactions(handle.order_id)
        except PaymentBackendException as e:
            logger.warning(f"Could not list transactions for order {handle.order_id}: {e}")
            return
        received = [tx for tx in transactions if tx.get("category") == "receive"]
        if received:
            latest = received[-1]
            observation.transaction_hash = latest.get("hash")
            observation.confirmations = latest.get("confirmations")

    def _threshold(self, expected_amount: float) -> float:
        return expected_amount * (1 - self.underpayment_tolerance_percent / 100)

    @staticmethod
    def classify_balance(order_id: str,
                         balance: WalletBalance,
                         expected_amount: float,
                         underpayment_tolerance_percent: float = 0.0) -> PaymentObservation | None:
        """
        Map a wallet balance to an observation.

        - confirmed funds reach the threshold: confirmed
        - unconfirmed funds on top of the confirmed ones: confirming
        - only confirmed funds, below the threshold: confirmed with the short
          amount, so the reconciler can classify it as underpaid
        - nothing received: no observation
        """
        threshold = expected_amount * (1 - underpayment_tolerance_percent / 100)
        if balance.confirmed >= threshold:
            return PaymentObservation(order_id=order_id, status=ObservationStatus.CONFIRMED,
                                      received_amount=balance.confirmed, source="dcrwallet")
        if balance.pending > 0:
            return PaymentObservation(order_id=order_id, status=ObservationStatus.CONFIRMING,
                                      received_amount=balance.total, confirmations=0, source="dcrwallet")
        if balance.confirmed > 0:
            return PaymentObservation(order_id=order_id, status=ObservationStatus.CONFIRMED,
                                      received_amount=balance.confirmed, source="dcrwallet")
        return None
