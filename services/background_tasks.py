import asyncio
import logging
from datetime import datetime

import config
from db import get_db_session
from enums.observation_status import ObservationStatus
from enums.payment_status import PaymentStatus
from enums.transition_outcome import TransitionOutcome
from models.observation import PaymentObservation
from models.reconciliation import SweepResult
from repositories.payment import PaymentRepository
from services.order_lifecycle import OrderLifecycleService

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """
    Catches payments whose live timeout never fired (restart, crash, webhook
    backend without a timer).

    Expiry is not done here: each overdue payment gets a synthesized
    `expired` observation that goes through the same reconciliation path
    as the monitors, so a payment confirmed in the meantime stays confirmed.
    """

    def __init__(self, lifecycle: OrderLifecycleService):
        self.lifecycle = lifecycle

    async def sweep(self, now: datetime | None = None) -> SweepResult:
        now = now or datetime.utcnow()
        async with get_db_session() as session:
            payments = await PaymentRepository.get_expired_open_payments(now, session)

        result = SweepResult(examined=len(payments))
        if not payments:
            logger.debug("No overdue payments found")
            return result

        logger.info(f"Expiring {len(payments)} overdue payments")
        for payment in payments:
            try:
                transition = await self.lifecycle.apply_observation(PaymentObservation(
                    order_id=payment.order_id,
                    status=ObservationStatus.EXPIRED,
                    source="expiry sweep",
                    observed_at=now,
                ))
                if transition.outcome == TransitionOutcome.APPLIED and \
                        transition.payment_status == PaymentStatus.EXPIRED.value:
                    result.expired += 1
                else:
                    result.skipped += 1
            except Exception as e:
                result.failed += 1
                logger.error(f"Failed to expire payment for order {payment.order_id}: {str(e)}")

        logger.info(f"Expiry sweep finished: {result.expired} expired, {result.skipped} skipped, "
                    f"{result.failed} failed")
        return result


class BackgroundTaskService:

    def __init__(self,
                 sweeper: ExpirySweeper,
                 lifecycle: OrderLifecycleService,
                 interval_seconds: int | None = None):
        self.sweeper = sweeper
        self.lifecycle = lifecycle
        self.interval_seconds = interval_seconds or config.EXPIRY_SWEEP_INTERVAL_SECONDS

    async def process_expired_payments(self) -> SweepResult | None:
        try:
            return await self.sweeper.sweep()
        except Exception as e:
            logger.error(f"Error processing expired payments: {str(e)}")
            return None

    async def retry_unfulfilled_orders(self) -> int:
        """
        Send paid orders without a fulfillment order to production again
        """
        try:
            return await self.lifecycle.retry_unfulfilled_orders()
        except Exception as e:
            logger.error(f"Error retrying fulfillment: {str(e)}")
            return 0

    async def run_background_tasks(self) -> None:
        """Run one cycle of background tasks with error isolation."""
        await self.process_expired_payments()
        await self.retry_unfulfilled_orders()

    async def schedule_background_tasks(self) -> None:
        logger.info(f"Starting background task scheduler with {self.interval_seconds}s interval")

        while True:
            await self.run_background_tasks()
            await asyncio.sleep(self.interval_seconds)
