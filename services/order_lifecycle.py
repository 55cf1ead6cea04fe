import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable

import config
from db import get_db_session
from enums.cryptocurrency import Cryptocurrency
from enums.fulfillment_event_type import FulfillmentEventType
from enums.order_status import OrderStatus
from enums.payment_status import PaymentStatus
from enums.side_effect import SideEffect
from enums.transition_outcome import TransitionOutcome
from exceptions.base import OrderBackendException
from exceptions.fulfillment import FulfillmentProviderException
from exceptions.order import (
    OrderNotFoundException,
    InvalidOrderStateException,
    InvalidOrderDataException,
    StaleOrderStateException,
)
from exceptions.payment import PaymentNotFoundException, UnsupportedCryptocurrencyException
from models.fulfillment import FulfillmentEvent
from models.observation import PaymentObservation
from models.order import OrderCreateDTO, OrderDTO, OrderSummaryDTO
from models.payment import PaymentDTO
from models.reconciliation import ReconciliationDecision, TransitionResult
from repositories.order import OrderRepository
from repositories.payment import PaymentRepository
from services.exchange_rate import ExchangeRateProvider, calculate_crypto_amount
from services.fulfillment import FulfillmentProvider
from services.notification import Notifier
from services.payment_gateway import PaymentGateway
from services.payment_monitor import PaymentMonitorRegistry
from services.reconciler import PaymentReconciler
from utils.keyed_lock import KeyedLock
from utils.order_state_machine import OrderStateMachine
from utils.transaction_manager import TransactionManager

logger = logging.getLogger(__name__)

Decide = Callable[[OrderDTO, PaymentDTO], ReconciliationDecision]


class OrderLifecycleService:
    """
    Sole writer of order and payment state.

    Every change goes through _transition(): take the per-order lock, read
    order and payment, let a pure function decide, write both rows in one
    transaction guarded by a compare-and-set on Order.version. Side effects
    of an applied decision run afterwards, outside the lock, so no backend
    call ever holds up another transition for the same order.
    """

    def __init__(self,
                 rate_provider: ExchangeRateProvider,
                 fulfillment_provider: FulfillmentProvider,
                 notifier: Notifier,
                 monitor_registry: PaymentMonitorRegistry,
                 payment_gateways: dict[Cryptocurrency, PaymentGateway],
                 reconciler: PaymentReconciler | None = None,
                 locks: KeyedLock | None = None,
                 payment_expiry_minutes: int | None = None,
                 markup_percent: float | None = None,
                 order_id_prefix: str | None = None,
                 fulfillment_claim_timeout_minutes: int | None = None,
                 fulfillment_max_attempts: int | None = None):
        self.rate_provider = rate_provider
        self.fulfillment_provider = fulfillment_provider
        self.notifier = notifier
        self.monitor_registry = monitor_registry
        self.payment_gateways = payment_gateways
        self.reconciler = reconciler or PaymentReconciler()
        self.locks = locks or KeyedLock()
        self.payment_expiry_minutes = payment_expiry_minutes or config.PAYMENT_EXPIRY_MINUTES
        self.markup_percent = markup_percent if markup_percent is not None else config.PAYMENT_MARKUP_PERCENT
        self.order_id_prefix = order_id_prefix or config.ORDER_ID_PREFIX
        self.fulfillment_claim_timeout_minutes = (fulfillment_claim_timeout_minutes
                                                  or config.FULFILLMENT_CLAIM_TIMEOUT_MINUTES)
        self.fulfillment_max_attempts = fulfillment_max_attempts or config.FULFILLMENT_RETRY_MAX_ATTEMPTS

    # Order creation

    async def create_order(self, order_create: OrderCreateDTO) -> OrderDTO:
        """
        Quote, persist and start watching a new order.

        Flow:
        1. Validate items and cryptocurrency (nothing is written on failure)
        2. Convert the USD total with the current rate plus markup
        3. Ask the backend gateway for a payment address; a hosted invoice's own
           crypto amount replaces the quote from step 2
        4. Insert order and payment in one transaction (retried on id collision)
        5. Notify payment-pending, start the polling monitor if the backend polls

        Raises:
            InvalidOrderDataException: empty order, bad quantity or price
            UnsupportedCryptocurrencyException: no backend configured for the currency
            OrderIdAllocationException: no free order id left for the prefix and year
        """
        gateway = self._validate_order_request(order_create)
        cryptocurrency = order_create.cryptocurrency

        total_usd = round(sum(item.line_total for item in order_create.items), 2)
        if total_usd <= 0:
            raise InvalidOrderDataException(f"order total must be positive (got {total_usd})")
        usd_rate = await self.rate_provider.get_current_price(cryptocurrency)
        crypto_amount = calculate_crypto_amount(total_usd, usd_rate, cryptocurrency, self.markup_percent)

        now = datetime.utcnow()
        expires_at = now + timedelta(minutes=self.payment_expiry_minutes)
        order, payment = await self._open_order(order_create, gateway, total_usd, usd_rate, crypto_amount,
                                                expires_at)
        order_id = order.order_id

        logger.info(f"Order {order_id} created: ${total_usd:.2f} = {payment.expected_amount} "
                    f"{cryptocurrency.value} via {gateway.backend.value}, expires {expires_at.isoformat()}")

        try:
            await self.notifier.payment_pending(order, payment)
        except Exception as e:
            logger.error(f"Payment-pending notification failed for order {order_id}: {e}")

        if gateway.backend.is_polling():
            self._start_monitor(payment, gateway)
        return order

    @TransactionManager.with_retry()
    async def _open_order(self,
                          order_create: OrderCreateDTO,
                          gateway: PaymentGateway,
                          total_usd: float,
                          usd_rate: float,
                          crypto_amount: float,
                          expires_at: datetime) -> tuple[OrderDTO, PaymentDTO]:
        """
        Allocate an order id, get a payment address for it and insert both rows.

        Retried as a whole: an id taken between allocation and insert gets a
        fresh id and a fresh address, the orphaned one simply expires unpaid.
        """
        cryptocurrency = order_create.cryptocurrency
        async with get_db_session() as session:
            order_id = await OrderRepository.get_next_order_id(self.order_id_prefix, session)

        payment_request = await gateway.create_payment(
            order_id=order_id,
            cryptocurrency=cryptocurrency,
            crypto_amount=crypto_amount,
            total_usd=total_usd,
            customer_email=order_create.customer_email,
            expires_at=expires_at,
        )
        if payment_request.amount:
            # Hosted invoices bill at the provider's own rate; that is what the customer is asked to pay
            quoted = cryptocurrency.normalize(payment_request.amount)
            if quoted != crypto_amount:
                logger.info(f"Order {order_id}: {gateway.backend.value} quoted {quoted} {cryptocurrency.value} "
                            f"(own quote {crypto_amount})")
            crypto_amount = quoted

        async with TransactionManager.atomic_transaction() as session:
            order = await OrderRepository.create(OrderDTO(
                order_id=order_id,
                customer_email=order_create.customer_email,
                customer_name=order_create.customer_name,
                shipping_address=order_create.shipping_address.model_dump(),
                items=[item.model_dump() for item in order_create.items],
                notes=order_create.notes,
                total_usd=total_usd,
                crypto_currency=cryptocurrency,
                crypto_amount=crypto_amount,
                payment_address=payment_request.address,
                payment_status=PaymentStatus.PENDING,
                order_status=OrderStatus.PENDING_PAYMENT,
            ), session)
            payment = await PaymentRepository.create(PaymentDTO(
                order_id=order_id,
                cryptocurrency=cryptocurrency,
                payment_address=payment_request.address,
                backend=gateway.backend,
                provider_reference=payment_request.provider_reference,
                expected_amount=crypto_amount,
                usd_rate=usd_rate,
                status=PaymentStatus.PENDING,
                expires_at=expires_at,
            ), session)
        return order, payment

    def _validate_order_request(self, order_create: OrderCreateDTO) -> PaymentGateway:
        if not order_create.items:
            raise InvalidOrderDataException("order must contain at least one item")
        for item in order_create.items:
            if item.quantity < 1:
                raise InvalidOrderDataException(f"quantity for {item.product_id} must be at least 1")
            if item.unit_price_usd <= 0:
                raise InvalidOrderDataException(f"unit price for {item.product_id} must be positive")
        gateway = self.payment_gateways.get(order_create.cryptocurrency)
        if gateway is None:
            raise UnsupportedCryptocurrencyException(order_create.cryptocurrency.value)
        return gateway

    def _start_monitor(self, payment: PaymentDTO, gateway: PaymentGateway) -> None:
        timeout_seconds = max((payment.expires_at - datetime.utcnow()).total_seconds(), 0)
        self.monitor_registry.start(
            order_id=payment.order_id,
            wallet=gateway,
            address=payment.payment_address,
            expected_amount=payment.expected_amount,
            timeout_seconds=timeout_seconds,
        )

    async def resume_monitoring(self) -> int:
        """Restart polling monitors for payments that were open when the process stopped."""
        async with get_db_session() as session:
            payments = await PaymentRepository.get_open_payments(datetime.utcnow(), session)
        resumed = 0
        for payment in payments:
            gateway = self.payment_gateways.get(payment.cryptocurrency)
            if gateway is None or not payment.backend.is_polling() or gateway.backend != payment.backend:
                continue
            self._start_monitor(payment, gateway)
            resumed += 1
        if resumed:
            logger.info(f"Resumed payment monitoring for {resumed} open orders")
        return resumed

    # Payment observations

    async def apply_observation(self, observation: PaymentObservation) -> TransitionResult:
        return await self._transition(
            observation.order_id,
            lambda order, payment: self.reconciler.reconcile(payment, order, observation),
            source=observation.source,
        )

    async def consume_observations(self, queue: asyncio.Queue) -> None:
        """
        Apply monitor observations until cancelled.

        Each observation runs in its own task, so a slow fulfillment call for
        one order never delays another order's payment. Observations for the
        same order still apply in arrival order: the per-order lock is FIFO.
        """
        pending: set[asyncio.Task] = set()
        try:
            while True:
                observation = await queue.get()
                task = asyncio.create_task(self._apply_queued(observation, queue))
                pending.add(task)
                task.add_done_callback(pending.discard)
        finally:
            for task in list(pending):
                task.cancel()

    async def _apply_queued(self, observation: PaymentObservation, queue: asyncio.Queue) -> None:
        try:
            await self.apply_observation(observation)
        except OrderBackendException as e:
            logger.error(f"Could not apply {observation.status.value} observation for order "
                         f"{observation.order_id}: {e}")
        except Exception as e:
            logger.error(f"Unexpected error applying observation for order {observation.order_id}: {e}",
                         exc_info=True)
        finally:
            queue.task_done()

    # Administrative actions

    async def cancel_order(self, order_id: str, reason: str, admin_id: int | None = None) -> TransitionResult:
        """
        Cancel an order that has not been paid yet.

        Raises:
            InvalidOrderStateException: order is past pending_payment
        """
        now = datetime.utcnow()

        def decide(order: OrderDTO, payment: PaymentDTO) -> ReconciliationDecision:
            if order.order_status != OrderStatus.PENDING_PAYMENT:
                raise InvalidOrderStateException(order.order_id, order.order_status.value,
                                                 OrderStatus.PENDING_PAYMENT.value)
            payment_changes = {}
            order_changes = {
                "order_status": OrderStatus.CANCELLED,
                "cancelled_at": now,
                "cancellation_reason": reason,
            }
            if payment.status.is_open():
                # Closes the payment for monitors and the sweeper
                payment_changes["status"] = PaymentStatus.EXPIRED
                order_changes["payment_status"] = PaymentStatus.EXPIRED
            side_effects = [SideEffect.STOP_MONITOR]
            if order.fulfillment_order_id:
                side_effects.append(SideEffect.CANCEL_FULFILLMENT)
            side_effects.append(SideEffect.NOTIFY_CANCELLED)
            return ReconciliationDecision(
                outcome=TransitionOutcome.APPLIED,
                payment_changes=payment_changes,
                order_changes=order_changes,
                side_effects=side_effects,
                reason=reason,
            )

        return await self._transition(order_id, decide, source="cancellation", admin_id=admin_id)

    async def verify_payment_manually(self,
                                      order_id: str,
                                      admin_id: int,
                                      transaction_hash: str | None = None,
                                      amount: float | None = None,
                                      force: bool = False) -> TransitionResult:
        """
        Administrative override for payments the monitors could not settle.

        The only path that may confirm an expired payment; a cancelled order
        goes back to paid and fulfillment starts as for any confirmed payment.
        """
        now = datetime.utcnow()
        return await self._transition(
            order_id,
            lambda order, payment: self.reconciler.manual_verification(
                payment, order, now, received_amount=amount, transaction_hash=transaction_hash, force=force,
            ),
            source="manual verification",
            admin_id=admin_id,
        )

    async def mark_refunded(self,
                            order_id: str,
                            admin_id: int,
                            refund_tx_hash: str | None = None) -> TransitionResult:
        def decide(order: OrderDTO, payment: PaymentDTO) -> ReconciliationDecision:
            if order.order_status == OrderStatus.REFUNDED:
                return ReconciliationDecision(outcome=TransitionOutcome.NO_OP, reason="order already refunded")
            if not OrderStateMachine.is_valid_transition(order.order_status.value, OrderStatus.REFUNDED.value):
                raise InvalidOrderStateException(order.order_id, order.order_status.value,
                                                 "paid, production, shipped, delivered or cancelled")
            payment_changes = {"status": PaymentStatus.REFUNDED}
            if refund_tx_hash:
                payment_changes["refund_tx_hash"] = refund_tx_hash
            return ReconciliationDecision(
                outcome=TransitionOutcome.APPLIED,
                payment_changes=payment_changes,
                order_changes={"order_status": OrderStatus.REFUNDED, "payment_status": PaymentStatus.REFUNDED},
                side_effects=[SideEffect.STOP_MONITOR],
                reason="refund recorded",
            )

        return await self._transition(order_id, decide, source="refund", admin_id=admin_id)

    async def get_order_summary(self, order_id: str) -> OrderSummaryDTO:
        order, payment = await self._load(order_id)
        if order is None:
            raise OrderNotFoundException(order_id)

        payment_uri = None
        if payment is not None and payment.status.is_open() and order.payment_address:
            scheme = order.crypto_currency.get_uri_scheme()
            payment_uri = f"{scheme}:{order.payment_address}?amount={order.crypto_amount}"

        return OrderSummaryDTO(
            order_id=order.order_id,
            order_status=order.order_status,
            payment_status=order.payment_status,
            total_usd=order.total_usd,
            crypto_currency=order.crypto_currency,
            crypto_amount=order.crypto_amount,
            payment_address=order.payment_address,
            payment_uri=payment_uri,
            expires_at=payment.expires_at if payment is not None else None,
            tracking_number=order.tracking_number,
            tracking_url=order.tracking_url,
            carrier=order.carrier,
            created_at=order.created_at,
        )

    # Fulfillment

    async def handle_fulfillment_event(self, event: FulfillmentEvent) -> TransitionResult:
        return await self._transition(
            event.order_id,
            lambda order, payment: self.decide_fulfillment_event(order, event),
            source=f"fulfillment {event.event_type.value}",
        )

    @staticmethod
    def decide_fulfillment_event(order: OrderDTO, event: FulfillmentEvent) -> ReconciliationDecision:
        status = order.order_status
        event_type = event.event_type

        if event_type == FulfillmentEventType.CREATED:
            if order.fulfillment_order_id:
                return _no_op("fulfillment reference already recorded")
            if status != OrderStatus.PAID or not event.fulfillment_order_id:
                return _discarded(f"fulfillment created for {status.value} order")
            return _applied(
                order_changes={
                    "fulfillment_order_id": event.fulfillment_order_id,
                    "fulfillment_claimed_at": None,
                    "order_status": OrderStatus.PRODUCTION,
                },
                reason=f"fulfillment order {event.fulfillment_order_id} created",
            )

        if event_type == FulfillmentEventType.SHIPPED:
            tracking = {
                key: value for key, value in (
                    ("tracking_number", event.tracking_number),
                    ("tracking_url", event.tracking_url),
                    ("carrier", event.carrier),
                ) if value and getattr(order, key) != value
            }
            if status == OrderStatus.SHIPPED:
                if not tracking:
                    return _no_op("shipment already recorded")
                return _applied(order_changes=tracking, reason="tracking updated")
            if status != OrderStatus.PRODUCTION:
                return _discarded(f"shipment reported for {status.value} order")
            return _applied(
                order_changes={**tracking, "order_status": OrderStatus.SHIPPED, "shipped_at": event.received_at},
                side_effects=[SideEffect.NOTIFY_SHIPPED],
                reason=f"shipped with {event.carrier or 'carrier'} {event.tracking_number or ''}".strip(),
            )

        if event_type == FulfillmentEventType.DELIVERED:
            if status == OrderStatus.DELIVERED:
                return _no_op("delivery already recorded")
            if status != OrderStatus.SHIPPED:
                return _discarded(f"delivery reported for {status.value} order")
            return _applied(
                order_changes={"order_status": OrderStatus.DELIVERED, "delivered_at": event.received_at},
                reason="delivered",
            )

        if event_type == FulfillmentEventType.CANCELLED:
            if status == OrderStatus.CANCELLED:
                return _no_op("cancellation already recorded")
            if status not in (OrderStatus.PAID, OrderStatus.PRODUCTION):
                return _discarded(f"partner cancellation for {status.value} order")
            reason = f"Cancelled by fulfillment partner: {event.reason or 'no reason given'}"
            return _applied(
                order_changes={
                    "order_status": OrderStatus.CANCELLED,
                    "cancelled_at": event.received_at,
                    "cancellation_reason": reason,
                },
                # Payment is settled, the operator has to refund
                side_effects=[SideEffect.NOTIFY_CANCELLED, SideEffect.NOTIFY_OPERATOR],
                reason=reason,
            )

        if event_type in (FulfillmentEventType.FAILED, FulfillmentEventType.ON_HOLD):
            error = f"{event_type.value}: {event.reason or 'no reason given'}"
            if order.last_fulfillment_error == error:
                return _no_op("fulfillment problem already recorded")
            return _applied(
                order_changes={"last_fulfillment_error": error},
                side_effects=[SideEffect.NOTIFY_OPERATOR],
                reason=f"Fulfillment {error}",
            )

        return _no_op(f"{event_type.value} event is informational")

    async def retry_fulfillment(self, order_id: str) -> bool:
        """
        Operator-triggered retry of fulfillment creation for a paid order.

        Raises:
            OrderNotFoundException: unknown order
            InvalidOrderStateException: order is not waiting for fulfillment
        """
        order, _ = await self._load(order_id)
        if order is None:
            raise OrderNotFoundException(order_id)
        if order.order_status != OrderStatus.PAID or order.fulfillment_order_id:
            raise InvalidOrderStateException(order_id, order.order_status.value, OrderStatus.PAID.value)
        return await self._create_fulfillment(order_id)

    async def retry_unfulfilled_orders(self) -> int:
        """Scheduled pass over paid orders whose fulfillment creation failed or never ran."""
        stale_before = datetime.utcnow() - timedelta(minutes=self.fulfillment_claim_timeout_minutes)
        async with get_db_session() as session:
            orders = await OrderRepository.get_unfulfilled_paid_orders(self.fulfillment_max_attempts,
                                                                       stale_before, session)
        created = 0
        for order in orders:
            if await self._create_fulfillment(order.order_id):
                created += 1
        if orders:
            logger.info(f"Fulfillment retry: {created}/{len(orders)} orders sent to production")
        return created

    async def _create_fulfillment(self, order_id: str) -> bool:
        """
        Create the fulfillment order at most once.

        The claim is an atomic conditional update, so only one caller gets
        past it even when a redelivered confirmation and the retry job race.
        A claim that outlives the timeout counts as abandoned.
        """
        claimed_at = datetime.utcnow()
        stale_before = claimed_at - timedelta(minutes=self.fulfillment_claim_timeout_minutes)
        async with TransactionManager.atomic_transaction() as session:
            claimed = await OrderRepository.claim_fulfillment(order_id, claimed_at, stale_before, session)
            order = await OrderRepository.get_by_order_id(order_id, session) if claimed else None
        if not claimed:
            logger.info(f"Fulfillment for order {order_id} already created or in progress, skipping")
            return False

        try:
            fulfillment_order_id = await self.fulfillment_provider.create_fulfillment_order(order)
        except FulfillmentProviderException as e:
            logger.error(f"Fulfillment creation failed for order {order_id}: {e}")
            async with TransactionManager.atomic_transaction() as session:
                await OrderRepository.release_fulfillment_claim(order_id, claimed_at, str(e), session)
            await self.notifier.operator_alert(
                order_id, f"Fulfillment order creation failed, order stays paid: {e.reason}"
            )
            return False

        async with TransactionManager.atomic_transaction() as session:
            recorded = await OrderRepository.record_fulfillment(order_id, claimed_at, fulfillment_order_id, session)
            current = await OrderRepository.get_by_order_id(order_id, session) if not recorded else None

        if recorded:
            OrderStateMachine.validate_and_log_transition(order_id, OrderStatus.PAID, OrderStatus.PRODUCTION,
                                                          source="fulfillment")
            return True
        if current is not None and current.fulfillment_order_id == fulfillment_order_id:
            # Partner webhook recorded it first
            return True
        logger.error(f"Fulfillment order {fulfillment_order_id} created for {order_id} but the claim was lost")
        await self.notifier.operator_alert(
            order_id, f"Fulfillment order {fulfillment_order_id} created but not recorded, check for duplicates"
        )
        return False

    # Transition machinery

    async def _transition(self,
                          order_id: str,
                          decide: Decide,
                          source: str,
                          admin_id: int | None = None) -> TransitionResult:
        async with self.locks.acquire(order_id):
            result, decision = await self._persist(order_id, decide, source, admin_id)
        if decision.is_applied and decision.side_effects:
            result.executed_side_effects = await self._execute_side_effects(
                order_id, decision.side_effects, decision.reason
            )
        return result

    @TransactionManager.with_retry()
    async def _persist(self,
                       order_id: str,
                       decide: Decide,
                       source: str,
                       admin_id: int | None) -> tuple[TransitionResult, ReconciliationDecision]:
        async with TransactionManager.atomic_transaction() as session:
            order = await OrderRepository.get_by_order_id(order_id, session)
            if order is None:
                raise OrderNotFoundException(order_id)
            payment = await PaymentRepository.get_by_order_id(order_id, session)
            if payment is None:
                raise PaymentNotFoundException(order_id)

            decision = decide(order, payment)
            new_order_status = decision.order_changes.get("order_status")
            if decision.is_applied and new_order_status is not None:
                rejection = self._check_order_transition(order.order_status, new_order_status, admin_id)
                if rejection:
                    decision = _discarded(rejection)

            if decision.is_applied:
                if not await OrderRepository.compare_and_set(order_id, order.version,
                                                             decision.order_changes, session):
                    raise StaleOrderStateException(order_id, order.version)
                await PaymentRepository.update(payment.id, decision.payment_changes, session)

        if decision.outcome == TransitionOutcome.APPLIED:
            logger.info(f"Order {order_id} updated by {source}: {decision.reason}")
            if new_order_status is not None:
                OrderStateMachine.validate_and_log_transition(order_id, order.order_status, new_order_status,
                                                              admin_id=admin_id, source=source)
        elif decision.outcome == TransitionOutcome.DISCARDED:
            logger.info(f"Discarded update from {source} for order {order_id}: {decision.reason}")
        else:
            logger.debug(f"No change for order {order_id} from {source}: {decision.reason}")

        payment_status = decision.payment_changes.get("status", payment.status) if decision.is_applied else payment.status
        order_status = new_order_status if decision.is_applied and new_order_status else order.order_status
        result = TransitionResult(
            order_id=order_id,
            outcome=decision.outcome,
            reason=decision.reason,
            payment_status=payment_status.value,
            order_status=order_status.value,
        )
        return result, decision

    @staticmethod
    def _check_order_transition(current: OrderStatus, target: OrderStatus, admin_id: int | None) -> str | None:
        if not OrderStateMachine.is_valid_transition(current.value, target.value):
            return f"transition {current.value} -> {target.value} is not allowed"
        if OrderStateMachine.requires_admin(current.value, target.value) and admin_id is None:
            return f"transition {current.value} -> {target.value} requires an admin"
        return None

    async def _execute_side_effects(self,
                                    order_id: str,
                                    side_effects: list[SideEffect],
                                    reason: str) -> list[SideEffect]:
        executed = []
        for side_effect in side_effects:
            try:
                if await self._execute_side_effect(order_id, side_effect, reason):
                    executed.append(side_effect)
            except Exception as e:
                logger.error(f"Side effect {side_effect.value} failed for order {order_id}: {e}")
        return executed

    async def _execute_side_effect(self, order_id: str, side_effect: SideEffect, reason: str) -> bool:
        if side_effect == SideEffect.STOP_MONITOR:
            self.monitor_registry.stop(order_id)
            return True
        if side_effect == SideEffect.CREATE_FULFILLMENT:
            return await self._create_fulfillment(order_id)

        order, payment = await self._load(order_id)
        match side_effect:
            case SideEffect.CANCEL_FULFILLMENT:
                if not order.fulfillment_order_id:
                    return False
                await self.fulfillment_provider.cancel_fulfillment_order(order.fulfillment_order_id)
            case SideEffect.NOTIFY_CONFIRMED:
                await self.notifier.payment_confirmed(order)
            case SideEffect.NOTIFY_UNDERPAID:
                await self.notifier.payment_underpaid(order, payment)
            case SideEffect.NOTIFY_CANCELLED:
                await self.notifier.order_cancelled(order, order.cancellation_reason or reason)
            case SideEffect.NOTIFY_SHIPPED:
                await self.notifier.order_shipped(order)
            case SideEffect.NOTIFY_OPERATOR:
                await self.notifier.operator_alert(order_id, reason)
        return True

    @staticmethod
    async def _load(order_id: str) -> tuple[OrderDTO | None, PaymentDTO | None]:
        async with get_db_session() as session:
            order = await OrderRepository.get_by_order_id(order_id, session)
            payment = await PaymentRepository.get_by_order_id(order_id, session)
        return order, payment


def _applied(order_changes: dict, reason: str, side_effects: list[SideEffect] | None = None) -> ReconciliationDecision:
    return ReconciliationDecision(
        outcome=TransitionOutcome.APPLIED,
        order_changes=order_changes,
        side_effects=side_effects or [],
        reason=reason,
    )


def _no_op(reason: str) -> ReconciliationDecision:
    return ReconciliationDecision(outcome=TransitionOutcome.NO_OP, reason=reason)


def _discarded(reason: str) -> ReconciliationDecision:
    return ReconciliationDecision(outcome=TransitionOutcome.DISCARDED, reason=reason)
