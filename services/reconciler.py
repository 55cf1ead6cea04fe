"""
Payment reconciliation.

PaymentReconciler turns (payment, order, observation) into a decision:
which payment fields and order fields change, and which side effects the
lifecycle service must run afterwards. It performs no I/O and keeps no state,
so the same observation can be fed in any number of times.

Rules, in order of precedence:
- A settled payment (confirmed/overpaid) never moves back. Later
  observations can only raise its confirmation count.
- An expired or refunded payment ignores every automatic observation.
  Only manual_verification() may reopen an expired payment.
- A confirming/confirmed observation that arrives after the payment deadline
  is turned into the expiry transition; late funds are recorded for review.
- Received amounts are classified with a tolerance band:
  below expected * (1 - underpayment tolerance) is underpaid,
  above expected * (1 + overpayment tolerance) is overpaid.
  Underpaid keeps the order in pending_payment and keeps monitoring alive;
  overpaid settles the order like confirmed and flags the surplus.
"""

from datetime import datetime

import config
from enums.observation_status import ObservationStatus
from enums.order_status import OrderStatus
from enums.payment_status import PaymentStatus
from enums.side_effect import SideEffect
from enums.transition_outcome import TransitionOutcome
from exceptions.order import InvalidOrderStateException
from exceptions.payment import InvalidPaymentAmountException
from models.observation import PaymentObservation
from models.order import OrderDTO
from models.payment import PaymentDTO
from models.reconciliation import ReconciliationDecision

CONFIRMED_SIDE_EFFECTS = [
    SideEffect.STOP_MONITOR,
    SideEffect.CREATE_FULFILLMENT,
    SideEffect.NOTIFY_CONFIRMED,
]


class PaymentReconciler:

    def __init__(self,
                 underpayment_tolerance_percent: float | None = None,
                 overpayment_tolerance_percent: float | None = None):
        if underpayment_tolerance_percent is None:
            underpayment_tolerance_percent = config.PAYMENT_UNDERPAYMENT_TOLERANCE_PERCENT
        if overpayment_tolerance_percent is None:
            overpayment_tolerance_percent = config.PAYMENT_OVERPAYMENT_TOLERANCE_PERCENT
        self.underpayment_tolerance_percent = underpayment_tolerance_percent
        self.overpayment_tolerance_percent = overpayment_tolerance_percent

    def sufficient_amount(self, expected: float) -> float:
        """Smallest received amount that still settles the payment."""
        return expected * (1 - self.underpayment_tolerance_percent / 100)

    def classify_amount(self, received: float, expected: float) -> PaymentStatus:
        if received < self.sufficient_amount(expected):
            return PaymentStatus.UNDERPAID
        if received > expected * (1 + self.overpayment_tolerance_percent / 100):
            return PaymentStatus.OVERPAID
        return PaymentStatus.CONFIRMED

    def reconcile(self,
                  payment: PaymentDTO,
                  order: OrderDTO,
                  observation: PaymentObservation,
                  now: datetime | None = None) -> ReconciliationDecision:
        now = now or observation.observed_at

        if observation.order_id != order.order_id or payment.order_id != order.order_id:
            return _discard(f"observation for {observation.order_id} does not match order {order.order_id}")

        if payment.status.is_settled():
            return self._on_settled(payment, observation)
        if payment.status == PaymentStatus.EXPIRED:
            return _discard("payment already expired, only manual verification can reopen it")
        if payment.status == PaymentStatus.REFUNDED:
            return _discard("payment already refunded")

        if observation.status == ObservationStatus.EXPIRED:
            return self._expire(payment, order, observation, now, "Payment window elapsed")
        if payment.expires_at is not None and now > payment.expires_at:
            return self._expire(payment, order, observation, now, "Payment observed after the deadline")
        if order.order_status != OrderStatus.PENDING_PAYMENT:
            return _discard(f"order is {order.order_status.value}, not waiting for payment")

        if observation.status == ObservationStatus.CONFIRMING:
            return self._on_confirming(payment, order, observation, now)
        return self._on_confirmed(payment, order, observation, now)

    def manual_verification(self,
                            payment: PaymentDTO,
                            order: OrderDTO,
                            now: datetime,
                            received_amount: float | None = None,
                            transaction_hash: str | None = None,
                            force: bool = False) -> ReconciliationDecision:
        """
        Administrative override: settle a payment the monitors could not.

        Unlike reconcile() this may confirm an expired payment and move a
        cancelled order back to paid. Underpaid amounts are refused unless
        `force` is set.
        """
        if payment.status.is_settled():
            return ReconciliationDecision(outcome=TransitionOutcome.NO_OP, reason="payment already settled")
        if payment.status == PaymentStatus.REFUNDED or order.order_status not in (OrderStatus.PENDING_PAYMENT,
                                                                                  OrderStatus.CANCELLED):
            raise InvalidOrderStateException(order.order_id, order.order_status.value, "pending_payment or cancelled")

        received = received_amount if received_amount is not None else payment.received_amount
        status = PaymentStatus.CONFIRMED if received is None else self.classify_amount(received, payment.expected_amount)
        if status == PaymentStatus.UNDERPAID:
            if not force:
                raise InvalidPaymentAmountException(received, payment.cryptocurrency.value)
            status = PaymentStatus.CONFIRMED

        payment_changes = {
            "status": status,
            "confirmed_at": now,
            "received_amount": received if received is not None else payment.expected_amount,
        }
        if payment.detected_at is None:
            payment_changes["detected_at"] = now
        order_changes = {
            "payment_status": status,
            "order_status": OrderStatus.PAID,
            "paid_at": now,
        }
        if order.order_status == OrderStatus.CANCELLED:
            order_changes["cancelled_at"] = None
            order_changes["cancellation_reason"] = None
        if transaction_hash:
            payment_changes["transaction_hash"] = transaction_hash
            order_changes["transaction_hash"] = transaction_hash

        return ReconciliationDecision(
            outcome=TransitionOutcome.APPLIED,
            payment_changes=payment_changes,
            order_changes=order_changes,
            side_effects=list(CONFIRMED_SIDE_EFFECTS),
            reason=f"payment verified manually ({status.value})",
        )

    def _on_settled(self, payment: PaymentDTO, observation: PaymentObservation) -> ReconciliationDecision:
        if observation.status != ObservationStatus.CONFIRMED:
            return ReconciliationDecision(
                outcome=TransitionOutcome.NO_OP,
                reason=f"payment already {payment.status.value}, ignoring {observation.status.value}",
            )

        changes = {}
        if observation.confirmations is not None and observation.confirmations > (payment.confirmations or 0):
            changes["confirmations"] = observation.confirmations
        if observation.transaction_hash and not payment.transaction_hash:
            changes["transaction_hash"] = observation.transaction_hash
        if not changes:
            return ReconciliationDecision(outcome=TransitionOutcome.NO_OP, reason="payment already settled")
        return ReconciliationDecision(
            outcome=TransitionOutcome.APPLIED,
            payment_changes=changes,
            reason="settled payment gained confirmations",
        )

    def _on_confirming(self,
                       payment: PaymentDTO,
                       order: OrderDTO,
                       observation: PaymentObservation,
                       now: datetime) -> ReconciliationDecision:
        payment_changes = _evidence(payment, observation)

        # Underpaid is left only by a sufficient confirmed observation or by expiry
        if payment.status != PaymentStatus.UNDERPAID:
            if payment.status == PaymentStatus.CONFIRMING or (observation.confirmations or 0) > 0:
                new_status = PaymentStatus.CONFIRMING
            else:
                new_status = PaymentStatus.DETECTED
            if new_status != payment.status:
                payment_changes["status"] = new_status
            if payment.detected_at is None:
                payment_changes["detected_at"] = now

        order_changes = {}
        if order.payment_status not in (PaymentStatus.CONFIRMING, PaymentStatus.UNDERPAID):
            order_changes["payment_status"] = PaymentStatus.CONFIRMING

        if not payment_changes and not order_changes:
            return ReconciliationDecision(outcome=TransitionOutcome.NO_OP, reason="no new confirmation progress")
        return ReconciliationDecision(
            outcome=TransitionOutcome.APPLIED,
            payment_changes=payment_changes,
            order_changes=order_changes,
            reason="funds detected, waiting for confirmations",
        )

    def _on_confirmed(self,
                      payment: PaymentDTO,
                      order: OrderDTO,
                      observation: PaymentObservation,
                      now: datetime) -> ReconciliationDecision:
        received = observation.received_amount
        # No amount means the provider itself attests full payment
        status = PaymentStatus.CONFIRMED if received is None else self.classify_amount(received, payment.expected_amount)
        payment_changes = _evidence(payment, observation)
        if payment.detected_at is None:
            payment_changes["detected_at"] = now

        if status == PaymentStatus.UNDERPAID:
            if payment.status == PaymentStatus.UNDERPAID:
                payment_changes.pop("detected_at", None)
                if not payment_changes:
                    return ReconciliationDecision(outcome=TransitionOutcome.NO_OP, reason="still underpaid")
                return ReconciliationDecision(
                    outcome=TransitionOutcome.APPLIED,
                    payment_changes=payment_changes,
                    reason="underpaid payment evidence updated",
                )
            payment_changes["status"] = PaymentStatus.UNDERPAID
            return ReconciliationDecision(
                outcome=TransitionOutcome.APPLIED,
                payment_changes=payment_changes,
                order_changes={"payment_status": PaymentStatus.UNDERPAID},
                side_effects=[SideEffect.NOTIFY_UNDERPAID],
                reason=(f"received {received} of {payment.expected_amount} {payment.cryptocurrency.value}, "
                        f"below {self.sufficient_amount(payment.expected_amount):.8f}"),
            )

        payment_changes["status"] = status
        payment_changes["confirmed_at"] = now
        if received is None and payment.received_amount is None:
            payment_changes["received_amount"] = payment.expected_amount
        order_changes = {
            "payment_status": status,
            "order_status": OrderStatus.PAID,
            "paid_at": now,
        }
        if observation.transaction_hash:
            order_changes["transaction_hash"] = observation.transaction_hash

        side_effects = list(CONFIRMED_SIDE_EFFECTS)
        reason = "payment confirmed"
        if status == PaymentStatus.OVERPAID:
            side_effects.append(SideEffect.NOTIFY_OPERATOR)
            reason = (f"overpaid by {received - payment.expected_amount:.8f} "
                      f"{payment.cryptocurrency.value}, surplus to refund")
        return ReconciliationDecision(
            outcome=TransitionOutcome.APPLIED,
            payment_changes=payment_changes,
            order_changes=order_changes,
            side_effects=side_effects,
            reason=reason,
        )

    @staticmethod
    def _expire(payment: PaymentDTO,
                order: OrderDTO,
                observation: PaymentObservation,
                now: datetime,
                reason: str) -> ReconciliationDecision:
        payment_changes = _evidence(payment, observation)
        payment_changes["status"] = PaymentStatus.EXPIRED
        order_changes = {"payment_status": PaymentStatus.EXPIRED}
        side_effects = [SideEffect.STOP_MONITOR]

        if order.order_status == OrderStatus.PENDING_PAYMENT:
            order_changes["order_status"] = OrderStatus.CANCELLED
            order_changes["cancelled_at"] = now
            order_changes["cancellation_reason"] = reason
            side_effects.append(SideEffect.NOTIFY_CANCELLED)

        received = payment_changes.get("received_amount", payment.received_amount)
        if received:
            # Partial or late funds sit on the address and need a human decision
            side_effects.append(SideEffect.NOTIFY_OPERATOR)
            reason = f"{reason}; {received} {payment.cryptocurrency.value} received, review for refund"

        return ReconciliationDecision(
            outcome=TransitionOutcome.APPLIED,
            payment_changes=payment_changes,
            order_changes=order_changes,
            side_effects=side_effects,
            reason=reason,
        )


def _evidence(payment: PaymentDTO, observation: PaymentObservation) -> dict:
    """Observed facts that differ from what is stored. Confirmations only grow."""
    changes = {}
    if observation.received_amount is not None and observation.received_amount != payment.received_amount:
        changes["received_amount"] = observation.received_amount
    if observation.transaction_hash and observation.transaction_hash != payment.transaction_hash:
        changes["transaction_hash"] = observation.transaction_hash
    if observation.confirmations is not None and observation.confirmations > (payment.confirmations or 0):
        changes["confirmations"] = observation.confirmations
    return changes


def _discard(reason: str) -> ReconciliationDecision:
    return ReconciliationDecision(outcome=TransitionOutcome.DISCARDED, reason=reason)
