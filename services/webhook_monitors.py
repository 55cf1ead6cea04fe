"""
Push-driven payment monitors.

A webhook only tells us that something happened to an invoice or charge.
Both monitors re-read the provider's record before deciding, and reduce it
to at most one PaymentObservation per delivery. They never schedule
anything and keep no state; duplicate deliveries are the reconciler's
problem.
"""

import logging

from enums.observation_status import ObservationStatus
from models.observation import PaymentObservation
from services.btcpay import BTCPayClient
from services.coinbase_commerce import CoinbaseCommerceClient

logger = logging.getLogger(__name__)


class BTCPayWebhookMonitor:

    def __init__(self, client: BTCPayClient):
        self.client = client

    async def observe(self, event: dict) -> PaymentObservation | None:
        invoice_id = event.get("invoiceId")
        if not invoice_id:
            logger.warning(f"BTCPay event {event.get('type')} without invoiceId ignored")
            return None

        invoice = await self.client.get_invoice(invoice_id)
        order_id = (invoice.get("metadata") or {}).get("orderId")
        if not order_id:
            logger.warning(f"BTCPay invoice {invoice_id} carries no orderId")
            return None

        status = self.client.map_status(invoice.get("status", "New"))
        if status is None:
            logger.debug(f"BTCPay invoice {invoice_id} is {invoice.get('status')}, nothing to report")
            return None

        methods = await self.client.get_invoice_payment_methods(invoice_id)
        received, transaction_hash = self.summarize_payments(methods)
        return PaymentObservation(
            order_id=order_id,
            status=status,
            received_amount=received,
            transaction_hash=transaction_hash,
            source=f"btcpay {event.get('type', 'webhook')}",
        )

    @staticmethod
    def summarize_payments(methods: list[dict]) -> tuple[float | None, str | None]:
        """Amount paid and latest transaction id of the first payment method that received funds."""
        for method in methods:
            total_paid = float(method.get("totalPaid") or 0)
            if total_paid <= 0:
                continue
            payments = method.get("payments") or []
            transaction_hash = None
            if payments:
                # Payment ids are "<txid>-<vout>"
                transaction_hash = str(payments[-1].get("id", "")).split("-")[0] or None
            return total_paid, transaction_hash
        return None, None


class CoinbaseWebhookMonitor:

    # Latest timeline status -> observation
    STATUS_MAP: dict[str, ObservationStatus | None] = {
        "NEW": None,
        "PENDING": ObservationStatus.CONFIRMING,
        "COMPLETED": ObservationStatus.CONFIRMED,
        "RESOLVED": ObservationStatus.CONFIRMED,
        # Underpaid, overpaid and delayed charges: the amount decides
        "UNRESOLVED": ObservationStatus.CONFIRMED,
        "EXPIRED": ObservationStatus.EXPIRED,
        "CANCELED": ObservationStatus.EXPIRED,
    }

    def __init__(self, client: CoinbaseCommerceClient):
        self.client = client

    async def observe(self, event: dict) -> PaymentObservation | None:
        data = event.get("data") or {}
        charge_code = data.get("code")
        if not charge_code:
            logger.warning(f"Coinbase event {event.get('type')} without charge code ignored")
            return None

        charge = await self.client.get_charge(charge_code)
        metadata = charge.get("metadata") or {}
        order_id = metadata.get("order_id")
        if not order_id:
            logger.warning(f"Coinbase charge {charge_code} carries no order_id")
            return None

        timeline = charge.get("timeline") or []
        latest_status = timeline[-1].get("status") if timeline else "NEW"
        status = self.STATUS_MAP.get(latest_status)
        if status is None:
            logger.debug(f"Coinbase charge {charge_code} is {latest_status}, nothing to report")
            return None

        received, transaction_hash, confirmations = self.summarize_payments(charge, metadata.get("cryptocurrency"))
        return PaymentObservation(
            order_id=order_id,
            status=status,
            received_amount=received,
            transaction_hash=transaction_hash,
            confirmations=confirmations,
            source=f"coinbase {event.get('type', 'webhook')}",
        )

    @staticmethod
    def summarize_payments(charge: dict, cryptocurrency: str | None) -> tuple[float | None, str | None, int | None]:
        """Sum of crypto paid in the charge's currency, plus the latest transaction."""
        received = 0.0
        transaction_hash = None
        confirmations = None
        for payment in charge.get("payments") or []:
            crypto_value = (payment.get("value") or {}).get("crypto") or {}
            if cryptocurrency and crypto_value.get("currency") != cryptocurrency:
                continue
            received += float(crypto_value.get("amount") or 0)
            transaction_hash = payment.get("transaction_id") or transaction_hash
            block = payment.get("block") or {}
            if block.get("confirmations") is not None:
                confirmations = int(block["confirmations"])
        if received <= 0:
            return None, transaction_hash, confirmations
        return received, transaction_hash, confirmations
