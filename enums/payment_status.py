from enum import Enum


class PaymentStatus(str, Enum):
    PENDING = "pending"          # Address handed out, nothing seen yet
    DETECTED = "detected"        # Payment record only: funds seen for the first time
    CONFIRMING = "confirming"    # Funds seen, waiting for confirmations
    CONFIRMED = "confirmed"      # Settled within tolerance
    UNDERPAID = "underpaid"      # Settled on chain but below tolerance band
    OVERPAID = "overpaid"        # Settled above tolerance band (refinement of CONFIRMED)
    EXPIRED = "expired"
    REFUNDED = "refunded"

    @staticmethod
    def settled() -> set['PaymentStatus']:
        """Statuses that count as a successful payment for fulfillment."""
        return {PaymentStatus.CONFIRMED, PaymentStatus.OVERPAID}

    @staticmethod
    def open() -> set['PaymentStatus']:
        """Statuses that can still be moved by automatic observations."""
        return {
            PaymentStatus.PENDING,
            PaymentStatus.DETECTED,
            PaymentStatus.CONFIRMING,
            PaymentStatus.UNDERPAID,
        }

    def is_settled(self) -> bool:
        return self in PaymentStatus.settled()

    def is_open(self) -> bool:
        return self in PaymentStatus.open()
