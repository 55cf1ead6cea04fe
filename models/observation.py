from datetime import datetime

from pydantic import BaseModel, Field

from enums.observation_status import ObservationStatus


class PaymentObservation(BaseModel):
    """
    Normalized signal produced by every payment monitor.

    Polling, BTCPay and Coinbase monitors all reduce their backend's
    vocabulary to this shape before handing it to the lifecycle service.
    """
    order_id: str
    status: ObservationStatus
    received_amount: float | None = None
    transaction_hash: str | None = None
    confirmations: int | None = None
    source: str = "unknown"
    observed_at: datetime = Field(default_factory=datetime.utcnow)
