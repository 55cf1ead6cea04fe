from datetime import datetime

from pydantic import BaseModel, Field

from enums.fulfillment_event_type import FulfillmentEventType


class FulfillmentEvent(BaseModel):
    """Partner webhook event reduced to what the order lifecycle cares about."""
    event_type: FulfillmentEventType
    order_id: str  # our order id, sent to the partner as external_id
    fulfillment_order_id: str | None = None
    tracking_number: str | None = None
    tracking_url: str | None = None
    carrier: str | None = None
    reason: str | None = None
    received_at: datetime = Field(default_factory=datetime.utcnow)
