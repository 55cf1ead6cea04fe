from enum import Enum


class ObservationStatus(str, Enum):
    """Normalized outcome every payment monitor reports, whatever its transport."""
    CONFIRMING = "confirming"
    CONFIRMED = "confirmed"
    EXPIRED = "expired"
