from pydantic import BaseModel, Field

from enums.side_effect import SideEffect
from enums.transition_outcome import TransitionOutcome


class ReconciliationDecision(BaseModel):
    outcome: TransitionOutcome
    payment_changes: dict = Field(default_factory=dict)
    order_changes: dict = Field(default_factory=dict)
    side_effects: list[SideEffect] = Field(default_factory=list)
    reason: str = ""

    @property
    def is_applied(self) -> bool:
        return self.outcome == TransitionOutcome.APPLIED


class TransitionResult(BaseModel):
    order_id: str
    outcome: TransitionOutcome
    reason: str = ""
    payment_status: str | None = None
    order_status: str | None = None
    executed_side_effects: list[SideEffect] = Field(default_factory=list)


class SweepResult(BaseModel):
    examined: int = 0
    expired: int = 0
    skipped: int = 0
    failed: int = 0
