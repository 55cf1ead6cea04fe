from enum import Enum


class TransitionOutcome(str, Enum):
    APPLIED = "applied"        # State written, side effects requested
    NO_OP = "no_op"            # Nothing new to record
    DISCARDED = "discarded"    # Stale/invalid observation, logged and ignored
