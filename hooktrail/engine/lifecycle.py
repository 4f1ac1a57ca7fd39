"""Prompt lifecycle state machine.

Defines valid transitions and enforces them. Invalid transitions
raise InvalidTransitionError rather than silently proceeding.

State Diagram:

    (none) ──> ACTIVE ──┬──> COMPLETED     (Stop received)
                        │
                        └──> INTERRUPTED   (next prompt arrived first)

    COMPLETED and INTERRUPTED are terminal.
"""
from __future__ import annotations

from .errors import InvalidTransitionError
from .models import PromptStatus

VALID_TRANSITIONS: dict[PromptStatus, set[PromptStatus]] = {
    PromptStatus.ACTIVE: {
        PromptStatus.COMPLETED,
        PromptStatus.INTERRUPTED,
    },
    PromptStatus.COMPLETED: set(),
    PromptStatus.INTERRUPTED: set(),
}


def validate_transition(current: PromptStatus, target: PromptStatus) -> None:
    """Validate a prompt state transition. Raises InvalidTransitionError if invalid."""
    allowed = VALID_TRANSITIONS.get(current, set())
    if target not in allowed:
        allowed_str = ", ".join(s.value for s in allowed) or "none (terminal)"
        raise InvalidTransitionError(current.value, target.value, allowed_str)
