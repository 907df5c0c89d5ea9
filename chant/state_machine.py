"""Lifecycle state machines for deliberations and cells.

Deliberation: SUBMISSION → VOTING → (ACCUMULATING ⇄ VOTING) → COMPLETED
Cell: DELIBERATING → VOTING → COMPLETED (terminal)
"""

from chant.exceptions import InvalidStateTransitionError

PHASE_TRANSITIONS: dict[str, list[str]] = {
    "SUBMISSION": ["VOTING", "ACCUMULATING", "COMPLETED"],
    "VOTING": ["ACCUMULATING", "COMPLETED"],
    "ACCUMULATING": ["VOTING", "COMPLETED"],
    "COMPLETED": [],    # terminal
}

CELL_TRANSITIONS: dict[str, list[str]] = {
    "DELIBERATING": ["VOTING"],
    "VOTING": ["COMPLETED"],
    "COMPLETED": [],    # terminal
}


def can_transition_phase(current: str, target: str) -> bool:
    """Check if a deliberation phase transition is valid."""
    return target in PHASE_TRANSITIONS.get(current, [])


def validate_phase_transition(current: str, target: str) -> None:
    """Validate a deliberation phase transition, raising if invalid."""
    if not can_transition_phase(current, target):
        raise InvalidStateTransitionError("deliberation", current, target)


def can_transition_cell(current: str, target: str) -> bool:
    """Check if a cell status transition is valid."""
    return target in CELL_TRANSITIONS.get(current, [])


def validate_cell_transition(current: str, target: str) -> None:
    """Validate a cell status transition, raising if invalid."""
    if not can_transition_cell(current, target):
        raise InvalidStateTransitionError("cell", current, target)
