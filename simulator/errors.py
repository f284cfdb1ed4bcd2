"""Error taxonomy for the tiered deliberation engine.

Every error except InvariantViolation is recoverable: the operation is refused,
no state changes, and the caller decides what to do next. InvariantViolation
means the engine itself produced an impossible state (a planning or tally bug).
"""

from typing import Optional


class ChantError(Exception):
    """Base error for all deliberation engine failures."""


class PhaseError(ChantError):
    """Raised when an action is attempted outside the phase that permits it."""

    def __init__(self, message: str, phase: Optional[str] = None):
        self.phase = phase
        super().__init__(message)


class NotFoundError(ChantError):
    """Raised for an unknown cell, idea, participant or tier."""

    def __init__(self, kind: str, identifier):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class DuplicateVoteError(ChantError):
    """Raised when a participant votes twice in the same cell."""

    def __init__(self, cell_id: str, participant_id: str):
        self.cell_id = cell_id
        self.participant_id = participant_id
        super().__init__(f"{participant_id} already voted in {cell_id}")


class DuplicateEntryError(ChantError):
    """Raised when a participant or idea id is registered twice."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} already exists: {identifier}")


class InvalidIdeaError(ChantError):
    """Raised when a vote names an idea that is not assigned to the cell."""

    def __init__(self, cell_id: str, idea_id: str):
        self.cell_id = cell_id
        self.idea_id = idea_id
        super().__init__(f"{idea_id} is not on the ballot of {cell_id}")


class IncompleteTierError(ChantError):
    """Raised when completing a tier whose cells are still voting."""

    def __init__(self, tier: int, completed: int, total: int):
        self.tier = tier
        self.completed = completed
        self.total = total
        super().__init__(
            f"Not all cells completed in tier {tier} ({completed}/{total})"
        )


class InvariantViolation(ChantError):
    """Raised when the engine reaches a state its own rules forbid."""
