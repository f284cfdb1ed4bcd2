"""Core data models for the tiered cell deliberation engine."""
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from simlog import PhaseType


class IdeaStatus(str, Enum):
    """Lifecycle of an idea; exactly one status is active at a time."""

    SUBMITTED = "submitted"
    IN_VOTING = "in-voting"
    ADVANCING = "advancing"
    WINNER = "winner"
    ELIMINATED = "eliminated"
    DEFENDING = "defending"


class CellStatus(str, Enum):
    VOTING = "voting"
    COMPLETED = "completed"


class AllocationMode(str, Enum):
    """How a tier's idea pool was spread over its cells."""

    UNIQUE = "unique"
    BATCHED = "batched"
    SHOWDOWN = "showdown"


class Participant(BaseModel):
    """A member of the roster. Weight is 1 unless the member is a delegate."""

    participant_id: str
    name: str = ""
    weight: int = Field(default=1, ge=1)
    joined_at: float = 0.0
    metadata: Dict[str, Any] = Field(default_factory=dict)


class Delegate(Participant):
    """An idea author voting on behalf of the constituents who elected their idea."""

    representing_idea: str
    from_tier: int = Field(ge=1)


class Idea(BaseModel):
    """A submitted idea. Ideas are never deleted; eliminated ones stay for audit."""

    idea_id: str
    author_id: str
    text: str = ""
    tier: int = Field(default=0, ge=0)  # 0 = not placed in any tier yet
    status: IdeaStatus = IdeaStatus.SUBMITTED
    sequence: int = 0  # Submission order, drives tie-breaks
    challenge_round: int = 0
    is_champion: bool = False
    created_at: float = 0.0


class Cell(BaseModel):
    """A 3-7 member voting group for one tier. Membership is fixed at creation."""

    cell_id: str
    tier: int = Field(ge=1)
    batch: int = Field(default=1, ge=1)
    participant_ids: List[str]
    idea_ids: List[str]
    votes_needed: int = Field(ge=1)
    status: CellStatus = CellStatus.VOTING
    winner_idea_id: Optional[str] = None
    winner_score: Optional[int] = None
    challenge_round: int = 0
    created_at: float = 0.0
    completed_at: Optional[float] = None

    @model_validator(mode="after")
    def _check_membership(self) -> "Cell":
        if len(set(self.participant_ids)) != len(self.participant_ids):
            raise ValueError(f"{self.cell_id} has duplicate members")
        if self.votes_needed > len(self.participant_ids):
            raise ValueError(
                f"{self.cell_id} needs {self.votes_needed} votes but has "
                f"{len(self.participant_ids)} members"
            )
        if not self.idea_ids:
            raise ValueError(f"{self.cell_id} has no ideas")
        return self

    @property
    def is_completed(self) -> bool:
        return self.status == CellStatus.COMPLETED

    def includes(self, participant_id: str) -> bool:
        return participant_id in self.participant_ids


class Vote(BaseModel):
    """An append-only ballot. (cell_id, voter_id) never repeats."""

    vote_id: str
    cell_id: str
    voter_id: str
    idea_id: str
    weight: int = Field(default=1, ge=1)
    cast_at: float = 0.0
    auto: bool = False


class Comment(BaseModel):
    """Discussion message posted inside a cell."""

    comment_id: str
    cell_id: str
    participant_id: str
    text: str
    reply_to: Optional[str] = None
    created_at: float = 0.0


class BatchWinner(BaseModel):
    """Winner of one batch (a group of cells that shared an idea set)."""

    batch: int
    idea_id: str
    score: int
    cell_ids: List[str]
    member_count: int
    member_weight: int


class EngineConfig(BaseModel):
    """Engine behaviour switches, validated from the ``engine`` config section."""
    model_config = ConfigDict(frozen=True)

    variant: Literal["batch", "delegation"] = "batch"
    weight_policy: Literal["carry_forward", "accumulate"] = "carry_forward"
    challenge_enabled: bool = False
    accumulation_window_seconds: float = Field(default=300.0, gt=0)
    recycle_runners_up: bool = True
    validate_idea_membership: bool = True
    auto_advance: bool = False


# Request contracts, validated at the boundary


class ParticipantIn(BaseModel):
    participant_id: Optional[str] = Field(default=None, min_length=1)
    name: str = Field(default="", max_length=200)
    weight: int = Field(default=1, ge=1)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class IdeaIn(BaseModel):
    idea_id: Optional[str] = Field(default=None, min_length=1)
    author_id: str = Field(min_length=1)
    text: str = Field(default="", max_length=5000)


class VoteIn(BaseModel):
    cell_id: str = Field(min_length=1)
    participant_id: str = Field(min_length=1)
    idea_id: str = Field(min_length=1)


class CommentIn(BaseModel):
    cell_id: str = Field(min_length=1)
    participant_id: str = Field(min_length=1)
    text: str = Field(min_length=1, max_length=5000)
    reply_to: Optional[str] = None


class FormTierInput(BaseModel):
    """Optional explicit roster/pool ordering for forming tier 1."""

    participant_ids: Optional[List[str]] = None
    idea_ids: Optional[List[str]] = None


# Response contracts


class CastVoteResult(BaseModel):
    cell_id: str
    vote_count: int
    votes_needed: int
    cell_completed: bool
    winner_idea_id: Optional[str] = None
    tier_outcome: Optional["TierOutcome"] = None


class AutoCompleteResult(BaseModel):
    cell_id: str
    votes_added: int
    cell_completed: bool
    tier_outcome: Optional["TierOutcome"] = None


class TierOutcome(BaseModel):
    """Result of completing a tier: either a winner or the next tier."""

    tier: int
    challenge_round: int = 0
    winner: Optional[Idea] = None
    winner_score: Optional[int] = None
    next_tier: Optional[int] = None
    advancing_count: int = 0
    delegate_count: Optional[int] = None
    represented_weight: Optional[int] = None
    mode: Optional[AllocationMode] = None

    @property
    def is_final(self) -> bool:
        return self.winner is not None


class ChallengerReceipt(BaseModel):
    idea: Idea
    accumulated_count: int
    threshold: int
    can_challenge: bool


class AccumulationStatus(BaseModel):
    active: bool
    champion_id: Optional[str] = None
    accumulated_count: int = 0
    threshold: int = 0
    can_challenge: bool = False
    recyclable_count: int = 0
    time_remaining: Optional[float] = None


class ChallengeLaunch(BaseModel):
    challenge_round: int
    total_ideas: int
    new_ideas: int
    recycled_ideas: int
    champion_id: str
    resolved: bool = False  # True when the champion stood alone


class CellView(BaseModel):
    """Read-only projection of a cell with its live tally."""

    cell_id: str
    tier: int
    batch: int
    participant_ids: List[str]
    voters: List[str]
    idea_ids: List[str]
    tally: Dict[str, int]
    votes_cast: int
    votes_needed: int
    status: CellStatus
    winner_idea_id: Optional[str] = None


class Snapshot(BaseModel):
    phase: PhaseType
    current_tier: int
    challenge_round: int
    champion_id: Optional[str] = None
    participant_count: int
    ideas: List[Idea]
    cells: List[CellView]
    delegates: List[Delegate] = Field(default_factory=list)

    def serialize_for_snapshot(self) -> dict:
        """Serialize for the forensic state_snapshots table."""
        return {
            "phase": self.phase.value,
            "current_tier": self.current_tier,
            "challenge_round": self.challenge_round,
            "champion_id": self.champion_id,
            "ideas": [idea.model_dump(mode="json") for idea in self.ideas],
            "cells": [cell.model_dump(mode="json") for cell in self.cells],
        }


class DeliberationState(BaseModel):
    """Mutable deliberation-level state: the phase-aware wrapper around the engine."""

    phase: PhaseType = PhaseType.SUBMISSION
    current_tier: int = 1
    challenge_round: int = 0
    champion_id: Optional[str] = None
    champion_run: Optional[Dict[str, Any]] = None
    completed_tiers: Dict[int, TierOutcome] = {}
    round_history: List[Dict[str, Any]] = []

    # Accumulation window
    accumulated_idea_ids: List[str] = []
    recyclable_idea_ids: List[str] = []
    accumulation_started_at: Optional[float] = None
    accumulation_deadline: Optional[float] = None

    # Sequential id counters
    participant_counter: int = 0
    idea_counter: int = 0
    cell_counter: int = 0
    vote_counter: int = 0
    comment_counter: int = 0

    def next_id(self, kind: str) -> int:
        """Advance and return the counter for ``kind``."""
        attr = f"{kind}_counter"
        value = getattr(self, attr) + 1
        setattr(self, attr, value)
        return value


CastVoteResult.model_rebuild()
AutoCompleteResult.model_rebuild()


# Simulation


class RunConfig(BaseModel):
    """A seeded synthetic population: who joins, what they submit, how good it is."""

    seed: int
    participants: List[ParticipantIn]
    ideas: List[IdeaIn]
    idea_quality: Dict[str, float]
    profiles: Dict[str, Dict[str, Any]] = Field(default_factory=dict)

    @property
    def best_idea_id(self) -> Optional[str]:
        if not self.idea_quality:
            return None
        return max(self.idea_quality, key=self.idea_quality.get)
