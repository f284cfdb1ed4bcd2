"""ChantEngine: the public face of the tiered deliberation engine.

Wires the planner, allocation, voting, tally, tier, delegation and challenge
components around one store, and validates every request at the boundary.
"""

import random
import time
from typing import Callable, List, Optional, Union

from allocation import AllocationEngine
from cellvoting import CellVotingState
from challenge import ChallengeEngine
from cellplanner import MIN_CELL_SIZE
from delegation import DelegationEngine
from errors import ChantError, DuplicateEntryError, NotFoundError, PhaseError
from models import (
    AccumulationStatus,
    AutoCompleteResult,
    CastVoteResult,
    Cell,
    CellView,
    ChallengeLaunch,
    ChallengerReceipt,
    Comment,
    CommentIn,
    Delegate,
    EngineConfig,
    FormTierInput,
    Idea,
    IdeaIn,
    IdeaStatus,
    Participant,
    ParticipantIn,
    Snapshot,
    TierOutcome,
    VoteIn,
)
from simlog import EventType, LogEntry, LogLevel, PhaseType, log_event, save_state_snapshot
from store import DeliberationStore, InMemoryStore
from tally import TallyCalculator
from tiers import TierCoordinator


class ChantEngine:
    """One deliberation: participants and ideas in, a single winning idea out."""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        store: Optional[DeliberationStore] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.config = config or EngineConfig()
        self.store = store if store is not None else InMemoryStore()
        self.rng = rng or random.Random()
        self.clock = clock or time.time

        self.tally = TallyCalculator()
        self.allocation = AllocationEngine(self.store, self.clock)
        self.delegation = DelegationEngine(self.store, self.config)
        self.coordinator = TierCoordinator(
            self.store, self.config, self.tally, self.allocation, self.delegation, self.clock
        )
        self.voting = CellVotingState(self.store, self.tally, self.config, self.rng, self.clock)
        self.challenge = ChallengeEngine(self.store, self.config, self.coordinator, self.clock)
        self.coordinator.challenge = self.challenge

        log_event(
            LogEntry(
                phase=self.phase,
                event_type=EventType.ENGINE_INIT,
                payload=self.config.model_dump(),
                message=f"Engine ready ({self.config.variant} variant, challenge {'on' if self.config.challenge_enabled else 'off'})",
            )
        )

    # State accessors

    @property
    def phase(self) -> PhaseType:
        return self.store.load_state().phase

    @property
    def current_tier(self) -> int:
        return self.store.load_state().current_tier

    @property
    def challenge_round(self) -> int:
        return self.store.load_state().challenge_round

    # Submission

    def add_participant(self, data: Union[ParticipantIn, dict]) -> Participant:
        data = ParticipantIn.model_validate(data)
        with self.store.transaction():
            state = self.store.load_state()
            try:
                if state.phase not in (PhaseType.SUBMISSION, PhaseType.ACCUMULATING):
                    raise PhaseError(
                        f"Participants cannot join during {state.phase.value}",
                        phase=state.phase.value,
                    )
                if data.participant_id and self.store.get_participant(data.participant_id):
                    raise DuplicateEntryError("participant", data.participant_id)
            except ChantError as exc:
                self._reject(EventType.PARTICIPANT_REJECTED, exc, participant_id=data.participant_id)
                raise

            participant_id = data.participant_id
            while participant_id is None or self.store.get_participant(participant_id):
                participant_id = f"p-{state.next_id('participant')}"
            participant = Participant(
                participant_id=participant_id,
                name=data.name or participant_id,
                weight=data.weight,
                joined_at=self.clock(),
                metadata=data.metadata,
            )
            self.store.add_participant(participant)
            self.store.save_state(state)

        log_event(
            LogEntry(
                phase=state.phase,
                event_type=EventType.PARTICIPANT_JOINED,
                participant_id=participant_id,
                payload={"name": participant.name},
                message=f"{participant_id} joined",
                level=LogLevel.DEBUG,
            )
        )
        return participant

    def add_idea(self, data: Union[IdeaIn, dict]) -> Idea:
        data = IdeaIn.model_validate(data)
        with self.store.transaction():
            state = self.store.load_state()
            try:
                if state.phase != PhaseType.SUBMISSION:
                    raise PhaseError(
                        f"Ideas can only be submitted during submission (phase: {state.phase.value})",
                        phase=state.phase.value,
                    )
                idea = self._build_idea(state, data)
            except ChantError as exc:
                self._reject(EventType.IDEA_REJECTED, exc, participant_id=data.author_id)
                raise

            self.store.add_idea(idea)
            self.store.save_state(state)

        log_event(
            LogEntry(
                phase=PhaseType.SUBMISSION,
                event_type=EventType.IDEA_SUBMITTED,
                participant_id=idea.author_id,
                payload={"idea_id": idea.idea_id, "sequence": idea.sequence},
                message=f"{idea.author_id} submitted {idea.idea_id}",
                level=LogLevel.DEBUG,
            )
        )
        return idea

    # Voting

    def start_voting(self, data: Optional[Union[FormTierInput, dict]] = None) -> List[Cell]:
        """Close submissions and form tier 1."""
        data = FormTierInput.model_validate(data or {})
        with self.store.transaction():
            state = self.store.load_state()
            try:
                if state.phase != PhaseType.SUBMISSION:
                    raise PhaseError(
                        f"Voting can only start from submission (phase: {state.phase.value})",
                        phase=state.phase.value,
                    )
                roster = self._resolve_roster(data.participant_ids)
                ideas = self._resolve_ideas(data.idea_ids)
                if len(roster) < MIN_CELL_SIZE:
                    raise PhaseError(
                        f"Need at least {MIN_CELL_SIZE} participants to vote, have {len(roster)}",
                        phase=state.phase.value,
                    )
                if not ideas:
                    raise PhaseError("Need at least one idea to vote on", phase=state.phase.value)
            except ChantError as exc:
                self._reject(EventType.TIER_FORMATION_REJECTED, exc)
                raise

            plan = self.coordinator.form_tier(state, 1, roster, ideas)
            state.phase = PhaseType.VOTING
            self.store.save_state(state)

        log_event(
            LogEntry(
                tier=1,
                phase=PhaseType.VOTING,
                event_type=EventType.PHASE_TRANSITION,
                payload={"from": PhaseType.SUBMISSION.value, "to": PhaseType.VOTING.value},
                message=f"Phase {PhaseType.SUBMISSION.value} -> {PhaseType.VOTING.value}",
            )
        )
        return plan.cells

    form_tier = start_voting

    def cast_vote(
        self,
        cell_id: Union[str, VoteIn, dict],
        participant_id: Optional[str] = None,
        idea_id: Optional[str] = None,
    ) -> CastVoteResult:
        if isinstance(cell_id, str):
            data = VoteIn(cell_id=cell_id, participant_id=participant_id, idea_id=idea_id)
        else:
            data = VoteIn.model_validate(cell_id)
        result = self.voting.cast_vote(data.cell_id, data.participant_id, data.idea_id)
        if result.cell_completed:
            result.tier_outcome = self._maybe_advance(data.cell_id)
        return result

    def auto_complete(self, cell_id: str) -> AutoCompleteResult:
        """Fill a cell's missing votes at random, e.g. when its timer runs out."""
        result = self.voting.auto_complete(cell_id)
        if result.votes_added:
            result.tier_outcome = self._maybe_advance(cell_id)
        return result

    def auto_complete_tier(self, tier: Optional[int] = None) -> List[AutoCompleteResult]:
        tier = tier or self.current_tier
        return [
            self.auto_complete(cell.cell_id)
            for cell in self.store.list_cells(tier)
            if not cell.is_completed
        ]

    def is_tier_complete(self, tier: Optional[int] = None) -> bool:
        return self.coordinator.is_tier_complete(tier or self.current_tier)

    def complete_tier(self, tier: Optional[int] = None) -> TierOutcome:
        return self.coordinator.complete_tier(tier or self.current_tier)

    # Challenge extension

    def submit_challenger(self, data: Union[IdeaIn, dict]) -> ChallengerReceipt:
        data = IdeaIn.model_validate(data)
        with self.store.transaction():
            state = self.store.load_state()
            try:
                self.challenge.check_open(state)
                idea = self._build_idea(state, data)
                receipt = self.challenge.submit_challenger(state, idea)
            except ChantError as exc:
                self._reject(EventType.CHALLENGER_REJECTED, exc, participant_id=data.author_id)
                raise
            self.store.save_state(state)
        return receipt

    def accumulation_status(self) -> AccumulationStatus:
        return self.challenge.status(self.store.load_state())

    def trigger_challenge(self) -> ChallengeLaunch:
        with self.store.transaction():
            state = self.store.load_state()
            launch = self.challenge.trigger_challenge(state)
            self.store.save_state(state)
        return launch

    def close_accumulation(self) -> Idea:
        with self.store.transaction():
            state = self.store.load_state()
            champion = self.challenge.close(state)
            self.store.save_state(state)
        return champion

    # Cell discussion

    def add_comment(self, data: Union[CommentIn, dict]) -> Comment:
        data = CommentIn.model_validate(data)
        cell = self._get_cell(data.cell_id)
        if not cell.includes(data.participant_id):
            raise NotFoundError("participant", f"{data.participant_id} in {data.cell_id}")
        if data.reply_to is not None:
            known = {c.comment_id for c in self.store.comments_for_cell(data.cell_id)}
            if data.reply_to not in known:
                raise NotFoundError("comment", data.reply_to)

        with self.store.transaction():
            state = self.store.load_state()
            comment = Comment(
                comment_id=f"c-{state.next_id('comment')}",
                cell_id=data.cell_id,
                participant_id=data.participant_id,
                text=data.text,
                reply_to=data.reply_to,
                created_at=self.clock(),
            )
            self.store.add_comment(comment)
            self.store.save_state(state)

        log_event(
            LogEntry(
                tier=cell.tier,
                event_type=EventType.COMMENT_ADDED,
                cell_id=cell.cell_id,
                participant_id=data.participant_id,
                payload={"comment_id": comment.comment_id, "reply_to": data.reply_to},
                message=f"{data.participant_id} commented in {cell.cell_id}",
                level=LogLevel.DEBUG,
            )
        )
        return comment

    def cell_comments(self, cell_id: str) -> List[Comment]:
        self._get_cell(cell_id)
        return self.store.comments_for_cell(cell_id)

    def cell_participants(self, cell_id: str) -> List[Participant]:
        cell = self._get_cell(cell_id)
        members = []
        for participant_id in cell.participant_ids:
            member = self.store.get_roster_member(cell.tier, participant_id)
            members.append(member or self.store.get_participant(participant_id))
        return members

    def cell_ideas(self, cell_id: str) -> List[Idea]:
        cell = self._get_cell(cell_id)
        return [self.store.get_idea(idea_id) for idea_id in cell.idea_ids]

    # Read model

    def snapshot(self) -> Snapshot:
        """Deep-copied projection of the deliberation; never mutates state."""
        state = self.store.load_state()
        cells = []
        for cell in self.store.list_cells():
            votes = self.store.votes_for_cell(cell.cell_id)
            cells.append(
                CellView(
                    cell_id=cell.cell_id,
                    tier=cell.tier,
                    batch=cell.batch,
                    participant_ids=list(cell.participant_ids),
                    voters=[vote.voter_id for vote in votes],
                    idea_ids=list(cell.idea_ids),
                    tally=self.tally.live_scores(cell, votes),
                    votes_cast=len(votes),
                    votes_needed=cell.votes_needed,
                    status=cell.status,
                    winner_idea_id=cell.winner_idea_id,
                )
            )
        delegates = [
            member.model_copy(deep=True)
            for member in self.store.get_roster(state.current_tier)
            if isinstance(member, Delegate)
        ]
        return Snapshot(
            phase=state.phase,
            current_tier=state.current_tier,
            challenge_round=state.challenge_round,
            champion_id=state.champion_id,
            participant_count=len(self.store.list_participants()),
            ideas=[idea.model_copy(deep=True) for idea in self.store.list_ideas()],
            cells=cells,
            delegates=delegates,
        )

    def save_snapshot(self) -> Snapshot:
        """Write the current snapshot to the forensic database."""
        snapshot = self.snapshot()
        save_state_snapshot(snapshot.serialize_for_snapshot())
        log_event(
            LogEntry(
                tier=snapshot.current_tier,
                phase=snapshot.phase,
                event_type=EventType.STATE_SNAPSHOT,
                message=f"State snapshot saved at tier {snapshot.current_tier}",
                level=LogLevel.DEBUG,
            )
        )
        return snapshot

    def reset(self, preserve_champion: bool = False) -> dict:
        """Atomically clear the deliberation.

        With ``preserve_champion`` and a standing champion, the champion and
        the recyclable runners-up survive and a fresh accumulation window
        opens for a new population. Otherwise everything is cleared.
        """
        with self.store.exclusive():
            state = self.store.load_state()
            champion = self.store.get_idea(state.champion_id) if state.champion_id else None

            if preserve_champion and champion is not None:
                kept = [champion] + [
                    idea
                    for idea in (self.store.get_idea(i) for i in state.recyclable_idea_ids)
                    if idea is not None
                ]
                champion_run = state.champion_run
                challenge_round = state.challenge_round
                idea_counter = state.idea_counter

                self.store.clear()
                fresh = self.store.load_state()
                for idea in kept:
                    self.store.add_idea(idea)
                champion.status = IdeaStatus.DEFENDING
                fresh.champion_id = champion.idea_id
                fresh.champion_run = champion_run
                fresh.challenge_round = challenge_round
                fresh.idea_counter = idea_counter
                fresh.recyclable_idea_ids = [idea.idea_id for idea in kept[1:]]
                now = self.clock()
                fresh.accumulation_started_at = now
                fresh.accumulation_deadline = now + self.config.accumulation_window_seconds
                fresh.phase = PhaseType.ACCUMULATING
                self.store.save_state(fresh)
                result = {"mode": "rolling", "champion_id": champion.idea_id}
            else:
                self.store.clear()
                result = {"mode": "fresh", "champion_id": None}

        log_event(
            LogEntry(
                phase=self.phase,
                event_type=EventType.ENGINE_RESET,
                payload=result,
                message=f"Deliberation reset ({result['mode']})",
            )
        )
        return result

    # Helpers

    def _maybe_advance(self, cell_id: str) -> Optional[TierOutcome]:
        if not self.config.auto_advance:
            return None
        cell = self.store.get_cell(cell_id)
        if cell is None or not self.coordinator.is_tier_complete(cell.tier):
            return None
        state = self.store.load_state()
        if cell.tier != state.current_tier and cell.tier not in state.completed_tiers:
            return None
        return self.coordinator.complete_tier(cell.tier)

    def _build_idea(self, state, data: IdeaIn) -> Idea:
        if self.store.get_participant(data.author_id) is None:
            raise NotFoundError("participant", data.author_id)
        if data.idea_id and self.store.get_idea(data.idea_id) is not None:
            raise DuplicateEntryError("idea", data.idea_id)
        sequence = state.next_id("idea")
        idea_id = data.idea_id or f"idea-{sequence}"
        while not data.idea_id and self.store.get_idea(idea_id) is not None:
            sequence = state.next_id("idea")
            idea_id = f"idea-{sequence}"
        return Idea(
            idea_id=idea_id,
            author_id=data.author_id,
            text=data.text,
            sequence=sequence,
            challenge_round=state.challenge_round,
            created_at=self.clock(),
        )

    def _resolve_roster(self, participant_ids: Optional[List[str]]) -> List[Participant]:
        if participant_ids is None:
            return self.store.list_participants()
        roster = []
        seen = set()
        for participant_id in participant_ids:
            if participant_id in seen:
                raise DuplicateEntryError("roster member", participant_id)
            participant = self.store.get_participant(participant_id)
            if participant is None:
                raise NotFoundError("participant", participant_id)
            roster.append(participant)
            seen.add(participant_id)
        return roster

    def _resolve_ideas(self, idea_ids: Optional[List[str]]) -> List[Idea]:
        if idea_ids is None:
            return self.store.list_ideas()
        ideas = []
        seen = set()
        for idea_id in idea_ids:
            if idea_id in seen:
                raise DuplicateEntryError("pool idea", idea_id)
            idea = self.store.get_idea(idea_id)
            if idea is None:
                raise NotFoundError("idea", idea_id)
            ideas.append(idea)
            seen.add(idea_id)
        return ideas

    def _get_cell(self, cell_id: str) -> Cell:
        cell = self.store.get_cell(cell_id)
        if cell is None:
            raise NotFoundError("cell", cell_id)
        return cell

    def _reject(self, event_type: EventType, exc: Exception, participant_id: Optional[str] = None):
        log_event(
            LogEntry(
                phase=self.store.load_state().phase,
                event_type=event_type,
                participant_id=participant_id,
                payload={"error": type(exc).__name__},
                message=str(exc),
                level=LogLevel.WARNING,
            )
        )
