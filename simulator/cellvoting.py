"""Per-cell vote accumulation with at-most-one vote per member."""

import random
from typing import Callable

from errors import (
    ChantError,
    DuplicateVoteError,
    InvalidIdeaError,
    NotFoundError,
    PhaseError,
)
from models import AutoCompleteResult, CastVoteResult, Cell, EngineConfig, Vote
from simlog import EventType, LogEntry, LogLevel, PhaseType, log_event
from tally import TallyCalculator


class CellVotingState:
    """Accepts votes into cells and completes a cell exactly once.

    Every check and the completion transition for a cell run under that cell's
    store lock. Votes on different cells never wait on each other.
    """

    def __init__(
        self,
        store,
        tally: TallyCalculator,
        config: EngineConfig,
        rng: random.Random,
        clock: Callable[[], float],
    ):
        self.store = store
        self.tally = tally
        self.config = config
        self.rng = rng
        self.clock = clock

    def cast_vote(self, cell_id: str, participant_id: str, idea_id: str) -> CastVoteResult:
        try:
            self._require_voting_phase()
            with self.store.cell_lock(cell_id):
                cell = self.store.get_cell(cell_id)
                if cell is None:
                    raise NotFoundError("cell", cell_id)
                if not cell.includes(participant_id):
                    raise NotFoundError("participant", f"{participant_id} in {cell_id}")
                if self.store.has_vote(cell_id, participant_id):
                    raise DuplicateVoteError(cell_id, participant_id)
                if cell.is_completed:
                    raise PhaseError(f"Cell already completed: {cell_id}", phase="completed")
                if idea_id not in cell.idea_ids:
                    if self.config.validate_idea_membership:
                        raise InvalidIdeaError(cell_id, idea_id)
                    if self.store.get_idea(idea_id) is None:
                        raise NotFoundError("idea", idea_id)

                vote = self._record_vote(cell, participant_id, idea_id, auto=False)
                vote_count = len(self.store.votes_for_cell(cell_id))
                if vote_count >= cell.votes_needed:
                    cell = self._complete(cell, vote_count)
        except ChantError as exc:
            log_event(
                LogEntry(
                    event_type=EventType.VOTE_REJECTED,
                    cell_id=cell_id,
                    participant_id=participant_id,
                    payload={"idea_id": idea_id, "error": type(exc).__name__},
                    message=f"Vote rejected for {participant_id} in {cell_id}: {exc}",
                    level=LogLevel.WARNING,
                )
            )
            raise

        log_event(
            LogEntry(
                tier=cell.tier,
                phase=PhaseType.VOTING,
                event_type=EventType.VOTE_CAST,
                cell_id=cell_id,
                participant_id=participant_id,
                payload={"idea_id": idea_id, "weight": vote.weight, "vote_count": vote_count},
                message=f"{participant_id} voted {idea_id} in {cell_id} ({vote_count}/{cell.votes_needed})",
                level=LogLevel.DEBUG,
            )
        )
        return CastVoteResult(
            cell_id=cell_id,
            vote_count=vote_count,
            votes_needed=cell.votes_needed,
            cell_completed=cell.is_completed,
            winner_idea_id=cell.winner_idea_id,
        )

    def auto_complete(self, cell_id: str) -> AutoCompleteResult:
        """Fill every missing vote with a random idea from the cell's ballot."""
        self._require_voting_phase()
        with self.store.cell_lock(cell_id):
            cell = self.store.get_cell(cell_id)
            if cell is None:
                raise NotFoundError("cell", cell_id)
            if cell.is_completed:
                return AutoCompleteResult(cell_id=cell_id, votes_added=0, cell_completed=True)

            added = 0
            for member_id in cell.participant_ids:
                if self.store.has_vote(cell_id, member_id):
                    continue
                idea_id = self.rng.choice(cell.idea_ids)
                self._record_vote(cell, member_id, idea_id, auto=True)
                added += 1
                log_event(
                    LogEntry(
                        tier=cell.tier,
                        phase=PhaseType.VOTING,
                        event_type=EventType.AUTO_VOTE,
                        cell_id=cell_id,
                        participant_id=member_id,
                        payload={"idea_id": idea_id},
                        message=f"Auto-vote for {member_id} in {cell_id}: {idea_id}",
                        level=LogLevel.DEBUG,
                    )
                )

            self._complete(cell, len(self.store.votes_for_cell(cell_id)))

        return AutoCompleteResult(cell_id=cell_id, votes_added=added, cell_completed=True)

    def _require_voting_phase(self):
        phase = self.store.load_state().phase
        if phase != PhaseType.VOTING:
            raise PhaseError(f"Voting is closed (phase: {phase.value})", phase=phase.value)

    def _record_vote(self, cell: Cell, voter_id: str, idea_id: str, auto: bool) -> Vote:
        vote = Vote(
            vote_id=f"{cell.cell_id}:{voter_id}",
            cell_id=cell.cell_id,
            voter_id=voter_id,
            idea_id=idea_id,
            weight=self._voter_weight(cell.tier, voter_id),
            cast_at=self.clock(),
            auto=auto,
        )
        self.store.add_vote(vote)
        return vote

    def _voter_weight(self, tier: int, voter_id: str) -> int:
        member = self.store.get_roster_member(tier, voter_id)
        if member is None:
            member = self.store.get_participant(voter_id)
        return member.weight if member is not None else 1

    def _complete(self, cell: Cell, vote_count: int) -> Cell:
        cell = self.tally.settle_cell(self.store, cell, now=self.clock())
        log_event(
            LogEntry(
                tier=cell.tier,
                phase=PhaseType.VOTING,
                event_type=EventType.CELL_COMPLETED,
                cell_id=cell.cell_id,
                payload={
                    "votes": vote_count,
                    "winner": cell.winner_idea_id,
                    "score": cell.winner_score,
                },
                message=f"{cell.cell_id} completed with {vote_count} votes, winner {cell.winner_idea_id}",
            )
        )
        return cell
