"""Weighted vote tallying for cells, batches and whole tiers."""

from collections import OrderedDict
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel

from errors import InvariantViolation
from models import Cell, CellStatus, IdeaStatus, Vote
from simlog import EventType, LogEntry, LogLevel, log_event


class TallyResult(BaseModel):
    """Outcome of one tally: the winner plus the full score table."""

    idea_id: str
    score: int
    scores: Dict[str, int]
    vote_count: int
    total_weight: int


def pick_winner(scores: Dict[str, int], order: Iterable[str]) -> Tuple[str, int]:
    """Return the highest-scoring idea; ties go to the idea earliest in ``order``.

    Ideas missing from ``order`` rank after every listed idea, in the order
    they appear in ``scores``.
    """
    if not scores:
        raise InvariantViolation("Tally produced zero candidates")

    rank = {}
    for position, idea_id in enumerate(order):
        rank.setdefault(idea_id, position)
    fallback = len(rank)
    for idea_id in scores:
        if idea_id not in rank:
            rank[idea_id] = fallback
            fallback += 1

    best = max(scores.values())
    tied = [idea_id for idea_id, score in scores.items() if score == best]
    winner = min(tied, key=lambda idea_id: rank[idea_id])
    return winner, best


class TallyCalculator:
    """Sums vote weights per idea and resolves ties deterministically."""

    def tally(self, votes: List[Vote], idea_order: List[str]) -> TallyResult:
        if not votes:
            raise InvariantViolation("Cannot tally zero votes")

        scores: Dict[str, int] = OrderedDict()
        for vote in votes:
            scores[vote.idea_id] = scores.get(vote.idea_id, 0) + vote.weight

        idea_id, score = pick_winner(scores, idea_order)
        return TallyResult(
            idea_id=idea_id,
            score=score,
            scores=dict(scores),
            vote_count=len(votes),
            total_weight=sum(vote.weight for vote in votes),
        )

    def live_scores(self, cell: Cell, votes: List[Vote]) -> Dict[str, int]:
        """Scores for display: every idea on the ballot, zero if unvoted."""
        scores = {idea_id: 0 for idea_id in cell.idea_ids}
        for vote in votes:
            scores[vote.idea_id] = scores.get(vote.idea_id, 0) + vote.weight
        return scores

    def settle_cell(self, store, cell: Cell, now: Optional[float] = None) -> Cell:
        """Tally a full cell and record its winner.

        The completed cell replaces the voting one in a single store write, so
        a reader never sees a completed cell without a winner.
        """
        votes = store.votes_for_cell(cell.cell_id)
        try:
            result = self.tally(votes, cell.idea_ids)
        except InvariantViolation as exc:
            log_event(
                LogEntry(
                    tier=cell.tier,
                    event_type=EventType.INVARIANT_VIOLATION,
                    cell_id=cell.cell_id,
                    payload={"votes": len(votes), "ideas": cell.idea_ids},
                    message=f"Tally failed for {cell.cell_id}: {exc}",
                    level=LogLevel.ERROR,
                )
            )
            raise

        cell = cell.model_copy(
            update={
                "winner_idea_id": result.idea_id,
                "winner_score": result.score,
                "completed_at": now,
                "status": CellStatus.COMPLETED,
            }
        )
        store.save_cell(cell)

        idea = store.get_idea(result.idea_id)
        if idea is not None:
            idea.status = IdeaStatus.WINNER
            idea.tier = cell.tier
            store.save_idea(idea)

        log_event(
            LogEntry(
                tier=cell.tier,
                event_type=EventType.CELL_WINNER,
                cell_id=cell.cell_id,
                payload={
                    "winner": result.idea_id,
                    "score": result.score,
                    "scores": result.scores,
                    "batch": cell.batch,
                },
                message=f"{cell.cell_id} winner: {result.idea_id} ({result.score} pts)",
                level=LogLevel.DEBUG,
            )
        )
        return cell
