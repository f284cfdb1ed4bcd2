"""Tier completion: batch winners, consensus detection and next-tier formation."""

from collections import OrderedDict
from typing import Callable, Dict, List, Optional

from allocation import AllocationEngine, AllocationPlan
from cellplanner import MIN_CELL_SIZE
from delegation import DelegationEngine
from errors import IncompleteTierError, InvariantViolation, NotFoundError
from models import (
    BatchWinner,
    Cell,
    DeliberationState,
    EngineConfig,
    Idea,
    IdeaStatus,
    Participant,
    TierOutcome,
)
from simlog import EventType, LogEntry, LogLevel, PhaseType, log_event
from tally import TallyCalculator


class TierCoordinator:
    """Decides, once every cell of a tier is done, between consensus and a next tier."""

    def __init__(
        self,
        store,
        config: EngineConfig,
        tally: TallyCalculator,
        allocation: AllocationEngine,
        delegation: DelegationEngine,
        clock: Callable[[], float],
    ):
        self.store = store
        self.config = config
        self.tally = tally
        self.allocation = allocation
        self.delegation = delegation
        self.clock = clock
        self.challenge = None  # set by ChantEngine when the challenge extension is wired

    def form_tier(
        self,
        state: DeliberationState,
        tier: int,
        roster: List[Participant],
        ideas: List[Idea],
    ) -> AllocationPlan:
        plan = self.allocation.allocate(state, tier, roster, ideas)
        state.current_tier = tier
        return plan

    def is_tier_complete(self, tier: int) -> bool:
        cells = self.store.list_cells(tier)
        return bool(cells) and all(cell.is_completed for cell in cells)

    def batch_winners(self, tier: int, cells: Optional[List[Cell]] = None) -> List[BatchWinner]:
        """One winner per batch, tallied over every vote cast in the batch's cells."""
        if cells is None:
            cells = self.store.list_cells(tier)

        batches: Dict[int, List[Cell]] = OrderedDict()
        for cell in cells:
            batches.setdefault(cell.batch, []).append(cell)

        winners = []
        for batch, batch_cells in batches.items():
            votes = [
                vote
                for cell in batch_cells
                for vote in self.store.votes_for_cell(cell.cell_id)
            ]
            result = self.tally.tally(votes, batch_cells[0].idea_ids)
            member_ids = [pid for cell in batch_cells for pid in cell.participant_ids]
            winners.append(
                BatchWinner(
                    batch=batch,
                    idea_id=result.idea_id,
                    score=result.score,
                    cell_ids=[cell.cell_id for cell in batch_cells],
                    member_count=len(member_ids),
                    member_weight=sum(self._member_weight(tier, pid) for pid in member_ids),
                )
            )
        return winners

    def complete_tier(self, tier: int) -> TierOutcome:
        with self.store.transaction():
            state = self.store.load_state()
            recorded = state.completed_tiers.get(tier)
            if recorded is not None:
                return recorded

            cells = self.store.list_cells(tier)
            if tier != state.current_tier or not cells:
                raise NotFoundError("tier", tier)

            done = [cell for cell in cells if cell.is_completed]
            if len(done) < len(cells):
                log_event(
                    LogEntry(
                        tier=tier,
                        phase=state.phase,
                        event_type=EventType.TIER_INCOMPLETE,
                        payload={"completed": len(done), "total": len(cells)},
                        message=f"Tier {tier} not complete: {len(done)}/{len(cells)} cells",
                        level=LogLevel.WARNING,
                    )
                )
                raise IncompleteTierError(tier, len(done), len(cells))

            tier_ideas = self._tier_idea_ids(cells)
            winners = self.batch_winners(tier, cells)
            for winner in winners:
                log_event(
                    LogEntry(
                        tier=tier,
                        phase=state.phase,
                        event_type=EventType.BATCH_WINNER,
                        payload=winner.model_dump(),
                        message=f"Batch {winner.batch} of tier {tier}: {winner.idea_id} ({winner.score} pts)",
                        level=LogLevel.DEBUG,
                    )
                )

            if len(winners) == 1:
                outcome = self._declare_consensus(
                    state, tier, tier_ideas, winners[0].idea_id, winners[0].score
                )
            elif self.config.variant == "batch" and tier > 1:
                votes = [
                    vote for cell in cells for vote in self.store.votes_for_cell(cell.cell_id)
                ]
                result = self.tally.tally(votes, tier_ideas)
                outcome = self._declare_consensus(
                    state, tier, tier_ideas, result.idea_id, result.score
                )
            else:
                outcome = self._advance(state, tier, tier_ideas, winners)

            state.completed_tiers[tier] = outcome
            self.store.save_state(state)

            log_event(
                LogEntry(
                    tier=tier,
                    phase=state.phase,
                    event_type=EventType.TIER_COMPLETE,
                    payload={
                        "winner": outcome.winner.idea_id if outcome.winner else None,
                        "next_tier": outcome.next_tier,
                        "advancing": outcome.advancing_count,
                        "delegates": outcome.delegate_count,
                        "challenge_round": outcome.challenge_round,
                    },
                    message=f"Tier {tier} complete: {len(winners)} batch winners from {len(tier_ideas)} ideas",
                )
            )
            return outcome

    def _advance(
        self,
        state: DeliberationState,
        tier: int,
        tier_ideas: List[str],
        winners: List[BatchWinner],
    ) -> TierOutcome:
        winning_ids = list(OrderedDict.fromkeys(winner.idea_id for winner in winners))
        if len(winning_ids) >= len(tier_ideas):
            message = (
                f"Tier {tier} did not shrink the pool: {len(winning_ids)} winners "
                f"from {len(tier_ideas)} ideas"
            )
            log_event(
                LogEntry(
                    tier=tier,
                    event_type=EventType.INVARIANT_VIOLATION,
                    payload={"winners": winning_ids, "ideas": tier_ideas},
                    message=message,
                    level=LogLevel.ERROR,
                )
            )
            raise InvariantViolation(message)

        delegate_count = None
        represented = None
        roster: List[Participant] = self.store.get_roster(tier)
        if self.config.variant == "delegation":
            delegates = self.delegation.build_delegates(tier, winners)
            if len(delegates) >= MIN_CELL_SIZE:
                roster = delegates
                delegate_count = len(delegates)
                represented = sum(delegate.weight for delegate in delegates)
            else:
                log_event(
                    LogEntry(
                        tier=tier,
                        phase=state.phase,
                        event_type=EventType.DELEGATION_FALLBACK,
                        payload={
                            "delegates": len(delegates),
                            "voters": len(roster),
                            "ideas": len(winning_ids),
                        },
                        message=f"Only {len(delegates)} delegates after tier {tier}; its {len(roster)} voters take the next tier",
                        level=LogLevel.WARNING,
                    )
                )

        eliminated = self._eliminate(tier, tier_ideas, keep=set(winning_ids))
        advancing = []
        for idea_id in winning_ids:
            idea = self.store.get_idea(idea_id)
            idea.status = IdeaStatus.ADVANCING
            self.store.save_idea(idea)
            advancing.append(idea)

        next_tier = tier + 1
        plan = self.form_tier(state, next_tier, roster, advancing)
        log_event(
            LogEntry(
                tier=tier,
                phase=state.phase,
                event_type=EventType.IDEAS_ELIMINATED,
                payload={"eliminated": eliminated, "advancing": winning_ids},
                message=f"Tier {tier}: {len(winning_ids)} ideas advance, {len(eliminated)} eliminated",
            )
        )
        return TierOutcome(
            tier=tier,
            challenge_round=state.challenge_round,
            next_tier=next_tier,
            advancing_count=len(advancing),
            delegate_count=delegate_count,
            represented_weight=represented,
            mode=plan.mode,
        )

    def _declare_consensus(
        self,
        state: DeliberationState,
        tier: int,
        tier_ideas: List[str],
        winner_id: str,
        score: int,
    ) -> TierOutcome:
        self._eliminate(tier, tier_ideas, keep={winner_id})

        previous_champion = state.champion_id
        if previous_champion and previous_champion != winner_id:
            dethroned = self.store.get_idea(previous_champion)
            if dethroned is not None:
                dethroned.is_champion = False
                self.store.save_idea(dethroned)

        winner = self.store.get_idea(winner_id)
        winner.status = IdeaStatus.WINNER
        winner.tier = tier
        winner.is_champion = True
        self.store.save_idea(winner)

        state.champion_id = winner_id
        state.round_history.append(
            {
                "challenge_round": state.challenge_round,
                "champion_id": winner_id,
                "previous_champion": previous_champion,
                "tiers": tier,
                "score": score,
            }
        )

        log_event(
            LogEntry(
                tier=tier,
                phase=PhaseType.VOTING,
                event_type=EventType.CONSENSUS_REACHED,
                participant_id=winner.author_id,
                payload={
                    "winner": winner_id,
                    "score": score,
                    "challenge_round": state.challenge_round,
                    "previous_champion": previous_champion,
                },
                message=f"Consensus reached at tier {tier}: {winner_id} ({score} pts)",
            )
        )

        outcome = TierOutcome(
            tier=tier,
            challenge_round=state.challenge_round,
            winner=winner.model_copy(),
            winner_score=score,
        )

        if self.config.challenge_enabled and self.challenge is not None:
            self.challenge.enter_accumulation(state, winner, tier)
        else:
            self._set_phase(state, PhaseType.COMPLETED, tier)
        return outcome

    def _eliminate(self, tier: int, tier_ideas: List[str], keep: set) -> List[str]:
        eliminated = []
        for idea_id in tier_ideas:
            if idea_id in keep:
                continue
            idea = self.store.get_idea(idea_id)
            if idea is None:
                continue
            idea.status = IdeaStatus.ELIMINATED
            idea.tier = tier
            self.store.save_idea(idea)
            eliminated.append(idea_id)
        return eliminated

    def _set_phase(self, state: DeliberationState, phase: PhaseType, tier: int):
        old = state.phase
        state.phase = phase
        log_event(
            LogEntry(
                tier=tier,
                phase=phase,
                event_type=EventType.PHASE_TRANSITION,
                payload={"from": old.value, "to": phase.value},
                message=f"Phase {old.value} -> {phase.value}",
            )
        )

    def _tier_idea_ids(self, cells: List[Cell]) -> List[str]:
        seen = OrderedDict()
        for cell in cells:
            for idea_id in cell.idea_ids:
                seen.setdefault(idea_id, None)
        return list(seen)

    def _member_weight(self, tier: int, participant_id: str) -> int:
        member = self.store.get_roster_member(tier, participant_id)
        return member.weight if member is not None else 1
