"""Accumulation window and challenge rounds against a standing champion.

After consensus the champion defends its title: challengers accumulate for a
bounded window, then a challenge round re-runs the tiered vote on the champion
plus the challengers (topped up with recycled runners-up when there are too
few). The round ends like any other deliberation, with a single winner that
becomes or remains the champion.
"""

import math
from typing import Callable, List

from cellplanner import MIN_CELL_SIZE
from errors import PhaseError
from models import (
    AccumulationStatus,
    ChallengeLaunch,
    ChallengerReceipt,
    DeliberationState,
    EngineConfig,
    Idea,
    IdeaStatus,
)
from simlog import EventType, LogEntry, LogLevel, PhaseType, log_event

CHALLENGE_MIN_THRESHOLD = 5
CHALLENGE_THRESHOLD_RATIO = 0.5
RECYCLE_MIN_TIER = 2


class ChallengeEngine:
    def __init__(self, store, config: EngineConfig, coordinator, clock: Callable[[], float]):
        self.store = store
        self.config = config
        self.coordinator = coordinator
        self.clock = clock

    def threshold(self, state: DeliberationState) -> int:
        """Challengers needed before a challenge round is worth running."""
        run = state.champion_run or {}
        idea_count = run.get("idea_count", 0)
        return max(CHALLENGE_MIN_THRESHOLD, math.ceil(CHALLENGE_THRESHOLD_RATIO * idea_count))

    def enter_accumulation(self, state: DeliberationState, champion: Idea, tier: int) -> None:
        """Move a freshly decided deliberation into the accumulation window.

        Called by the tier coordinator inside its transaction; the caller saves
        the state.
        """
        champion.status = IdeaStatus.DEFENDING
        champion.is_champion = True
        self.store.save_idea(champion)

        now = self.clock()
        round_ideas = {
            idea_id for cell in self.store.list_cells() for idea_id in cell.idea_ids
        }
        state.champion_id = champion.idea_id
        state.champion_run = {
            "idea_count": len(round_ideas),
            "tier_reached": tier,
            "completed_at": now,
        }
        state.recyclable_idea_ids = [
            idea.idea_id
            for idea in self.store.list_ideas()
            if idea.status == IdeaStatus.ELIMINATED
            and idea.tier >= RECYCLE_MIN_TIER
            and idea.idea_id != champion.idea_id
        ]
        state.accumulated_idea_ids = []
        state.accumulation_started_at = now
        state.accumulation_deadline = now + self.config.accumulation_window_seconds

        old = state.phase
        state.phase = PhaseType.ACCUMULATING
        log_event(
            LogEntry(
                tier=tier,
                phase=PhaseType.ACCUMULATING,
                event_type=EventType.ACCUMULATION_START,
                payload={
                    "champion_id": champion.idea_id,
                    "champion_run": state.champion_run,
                    "recyclable": state.recyclable_idea_ids,
                    "deadline": state.accumulation_deadline,
                    "threshold": self.threshold(state),
                },
                message=f"Champion {champion.idea_id} defending; accepting challengers for {self.config.accumulation_window_seconds:.0f}s",
            )
        )
        log_event(
            LogEntry(
                tier=tier,
                phase=PhaseType.ACCUMULATING,
                event_type=EventType.PHASE_TRANSITION,
                payload={"from": old.value, "to": PhaseType.ACCUMULATING.value},
                message=f"Phase {old.value} -> {PhaseType.ACCUMULATING.value}",
            )
        )

    def check_open(self, state: DeliberationState) -> None:
        if state.phase != PhaseType.ACCUMULATING:
            raise PhaseError(
                f"Not accepting challengers (phase: {state.phase.value})",
                phase=state.phase.value,
            )
        if state.accumulation_deadline is not None and self.clock() > state.accumulation_deadline:
            raise PhaseError("Accumulation window has closed", phase=state.phase.value)

    def submit_challenger(self, state: DeliberationState, idea: Idea) -> ChallengerReceipt:
        """Record a new challenger idea built by the engine facade."""
        self.check_open(state)
        idea.challenge_round = state.challenge_round + 1
        idea.status = IdeaStatus.SUBMITTED
        self.store.add_idea(idea)
        state.accumulated_idea_ids.append(idea.idea_id)

        threshold = self.threshold(state)
        receipt = ChallengerReceipt(
            idea=idea,
            accumulated_count=len(state.accumulated_idea_ids),
            threshold=threshold,
            can_challenge=len(state.accumulated_idea_ids) >= threshold,
        )
        log_event(
            LogEntry(
                phase=PhaseType.ACCUMULATING,
                event_type=EventType.CHALLENGER_SUBMITTED,
                participant_id=idea.author_id,
                payload={
                    "idea_id": idea.idea_id,
                    "accumulated": receipt.accumulated_count,
                    "threshold": threshold,
                },
                message=f"Challenger {idea.idea_id} submitted ({receipt.accumulated_count}/{threshold})",
            )
        )
        return receipt

    def status(self, state: DeliberationState) -> AccumulationStatus:
        if state.phase != PhaseType.ACCUMULATING:
            return AccumulationStatus(active=False, champion_id=state.champion_id)
        threshold = self.threshold(state)
        remaining = None
        if state.accumulation_deadline is not None:
            remaining = max(0.0, state.accumulation_deadline - self.clock())
        return AccumulationStatus(
            active=True,
            champion_id=state.champion_id,
            accumulated_count=len(state.accumulated_idea_ids),
            threshold=threshold,
            can_challenge=len(state.accumulated_idea_ids) >= threshold,
            recyclable_count=len(state.recyclable_idea_ids),
            time_remaining=remaining,
        )

    def trigger_challenge(self, state: DeliberationState) -> ChallengeLaunch:
        """Start the next challenge round, or settle the title if nobody challenged.

        The caller holds the deliberation transaction and saves the state.
        """
        if state.phase != PhaseType.ACCUMULATING:
            raise PhaseError(
                f"No champion to challenge (phase: {state.phase.value})",
                phase=state.phase.value,
            )

        champion = self.store.get_idea(state.champion_id)
        challengers = [self.store.get_idea(idea_id) for idea_id in state.accumulated_idea_ids]
        recycled: List[Idea] = []
        if self.config.recycle_runners_up:
            shortfall = self.threshold(state) - len(challengers)
            for idea_id in state.recyclable_idea_ids[:max(shortfall, 0)]:
                idea = self.store.get_idea(idea_id)
                if idea is not None:
                    recycled.append(idea)

        pool = [champion] + challengers + recycled
        if len(pool) == 1:
            self._crown(state, champion)
            launch = ChallengeLaunch(
                challenge_round=state.challenge_round,
                total_ideas=1,
                new_ideas=0,
                recycled_ideas=0,
                champion_id=champion.idea_id,
                resolved=True,
            )
            log_event(
                LogEntry(
                    phase=PhaseType.COMPLETED,
                    event_type=EventType.CHALLENGE_TRIGGERED,
                    payload=launch.model_dump(),
                    message=f"No challengers; {champion.idea_id} keeps the title",
                )
            )
            return launch

        roster = self.store.list_participants()
        if len(roster) < MIN_CELL_SIZE:
            raise PhaseError(
                f"Need at least {MIN_CELL_SIZE} participants for a challenge round, have {len(roster)}",
                phase=state.phase.value,
            )

        self.store.archive_round(state.challenge_round)
        state.challenge_round += 1
        state.completed_tiers = {}

        for idea in pool:
            idea.status = IdeaStatus.SUBMITTED
            idea.tier = 0
            idea.challenge_round = state.challenge_round
            self.store.save_idea(idea)

        used = {idea.idea_id for idea in recycled}
        state.recyclable_idea_ids = [i for i in state.recyclable_idea_ids if i not in used]
        state.accumulated_idea_ids = []
        state.accumulation_started_at = None
        state.accumulation_deadline = None
        state.phase = PhaseType.VOTING

        self.coordinator.form_tier(state, 1, roster, pool)

        launch = ChallengeLaunch(
            challenge_round=state.challenge_round,
            total_ideas=len(pool),
            new_ideas=len(challengers),
            recycled_ideas=len(recycled),
            champion_id=champion.idea_id,
        )
        log_event(
            LogEntry(
                tier=1,
                phase=PhaseType.VOTING,
                event_type=EventType.CHALLENGE_TRIGGERED,
                payload=launch.model_dump(),
                message=f"Challenge round {state.challenge_round}: {champion.idea_id} vs {len(challengers)} challengers + {len(recycled)} recycled",
            )
        )
        return launch

    def close(self, state: DeliberationState) -> Idea:
        """End the accumulation window for good; the champion is final."""
        if state.phase != PhaseType.ACCUMULATING:
            raise PhaseError(
                f"Nothing to close (phase: {state.phase.value})", phase=state.phase.value
            )
        champion = self.store.get_idea(state.champion_id)
        self._crown(state, champion)
        log_event(
            LogEntry(
                phase=PhaseType.COMPLETED,
                event_type=EventType.ACCUMULATION_CLOSED,
                payload={
                    "champion_id": champion.idea_id,
                    "unused_challengers": len(state.accumulated_idea_ids),
                },
                message=f"Accumulation closed; {champion.idea_id} is final",
            )
        )
        return champion

    def _crown(self, state: DeliberationState, champion: Idea):
        champion.status = IdeaStatus.WINNER
        champion.is_champion = True
        self.store.save_idea(champion)
        state.accumulation_deadline = None
        state.phase = PhaseType.COMPLETED
        log_event(
            LogEntry(
                phase=PhaseType.COMPLETED,
                event_type=EventType.PHASE_TRANSITION,
                payload={"from": PhaseType.ACCUMULATING.value, "to": PhaseType.COMPLETED.value},
                message=f"Phase {PhaseType.ACCUMULATING.value} -> {PhaseType.COMPLETED.value}",
                level=LogLevel.INFO,
            )
        )
