"""Controller for driving a deliberation engine with a synthetic population."""

import random
from typing import Dict, List, Optional

from automoton import plan_cell_votes
from chant import ChantEngine
from models import RunConfig, TierOutcome
from primer import Primer
from simlog import EventType, LogEntry, LogLevel, PhaseType, log_event, logger
from utils import summarize_weights

# Guard against a planning bug looping forever; 14 tiers cover 8 billion people.
MAX_TIERS_PER_ROUND = 64


class Controller:
    """Main controller for orchestrating one simulated deliberation."""

    def __init__(
        self,
        engine: ChantEngine,
        run_config: RunConfig,
        dropout: float = 0.0,
        challenge_rounds: int = 0,
        primer: Optional[Primer] = None,
        snapshots: bool = False,
    ):
        self.engine = engine
        self.run_config = run_config
        self.dropout = dropout
        self.challenge_rounds = challenge_rounds
        self.primer = primer or Primer()
        self.snapshots = snapshots
        self.rng = random.Random(run_config.seed)

        self.idea_quality: Dict[str, float] = dict(run_config.idea_quality)
        self.outcomes: List[TierOutcome] = []
        self.rounds: List[dict] = []
        self.votes_cast = 0
        self.auto_votes = 0

    def setup(self) -> None:
        """Register the population and its ideas with the engine."""
        for participant in self.run_config.participants:
            self.engine.add_participant(participant)
        for idea in self.run_config.ideas:
            self.engine.add_idea(idea)
        logger.info(
            f"Registered {len(self.run_config.participants)} participants and {len(self.run_config.ideas)} ideas"
        )

    def run(self) -> dict:
        """Run the deliberation to its final champion and return a summary."""
        self.setup()
        self.engine.start_voting()
        outcome = self.run_to_consensus()

        for challenge_round in range(1, self.challenge_rounds + 1):
            if self.engine.phase != PhaseType.ACCUMULATING:
                break
            launch = self.launch_challenge(challenge_round)
            if launch.resolved:
                break
            outcome = self.run_to_consensus()

        if self.engine.phase == PhaseType.ACCUMULATING:
            self.engine.close_accumulation()

        return self.summarize(outcome)

    def run_to_consensus(self) -> TierOutcome:
        """Vote tier after tier until one idea remains."""
        for _ in range(MAX_TIERS_PER_ROUND):
            outcome = self.run_tier()
            self.outcomes.append(outcome)
            if outcome.is_final:
                self.rounds.append(
                    {
                        "challenge_round": outcome.challenge_round,
                        "winner": outcome.winner.idea_id,
                        "tiers": outcome.tier,
                    }
                )
                return outcome
        raise RuntimeError(f"No consensus after {MAX_TIERS_PER_ROUND} tiers")

    def run_tier(self) -> TierOutcome:
        """Collect every ballot for the current tier, then complete it."""
        tier = self.engine.current_tier
        cells = [c for c in self.engine.store.list_cells(tier) if not c.is_completed]

        for cell in cells:
            ideas = self.engine.cell_ideas(cell.cell_id)
            ballots = plan_cell_votes(
                cell,
                ideas,
                self.idea_quality,
                self.run_config.profiles,
                self.dropout,
                self.rng,
            )
            for voter_id, idea_id in ballots.items():
                self.engine.cast_vote(cell.cell_id, voter_id, idea_id)
                self.votes_cast += 1

        # No-shows time out; their votes are filled in at random
        for result in self.engine.auto_complete_tier(tier):
            self.auto_votes += result.votes_added

        if self.snapshots:
            self.engine.save_snapshot()

        outcome = self.engine.complete_tier(tier)
        if outcome.is_final:
            logger.info(
                f"Tier {tier}: consensus on {outcome.winner.idea_id} ({outcome.winner_score} pts)"
            )
        else:
            logger.info(
                f"Tier {tier}: {outcome.advancing_count} ideas advance to tier {outcome.next_tier}"
                + (f" with {outcome.delegate_count} delegates" if outcome.delegate_count else "")
            )
        return outcome

    def launch_challenge(self, challenge_round: int):
        status = self.engine.accumulation_status()
        authors = [p.participant_id for p in self.engine.store.list_participants()]
        challengers, quality = self.primer.generate_challengers(
            self.run_config.seed, challenge_round, status.threshold, authors
        )
        self.idea_quality.update(quality)
        for idea in challengers:
            self.engine.submit_challenger(idea)
        launch = self.engine.trigger_challenge()
        logger.info(
            f"Challenge round {launch.challenge_round}: {launch.new_ideas} challengers, {launch.recycled_ideas} recycled"
        )
        return launch

    def summarize(self, outcome: TierOutcome) -> dict:
        best_id = max(self.idea_quality, key=self.idea_quality.get)
        winner_id = outcome.winner.idea_id
        delegate_weights = [o.represented_weight for o in self.outcomes if o.represented_weight]
        summary = {
            "winner_id": winner_id,
            "winner_score": outcome.winner_score,
            "winner_quality": self.idea_quality.get(winner_id),
            "best_idea_id": best_id,
            "best_idea_won": winner_id == best_id,
            "tiers": [o.model_dump(mode="json", exclude={"winner"}) for o in self.outcomes],
            "rounds": self.rounds,
            "challenge_rounds": self.engine.challenge_round,
            "participants": len(self.run_config.participants),
            "ideas": len(self.idea_quality),
            "votes_cast": self.votes_cast,
            "auto_votes": self.auto_votes,
            "represented_weight": summarize_weights(delegate_weights),
            "final_phase": self.engine.phase.value,
        }
        log_event(
            LogEntry(
                tier=outcome.tier,
                phase=self.engine.phase,
                event_type=EventType.SCENARIO_COMPLETE,
                payload=summary,
                message=f"Deliberation finished: {winner_id} won (best idea {'won' if summary['best_idea_won'] else 'lost'})",
                level=LogLevel.INFO,
            )
        )
        return summary
