"""Tests for tier completion, advancement and consensus."""

import pytest

from conftest import run_to_consensus, vote_tier
from errors import IncompleteTierError, NotFoundError
from models import AllocationMode, IdeaStatus
from simlog import PhaseType


def tier_idea_ids(engine, tier):
    return {idea_id for cell in engine.store.list_cells(tier) for idea_id in cell.idea_ids}


# ---------------------------------------------------------------------------
# single-tier deliberations
# ---------------------------------------------------------------------------

class TestSingleTier:
    """Deliberations small enough to finish in tier 1."""

    def test_showdown_reaches_consensus_directly(self, make_engine):
        """5 people and 3 ideas: one cell, one tier, no tier 2."""
        engine = make_engine(5, 3)
        votes = ["idea-2", "idea-2", "idea-1", "idea-2", "idea-3"]
        vote_tier(engine, lambda cell, i: votes[i])

        outcome = engine.complete_tier()

        assert outcome.is_final
        assert outcome.winner.idea_id == "idea-2"
        assert outcome.winner_score == 3
        assert engine.phase == PhaseType.COMPLETED
        assert engine.current_tier == 1
        assert engine.store.list_cells(2) == []
        statuses = {idea.idea_id: idea.status for idea in engine.store.list_ideas()}
        assert statuses == {
            "idea-1": IdeaStatus.ELIMINATED,
            "idea-2": IdeaStatus.WINNER,
            "idea-3": IdeaStatus.ELIMINATED,
        }

    def test_completion_is_idempotent(self, make_engine):
        engine = make_engine(5, 3)
        engine.auto_complete_tier()
        first = engine.complete_tier(1)
        second = engine.complete_tier(1)
        assert first == second
        assert len(engine.store.load_state().round_history) == 1

    def test_incomplete_tier_is_rejected(self, make_engine):
        engine = make_engine(10, 10)
        engine.auto_complete("cell-1")
        with pytest.raises(IncompleteTierError) as exc_info:
            engine.complete_tier()
        assert (exc_info.value.completed, exc_info.value.total) == (1, 2)
        assert not engine.is_tier_complete()
        assert engine.store.get_idea("idea-1").status == IdeaStatus.IN_VOTING

    def test_unknown_tier(self, make_engine):
        engine = make_engine(5, 3)
        with pytest.raises(NotFoundError):
            engine.complete_tier(4)


# ---------------------------------------------------------------------------
# batch variant
# ---------------------------------------------------------------------------

class TestBatchVariant:
    """Advancement where the same voters carry on to every tier."""

    def test_two_cells_advance_to_a_showdown(self, make_engine):
        engine = make_engine(10, 10)
        vote_tier(engine, lambda cell, i: cell.idea_ids[1])

        outcome = engine.complete_tier()

        assert not outcome.is_final
        assert outcome.next_tier == 2
        assert outcome.advancing_count == 2
        assert outcome.mode == AllocationMode.SHOWDOWN
        assert outcome.delegate_count is None
        assert engine.current_tier == 2

        tier2 = engine.store.list_cells(2)
        assert len(tier2) == 2
        assert all(cell.idea_ids == ["idea-2", "idea-7"] for cell in tier2)
        members = sorted(pid for cell in tier2 for pid in cell.participant_ids)
        assert members == sorted(f"p-{i}" for i in range(1, 11))
        assert engine.store.get_idea("idea-2").status == IdeaStatus.IN_VOTING
        assert engine.store.get_idea("idea-3").status == IdeaStatus.ELIMINATED
        assert engine.store.get_idea("idea-3").tier == 1

    def test_batch_winner_uses_every_vote_in_the_batch(self, make_engine):
        """The batch winner can differ from one cell's local winner."""
        engine = make_engine(10, 10)
        vote_tier(engine, lambda cell, i: cell.idea_ids[1])
        engine.complete_tier()

        first = engine.store.list_cells(2)[0]
        vote_tier(engine, lambda cell, i: "idea-7" if cell.cell_id == first.cell_id and i < 3 else "idea-2")

        assert engine.store.get_cell(first.cell_id).winner_idea_id == "idea-7"
        outcome = engine.complete_tier(2)
        assert outcome.winner.idea_id == "idea-2"
        assert outcome.winner_score == 7

    def test_cross_tally_settles_a_batched_upper_tier(self, make_engine):
        """60 people: 12 tier-1 winners, then three batches settled in one tally."""
        engine = make_engine(60, 60)
        vote_tier(engine, lambda cell, i: cell.idea_ids[0])
        outcome = engine.complete_tier()
        assert outcome.advancing_count == 12
        assert outcome.mode == AllocationMode.BATCHED

        tier2 = engine.store.list_cells(2)
        assert len(tier2) == 12
        assert sorted({cell.batch for cell in tier2}) == [1, 2, 3]
        assert tier2[-1].idea_ids == ["idea-41", "idea-46", "idea-51", "idea-56"]

        def choose(cell, i):
            if cell.batch == 3:
                return cell.idea_ids[0]
            return cell.idea_ids[0] if i < 3 else cell.idea_ids[1]

        vote_tier(engine, choose)
        final = engine.complete_tier(2)

        assert final.is_final
        assert final.winner.idea_id == "idea-41"
        assert final.winner_score == 20
        assert engine.store.list_cells(3) == []

    def test_batched_first_tier(self, make_engine):
        """25 people on 7 ideas: too few ideas for unique slices."""
        engine = make_engine(25, 7)
        cells = engine.store.list_cells(1)
        assert [cell.batch for cell in cells] == [1, 1, 1, 2, 2]
        vote_tier(engine, lambda cell, i: cell.idea_ids[-1])
        outcome = engine.complete_tier()
        assert outcome.advancing_count == 2
        assert tier_idea_ids(engine, 2) == {"idea-4", "idea-7"}


# ---------------------------------------------------------------------------
# properties over both variants
# ---------------------------------------------------------------------------

class TestTierProperties:
    """Whole-deliberation properties for a range of population sizes."""

    @pytest.mark.parametrize("variant", ["batch", "delegation"])
    @pytest.mark.parametrize("size", [3, 7, 16, 33, 60, 126])
    def test_every_tier_shrinks_the_pool(self, make_engine, variant, size):
        engine = make_engine(size, variant=variant)
        outcomes = run_to_consensus(engine)

        for outcome in outcomes[:-1]:
            assert outcome.advancing_count < len(tier_idea_ids(engine, outcome.tier))
            assert outcome.next_tier == outcome.tier + 1
        final = outcomes[-1]
        assert final.is_final
        winners = [idea for idea in engine.store.list_ideas() if idea.status == IdeaStatus.WINNER]
        assert [idea.idea_id for idea in winners] == [final.winner.idea_id]
        assert engine.phase == PhaseType.COMPLETED

    @pytest.mark.parametrize("size", [16, 60, 126])
    def test_every_cell_respects_size_bounds(self, make_engine, size):
        engine = make_engine(size, variant="delegation")
        run_to_consensus(engine)
        for cell in engine.store.list_cells():
            assert 3 <= len(cell.participant_ids) <= 7
            assert cell.votes_needed == len(cell.participant_ids)
            assert len(engine.store.votes_for_cell(cell.cell_id)) == cell.votes_needed

    def test_same_seed_same_result(self, make_engine):
        winners = []
        for _ in range(2):
            engine = make_engine(60, seed=11)
            winners.append(run_to_consensus(engine)[-1].winner.idea_id)
        assert winners[0] == winners[1]

    def test_auto_advance_runs_tiers_on_the_last_vote(self, make_engine):
        engine = make_engine(10, 10, auto_advance=True)
        results = vote_tier(engine, lambda cell, i: cell.idea_ids[0])
        advanced = [r.tier_outcome for r in results if r.tier_outcome is not None]
        assert len(advanced) == 1
        assert advanced[0].next_tier == 2
        assert engine.current_tier == 2

        results = vote_tier(engine, lambda cell, i: "idea-6")
        final = [r.tier_outcome for r in results if r.tier_outcome is not None]
        assert final[0].winner.idea_id == "idea-6"
        assert engine.phase == PhaseType.COMPLETED
