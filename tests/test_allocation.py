"""Tests for roster and idea allocation across a tier's cells."""

import pytest

from allocation import (
    AllocationEngine,
    IDEAS_PER_BATCH,
    balanced_slices,
    choose_mode,
)
from errors import InvariantViolation
from models import AllocationMode, Idea, IdeaStatus, Participant
from store import InMemoryStore


def roster(count):
    return [Participant(participant_id=f"p-{i}") for i in range(1, count + 1)]


def idea_pool(store, count):
    ideas = []
    for i in range(1, count + 1):
        idea = Idea(idea_id=f"idea-{i}", author_id=f"p-{i}", sequence=i)
        store.add_idea(idea)
        ideas.append(idea)
    return ideas


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def allocate(store, clock):
    engine = AllocationEngine(store, clock)

    def _allocate(members, ideas, tier=1):
        return engine.allocate(store.load_state(), tier, roster(members), idea_pool(store, ideas))

    return _allocate


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------

class TestBalancedSlices:
    """Tests for balanced_slices."""

    def test_first_parts_take_the_remainder(self):
        assert balanced_slices(list(range(1, 8)), 3) == [[1, 2, 3], [4, 5], [6, 7]]

    def test_even_split(self):
        assert balanced_slices("abcdef", 2) == [["a", "b", "c"], ["d", "e", "f"]]

    def test_rejects_zero_parts(self):
        with pytest.raises(ValueError):
            balanced_slices([1, 2], 0)


class TestChooseMode:
    """Tests for choose_mode."""

    def test_small_pool_is_a_showdown(self):
        assert choose_mode(IDEAS_PER_BATCH, 10) == AllocationMode.SHOWDOWN
        assert choose_mode(1, 1) == AllocationMode.SHOWDOWN

    def test_two_ideas_per_cell_is_unique(self):
        assert choose_mode(10, 5) == AllocationMode.UNIQUE
        assert choose_mode(16, 3) == AllocationMode.UNIQUE

    def test_between_is_batched(self):
        assert choose_mode(9, 5) == AllocationMode.BATCHED
        assert choose_mode(6, 5) == AllocationMode.BATCHED


# ---------------------------------------------------------------------------
# AllocationEngine.allocate
# ---------------------------------------------------------------------------

class TestAllocate:
    """Tests for AllocationEngine.allocate."""

    def test_roster_sliced_in_order(self, allocate):
        plan = allocate(16, 16)
        assert [len(c.participant_ids) for c in plan.cells] == [5, 5, 6]
        assert plan.cells[0].participant_ids == ["p-1", "p-2", "p-3", "p-4", "p-5"]
        assert plan.cells[2].participant_ids[-1] == "p-16"
        assert all(c.votes_needed == len(c.participant_ids) for c in plan.cells)

    def test_unique_tier_gives_disjoint_balanced_slices(self, allocate):
        """16 ideas over 3 cells: 6, 5, 5 with no idea shared."""
        plan = allocate(16, 16)
        assert plan.mode == AllocationMode.UNIQUE
        assert [len(c.idea_ids) for c in plan.cells] == [6, 5, 5]
        assert plan.cells[0].idea_ids == [f"idea-{i}" for i in range(1, 7)]
        assert [c.batch for c in plan.cells] == [1, 2, 3]
        seen = [idea for c in plan.cells for idea in c.idea_ids]
        assert len(seen) == len(set(seen)) == 16

    def test_batched_tier_shares_idea_sets(self, allocate):
        """7 ideas over 5 cells: two batches of 4 and 3 ideas on 3 and 2 cells."""
        plan = allocate(25, 7, tier=2)
        assert plan.mode == AllocationMode.BATCHED
        assert [c.batch for c in plan.cells] == [1, 1, 1, 2, 2]
        assert plan.batches == {
            1: ["idea-1", "idea-2", "idea-3", "idea-4"],
            2: ["idea-5", "idea-6", "idea-7"],
        }
        for cell in plan.cells:
            assert cell.idea_ids == plan.batches[cell.batch]

    def test_showdown_gives_every_cell_the_full_set(self, allocate):
        plan = allocate(25, 5, tier=3)
        assert plan.mode == AllocationMode.SHOWDOWN
        assert len(plan.cells) == 5
        assert all(c.idea_ids == [f"idea-{i}" for i in range(1, 6)] for c in plan.cells)
        assert plan.batches == {1: [f"idea-{i}" for i in range(1, 6)]}

    def test_union_of_cell_ideas_is_the_pool(self, allocate):
        for members, ideas in [(16, 16), (25, 7), (60, 12), (33, 33), (9, 3)]:
            plan = allocate(members, ideas)
            union = {idea for cell in plan.cells for idea in cell.idea_ids}
            assert len(union) == ideas

    def test_ideas_move_into_voting(self, allocate, store):
        plan = allocate(10, 4, tier=2)
        for idea_id in plan.idea_ids:
            idea = store.get_idea(idea_id)
            assert idea.status == IdeaStatus.IN_VOTING
            assert idea.tier == 2

    def test_cells_and_roster_are_stored(self, allocate, store):
        plan = allocate(8, 8)
        assert store.list_cells(1) == plan.cells
        assert [m.participant_id for m in store.get_roster(1)] == [f"p-{i}" for i in range(1, 9)]

    def test_empty_pool_is_an_invariant_violation(self, allocate):
        with pytest.raises(InvariantViolation):
            allocate(10, 0)

    def test_roster_too_small_is_an_invariant_violation(self, allocate):
        with pytest.raises(InvariantViolation):
            allocate(2, 3)

    def test_invalid_cell_leaves_nothing_behind(self, store, clock):
        members = roster(8) + [Participant(participant_id="p-8"), Participant(participant_id="p-9")]
        ideas = idea_pool(store, 10)
        with pytest.raises(InvariantViolation):
            AllocationEngine(store, clock).allocate(store.load_state(), 1, members, ideas)
        assert store.list_cells() == []
        assert store.get_roster(1) == []
        assert store.load_state().cell_counter == 0
        assert all(store.get_idea(idea.idea_id).status == IdeaStatus.SUBMITTED for idea in ideas)
