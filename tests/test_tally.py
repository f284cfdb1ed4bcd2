"""Tests for weighted tallying and the tie-break rule."""

import pytest

from errors import InvariantViolation
from models import Vote
from tally import TallyCalculator, pick_winner


def make_votes(choices):
    """Votes from (idea_id, weight) pairs, one voter each."""
    return [
        Vote(vote_id=f"v{i}", cell_id="cell-1", voter_id=f"p-{i}", idea_id=idea, weight=weight)
        for i, (idea, weight) in enumerate(choices, start=1)
    ]


# ---------------------------------------------------------------------------
# pick_winner
# ---------------------------------------------------------------------------

class TestPickWinner:
    """Tests for pick_winner."""

    def test_highest_score_wins(self):
        assert pick_winner({"a": 1, "b": 3, "c": 2}, ["a", "b", "c"]) == ("b", 3)

    def test_tie_goes_to_earliest_in_order(self):
        """Tied ideas resolve to the one listed first, not the first voted."""
        assert pick_winner({"c": 2, "a": 2}, ["a", "b", "c"]) == ("a", 2)
        assert pick_winner({"a": 2, "c": 2}, ["c", "b", "a"]) == ("c", 2)

    def test_unlisted_ideas_rank_last(self):
        """Ideas outside the ballot order lose ties to listed ideas."""
        assert pick_winner({"x": 2, "b": 2}, ["a", "b"]) == ("b", 2)
        assert pick_winner({"y": 1, "x": 1}, ["a"]) == ("y", 1)

    def test_no_candidates_is_an_invariant_violation(self):
        with pytest.raises(InvariantViolation):
            pick_winner({}, ["a"])


# ---------------------------------------------------------------------------
# TallyCalculator.tally
# ---------------------------------------------------------------------------

class TestTally:
    """Tests for TallyCalculator.tally."""

    def test_unit_weights_majority_wins(self):
        """3 votes for X and 2 for Y: X wins with 3."""
        votes = make_votes([("X", 1), ("X", 1), ("X", 1), ("Y", 1), ("Y", 1)])
        result = TallyCalculator().tally(votes, ["X", "Y"])
        assert result.idea_id == "X"
        assert result.score == 3
        assert result.scores == {"X": 3, "Y": 2}
        assert result.vote_count == 5
        assert result.total_weight == 5

    def test_heavy_voter_flips_the_result(self):
        """One Y voter of weight 3 outweighs three unit votes for X."""
        votes = make_votes([("X", 1), ("X", 1), ("X", 1), ("Y", 3), ("Y", 1)])
        result = TallyCalculator().tally(votes, ["X", "Y"])
        assert result.idea_id == "Y"
        assert result.score == 4
        assert result.scores["X"] == 3

    def test_weighted_scores_five_to_three(self):
        votes = make_votes([("X", 1), ("X", 1), ("X", 1), ("Y", 3), ("Y", 2)])
        result = TallyCalculator().tally(votes, ["X", "Y"])
        assert (result.idea_id, result.score) == ("Y", 5)

    def test_tied_tally_uses_ballot_order(self):
        votes = make_votes([("Y", 1), ("X", 1)])
        assert TallyCalculator().tally(votes, ["X", "Y"]).idea_id == "X"

    def test_zero_votes_is_an_invariant_violation(self):
        with pytest.raises(InvariantViolation):
            TallyCalculator().tally([], ["X"])
