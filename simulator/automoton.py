"""Synthetic voter behaviour: who shows up, and which idea they back."""

import random
from typing import Dict, List, Optional

from models import Cell, Idea
from simlog import logger
from utils import clamp, sigmoid

# Trait default values for consistency
TRAIT_DEFAULTS = {
    "discernment": 0.5,
    "loyalty": 0.3,
    "contrarian": 0.0,
    "noise": 0.3,
    "reliability": 0.9,
}


def extract_traits(profile: Optional[dict]) -> dict:
    """Extract all traits from profile with consistent defaults."""
    profile = profile or {}
    return {trait: profile.get(trait, default) for trait, default in TRAIT_DEFAULTS.items()}


def perceived_scores(
    voter_id: str,
    ideas: List[Idea],
    quality: Dict[str, float],
    traits: dict,
    rng: random.Random,
) -> Dict[str, float]:
    """How good each idea looks to this voter: true quality blurred by noise."""
    scores = {}
    for idea in ideas:
        score = traits["discernment"] * quality.get(idea.idea_id, 0.5)
        score += traits["noise"] * rng.uniform(-0.5, 0.5)
        if idea.author_id == voter_id:
            score += traits["loyalty"]
        scores[idea.idea_id] = score
    return scores


def choose_vote(
    voter_id: str,
    ideas: List[Idea],
    quality: Dict[str, float],
    profile: Optional[dict],
    rng: random.Random,
) -> str:
    """Pick the idea this voter backs from the cell's ballot."""
    if not ideas:
        raise ValueError(f"{voter_id} has an empty ballot")

    traits = extract_traits(profile)
    scores = perceived_scores(voter_id, ideas, quality, traits, rng)

    if rng.random() < traits["contrarian"]:
        choice = min(scores, key=scores.get)
        logger.trace(f"[DECISION] {voter_id} contrarian pick → {choice}")
        return choice

    choice = max(scores, key=scores.get)
    logger.trace(f"[DECISION] {voter_id} best perceived → {choice} ({scores[choice]:.2f})")
    return choice


def shows_up(profile: Optional[dict], dropout: float, rng: random.Random) -> bool:
    """Whether the voter casts a ballot before the cell times out.

    ``dropout`` is the run-wide no-show rate; unreliable archetypes drop out
    more often than reliable ones.
    """
    if dropout <= 0:
        return True
    traits = extract_traits(profile)
    unreliability = sigmoid(1 - traits["reliability"])
    miss_chance = clamp(dropout * unreliability * 2)
    return rng.random() >= miss_chance


def plan_cell_votes(
    cell: Cell,
    ideas: List[Idea],
    quality: Dict[str, float],
    profiles: Dict[str, dict],
    dropout: float,
    rng: random.Random,
) -> Dict[str, str]:
    """Ballots for the members of ``cell`` who show up, keyed by voter id."""
    ballots = {}
    members = list(cell.participant_ids)
    rng.shuffle(members)
    for voter_id in members:
        profile = profiles.get(voter_id)
        if not shows_up(profile, dropout, rng):
            logger.debug(f"{voter_id} did not vote in {cell.cell_id}")
            continue
        ballots[voter_id] = choose_vote(voter_id, ideas, quality, profile, rng)
    return ballots
