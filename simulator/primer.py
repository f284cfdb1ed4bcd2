from typing import Dict, List, Optional, Tuple
import random

from models import IdeaIn, ParticipantIn, RunConfig
from simlog import logger
from utils import clamp, generate_lorem_content


class Primer:
    """Primer class to generate synthetic populations for a simulation."""

    def __init__(self, voter_config: Optional[dict] = None):
        self.voter_config = voter_config or {}

    def generate_run_config(self, seed: int, num_participants: int) -> RunConfig:
        """Generates a RunConfig: one participant and one idea per seat."""
        rng = random.Random(seed)  # Use isolated random instance
        mix = self.voter_config.get("archetype_mix") or {name: 1 for name in ARCHETYPE_NAMES}
        names = [name for name in mix if name in ARCHETYPES]
        weights = [mix[name] for name in names]

        participants: List[ParticipantIn] = []
        ideas: List[IdeaIn] = []
        idea_quality: Dict[str, float] = {}
        profiles: Dict[str, dict] = {}

        for i in range(num_participants):
            participant_id = f"p-{i + 1}"
            archetype = rng.choices(names, weights=weights)[0]
            profile = generate_profile(seed + i, archetype)
            profiles[participant_id] = profile
            participants.append(
                ParticipantIn(
                    participant_id=participant_id,
                    name=f"Voter_{archetype}_{i + 1}",
                    metadata={"archetype": archetype},
                )
            )
            logger.debug(f"[Profile] {participant_id} ({archetype}) → {profile}")

            idea_id = f"idea-{i + 1}"
            ideas.append(
                IdeaIn(
                    idea_id=idea_id,
                    author_id=participant_id,
                    text=self._generate_lorem_idea(seed + i),
                )
            )
            idea_quality[idea_id] = round(rng.random(), 4)

        return RunConfig(
            seed=seed,
            participants=participants,
            ideas=ideas,
            idea_quality=idea_quality,
            profiles=profiles,
        )

    def generate_challengers(
        self, seed: int, challenge_round: int, count: int, author_ids: List[str]
    ) -> Tuple[List[IdeaIn], Dict[str, float]]:
        """New ideas for a challenge round, written by randomly drawn participants."""
        rng = random.Random(seed * 1000 + challenge_round)
        ideas = []
        quality = {}
        for i in range(count):
            idea_id = f"idea-r{challenge_round}-{i + 1}"
            ideas.append(
                IdeaIn(
                    idea_id=idea_id,
                    author_id=rng.choice(author_ids),
                    text=self._generate_lorem_idea(seed + challenge_round * 100 + i),
                )
            )
            quality[idea_id] = round(rng.random(), 4)
        return ideas, quality

    def _generate_lorem_idea(self, seed: int) -> str:
        rng = random.Random(seed)  # Use isolated random instance
        word_range = self.voter_config.get("idea_word_range")
        if word_range:
            word_count = rng.randint(word_range["min"], word_range["max"])
        else:
            word_count = rng.randint(12, 30)  # Default fallback
        return generate_lorem_content(rng, word_count)


# Voter archetypes. Traits drive automoton.choose_vote:
#   discernment: how strongly true idea quality shapes the choice
#   loyalty: bonus for the voter's own idea
#   contrarian: chance of backing the idea the voter rates lowest
#   noise: spread of the random judgement error
#   reliability: chance the voter actually shows up to vote
ARCHETYPES = {
    "loyalist": {
        "discernment": 0.4,
        "loyalty": 0.9,
        "contrarian": 0.0,
        "noise": 0.2,
        "reliability": 0.9,
    },
    "rational": {
        "discernment": 0.9,
        "loyalty": 0.1,
        "contrarian": 0.0,
        "noise": 0.1,
        "reliability": 0.95,
    },
    "contrarian": {
        "discernment": 0.6,
        "loyalty": 0.3,
        "contrarian": 0.6,
        "noise": 0.2,
        "reliability": 0.8,
    },
    "random": {
        "discernment": 0.0,
        "loyalty": 0.0,
        "contrarian": 0.0,
        "noise": 1.0,
        "reliability": 0.7,
    },
}

# Cache archetype names for performance
ARCHETYPE_NAMES = list(ARCHETYPES.keys())


def generate_profile(seed: int, archetype_name: Optional[str] = None) -> dict:
    """Archetype traits with small seeded variations (±0.1 max)."""
    rng = random.Random(seed)

    if archetype_name is None:
        archetype_name = rng.choice(ARCHETYPE_NAMES)

    traits = ARCHETYPES[archetype_name].copy()
    for trait in traits:
        traits[trait] = round(clamp(traits[trait] + rng.uniform(-0.1, 0.1)), 2)
    traits["archetype"] = archetype_name
    return traits
