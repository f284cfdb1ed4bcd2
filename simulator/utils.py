"""
Utility functions for scoring and content generation.

This module contains pure functions with no engine dependencies.
"""

import math
from typing import Dict, List


def sigmoid(score: float, k: float = 5.0) -> float:
    """Sigmoid squashing for more decisive behavior at extremes."""
    return 1 / (1 + math.exp(-k * (score - 0.5)))


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def summarize_weights(weights: List[int]) -> Dict[str, float]:
    """Count, total, min, max and mean of a list of delegate weights."""
    if not weights:
        return {"count": 0, "total": 0, "min": 0, "max": 0, "mean": 0.0}
    return {
        "count": len(weights),
        "total": sum(weights),
        "min": min(weights),
        "max": max(weights),
        "mean": round(sum(weights) / len(weights), 2),
    }


LOREM_WORDS = (
    "lorem ipsum dolor sit amet consectetur adipiscing elit sed do eiusmod "
    "tempor incididunt ut labore et dolore magna aliqua enim ad minim veniam "
    "quis nostrud exercitation ullamco laboris nisi aliquip ex ea commodo "
    "consequat duis aute irure in reprehenderit voluptate velit esse cillum "
    "fugiat nulla pariatur excepteur sint occaecat cupidatat non proident sunt "
    "culpa qui officia deserunt mollit anim id est laborum"
).split()


def generate_lorem_content(rng, word_count=60):
    """Generate lorem ipsum content for synthetic ideas.

    Args:
        rng: Random number generator instance
        word_count: Number of words to generate (default: 60)

    Returns:
        str: Generated lorem ipsum text
    """
    return " ".join(rng.choices(LOREM_WORDS, k=word_count))
