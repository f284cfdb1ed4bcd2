"""Shared fixtures for the deliberation engine tests."""

import random

import pytest
from loguru import logger

from chant import ChantEngine
from models import EngineConfig


class FakeClock:
    """Deterministic clock injected into the engine."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture(autouse=True)
def _quiet_logger():
    """Keep engine events off the test output."""
    logger.remove()
    yield


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_engine(clock):
    """Build an engine with ``participants`` members and ``ideas`` ideas.

    Participant ids are p-1..p-N and idea ids idea-1..idea-M. Idea idea-k is
    authored by ``authors(k)`` when given, else by p-k (wrapping around).
    """

    def _make(participants, ideas=None, authors=None, seed=7, start=True, **config):
        engine = ChantEngine(
            config=EngineConfig(**config),
            rng=random.Random(seed),
            clock=clock,
        )
        for i in range(1, participants + 1):
            engine.add_participant({"participant_id": f"p-{i}", "name": f"Person {i}"})
        count = participants if ideas is None else ideas
        for k in range(1, count + 1):
            author = authors(k) if authors else f"p-{(k - 1) % participants + 1}"
            engine.add_idea({"idea_id": f"idea-{k}", "author_id": author, "text": f"Idea {k}"})
        if start:
            engine.start_voting()
        return engine

    return _make


def vote_tier(engine, choose):
    """Every member of every open cell in the current tier votes ``choose(cell, index)``."""
    tier = engine.current_tier
    results = []
    for cell in engine.store.list_cells(tier):
        for index, member in enumerate(cell.participant_ids):
            results.append(engine.cast_vote(cell.cell_id, member, choose(cell, index)))
    return results


def run_to_consensus(engine, max_tiers=20):
    """Auto-complete tier after tier; returns every TierOutcome in order."""
    outcomes = []
    for _ in range(max_tiers):
        tier = engine.current_tier
        engine.auto_complete_tier(tier)
        outcome = engine.complete_tier(tier)
        outcomes.append(outcome)
        if outcome.is_final:
            return outcomes
    raise AssertionError("no consensus reached")
