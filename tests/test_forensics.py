"""Tests for the forensic event database and its analysis helpers."""

import json
import random
import sqlite3

import pytest

from chant import ChantEngine
from controller import Controller
from models import EngineConfig
from primer import Primer
from simlog import generate_sim_id, setup_logging
from tier_forensics import connect_db, find_pool_problems, find_weight_breaks, get_event_counts, tier_table


@pytest.fixture
def recorded_run(tmp_path):
    """Run a 60-person delegation deliberation with the SQLite sink attached."""
    sim_logger = setup_logging("test-1", -1, db_dir=tmp_path)
    try:
        run_config = Primer().generate_run_config(seed=3, num_participants=60)
        engine = ChantEngine(config=EngineConfig(variant="delegation"), rng=random.Random(3))
        Controller(engine, run_config, snapshots=True).run()
    finally:
        sim_logger.close()
    conn = connect_db("test-1", tmp_path)
    yield conn
    conn.close()


class TestSimId:
    """Tests for generate_sim_id."""

    def test_first_id_of_the_hour(self, tmp_path):
        assert generate_sim_id(tmp_path / "missing").endswith("-1")

    def test_next_free_suffix(self, tmp_path):
        base = generate_sim_id(tmp_path).rsplit("-", 1)[0]
        (tmp_path / f"{base}-1.sqlite3").touch()
        (tmp_path / f"{base}-4.sqlite3").touch()
        assert generate_sim_id(tmp_path) == f"{base}-5"


class TestForensicDatabase:
    """The events table written during a run."""

    def test_events_are_recorded(self, recorded_run):
        counts = get_event_counts(recorded_run)
        assert counts["engine_init"] == 1
        assert counts["tier_formed"] >= 2
        assert counts["consensus_reached"] == 1
        assert counts["cell_completed"] == counts["cell_formed"]
        assert "invariant_violation" not in counts

    def test_payloads_are_json(self, recorded_run):
        row = recorded_run.execute(
            "SELECT payload FROM events WHERE event_type = 'consensus_reached'"
        ).fetchone()
        assert "winner" in json.loads(row[0])

    def test_snapshots_are_saved(self, recorded_run):
        (count,) = recorded_run.execute("SELECT COUNT(*) FROM state_snapshots").fetchone()
        assert count >= 2

    def test_tier_table(self, recorded_run):
        rows = tier_table(recorded_run)
        assert rows[0]["tier"] == 1
        assert rows[0]["members"] == 60
        assert rows[0]["ideas"] == 60
        assert len(rows[0]["winners"]) == rows[0]["cells"]
        assert find_pool_problems(rows) == []

    def test_weight_is_conserved(self, recorded_run):
        assert find_weight_breaks(recorded_run) == []


class TestFindings:
    """Analysis helpers on hand-built data."""

    def test_pool_that_did_not_shrink(self):
        rows = [{"challenge_round": 0, "tier": 2, "ideas": 3, "winners": ["a", "b", "c"]}]
        assert find_pool_problems(rows) == ["round 0 tier 2: 3 winners from 3 ideas"]

    def test_weight_break(self):
        conn = sqlite3.connect(":memory:")
        conn.execute(
            "CREATE TABLE events (id INTEGER PRIMARY KEY, tier INTEGER, phase TEXT, cell_id TEXT, "
            "participant_id TEXT, event_type TEXT, level TEXT, message TEXT, payload TEXT)"
        )
        conn.execute(
            "INSERT INTO events (tier, event_type, message, payload) VALUES (1, 'delegation_summary', '', ?)",
            (json.dumps({"represented_weight": 24, "expected_weight": 25}),),
        )
        assert find_weight_breaks(conn) == ["tier 1: 24 represented, 25 expected"]
