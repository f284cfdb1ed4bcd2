"""
Deliberation Logging Infrastructure

Provides structured logging with forensic SQLite capture and rich console output.
The engine logs through log_event(); sinks are only attached by setup_logging().
"""

import sqlite3
import json
from pathlib import Path
from typing import Optional, Dict, Any
from datetime import datetime
from enum import Enum

from pydantic import BaseModel
from loguru import logger
from rich.console import Console
from rich.logging import RichHandler


class EventType(str, Enum):
    """Event types for structured logging"""

    # Engine Lifecycle
    ENGINE_INIT = "engine_init"
    ENGINE_RESET = "engine_reset"
    PHASE_TRANSITION = "phase_transition"

    # Submission
    PARTICIPANT_JOINED = "participant_joined"
    PARTICIPANT_REJECTED = "participant_rejected"
    IDEA_SUBMITTED = "idea_submitted"
    IDEA_REJECTED = "idea_rejected"

    # Tier Formation
    TIER_FORMED = "tier_formed"
    CELL_FORMED = "cell_formed"
    TIER_FORMATION_REJECTED = "tier_formation_rejected"

    # Voting
    VOTE_CAST = "vote_cast"
    VOTE_REJECTED = "vote_rejected"
    AUTO_VOTE = "auto_vote"
    CELL_COMPLETED = "cell_completed"
    CELL_WINNER = "cell_winner"

    # Tier Completion
    TIER_COMPLETE = "tier_complete"
    TIER_INCOMPLETE = "tier_incomplete"
    BATCH_WINNER = "batch_winner"
    IDEAS_ELIMINATED = "ideas_eliminated"
    CONSENSUS_REACHED = "consensus_reached"

    # Delegation
    DELEGATE_ELECTED = "delegate_elected"
    DELEGATION_SUMMARY = "delegation_summary"
    DELEGATION_FALLBACK = "delegation_fallback"

    # Challenge / Accumulation
    ACCUMULATION_START = "accumulation_start"
    CHALLENGER_SUBMITTED = "challenger_submitted"
    CHALLENGER_REJECTED = "challenger_rejected"
    CHALLENGE_TRIGGERED = "challenge_triggered"
    ACCUMULATION_CLOSED = "accumulation_closed"

    # Deliberation
    COMMENT_ADDED = "comment_added"

    # Invariants
    INVARIANT_VIOLATION = "invariant_violation"

    # Simulation Lifecycle
    SIMULATION_START = "simulation_start"
    SIMULATION_COMPLETE = "simulation_complete"
    SIMULATION_ERROR = "simulation_error"
    SCENARIO_START = "scenario_start"
    SCENARIO_COMPLETE = "scenario_complete"
    TIMING_STATS = "timing_stats"

    # State Snapshots
    STATE_SNAPSHOT = "state_snapshot"


class PhaseType(str, Enum):
    """Phases of a deliberation"""

    SUBMISSION = "submission"
    VOTING = "voting"
    ACCUMULATING = "accumulating"
    COMPLETED = "completed"


class LogLevel(str, Enum):
    """Log levels for structured logging"""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class LogEntry(BaseModel):
    """Structured log entry with full type safety"""

    tier: Optional[int] = None
    phase: Optional[PhaseType] = None
    event_type: EventType
    cell_id: Optional[str] = None
    participant_id: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None
    message: str
    level: LogLevel = LogLevel.INFO


class SQLiteSink:
    """Custom loguru sink for SQLite event storage."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.connection = sqlite3.connect(str(db_path), check_same_thread=False)
        self._init_tables()

    def _init_tables(self):
        """Initialize the events and snapshot tables."""
        self.connection.execute(
            """
            CREATE TABLE IF NOT EXISTS events (
                id INTEGER PRIMARY KEY,
                tier INTEGER,
                phase TEXT,
                cell_id TEXT,
                participant_id TEXT,
                event_type TEXT,
                level TEXT,
                message TEXT,
                payload TEXT
            )
        """
        )

        self.connection.execute(
            """
            CREATE TABLE IF NOT EXISTS state_snapshots (
                id INTEGER PRIMARY KEY,
                phase TEXT,
                current_tier INTEGER,
                challenge_round INTEGER,
                champion_id TEXT,
                ideas TEXT,
                cells TEXT,
                timestamp DATETIME DEFAULT CURRENT_TIMESTAMP
            )
        """
        )
        self.connection.commit()

    def write(self, message):
        """Write a log record to SQLite."""
        record = message.record
        event_dict = record.get("extra", {}).get("event_dict", {})

        self.connection.execute(
            """
            INSERT INTO events (tier, phase, cell_id, participant_id, event_type, level, message, payload)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
            (
                event_dict.get("tier"),
                event_dict.get("phase"),
                event_dict.get("cell_id"),
                event_dict.get("participant_id"),
                event_dict.get("event_type"),
                record["level"].name,
                record["message"],
                (
                    json.dumps(event_dict.get("payload"))
                    if event_dict.get("payload")
                    else None
                ),
            ),
        )
        self.connection.commit()

    def save_state_snapshot(self, state_data: dict):
        """Save an engine snapshot to the database."""
        self.connection.execute(
            """
            INSERT INTO state_snapshots (
                phase, current_tier, challenge_round, champion_id, ideas, cells
            ) VALUES (?, ?, ?, ?, ?, ?)
        """,
            (
                state_data["phase"],
                state_data["current_tier"],
                state_data["challenge_round"],
                state_data["champion_id"],
                json.dumps(state_data["ideas"]),
                json.dumps(state_data["cells"]),
            ),
        )
        self.connection.commit()

    def close(self):
        """Close the SQLite connection."""
        if self.connection:
            self.connection.close()


class SimulationLogger:
    """Main logging coordinator for simulation runs."""

    def __init__(self, sim_id: str, verbosity: int, db_dir: Optional[Path] = None):
        self.sim_id = sim_id
        self.verbosity = verbosity
        self.db_dir = db_dir or Path(__file__).parent / "db"
        self.db_path = self.db_dir / f"{sim_id}.sqlite3"
        self.sqlite_sink: Optional[SQLiteSink] = None
        self.console = Console()

        self._setup_logging()

    def _add_forensic_symbol(self, record):
        """Tag structured events so they stand out on the console."""
        is_forensic = "event_dict" in record["extra"]
        record["extra"]["symbol"] = "🔬" if is_forensic else "💬"
        return True

    def _setup_logging(self):
        """Configure loguru with rich console and SQLite sinks."""
        logger.remove()

        log_level = self._get_log_level()
        self._console_handler_id = logger.add(
            RichHandler(console=self.console, rich_tracebacks=True),
            level=log_level,
            format="{extra[symbol]} {message}",
            filter=self._add_forensic_symbol,
        )

        self.sqlite_sink = SQLiteSink(self.db_path)
        self._sqlite_handler_id = logger.add(
            self.sqlite_sink.write,
            level="DEBUG",
            format="{message}",
            filter=lambda record: "event_dict" in record["extra"],
        )

        logger.info(f"Simulation logging initialized: {self.sim_id}")
        logger.info(f"Database: {self.db_path}")
        logger.info(f"Console verbosity: {log_level}")

    def _get_log_level(self) -> str:
        """Map verbosity level to loguru level."""
        level_map = {
            -1: "ERROR",
            0: "WARNING",
            1: "INFO",
            2: "DEBUG",
            3: "TRACE",
        }
        return level_map.get(min(self.verbosity, 3), "INFO")

    def close(self):
        """Clean shutdown of logging infrastructure."""
        logger.info(f"Simulation logging closed: {self.sim_id}")
        if self.sqlite_sink:
            logger.remove(self._sqlite_handler_id)
            self.sqlite_sink.close()
            self.sqlite_sink = None


def setup_logging(
    sim_id: str, verbosity: int, db_dir: Optional[Path] = None
) -> SimulationLogger:
    """
    Initialize structured logging for a simulation run.

    Args:
        sim_id: Unique simulation identifier
        verbosity: Console verbosity level (-1 to 3)
        db_dir: Directory for the forensic database (default: ./db beside this module)

    Returns:
        SimulationLogger instance for cleanup
    """
    global _current_sim_logger
    _current_sim_logger = SimulationLogger(sim_id, verbosity, db_dir)
    return _current_sim_logger


def generate_sim_id(db_dir: Optional[Path] = None) -> str:
    """
    Generate a unique simulation ID in yymmddHH-N format.

    Returns:
        Unique simulation ID string
    """
    now = datetime.now()
    base_id = now.strftime("%y%m%d%H")

    db_dir = db_dir or Path(__file__).parent / "db"
    if not db_dir.exists():
        return f"{base_id}-1"

    existing_files = list(db_dir.glob(f"{base_id}-*.sqlite3"))
    if not existing_files:
        return f"{base_id}-1"

    suffixes = []
    for file in existing_files:
        try:
            suffix = int(file.stem.split("-")[1])
            suffixes.append(suffix)
        except (IndexError, ValueError):
            continue

    next_suffix = max(suffixes) + 1 if suffixes else 1
    return f"{base_id}-{next_suffix}"


# Global reference to current simulation logger
_current_sim_logger: Optional[SimulationLogger] = None


def log_event(entry: LogEntry, forensic: bool = True):
    """
    Log a structured event with type safety and forensic capture.

    Args:
        entry: LogEntry with structured event data
        forensic: If True, captures to SQLite database (default: True)
    """
    if forensic:
        logger.opt(depth=1).bind(
            event_dict={
                "tier": entry.tier,
                "phase": entry.phase.value if entry.phase else None,
                "event_type": entry.event_type.value,
                "cell_id": entry.cell_id,
                "participant_id": entry.participant_id,
                "payload": entry.payload,
            }
        ).log(entry.level.value, entry.message)
    else:
        logger.opt(depth=1).log(entry.level.value, entry.message)


def save_state_snapshot(state_data: dict):
    """Save a state snapshot using the current simulation logger."""
    if _current_sim_logger and _current_sim_logger.sqlite_sink:
        _current_sim_logger.sqlite_sink.save_state_snapshot(state_data)
