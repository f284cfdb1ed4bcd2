"""Repository for deliberation records.

All engine mutations go through a DeliberationStore so the per-cell vote race
can be made atomic with whatever locking primitive the backing store offers.
InMemoryStore keeps everything in process memory behind threading locks.
"""

import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from models import (
    Cell,
    Comment,
    DeliberationState,
    Idea,
    Participant,
    Vote,
)


class DeliberationStore(ABC):
    """Storage port used by every engine component."""

    # Participants

    @abstractmethod
    def add_participant(self, participant: Participant) -> None: ...

    @abstractmethod
    def get_participant(self, participant_id: str) -> Optional[Participant]: ...

    @abstractmethod
    def list_participants(self) -> List[Participant]: ...

    # Ideas

    @abstractmethod
    def add_idea(self, idea: Idea) -> None: ...

    @abstractmethod
    def get_idea(self, idea_id: str) -> Optional[Idea]: ...

    @abstractmethod
    def save_idea(self, idea: Idea) -> None: ...

    @abstractmethod
    def list_ideas(self) -> List[Idea]: ...

    # Cells

    @abstractmethod
    def add_cell(self, cell: Cell) -> None: ...

    @abstractmethod
    def get_cell(self, cell_id: str) -> Optional[Cell]: ...

    @abstractmethod
    def save_cell(self, cell: Cell) -> None: ...

    @abstractmethod
    def list_cells(self, tier: Optional[int] = None) -> List[Cell]: ...

    # Votes

    @abstractmethod
    def add_vote(self, vote: Vote) -> None: ...

    @abstractmethod
    def has_vote(self, cell_id: str, voter_id: str) -> bool: ...

    @abstractmethod
    def votes_for_cell(self, cell_id: str) -> List[Vote]: ...

    # Tier rosters (participants or delegates, with their weights for that tier)

    @abstractmethod
    def set_roster(self, tier: int, members: List[Participant]) -> None: ...

    @abstractmethod
    def get_roster(self, tier: int) -> List[Participant]: ...

    @abstractmethod
    def get_roster_member(self, tier: int, participant_id: str) -> Optional[Participant]: ...

    # Comments

    @abstractmethod
    def add_comment(self, comment: Comment) -> None: ...

    @abstractmethod
    def comments_for_cell(self, cell_id: str) -> List[Comment]: ...

    # Deliberation state

    @abstractmethod
    def load_state(self) -> DeliberationState: ...

    @abstractmethod
    def save_state(self, state: DeliberationState) -> None: ...

    # Lifecycle

    @abstractmethod
    def archive_round(self, challenge_round: int) -> None:
        """Move the live cells, votes, rosters and comments into the archive."""

    @abstractmethod
    def archived_round(self, challenge_round: int) -> Dict[str, list]: ...

    @abstractmethod
    def clear(self, keep_participants: bool = False) -> None: ...

    # Concurrency

    @abstractmethod
    def cell_lock(self, cell_id: str):
        """Context manager serializing all vote activity on one cell."""

    @abstractmethod
    def transaction(self):
        """Context manager giving exclusive access to the whole deliberation."""

    @abstractmethod
    def exclusive(self):
        """Like transaction(), but also waits out every in-flight vote."""


class InMemoryStore(DeliberationStore):
    """Process-local store. Safe for concurrent votes on different cells."""

    def __init__(self):
        self._participants: Dict[str, Participant] = {}
        self._ideas: Dict[str, Idea] = {}
        self._state = DeliberationState()
        self._archive: Dict[int, Dict[str, list]] = {}
        self._reset_round_data()

        self._tx_lock = threading.RLock()
        self._locks_guard = threading.Lock()
        self._cell_locks: Dict[str, threading.Lock] = {}

    def _reset_round_data(self):
        self._cells: Dict[str, Cell] = {}
        self._votes: Dict[str, List[Vote]] = defaultdict(list)
        self._voters: Dict[str, set] = defaultdict(set)
        self._rosters: Dict[int, Dict[str, Participant]] = {}
        self._comments: Dict[str, List[Comment]] = defaultdict(list)

    # Participants

    def add_participant(self, participant: Participant) -> None:
        self._participants[participant.participant_id] = participant

    def get_participant(self, participant_id: str) -> Optional[Participant]:
        return self._participants.get(participant_id)

    def list_participants(self) -> List[Participant]:
        return list(self._participants.values())

    # Ideas

    def add_idea(self, idea: Idea) -> None:
        self._ideas[idea.idea_id] = idea

    def get_idea(self, idea_id: str) -> Optional[Idea]:
        return self._ideas.get(idea_id)

    def save_idea(self, idea: Idea) -> None:
        self._ideas[idea.idea_id] = idea

    def list_ideas(self) -> List[Idea]:
        return sorted(self._ideas.values(), key=lambda idea: idea.sequence)

    # Cells

    def add_cell(self, cell: Cell) -> None:
        self._cells[cell.cell_id] = cell

    def get_cell(self, cell_id: str) -> Optional[Cell]:
        return self._cells.get(cell_id)

    def save_cell(self, cell: Cell) -> None:
        self._cells[cell.cell_id] = cell

    def list_cells(self, tier: Optional[int] = None) -> List[Cell]:
        cells = list(self._cells.values())
        if tier is not None:
            cells = [cell for cell in cells if cell.tier == tier]
        return cells

    # Votes

    def add_vote(self, vote: Vote) -> None:
        self._votes[vote.cell_id].append(vote)
        self._voters[vote.cell_id].add(vote.voter_id)

    def has_vote(self, cell_id: str, voter_id: str) -> bool:
        return voter_id in self._voters.get(cell_id, ())

    def votes_for_cell(self, cell_id: str) -> List[Vote]:
        return list(self._votes.get(cell_id, ()))

    # Rosters

    def set_roster(self, tier: int, members: List[Participant]) -> None:
        self._rosters[tier] = {member.participant_id: member for member in members}

    def get_roster(self, tier: int) -> List[Participant]:
        return list(self._rosters.get(tier, {}).values())

    def get_roster_member(self, tier: int, participant_id: str) -> Optional[Participant]:
        return self._rosters.get(tier, {}).get(participant_id)

    # Comments

    def add_comment(self, comment: Comment) -> None:
        self._comments[comment.cell_id].append(comment)

    def comments_for_cell(self, cell_id: str) -> List[Comment]:
        return list(self._comments.get(cell_id, ()))

    # State

    def load_state(self) -> DeliberationState:
        return self._state

    def save_state(self, state: DeliberationState) -> None:
        self._state = state

    # Lifecycle

    def archive_round(self, challenge_round: int) -> None:
        with self._locks_guard:
            self._archive[challenge_round] = {
                "cells": list(self._cells.values()),
                "votes": [v for votes in self._votes.values() for v in votes],
                "rosters": [
                    {"tier": tier, "members": list(members.values())}
                    for tier, members in self._rosters.items()
                ],
                "comments": [c for comments in self._comments.values() for c in comments],
            }
            self._reset_round_data()
            self._cell_locks = {}

    def archived_round(self, challenge_round: int) -> Dict[str, list]:
        return self._archive.get(challenge_round, {})

    def clear(self, keep_participants: bool = False) -> None:
        with self._locks_guard:
            if not keep_participants:
                self._participants = {}
            self._ideas = {}
            self._archive = {}
            self._state = DeliberationState()
            self._reset_round_data()
            self._cell_locks = {}

    # Concurrency

    @contextmanager
    def cell_lock(self, cell_id: str) -> Iterator[None]:
        with self._locks_guard:
            lock = self._cell_locks.get(cell_id)
            if lock is None:
                lock = self._cell_locks[cell_id] = threading.Lock()
        with lock:
            yield

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._tx_lock:
            yield

    @contextmanager
    def exclusive(self) -> Iterator[None]:
        """Hold the deliberation lock plus every live cell lock."""
        with self._tx_lock:
            with self._locks_guard:
                locks = [
                    self._cell_locks.setdefault(cell_id, threading.Lock())
                    for cell_id in sorted(self._cells)
                ]
            for lock in locks:
                lock.acquire()
            try:
                yield
            finally:
                for lock in reversed(locks):
                    lock.release()
