"""Distribution of a tier's roster and idea pool across cells."""

import math
from typing import Callable, Dict, List, Sequence

from pydantic import BaseModel, ValidationError

from cellplanner import calculate_cell_sizes
from errors import InvariantViolation
from models import AllocationMode, Cell, DeliberationState, Idea, IdeaStatus, Participant
from simlog import EventType, LogEntry, LogLevel, PhaseType, log_event

IDEAS_PER_BATCH = 5
MIN_IDEAS_PER_UNIQUE_CELL = 2


class AllocationPlan(BaseModel):
    """Cells created for one tier and the idea set each batch votes on."""

    tier: int
    mode: AllocationMode
    cells: List[Cell]
    batches: Dict[int, List[str]]

    @property
    def idea_ids(self) -> List[str]:
        return [idea_id for batch in self.batches.values() for idea_id in batch]


def balanced_slices(items: Sequence, parts: int) -> List[list]:
    """Split ``items`` in order into ``parts`` runs whose sizes differ by at most one.

    The first ``len(items) % parts`` runs carry the extra item.
    """
    if parts <= 0:
        raise ValueError(f"parts must be positive, got {parts}")
    base, extra = divmod(len(items), parts)
    slices = []
    start = 0
    for index in range(parts):
        size = base + (1 if index < extra else 0)
        slices.append(list(items[start:start + size]))
        start += size
    return slices


def choose_mode(num_ideas: int, num_cells: int) -> AllocationMode:
    if num_ideas <= IDEAS_PER_BATCH:
        return AllocationMode.SHOWDOWN
    if num_ideas >= num_cells * MIN_IDEAS_PER_UNIQUE_CELL:
        return AllocationMode.UNIQUE
    return AllocationMode.BATCHED


class AllocationEngine:
    """Builds the cells of a tier and moves their ideas into voting."""

    def __init__(self, store, clock: Callable[[], float]):
        self.store = store
        self.clock = clock

    def allocate(
        self,
        state: DeliberationState,
        tier: int,
        roster: List[Participant],
        ideas: List[Idea],
    ) -> AllocationPlan:
        if not ideas:
            self._violation(tier, "Cannot allocate an empty idea pool", {"roster": len(roster)})

        sizes = calculate_cell_sizes(len(roster))
        if not sizes:
            self._violation(
                tier,
                f"Cell planning returned no cells for {len(roster)} members",
                {"roster": len(roster), "ideas": len(ideas)},
            )

        groups = []
        start = 0
        for size in sizes:
            groups.append(roster[start:start + size])
            start += size

        idea_ids = [idea.idea_id for idea in ideas]
        mode = choose_mode(len(idea_ids), len(groups))

        # (batch number, member groups, idea ids)
        assignments = []
        if mode == AllocationMode.SHOWDOWN:
            assignments.append((1, groups, idea_ids))
        elif mode == AllocationMode.UNIQUE:
            for index, (group, idea_slice) in enumerate(
                zip(groups, balanced_slices(idea_ids, len(groups)))
            ):
                assignments.append((index + 1, [group], idea_slice))
        else:
            num_batches = math.ceil(len(idea_ids) / IDEAS_PER_BATCH)
            idea_batches = balanced_slices(idea_ids, num_batches)
            group_batches = balanced_slices(groups, num_batches)
            for index, (batch_groups, idea_batch) in enumerate(
                zip(group_batches, idea_batches)
            ):
                assignments.append((index + 1, batch_groups, idea_batch))

        # Every cell is validated before any is stored
        now = self.clock()
        cells: List[Cell] = []
        batches: Dict[int, List[str]] = {}
        for batch, batch_groups, batch_ideas in assignments:
            batches[batch] = list(batch_ideas)
            for group in batch_groups:
                member_ids = [member.participant_id for member in group]
                try:
                    cell = Cell(
                        cell_id=f"cell-{state.cell_counter + len(cells) + 1}",
                        tier=tier,
                        batch=batch,
                        participant_ids=member_ids,
                        idea_ids=list(batch_ideas),
                        votes_needed=len(member_ids),
                        challenge_round=state.challenge_round,
                        created_at=now,
                    )
                except ValidationError as exc:
                    self._violation(
                        tier,
                        f"Tier {tier} produced an invalid cell: {exc.errors()[0]['msg']}",
                        {"batch": batch, "members": member_ids, "ideas": list(batch_ideas)},
                    )
                cells.append(cell)

        for cell in cells:
            state.next_id("cell")
            self.store.add_cell(cell)
            log_event(
                LogEntry(
                    tier=tier,
                    phase=PhaseType.VOTING,
                    event_type=EventType.CELL_FORMED,
                    cell_id=cell.cell_id,
                    payload={
                        "batch": cell.batch,
                        "members": cell.participant_ids,
                        "ideas": cell.idea_ids,
                    },
                    message=f"{cell.cell_id}: {len(cell.participant_ids)} members, {len(cell.idea_ids)} ideas (batch {cell.batch})",
                    level=LogLevel.DEBUG,
                )
            )

        self.store.set_roster(tier, roster)

        for idea in ideas:
            idea.status = IdeaStatus.IN_VOTING
            idea.tier = tier
            self.store.save_idea(idea)

        plan = AllocationPlan(tier=tier, mode=mode, cells=cells, batches=batches)
        log_event(
            LogEntry(
                tier=tier,
                phase=PhaseType.VOTING,
                event_type=EventType.TIER_FORMED,
                payload={
                    "mode": mode.value,
                    "cells": len(cells),
                    "batches": len(batches),
                    "members": len(roster),
                    "ideas": len(idea_ids),
                    "cell_sizes": sizes,
                    "challenge_round": state.challenge_round,
                },
                message=f"Tier {tier} formed ({mode.value}): {len(cells)} cells, {len(batches)} batches, {len(idea_ids)} ideas",
            )
        )
        return plan

    def _violation(self, tier: int, message: str, payload: dict):
        log_event(
            LogEntry(
                tier=tier,
                event_type=EventType.INVARIANT_VIOLATION,
                payload=payload,
                message=message,
                level=LogLevel.ERROR,
            )
        )
        raise InvariantViolation(message)
