"""Conversion of batch winners into weighted delegates (delegation variant).

A delegate is the author of a winning idea. At tier 1 their weight is the
number of people in the cells that elected the idea. From tier 2 onward the
weight depends on the configured policy:

- ``carry_forward``: the author's previously recorded delegate weight is kept
  unchanged. Authors who were never delegates take the electing cells' weight.
- ``accumulate``: the summed weight of every voter in the electing cells, which
  keeps the total represented weight constant across every transition.

An author who wins several batches holds a single seat with the summed weight.
"""

from typing import Dict, List, Optional

from errors import InvariantViolation
from models import BatchWinner, Delegate, EngineConfig
from simlog import EventType, LogEntry, LogLevel, PhaseType, log_event


class DelegationEngine:
    def __init__(self, store, config: EngineConfig):
        self.store = store
        self.config = config

    def build_delegates(self, tier: int, winners: List[BatchWinner]) -> List[Delegate]:
        """Return the delegate body elected by ``tier``'s batch winners."""
        seats: Dict[str, Delegate] = {}

        for winner in winners:
            idea = self.store.get_idea(winner.idea_id)
            author_id = idea.author_id
            weight = self._seat_weight(tier, author_id, winner)

            seat = seats.get(author_id)
            if seat is None:
                participant = self.store.get_participant(author_id)
                seats[author_id] = Delegate(
                    participant_id=author_id,
                    name=participant.name if participant else "",
                    weight=weight,
                    joined_at=participant.joined_at if participant else 0.0,
                    representing_idea=winner.idea_id,
                    from_tier=tier,
                    metadata={"also_representing": []},
                )
            else:
                seat.weight += weight
                seat.metadata["also_representing"].append(winner.idea_id)

        delegates = list(seats.values())
        for delegate in delegates:
            log_event(
                LogEntry(
                    tier=tier,
                    phase=PhaseType.VOTING,
                    event_type=EventType.DELEGATE_ELECTED,
                    participant_id=delegate.participant_id,
                    payload={
                        "representing_idea": delegate.representing_idea,
                        "also_representing": delegate.metadata["also_representing"],
                        "weight": delegate.weight,
                    },
                    message=f"{delegate.participant_id} elected delegate for {delegate.representing_idea} (weight {delegate.weight})",
                    level=LogLevel.DEBUG,
                )
            )

        self._check_conservation(tier, delegates)
        return delegates

    def previous_weight(self, tier: int, participant_id: str) -> Optional[int]:
        """Most recent delegate weight recorded for ``participant_id`` up to ``tier``."""
        for earlier in range(tier, 0, -1):
            member = self.store.get_roster_member(earlier, participant_id)
            if isinstance(member, Delegate):
                return member.weight
        return None

    def _seat_weight(self, tier: int, author_id: str, winner: BatchWinner) -> int:
        if tier == 1:
            return winner.member_count
        if self.config.weight_policy == "accumulate":
            return winner.member_weight
        carried = self.previous_weight(tier, author_id)
        return carried if carried is not None else winner.member_weight

    def _check_conservation(self, tier: int, delegates: List[Delegate]):
        roster = self.store.get_roster(tier)
        represented = sum(delegate.weight for delegate in delegates)

        if tier == 1:
            expected = len(roster)
        elif self.config.weight_policy == "accumulate":
            expected = sum(member.weight for member in roster)
        else:
            expected = None

        payload = {
            "delegates": len(delegates),
            "represented_weight": represented,
            "expected_weight": expected,
            "policy": self.config.weight_policy,
        }
        if expected is not None and represented != expected:
            message = (
                f"Delegate weight {represented} does not match the {expected} "
                f"represented in tier {tier}"
            )
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

        log_event(
            LogEntry(
                tier=tier,
                phase=PhaseType.VOTING,
                event_type=EventType.DELEGATION_SUMMARY,
                payload=payload,
                message=f"Tier {tier} elected {len(delegates)} delegates representing {represented}",
            )
        )
