"""
Shared slot pool used to coordinate several learners in one run.

A slot has at most one owner; reserving an owned slot raises
``SlotReservationError``. The pool lives for a single coordination run.
"""

import logging
from collections.abc import Iterable, Iterator, Sequence
from datetime import date, time

from study_scheduler.exceptions import SlotReservationError
from study_scheduler.models import BlockedWindow, ReservationState, Session, TimeSlot
from study_scheduler.slots import calendar_order, is_blocked, order_slots

logger = logging.getLogger(__name__)


class SlotPool:
    def __init__(self, slots: Iterable[TimeSlot]):
        self._slots: dict[str, TimeSlot] = {}
        for slot in calendar_order(list(slots)):
            self._slots[slot.id] = slot

    def __iter__(self) -> Iterator[TimeSlot]:
        return iter(self._slots.values())

    def __len__(self) -> int:
        return len(self._slots)

    def __contains__(self, slot_id: object) -> bool:
        return slot_id in self._slots

    def get(self, slot_id: str) -> TimeSlot:
        try:
            return self._slots[slot_id]
        except KeyError:
            raise SlotReservationError(slot_id, owner="unknown slot") from None

    def free_slots(
        self,
        *,
        weekdays: set[int] | None = None,
        window_start: time | None = None,
        window_end: time | None = None,
        days: Iterable[date] | None = None,
    ) -> list[TimeSlot]:
        """Free slots matching the filters, best-ranked first."""
        wanted_days = set(days) if days is not None else None
        matches = []
        for slot in self._slots.values():
            if not slot.is_free:
                continue
            if weekdays is not None and slot.date.weekday() not in weekdays:
                continue
            if wanted_days is not None and slot.date not in wanted_days:
                continue
            if window_start is not None and slot.start < window_start:
                continue
            if window_end is not None and slot.end > window_end:
                continue
            matches.append(slot)
        return order_slots(matches)

    def reserve(
        self,
        slot_id: str,
        owner: str,
        state: ReservationState = ReservationState.RESERVED_ASSIGNMENT,
        reason: str | None = None,
    ) -> TimeSlot:
        slot = self.get(slot_id)
        if not slot.is_free:
            raise SlotReservationError(slot_id, slot.owner)
        slot.state = state
        slot.owner = owner
        slot.reason = reason
        return slot

    def release(self, slot_id: str) -> TimeSlot:
        slot = self.get(slot_id)
        slot.state = ReservationState.FREE
        slot.owner = None
        slot.reason = None
        return slot

    def reserve_overlapping(
        self,
        day: date,
        start_minutes: int,
        end_minutes: int,
        owner: str,
        state: ReservationState,
        reason: str | None = None,
    ) -> list[TimeSlot]:
        """Reserve every free slot on ``day`` overlapping the minute range."""
        reserved = []
        for slot in self._slots.values():
            if slot.date == day and slot.is_free and slot.overlaps(start_minutes, end_minutes):
                reserved.append(self.reserve(slot.id, owner, state, reason))
        return reserved

    def reserve_existing(self, sessions: Sequence[Session]) -> int:
        """Reserve slots already occupied by persisted sessions."""
        count = 0
        for session in sessions:
            count += len(
                self.reserve_overlapping(
                    session.scheduled_date,
                    session.start_minutes,
                    session.end_minutes,
                    session.learner_id,
                    ReservationState.RESERVED_EXISTING,
                    f"existing session {session.id}",
                )
            )
        logger.info(f"Reserved {count} slots for {len(sessions)} existing sessions")
        return count

    def apply_blocked(self, blocked_windows: Sequence[BlockedWindow]) -> int:
        count = 0
        for slot in self._slots.values():
            if not slot.is_free:
                continue
            window = is_blocked(slot, blocked_windows)
            if window is not None:
                self.reserve(slot.id, "blocked", ReservationState.RESERVED_BLOCKED, window.reason)
                count += 1
        logger.info(f"Blocked {count} slots")
        return count

    def summary(self) -> dict[str, int]:
        counts = {state.value: 0 for state in ReservationState}
        for slot in self._slots.values():
            counts[slot.state.value] += 1
        return counts
