"""
Time slot generation over a learner's study window.
"""

import logging
from collections.abc import Sequence
from datetime import date, time

from study_scheduler.config import DEFAULT_CONFIG, SchedulingConfig
from study_scheduler.models import BlockedWindow, CognitiveWindow, Session, TimeSlot
from study_scheduler.timeutils import from_minutes, to_minutes

logger = logging.getLogger(__name__)

FAMILY_SLOT_PREFIX = "family_"


def slot_id(day: date, index: int, prefix: str = "") -> str:
    return f"{prefix}{day.isoformat()}_slot_{index}"


def daily_windows(
    window_start: time, window_end: time, session_minutes: int, break_minutes: int
) -> list[tuple[int, int]]:
    """(start, end) minute pairs packed back to back with breaks."""
    if session_minutes <= 0:
        return []
    cursor = to_minutes(window_start)
    end = to_minutes(window_end)
    windows = []
    while cursor + session_minutes <= end:
        windows.append((cursor, cursor + session_minutes))
        cursor += session_minutes + break_minutes
    return windows


def distribution_score(position: int, slots_in_day: int, target: float) -> float:
    if slots_in_day <= 0:
        return 0.0
    return 1 - abs(position / slots_in_day - target)


def optimality_score(
    efficiency: float,
    is_optimal: bool,
    window: CognitiveWindow,
    difficult_subjects_morning: bool,
    config: SchedulingConfig = DEFAULT_CONFIG,
) -> float:
    score = efficiency
    if is_optimal:
        score += config.optimal_bonus
    if difficult_subjects_morning and window == CognitiveWindow.PEAK_MORNING:
        score += config.morning_preference_bonus
    return min(score, 1.0)


def order_slots(slots: Sequence[TimeSlot]) -> list[TimeSlot]:
    """Best slots first; equal ranks keep calendar order."""
    return sorted(slots, key=lambda s: (-s.rank, s.date, s.start))


def calendar_order(slots: Sequence[TimeSlot]) -> list[TimeSlot]:
    return sorted(slots, key=lambda s: (s.date, s.start, s.id))


def generate_time_slots(
    days: Sequence[date],
    window_start: time,
    window_end: time,
    session_minutes: int,
    break_minutes: int,
    *,
    difficult_subjects_morning: bool = True,
    prefix: str = "",
    config: SchedulingConfig = DEFAULT_CONFIG,
) -> list[TimeSlot]:
    """Generate scored slots for every day, best-ranked first."""
    slots: list[TimeSlot] = []
    for day_index, day in enumerate(days):
        windows = daily_windows(window_start, window_end, session_minutes, break_minutes)
        for position, (start_minutes, end_minutes) in enumerate(windows):
            start = from_minutes(start_minutes)
            band = config.band_for(start)
            is_optimal = config.is_optimal(start)
            slots.append(
                TimeSlot(
                    id=slot_id(day, position, prefix),
                    date=day,
                    start=start,
                    end=from_minutes(end_minutes),
                    duration_minutes=end_minutes - start_minutes,
                    window=band.window,
                    efficiency=band.efficiency,
                    optimality_score=optimality_score(
                        band.efficiency,
                        is_optimal,
                        band.window,
                        difficult_subjects_morning,
                        config,
                    ),
                    distribution_score=distribution_score(
                        position, len(windows), config.distribution_target
                    ),
                    is_optimal=is_optimal,
                    day_index=day_index,
                    position=position,
                )
            )

    logger.debug(f"Generated {len(slots)} slots over {len(days)} days")
    return order_slots(slots)


def is_blocked(slot: TimeSlot, blocked_windows: Sequence[BlockedWindow]) -> BlockedWindow | None:
    for window in blocked_windows:
        if window.applies_to(slot.date) and slot.overlaps(
            to_minutes(window.start), to_minutes(window.end)
        ):
            return window
    return None


def remove_occupied_slots(
    slots: Sequence[TimeSlot], sessions: Sequence[Session]
) -> list[TimeSlot]:
    """Drop slots that overlap already scheduled sessions."""
    return [
        slot
        for slot in slots
        if not any(
            s.scheduled_date == slot.date and slot.overlaps(s.start_minutes, s.end_minutes)
            for s in sessions
        )
    ]


def remove_blocked_slots(
    slots: Sequence[TimeSlot], blocked_windows: Sequence[BlockedWindow]
) -> list[TimeSlot]:
    if not blocked_windows:
        return list(slots)
    kept = [slot for slot in slots if is_blocked(slot, blocked_windows) is None]
    if len(kept) != len(slots):
        logger.debug(f"Removed {len(slots) - len(kept)} blocked slots")
    return kept
