"""Small helpers for minute-of-day arithmetic."""

from datetime import date, time, timedelta

WEEKDAY_NAMES = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


def to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def from_minutes(minutes: int) -> time:
    """Convert minutes since midnight to a time, clamped to the same day."""
    minutes = max(0, min(int(minutes), 24 * 60 - 1))
    return time(minutes // 60, minutes % 60)


def parse_hhmm(value: str) -> time:
    """Parse an ``HH:MM`` string, raising ValueError on anything else."""
    parts = value.strip().split(":")
    if len(parts) < 2:
        raise ValueError(f"Invalid time format: {value!r} (expected HH:MM)")
    hours, minutes = int(parts[0]), int(parts[1])
    return time(hours, minutes)


def weekday_name(day: date) -> str:
    return WEEKDAY_NAMES[day.weekday()]


def date_range(start: date, end: date) -> list[date]:
    """Inclusive list of dates; empty when the range is reversed."""
    if end < start:
        return []
    return [start + timedelta(days=offset) for offset in range((end - start).days + 1)]


def overlap_minutes(start_a: int, end_a: int, start_b: int, end_b: int) -> int:
    return max(0, min(end_a, end_b) - max(start_a, start_b))
