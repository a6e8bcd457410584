"""
Cognitive load optimization passes over an assigned schedule.

The passes only move sessions between positions and spare slots; the number
of sessions in equals the number of sessions out.
"""

import logging
from collections import defaultdict
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, time

from study_scheduler.assignment import cognitive_match
from study_scheduler.config import DEFAULT_CONFIG, SchedulingConfig
from study_scheduler.models import LearnerProfile, LoadDistribution, Session, TimeSlot

logger = logging.getLogger(__name__)

PASS_REDISTRIBUTION = "within_day_redistribution"
PASS_DAILY_CAP = "daily_cap_enforcement"
PASS_SUBJECT_VARIETY = "subject_variety"


@dataclass
class OptimizationOutcome:
    sessions: list[Session]
    passes_applied: list[str] = field(default_factory=list)
    changes: dict[str, int] = field(default_factory=dict)
    overloaded_dates: list[date] = field(default_factory=list)


@dataclass(frozen=True)
class _Position:
    day: date
    start: time
    slot_id: str | None
    efficiency: float
    duration: int


def _position_of(session: Session) -> _Position:
    return _Position(
        session.scheduled_date,
        session.start_time,
        session.slot_id,
        session.efficiency_score,
        session.duration_minutes,
    )


def _slot_position(slot: TimeSlot) -> _Position:
    return _Position(slot.date, slot.start, slot.id, slot.efficiency, slot.duration_minutes)


def _place(session: Session, position: _Position, config: SchedulingConfig) -> Session:
    return session.model_copy(
        update={
            "scheduled_date": position.day,
            "start_time": position.start,
            "slot_id": position.slot_id,
            "efficiency_score": position.efficiency,
            "duration_minutes": position.duration,
            "cognitive_match": cognitive_match(
                config.weight_for(session.subject), position.efficiency
            ),
        }
    )


def _by_day(sessions: Sequence[Session]) -> dict[date, list[Session]]:
    days: dict[date, list[Session]] = defaultdict(list)
    for session in sessions:
        days[session.scheduled_date].append(session)
    return {day: sorted(group, key=lambda s: s.sort_key) for day, group in sorted(days.items())}


def _interleave(ordered: list[Session]) -> list[Session]:
    """Heavy, light, heavy, light... from a heaviest-first list."""
    result = []
    low, high = 0, len(ordered) - 1
    take_heavy = True
    while low <= high:
        if take_heavy:
            result.append(ordered[low])
            low += 1
        else:
            result.append(ordered[high])
            high -= 1
        take_heavy = not take_heavy
    return result


def redistribute_within_day(
    sessions: Sequence[Session],
    strategy: LoadDistribution,
    config: SchedulingConfig = DEFAULT_CONFIG,
) -> tuple[list[Session], int]:
    """Reorder each day's sessions over the same positions by subject weight.

    Only sessions of equal duration trade positions, and joint-study
    sessions stay where they are.
    """
    result: list[Session] = []
    moved = 0
    for day_sessions in _by_day(sessions).values():
        fixed = [s for s in day_sessions if s.joint_group]
        result.extend(fixed)
        by_duration: dict[int, list[Session]] = defaultdict(list)
        for session in day_sessions:
            if not session.joint_group:
                by_duration[session.duration_minutes].append(session)

        for group in by_duration.values():
            positions = [_position_of(s) for s in group]
            heaviest_first = sorted(group, key=lambda s: -config.weight_for(s.subject))
            if strategy == LoadDistribution.FRONT_LOADED:
                ordered = heaviest_first
            elif strategy == LoadDistribution.BACK_LOADED:
                ordered = sorted(group, key=lambda s: config.weight_for(s.subject))
            else:
                ordered = _interleave(heaviest_first)

            for session, position in zip(ordered, positions):
                if _position_of(session) != position:
                    moved += 1
                    result.append(_place(session, position, config))
                else:
                    result.append(session)

    return sorted(result, key=lambda s: s.sort_key), moved


def enforce_daily_cap(
    sessions: Sequence[Session],
    max_daily_minutes: int,
    spare_slots: Sequence[TimeSlot],
    config: SchedulingConfig = DEFAULT_CONFIG,
    booked_minutes: Mapping[date, int] | None = None,
) -> tuple[list[Session], list[TimeSlot], list[date], int]:
    """Move overflow sessions to spare slots on other days.

    Later days are tried before earlier ones. Dates that still exceed the
    cap are returned as overloaded. Returns the remaining spare slots too.
    ``booked_minutes`` holds minutes already stored per day; they count
    toward the cap but are never moved.
    """
    booked = booked_minutes or {}
    current = list(sessions)
    spares = sorted(spare_slots, key=lambda s: (s.date, s.start, s.id))
    overloaded: list[date] = []
    moved = 0

    def minutes_on(day: date) -> int:
        return booked.get(day, 0) + sum(
            s.duration_minutes for s in current if s.scheduled_date == day
        )

    for day in sorted({s.scheduled_date for s in current}):
        while minutes_on(day) > max_daily_minutes:
            movable = [s for s in current if s.scheduled_date == day and not s.joint_group]
            if not movable:
                overloaded.append(day)
                break
            victim = max(movable, key=lambda s: (s.start_time, s.id))

            later = [slot for slot in spares if slot.date > day]
            earlier = sorted(
                (slot for slot in spares if slot.date < day),
                key=lambda s: (s.date, s.start),
                reverse=True,
            )
            target = None
            for slot in later + earlier:
                if minutes_on(slot.date) + slot.duration_minutes <= max_daily_minutes:
                    target = slot
                    break

            if target is None:
                logger.info(f"No spare capacity for overflow on {day}; flagging overload")
                overloaded.append(day)
                break

            spares.remove(target)
            current[current.index(victim)] = _place(victim, _slot_position(target), config)
            moved += 1

    return sorted(current, key=lambda s: s.sort_key), spares, overloaded, moved


def _adjacent_repeats(day_sessions: Sequence[Session]) -> int:
    return sum(
        1
        for previous, session in zip(day_sessions, day_sessions[1:])
        if previous.subject == session.subject
    )


def improve_subject_variety(
    sessions: Sequence[Session],
    spare_slots: Sequence[TimeSlot],
    config: SchedulingConfig = DEFAULT_CONFIG,
) -> tuple[list[Session], list[TimeSlot], int]:
    """Break up runs of the same subject within a day.

    A repeated session is swapped with a later session of another subject,
    or moved into a later spare slot of the same day, whichever lowers the
    number of back-to-back repeats.
    """
    spares = list(spare_slots)
    result: list[Session] = []
    changed = 0

    for day, day_sessions in _by_day(sessions).items():
        day_sessions = list(day_sessions)
        improved = True
        while improved and _adjacent_repeats(day_sessions) > 0:
            improved = False
            baseline = _adjacent_repeats(day_sessions)
            for i in range(1, len(day_sessions)):
                session = day_sessions[i]
                if session.joint_group or session.subject != day_sessions[i - 1].subject:
                    continue

                for j in range(i + 1, len(day_sessions)):
                    other = day_sessions[j]
                    if (
                        other.joint_group
                        or other.subject == session.subject
                        or other.duration_minutes != session.duration_minutes
                    ):
                        continue
                    candidate = list(day_sessions)
                    candidate[i] = _place(other, _position_of(session), config)
                    candidate[j] = _place(session, _position_of(other), config)
                    candidate.sort(key=lambda s: s.sort_key)
                    if _adjacent_repeats(candidate) < baseline:
                        day_sessions = candidate
                        improved = True
                        break
                if improved:
                    break

                later_spares = [
                    slot
                    for slot in spares
                    if slot.date == day
                    and slot.start > session.start_time
                    and slot.duration_minutes == session.duration_minutes
                ]
                for slot in sorted(later_spares, key=lambda s: s.start):
                    candidate = list(day_sessions)
                    candidate[i] = _place(session, _slot_position(slot), config)
                    candidate.sort(key=lambda s: s.sort_key)
                    if _adjacent_repeats(candidate) < baseline:
                        spares.remove(slot)
                        day_sessions = candidate
                        improved = True
                        break
                if improved:
                    break
            if improved:
                changed += 1
        result.extend(day_sessions)

    return sorted(result, key=lambda s: s.sort_key), spares, changed


def optimize_cognitive_load(
    sessions: Sequence[Session],
    strategy: LoadDistribution,
    profile: LearnerProfile,
    spare_slots: Sequence[TimeSlot] = (),
    config: SchedulingConfig = DEFAULT_CONFIG,
    booked_minutes: Mapping[date, int] | None = None,
) -> OptimizationOutcome:
    if not sessions:
        return OptimizationOutcome(sessions=[])

    outcome = OptimizationOutcome(sessions=list(sessions))

    redistributed, moved = redistribute_within_day(outcome.sessions, strategy, config)
    outcome.sessions = redistributed
    outcome.passes_applied.append(PASS_REDISTRIBUTION)
    outcome.changes[PASS_REDISTRIBUTION] = moved

    capped, spares, overloaded, moved = enforce_daily_cap(
        outcome.sessions,
        profile.max_daily_study_minutes,
        spare_slots,
        config,
        booked_minutes=booked_minutes,
    )
    outcome.sessions = capped
    outcome.overloaded_dates = overloaded
    outcome.passes_applied.append(PASS_DAILY_CAP)
    outcome.changes[PASS_DAILY_CAP] = moved

    varied, _, changed = improve_subject_variety(outcome.sessions, spares, config)
    outcome.sessions = varied
    outcome.passes_applied.append(PASS_SUBJECT_VARIETY)
    outcome.changes[PASS_SUBJECT_VARIETY] = changed

    if len(outcome.sessions) != len(sessions):
        raise RuntimeError("cognitive load optimization changed the session count")

    logger.info(
        f"Cognitive load optimization for {profile.learner_id}: {outcome.changes}, "
        f"{len(overloaded)} overloaded dates"
    )
    return outcome
