from __future__ import annotations

import logging
import time as time_module
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import time
from typing import Any

from ortools.sat.python import cp_model

from study_scheduler.models import Session, TimeSlot
from study_scheduler.pool import SlotPool

logger = logging.getLogger(__name__)


@dataclass
class LearnerWindow:
    """Where one learner's sessions may be placed."""

    learner_id: str
    weekdays: set[int]
    start: time
    end: time
    max_daily_minutes: int

    def fits(self, slot: TimeSlot) -> bool:
        return (
            slot.date.weekday() in self.weekdays
            and slot.start >= self.start
            and slot.end <= self.end
        )


@dataclass(frozen=True)
class RebalanceConfig:
    max_time_in_seconds: float = 5.0
    log_search_progress: bool = False
    placement_reward: int = 10_000
    day_distance_penalty: int = 100
    minute_step: int = 15
    efficiency_reward: int = 10


@dataclass
class RebalanceResult:
    moves: dict[str, str] = field(default_factory=dict)
    unplaced: list[str] = field(default_factory=list)
    status: str = "UNKNOWN"
    solve_time_seconds: float = 0.0


def candidate_slots(
    mover: Session,
    others: Sequence[Session],
    pool: SlotPool,
    window: LearnerWindow,
) -> list[TimeSlot]:
    """Free pool slots the mover fits into without touching other sessions."""
    candidates = []
    for slot in pool.free_slots(
        weekdays=window.weekdays, window_start=window.start, window_end=window.end
    ):
        if slot.duration_minutes != mover.duration_minutes:
            continue
        if any(
            other.scheduled_date == slot.date
            and slot.overlaps(other.start_minutes, other.end_minutes)
            for other in others
        ):
            continue
        candidates.append(slot)
    return candidates


def rebalance_sessions(
    movers: Sequence[Session],
    sessions: Sequence[Session],
    pool: SlotPool,
    windows: Mapping[str, LearnerWindow],
    *,
    config: RebalanceConfig | None = None,
) -> RebalanceResult:
    """Reassign conflicting sessions to free pool slots with CP-SAT.

    Maximizes the number of placed sessions, then minimizes displacement
    (days, then minutes) from the original position. Sessions that cannot
    be placed are reported as unplaced and keep their position.
    """
    start_time = time_module.time()
    if config is None:
        config = RebalanceConfig()
    if not movers:
        return RebalanceResult(status="NO_MOVERS")

    mover_ids = {m.id for m in movers}
    others = [s for s in sessions if s.id not in mover_ids]
    candidates: list[list[TimeSlot]] = [
        candidate_slots(mover, others, pool, windows[mover.learner_id]) for mover in movers
    ]
    if not any(candidates):
        return RebalanceResult(
            unplaced=[m.id for m in movers],
            status="NO_CANDIDATES",
            solve_time_seconds=time_module.time() - start_time,
        )

    model = cp_model.CpModel()

    # Decision variables: x[i, slot_id] = 1 if mover i goes to the slot
    x: dict[tuple[int, str], Any] = {}
    for i, slots in enumerate(candidates):
        for slot in slots:
            x[i, slot.id] = model.NewBoolVar(f"mover_{i}_{slot.id}")

    placed = {}
    for i, slots in enumerate(candidates):
        placed[i] = model.NewBoolVar(f"placed_{i}")
        model.Add(sum(x[i, slot.id] for slot in slots) == placed[i])

    # Constraint 1: each slot takes at most one mover
    slot_users: dict[str, list[int]] = {}
    slot_by_id: dict[str, TimeSlot] = {}
    for i, slots in enumerate(candidates):
        for slot in slots:
            slot_users.setdefault(slot.id, []).append(i)
            slot_by_id[slot.id] = slot
    for slot_id, users in slot_users.items():
        model.Add(sum(x[i, slot_id] for i in users) <= 1)

    # Constraint 2: a slot overlapping a mover's current position is only
    # usable when that mover leaves
    for k, mover in enumerate(movers):
        for slot_id, users in slot_users.items():
            slot = slot_by_id[slot_id]
            if slot.date != mover.scheduled_date or not slot.overlaps(
                mover.start_minutes, mover.end_minutes
            ):
                continue
            for i in users:
                if i != k:
                    model.Add(x[i, slot_id] <= placed[k])

    # Constraint 3: daily study cap per learner
    for learner_id, window in windows.items():
        learner_movers = [i for i, m in enumerate(movers) if m.learner_id == learner_id]
        if not learner_movers:
            continue
        dates = {slot.date for i in learner_movers for slot in candidates[i]}
        for day in dates:
            base = sum(
                s.duration_minutes
                for s in others
                if s.learner_id == learner_id and s.scheduled_date == day
            )
            stay = [
                (i, movers[i].duration_minutes)
                for i in learner_movers
                if movers[i].scheduled_date == day
            ]
            incoming = [
                x[i, slot.id] * slot.duration_minutes
                for i in learner_movers
                for slot in candidates[i]
                if slot.date == day
            ]
            staying = [(1 - placed[i]) * minutes for i, minutes in stay]
            # A day already over the cap may not grow
            current = base + sum(minutes for _, minutes in stay)
            model.Add(
                base + sum(staying) + sum(incoming)
                <= max(window.max_daily_minutes, current)
            )

    objective_terms = []
    for i, mover in enumerate(movers):
        for slot in candidates[i]:
            day_distance = abs((slot.date - mover.scheduled_date).days)
            minute_distance = abs(slot.start_minutes - mover.start_minutes) // config.minute_step
            score = (
                config.placement_reward
                - config.day_distance_penalty * day_distance
                - minute_distance
                + int(config.efficiency_reward * slot.efficiency)
            )
            objective_terms.append(x[i, slot.id] * score)
    model.Maximize(sum(objective_terms))

    solver = cp_model.CpSolver()
    solver.parameters.max_time_in_seconds = float(config.max_time_in_seconds)
    solver.parameters.log_search_progress = bool(config.log_search_progress)
    status = solver.Solve(model)

    result = RebalanceResult(
        status=solver.StatusName(status),
        solve_time_seconds=time_module.time() - start_time,
    )
    if status in [cp_model.OPTIMAL, cp_model.FEASIBLE]:
        for i, mover in enumerate(movers):
            chosen = [slot.id for slot in candidates[i] if solver.Value(x[i, slot.id]) == 1]
            if chosen:
                result.moves[mover.id] = chosen[0]
            else:
                result.unplaced.append(mover.id)
    else:
        result.unplaced = [m.id for m in movers]

    logger.info(
        f"Rebalanced {len(result.moves)}/{len(movers)} sessions "
        f"({result.status}, {result.solve_time_seconds:.3f}s)"
    )
    return result
