"""
Coordination strategies applied after every learner has been scheduled.

None of the strategies drops a session. Balanced and staggered leave no
cross-learner overlap whenever free pool capacity allows it; synchronized
deliberately puts same-subject sessions in one slot as a joint-study group.
"""

import logging
from collections import defaultdict
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date

from study_scheduler.advisory.client import AdvisoryClient
from study_scheduler.advisory.prompts import (
    REBALANCE_SYSTEM_PROMPT,
    build_rebalance_prompt,
    get_rebalance_tool,
)
from study_scheduler.advisory.schemas import Adjustment, parse_rebalance_reply
from study_scheduler.assignment import cognitive_match
from study_scheduler.config import DEFAULT_CONFIG, SchedulingConfig
from study_scheduler.exceptions import AdvisoryServiceError
from study_scheduler.family.conflicts import detect_conflicts
from study_scheduler.family.rebalance import (
    LearnerWindow,
    RebalanceConfig,
    rebalance_sessions,
)
from study_scheduler.models import Conflict, ReservationState, Session, TimeSlot
from study_scheduler.pool import SlotPool
from study_scheduler.timeutils import from_minutes, overlap_minutes

logger = logging.getLogger(__name__)


@dataclass
class ResolutionOutcome:
    sessions: list[Session]
    source: str = "none"
    moved: int = 0
    warnings: list[str] = field(default_factory=list)


def place_in_slot(
    session: Session, slot: TimeSlot, config: SchedulingConfig = DEFAULT_CONFIG
) -> Session:
    """Move a session into its own slot; it leaves any joint-study group."""
    return session.model_copy(
        update={
            "scheduled_date": slot.date,
            "start_time": slot.start,
            "slot_id": slot.id,
            "efficiency_score": slot.efficiency,
            "cognitive_match": cognitive_match(config.weight_for(session.subject), slot.efficiency),
            "joint_group": None,
        }
    )


def _release_if_unused(pool: SlotPool, session: Session, sessions: Sequence[Session]) -> None:
    """Free the session's slot unless another session still sits in it."""
    if not session.slot_id or session.slot_id not in pool:
        return
    slot = pool.get(session.slot_id)
    if slot.owner != session.learner_id:
        return
    if any(other.slot_id == session.slot_id and other.id != session.id for other in sessions):
        return
    pool.release(slot.id)


def _overlaps_any(
    day: date, start: int, end: int, sessions: Sequence[Session], exclude: set[str]
) -> bool:
    return any(
        s.scheduled_date == day
        and s.id not in exclude
        and overlap_minutes(start, end, s.start_minutes, s.end_minutes) > 0
        for s in sessions
    )


def _minutes_on(learner_id: str, day: date, sessions: Sequence[Session], exclude: set[str]) -> int:
    return sum(
        s.duration_minutes
        for s in sessions
        if s.learner_id == learner_id and s.scheduled_date == day and s.id not in exclude
    )


def _replace(sessions: list[Session], updated: Session) -> None:
    for index, session in enumerate(sessions):
        if session.id == updated.id:
            sessions[index] = updated
            return


def choose_movers(conflicts: Sequence[Conflict], learner_order: Sequence[str]) -> list[str]:
    """For each conflict the learner scheduled later yields its session."""
    rank = {learner_id: index for index, learner_id in enumerate(learner_order)}
    movers: list[str] = []
    for conflict in conflicts:
        if rank.get(conflict.learner_a, 0) > rank.get(conflict.learner_b, 0):
            mover = conflict.session_a_id
        else:
            mover = conflict.session_b_id
        if mover not in movers:
            movers.append(mover)
    return movers


def rule_based_rebalance(
    sessions: Sequence[Session],
    conflicts: Sequence[Conflict],
    pool: SlotPool,
    windows: Mapping[str, LearnerWindow],
    learner_order: Sequence[str],
    *,
    config: SchedulingConfig = DEFAULT_CONFIG,
    rebalance_config: RebalanceConfig | None = None,
) -> ResolutionOutcome:
    current = list(sessions)
    by_id = {s.id: s for s in current}
    movers = [by_id[session_id] for session_id in choose_movers(conflicts, learner_order)]
    result = rebalance_sessions(movers, current, pool, windows, config=rebalance_config)

    outcome = ResolutionOutcome(sessions=current, source="rule_based")
    for session_id, slot_id in sorted(result.moves.items()):
        session = by_id[session_id]
        _release_if_unused(pool, session, current)
        slot = pool.reserve(slot_id, session.learner_id, ReservationState.RESERVED_ASSIGNMENT)
        _replace(current, place_in_slot(session, slot, config))
        outcome.moved += 1
    if result.unplaced:
        outcome.warnings.append(
            f"{len(result.unplaced)} conflicting sessions could not be moved ({result.status})"
        )
    outcome.sessions = sorted(current, key=lambda s: s.sort_key)
    return outcome


class RebalanceAdvisor:
    """Asks the advisory service for move/swap/merge adjustments.

    Adjustments are validated as a batch; one bad adjustment rejects the
    whole reply with ``AdvisoryServiceError``.
    """

    def __init__(self, client: AdvisoryClient, config: SchedulingConfig = DEFAULT_CONFIG):
        self.client = client
        self.config = config

    def is_available(self) -> bool:
        return self.client.is_available()

    def resolve(
        self,
        conflicts: Sequence[Conflict],
        sessions: Sequence[Session],
        pool: SlotPool,
        windows: Mapping[str, LearnerWindow],
    ) -> ResolutionOutcome:
        free_slots = pool.free_slots()
        prompt = build_rebalance_prompt(conflicts, sessions, free_slots)
        payload = self.client.call_tool(REBALANCE_SYSTEM_PROMPT, prompt, get_rebalance_tool())
        adjustments = parse_rebalance_reply(
            payload, {s.id for s in sessions}, {slot.id for slot in free_slots}
        )
        return self.apply(adjustments, sessions, pool, windows)

    def apply(
        self,
        adjustments: Sequence[Adjustment],
        sessions: Sequence[Session],
        pool: SlotPool,
        windows: Mapping[str, LearnerWindow],
    ) -> ResolutionOutcome:
        planned = list(sessions)
        taken: set[str] = set()
        pool_changes: list[tuple[str, Session, Session]] = []

        for adjustment in adjustments:
            by_id = {s.id: s for s in planned}
            session = by_id[adjustment.session_id]
            if adjustment.action == "move":
                updated = self._plan_move(adjustment, session, planned, pool, windows, taken)
                pool_changes.append(("move", session, updated))
                _replace(planned, updated)
            elif adjustment.action == "swap":
                other = by_id[adjustment.other_session_id]
                first, second = self._plan_swap(session, other, planned, windows)
                pool_changes.append(("swap", session, first))
                pool_changes.append(("swap", other, second))
                _replace(planned, first)
                _replace(planned, second)
            else:
                other = by_id[adjustment.other_session_id]
                anchor, joined = self._plan_merge(session, other, planned, windows)
                pool_changes.append(("merge", other, joined))
                _replace(planned, anchor)
                _replace(planned, joined)

        self._commit(pool_changes, planned, pool)
        return ResolutionOutcome(
            sessions=sorted(planned, key=lambda s: s.sort_key),
            source="advisory",
            moved=len(adjustments),
        )

    def _plan_move(
        self,
        adjustment: Adjustment,
        session: Session,
        planned: Sequence[Session],
        pool: SlotPool,
        windows: Mapping[str, LearnerWindow],
        taken: set[str],
    ) -> Session:
        slot = pool.get(adjustment.target_slot_id)
        if not slot.is_free or slot.id in taken:
            raise AdvisoryServiceError(f"move target {slot.id} is not free")
        if not windows[session.learner_id].fits(slot):
            raise AdvisoryServiceError(f"move target {slot.id} is outside the learner's window")
        if slot.duration_minutes != session.duration_minutes:
            raise AdvisoryServiceError(f"move target {slot.id} has a different length")
        if _overlaps_any(slot.date, slot.start_minutes, slot.end_minutes, planned, {session.id}):
            raise AdvisoryServiceError(f"move target {slot.id} overlaps another session")
        taken.add(slot.id)
        return place_in_slot(session, slot, self.config)

    def _plan_swap(
        self,
        session: Session,
        other: Session,
        planned: Sequence[Session],
        windows: Mapping[str, LearnerWindow],
    ) -> tuple[Session, Session]:
        if session.duration_minutes != other.duration_minutes:
            raise AdvisoryServiceError("swap between sessions of different length")
        first = self._at(session, other)
        second = self._at(other, session)
        for moved in (first, second):
            self._check_window(moved, windows)
        exclude = {session.id, other.id}
        for moved in (first, second):
            if _overlaps_any(
                moved.scheduled_date, moved.start_minutes, moved.end_minutes,
                [s for s in planned if s.learner_id == moved.learner_id], exclude,
            ):
                raise AdvisoryServiceError(f"swap puts {moved.id} on top of its own session")
        return first, second

    def _plan_merge(
        self,
        session: Session,
        other: Session,
        planned: Sequence[Session],
        windows: Mapping[str, LearnerWindow],
    ) -> tuple[Session, Session]:
        if session.subject != other.subject:
            raise AdvisoryServiceError("merge requires sessions of the same subject")
        if session.learner_id == other.learner_id:
            raise AdvisoryServiceError("merge requires sessions of different learners")
        if session.duration_minutes != other.duration_minutes:
            raise AdvisoryServiceError("merge between sessions of different length")
        group = session.joint_group or f"joint_{session.id}"
        anchor = session.model_copy(update={"joint_group": group})
        joined = self._at(other, session).model_copy(update={"joint_group": group})
        self._check_window(joined, windows)
        if _overlaps_any(
            joined.scheduled_date, joined.start_minutes, joined.end_minutes,
            [s for s in planned if s.learner_id == other.learner_id], {other.id},
        ):
            raise AdvisoryServiceError(f"merge puts {other.id} on top of its own session")
        return anchor, joined

    def _at(self, session: Session, target: Session) -> Session:
        return session.model_copy(
            update={
                "scheduled_date": target.scheduled_date,
                "start_time": target.start_time,
                "slot_id": target.slot_id,
                "efficiency_score": target.efficiency_score,
                "cognitive_match": cognitive_match(
                    self.config.weight_for(session.subject), target.efficiency_score
                ),
            }
        )

    def _check_window(self, session: Session, windows: Mapping[str, LearnerWindow]) -> None:
        window = windows[session.learner_id]
        if session.scheduled_date.weekday() not in window.weekdays:
            raise AdvisoryServiceError(f"{session.id} lands on a non-study day")
        if session.start_time < window.start or session.end_time > window.end:
            raise AdvisoryServiceError(f"{session.id} lands outside the study window")

    def _commit(
        self,
        changes: Sequence[tuple[str, Session, Session]],
        planned: Sequence[Session],
        pool: SlotPool,
    ) -> None:
        for action, before, after in changes:
            if action == "move":
                _release_if_unused(pool, before, planned)
                pool.reserve(after.slot_id, after.learner_id)
            elif action == "merge":
                _release_if_unused(pool, before, planned)
        # Swapped sessions trade slots; ownership follows the session
        swapped = [after for action, _, after in changes if action == "swap"]
        for after in swapped:
            if after.slot_id and after.slot_id in pool:
                slot = pool.get(after.slot_id)
                slot.owner = after.learner_id


def resolve_balanced(
    sessions: Sequence[Session],
    pool: SlotPool,
    windows: Mapping[str, LearnerWindow],
    learner_order: Sequence[str],
    *,
    advisor: RebalanceAdvisor | None = None,
    config: SchedulingConfig = DEFAULT_CONFIG,
    rebalance_config: RebalanceConfig | None = None,
) -> ResolutionOutcome:
    conflicts = detect_conflicts(sessions, config)
    outcome = ResolutionOutcome(sessions=list(sessions))
    if not conflicts:
        return outcome

    severe = [c for c in conflicts if c.severity >= config.severity_threshold]
    if severe and advisor is not None and advisor.is_available():
        try:
            advised = advisor.resolve(severe, outcome.sessions, pool, windows)
            outcome.sessions = advised.sessions
            outcome.source = "advisory"
            outcome.moved += advised.moved
        except AdvisoryServiceError as e:
            logger.warning(f"Advisory conflict resolution rejected: {e}")
            outcome.warnings.append(e.message)

    remaining = detect_conflicts(outcome.sessions, config)
    if remaining:
        rebalanced = rule_based_rebalance(
            outcome.sessions, remaining, pool, windows, learner_order,
            config=config, rebalance_config=rebalance_config,
        )
        outcome.sessions = rebalanced.sessions
        outcome.moved += rebalanced.moved
        outcome.warnings.extend(rebalanced.warnings)
        outcome.source = "rule_based" if outcome.source == "none" else "advisory+rule_based"
    return outcome


def _fixed_ranges(pool: SlotPool) -> dict[date, list[tuple[int, int]]]:
    ranges: dict[date, list[tuple[int, int]]] = defaultdict(list)
    for slot in pool:
        if slot.state in (ReservationState.RESERVED_BLOCKED, ReservationState.RESERVED_EXISTING):
            ranges[slot.date].append((slot.start_minutes, slot.end_minutes))
    return ranges


def _total_overlap(mine: Sequence[Session], placed: Sequence[Session]) -> int:
    total = 0
    for session in mine:
        for other in placed:
            if other.scheduled_date == session.scheduled_date:
                total += overlap_minutes(
                    session.start_minutes, session.end_minutes,
                    other.start_minutes, other.end_minutes,
                )
    return total


def _shift(session: Session, offset: int, config: SchedulingConfig) -> Session:
    start = from_minutes(session.start_minutes + offset)
    efficiency = config.band_for(start).efficiency
    return session.model_copy(
        update={
            "start_time": start,
            "efficiency_score": efficiency,
            "cognitive_match": cognitive_match(config.weight_for(session.subject), efficiency),
        }
    )


def resolve_staggered(
    sessions: Sequence[Session],
    pool: SlotPool,
    windows: Mapping[str, LearnerWindow],
    learner_order: Sequence[str],
    *,
    config: SchedulingConfig = DEFAULT_CONFIG,
    rebalance_config: RebalanceConfig | None = None,
) -> ResolutionOutcome:
    """Offset each later learner by whole steps to minimize overlap.

    Every session of a learner shifts by the same offset, so the learner's
    own sessions keep their spacing. Whatever still overlaps is moved to
    free slots by the rebalancing solver.
    """
    outcome = ResolutionOutcome(sessions=list(sessions))
    if not detect_conflicts(sessions, config):
        return outcome

    fixed = _fixed_ranges(pool)
    by_learner: dict[str, list[Session]] = defaultdict(list)
    for session in sessions:
        by_learner[session.learner_id].append(session)

    placed: list[Session] = list(by_learner.get(learner_order[0], []))
    result: list[Session] = list(placed)
    for learner_id in learner_order[1:]:
        mine = by_learner.get(learner_id, [])
        window = windows[learner_id]
        best_offset, best_overlap, best = 0, _total_overlap(mine, placed), mine

        for step in range(1, config.max_stagger_steps + 1):
            offset = step * config.stagger_step_minutes
            shifted = [s if s.joint_group else _shift(s, offset, config) for s in mine]
            if any(
                s.end_minutes > window.end.hour * 60 + window.end.minute
                or s.end_minutes >= 24 * 60
                or any(
                    overlap_minutes(s.start_minutes, s.end_minutes, start, end) > 0
                    for start, end in fixed.get(s.scheduled_date, [])
                )
                for s in shifted
            ):
                continue
            overlap = _total_overlap(shifted, placed)
            if overlap < best_overlap:
                best_offset, best_overlap, best = offset, overlap, shifted

        if best_offset:
            logger.info(f"Staggering learner {learner_id} by {best_offset} minutes")
            outcome.moved += len(best)
            outcome.source = "rule_based"
        placed.extend(best)
        result.extend(best)

    outcome.sessions = sorted(result, key=lambda s: s.sort_key)
    remaining = detect_conflicts(outcome.sessions, config)
    if remaining:
        rebalanced = rule_based_rebalance(
            outcome.sessions, remaining, pool, windows, learner_order,
            config=config, rebalance_config=rebalance_config,
        )
        outcome.sessions = rebalanced.sessions
        outcome.moved += rebalanced.moved
        outcome.warnings.extend(rebalanced.warnings)
        outcome.source = "rule_based"
    return outcome


def align_synchronized(
    sessions: Sequence[Session],
    pool: SlotPool,
    windows: Mapping[str, LearnerWindow],
    learner_order: Sequence[str],
    *,
    config: SchedulingConfig = DEFAULT_CONFIG,
    rebalance_config: RebalanceConfig | None = None,
) -> ResolutionOutcome:
    """Put same-subject sessions of different learners into joint slots.

    The n-th session of a subject for each later learner joins the n-th
    session of the first learner with that subject, when the anchor's time
    fits the learner's window, daily cap and own calendar.
    """
    current = list(sessions)
    outcome = ResolutionOutcome(sessions=current, source="rule_based")
    grouped: dict[str, dict[str, list[Session]]] = defaultdict(lambda: defaultdict(list))
    for session in sorted(current, key=lambda s: s.sort_key):
        grouped[session.subject][session.learner_id].append(session)

    for subject in sorted(grouped):
        learners = [lid for lid in learner_order if grouped[subject].get(lid)]
        if len(learners) < 2:
            continue
        anchor_ids = [s.id for s in grouped[subject][learners[0]]]

        for learner_id in learners[1:]:
            window = windows[learner_id]
            for anchor_id, theirs in zip(anchor_ids, grouped[subject][learner_id]):
                by_id = {s.id: s for s in current}
                anchor, session = by_id[anchor_id], by_id[theirs.id]
                if session.joint_group or session.duration_minutes != anchor.duration_minutes:
                    continue
                if (
                    anchor.scheduled_date.weekday() not in window.weekdays
                    or anchor.start_time < window.start
                    or anchor.end_time > window.end
                ):
                    continue
                own = [s for s in current if s.learner_id == learner_id]
                if _overlaps_any(
                    anchor.scheduled_date, anchor.start_minutes, anchor.end_minutes,
                    own, {session.id},
                ):
                    continue
                minutes = _minutes_on(learner_id, anchor.scheduled_date, current, {session.id})
                if minutes + session.duration_minutes > window.max_daily_minutes:
                    continue

                group = anchor.joint_group or f"joint_{anchor.id}"
                _release_if_unused(pool, session, current)
                _replace(current, anchor.model_copy(update={"joint_group": group}))
                _replace(
                    current,
                    session.model_copy(
                        update={
                            "scheduled_date": anchor.scheduled_date,
                            "start_time": anchor.start_time,
                            "slot_id": anchor.slot_id,
                            "efficiency_score": anchor.efficiency_score,
                            "cognitive_match": cognitive_match(
                                config.weight_for(subject), anchor.efficiency_score
                            ),
                            "joint_group": group,
                        }
                    ),
                )
                outcome.moved += 1

    outcome.sessions = sorted(current, key=lambda s: s.sort_key)
    remaining = detect_conflicts(outcome.sessions, config)
    if remaining:
        rebalanced = rule_based_rebalance(
            outcome.sessions, remaining, pool, windows, learner_order,
            config=config, rebalance_config=rebalance_config,
        )
        outcome.sessions = rebalanced.sessions
        outcome.moved += rebalanced.moved
        outcome.warnings.extend(rebalanced.warnings)
    return outcome
