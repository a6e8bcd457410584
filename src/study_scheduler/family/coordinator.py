"""
Family coordination: schedule several learners against one shared slot pool.

Learners are scheduled strictly in input order. Every slot a learner consumes
is reserved before the next learner runs, so later learners only ever see
slots that are still free.
"""

import logging
from collections import Counter, defaultdict
from collections.abc import Sequence
from dataclasses import replace
from datetime import time

from study_scheduler.config import DEFAULT_CONFIG, SchedulingConfig
from study_scheduler.context import available_days, build_learner_profile
from study_scheduler.exceptions import PipelineFailure, SlotReservationError
from study_scheduler.family.conflicts import coordination_efficiency, detect_conflicts
from study_scheduler.family.rebalance import LearnerWindow, RebalanceConfig
from study_scheduler.family.strategies import (
    RebalanceAdvisor,
    ResolutionOutcome,
    align_synchronized,
    resolve_balanced,
    resolve_staggered,
)
from study_scheduler.models import (
    AssignmentSource,
    BlockedWindow,
    CoordinationMetadata,
    CoordinationMode,
    FamilyScheduleResult,
    GeneratorTier,
    LearnerProfile,
    ScheduleResult,
    Session,
    SharedStudyOpportunity,
)
from study_scheduler.pipeline import PipelineInput, SchedulePipeline
from study_scheduler.pool import SlotPool
from study_scheduler.slots import FAMILY_SLOT_PREFIX, generate_time_slots
from study_scheduler.validation import build_metadata

logger = logging.getLogger(__name__)

INDIVIDUAL_FALLBACK = "individual_fallback"


def build_family_pool(
    profiles: Sequence[LearnerProfile],
    inputs: Sequence[PipelineInput],
    session_minutes: int,
    blocked_windows: Sequence[BlockedWindow],
    existing_sessions: Sequence[Session],
    config: SchedulingConfig = DEFAULT_CONFIG,
) -> SlotPool:
    """Pool over the widest window, smallest break and all study days."""
    window_start = min(p.preferred_start_time for p in profiles)
    window_end = max(p.preferred_end_time for p in profiles)
    break_minutes = min(p.break_duration_minutes for p in profiles)
    weekdays = set().union(*(p.weekdays for p in profiles))
    start_date = min(i.start_date for i in inputs)
    end_date = max(i.end_date for i in inputs)

    slots = generate_time_slots(
        available_days(start_date, end_date, weekdays),
        window_start,
        window_end,
        session_minutes,
        break_minutes,
        difficult_subjects_morning=any(p.difficult_subjects_morning for p in profiles),
        prefix=FAMILY_SLOT_PREFIX,
        config=config,
    )
    pool = SlotPool(slots)
    pool.reserve_existing(existing_sessions)
    pool.apply_blocked(blocked_windows)
    logger.info(f"Family slot pool: {pool.summary()}")
    return pool


def shared_study_opportunities(
    sessions: Sequence[Session], learner_order: Sequence[str]
) -> list[SharedStudyOpportunity]:
    """Subjects studied by two or more learners, with the most common start."""
    learners_by_subject: dict[str, set[str]] = defaultdict(set)
    starts_by_subject: dict[str, Counter] = defaultdict(Counter)
    for session in sessions:
        learners_by_subject[session.subject].add(session.learner_id)
        starts_by_subject[session.subject][session.start_time] += 1

    rank = {learner_id: index for index, learner_id in enumerate(learner_order)}
    opportunities = []
    for subject in sorted(learners_by_subject):
        learners = learners_by_subject[subject]
        if len(learners) < 2:
            continue
        counts = starts_by_subject[subject]
        best = max(counts.values())
        suggested: time = min(start for start, count in counts.items() if count == best)
        opportunities.append(
            SharedStudyOpportunity(
                subject=subject,
                learner_ids=sorted(learners, key=lambda lid: rank.get(lid, len(rank))),
                suggested_time=suggested,
            )
        )
    return opportunities


def refresh_result(
    result: ScheduleResult, sessions: Sequence[Session], config: SchedulingConfig = DEFAULT_CONFIG
) -> ScheduleResult:
    """Rebuild totals after coordination moved sessions around."""
    old = result.metadata
    metadata = build_metadata(
        sorted(sessions, key=lambda s: s.sort_key),
        generator=old.generator,
        source=old.assignment_source,
        session_length=old.session_length,
        load_distribution=old.load_distribution,
        passes_applied=old.passes_applied,
        unscheduled_items=old.unscheduled_items,
        overloaded_dates=old.overloaded_dates,
        warnings=old.warnings,
        config=config,
    )
    metadata.stage_results = old.stage_results
    return result.model_copy(
        update={"sessions": sorted(sessions, key=lambda s: s.sort_key), "metadata": metadata}
    )


class FamilyCoordinator:
    def __init__(
        self,
        pipeline: SchedulePipeline,
        advisor: RebalanceAdvisor | None = None,
        config: SchedulingConfig = DEFAULT_CONFIG,
        rebalance_config: RebalanceConfig | None = None,
    ):
        self.pipeline = pipeline
        self.advisor = advisor
        self.config = config
        self.rebalance_config = rebalance_config or RebalanceConfig()

    def coordinate(
        self,
        inputs: Sequence[PipelineInput],
        *,
        mode: CoordinationMode = CoordinationMode.BALANCED,
        session_length: str = "medium",
        blocked_windows: Sequence[BlockedWindow] | None = None,
        existing_sessions: Sequence[Session] = (),
    ) -> FamilyScheduleResult:
        if blocked_windows is None:
            blocked_windows = self.config.default_blocked_windows
        try:
            return self._coordinate(inputs, mode, session_length, blocked_windows, existing_sessions)
        except Exception as e:
            logger.error(f"Family coordination failed, scheduling learners individually: {e}")
            return self.individual_fallback(inputs, blocked_windows, error=str(e))

    def _coordinate(
        self,
        inputs: Sequence[PipelineInput],
        mode: CoordinationMode,
        session_length: str,
        blocked_windows: Sequence[BlockedWindow],
        existing_sessions: Sequence[Session],
    ) -> FamilyScheduleResult:
        learner_order = [i.learner_id for i in inputs]
        profiles = [
            build_learner_profile(i.learner_id, i.stored_preferences, i.preference_overrides)
            for i in inputs
        ]
        windows = {
            p.learner_id: LearnerWindow(
                learner_id=p.learner_id,
                weekdays=p.weekdays,
                start=p.preferred_start_time,
                end=p.preferred_end_time,
                max_daily_minutes=p.max_daily_study_minutes,
            )
            for p in profiles
        }
        if session_length == "auto":
            session_length = self.config.default_session_length
        session_minutes = self.config.session_minutes(session_length)
        pool = build_family_pool(
            profiles, inputs, session_minutes, blocked_windows, existing_sessions, self.config
        )

        schedules: dict[str, ScheduleResult] = {}
        errors: list[str] = []
        for request, profile in zip(inputs, profiles):
            free = pool.free_slots(
                weekdays=profile.weekdays,
                window_start=profile.preferred_start_time,
                window_end=profile.preferred_end_time,
                days=available_days(request.start_date, request.end_date, profile.weekdays),
            )
            try:
                result = self.pipeline.generate(request, slots=free, allow_emergency=False)
            except PipelineFailure as e:
                logger.error(f"No schedule for learner {request.learner_id}: {e.message}")
                errors.append(e.message)
                result = self._empty_result(request.learner_id, e.message)

            for session in result.sessions:
                if session.slot_id is None:
                    raise SlotReservationError(session.id, owner="no slot")
                pool.reserve(session.slot_id, request.learner_id)
            schedules[request.learner_id] = result
            logger.info(
                f"Learner {request.learner_id}: {len(result.sessions)} sessions, "
                f"{len(pool.free_slots())} pool slots left"
            )

        all_sessions = [s for r in schedules.values() for s in r.sessions]
        conflicts = detect_conflicts(all_sessions, self.config)
        outcome = self._apply_strategy(mode, all_sessions, pool, windows, learner_order)
        unresolved = detect_conflicts(outcome.sessions, self.config)

        by_learner: dict[str, list[Session]] = defaultdict(list)
        for session in outcome.sessions:
            by_learner[session.learner_id].append(session)
        schedules = {
            learner_id: refresh_result(result, by_learner.get(learner_id, []), self.config)
            for learner_id, result in schedules.items()
        }

        metadata = CoordinationMetadata(
            coordination_mode=mode.value,
            total_sessions=len(outcome.sessions),
            conflicts_detected=len(conflicts),
            unresolved_conflicts=len(unresolved),
            coordination_efficiency=coordination_efficiency(len(conflicts), len(outcome.sessions)),
            resolution_source=outcome.source,
            shared_study_opportunities=shared_study_opportunities(outcome.sessions, learner_order),
            warnings=outcome.warnings,
        )
        logger.info(
            f"Coordinated {len(inputs)} learners ({mode.value}): {len(outcome.sessions)} sessions, "
            f"{len(conflicts)} conflicts detected, {len(unresolved)} unresolved"
        )
        return FamilyScheduleResult(
            success=not errors or any(r.sessions for r in schedules.values()),
            coordination_mode=mode.value,
            schedules=schedules,
            conflicts=conflicts,
            unresolved_conflicts=unresolved,
            metadata=metadata,
            errors=errors,
        )

    def _apply_strategy(
        self,
        mode: CoordinationMode,
        sessions: list[Session],
        pool: SlotPool,
        windows: dict[str, LearnerWindow],
        learner_order: list[str],
    ) -> ResolutionOutcome:
        if mode == CoordinationMode.STAGGERED:
            return resolve_staggered(
                sessions, pool, windows, learner_order,
                config=self.config, rebalance_config=self.rebalance_config,
            )
        if mode == CoordinationMode.SYNCHRONIZED:
            return align_synchronized(
                sessions, pool, windows, learner_order,
                config=self.config, rebalance_config=self.rebalance_config,
            )
        return resolve_balanced(
            sessions, pool, windows, learner_order,
            advisor=self.advisor, config=self.config, rebalance_config=self.rebalance_config,
        )

    def _empty_result(self, learner_id: str, error: str) -> ScheduleResult:
        return ScheduleResult(
            learner_id=learner_id,
            success=False,
            sessions=[],
            metadata=build_metadata(
                [],
                generator=GeneratorTier.ENHANCED_RULE_BASED,
                source=AssignmentSource.RULE_BASED,
                config=self.config,
            ),
            errors=[error],
        )

    def individual_fallback(
        self,
        inputs: Sequence[PipelineInput],
        blocked_windows: Sequence[BlockedWindow],
        error: str | None = None,
    ) -> FamilyScheduleResult:
        """Schedule every learner on their own, with the full cascade."""
        schedules: dict[str, ScheduleResult] = {}
        for request in inputs:
            if not request.blocked_windows:
                request = replace(request, blocked_windows=tuple(blocked_windows))
            schedules[request.learner_id] = self.pipeline.generate(request)

        all_sessions = [s for r in schedules.values() for s in r.sessions]
        conflicts = detect_conflicts(all_sessions, self.config)
        learner_order = [i.learner_id for i in inputs]
        return FamilyScheduleResult(
            success=True,
            coordination_mode=INDIVIDUAL_FALLBACK,
            schedules=schedules,
            conflicts=conflicts,
            unresolved_conflicts=conflicts,
            metadata=CoordinationMetadata(
                coordination_mode=INDIVIDUAL_FALLBACK,
                total_sessions=len(all_sessions),
                conflicts_detected=len(conflicts),
                unresolved_conflicts=len(conflicts),
                coordination_efficiency=coordination_efficiency(len(conflicts), len(all_sessions)),
                shared_study_opportunities=shared_study_opportunities(all_sessions, learner_order),
                warnings=["Coordination failed, individual schedules provided"],
            ),
            errors=[error] if error else [],
        )
