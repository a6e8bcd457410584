"""
Single-learner scheduling pipeline with a three-tier fallback cascade.

Pipeline Stages:
1. Context analysis: learner profile, enriched materials, study days
2. Slot generation: scored time slots (or slots handed in by the coordinator)
3. Assignment: advisory service first, rule-based pairing as fallback
4. Cognitive load optimization: redistribution, daily cap, subject variety
5. Validation: coverage, reasoning, metadata

Tiers:
- advanced: the full pipeline with the advisory service
- enhanced_rule_based: the full pipeline with rule-based assignment only
- emergency_fallback: one item per weekday at a fixed time, never fails
"""

import logging
import time
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any

from study_scheduler.assignment import AdvisoryAssigner, assign_materials, build_sessions
from study_scheduler.config import DEFAULT_CONFIG, SchedulingConfig
from study_scheduler.context import (
    analyze_context,
    build_learner_profile,
    infer_subject,
    material_sort_key,
)
from study_scheduler.exceptions import CapacityExhausted, PipelineFailure
from study_scheduler.models import (
    AssignmentSource,
    BlockedWindow,
    GeneratorTier,
    LoadDistribution,
    ScheduleResult,
    Session,
    TimeSlot,
    WorkItem,
)
from study_scheduler.optimizer import optimize_cognitive_load
from study_scheduler.slots import (
    generate_time_slots,
    remove_blocked_slots,
    remove_occupied_slots,
)
from study_scheduler.timeutils import date_range
from study_scheduler.validation import build_metadata, validate_and_enhance

logger = logging.getLogger(__name__)


class PipelineStage(Enum):
    """Pipeline execution stages."""

    CONTEXT_ANALYSIS = "context_analysis"
    SLOT_GENERATION = "slot_generation"
    ASSIGNMENT = "assignment"
    COGNITIVE_OPTIMIZATION = "cognitive_optimization"
    VALIDATION = "validation"
    EMERGENCY = "emergency"


@dataclass
class StageResult:
    """Result from a pipeline stage."""

    stage: PipelineStage
    success: bool
    duration_seconds: float
    data: dict[str, Any] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage.value,
            "success": self.success,
            "duration_seconds": round(self.duration_seconds, 4),
            "data": self.data,
            "errors": self.errors,
            "warnings": self.warnings,
        }


@dataclass
class PipelineInput:
    """Everything one learner's run needs, already loaded from the store."""

    learner_id: str
    items: Sequence[WorkItem]
    start_date: date
    end_date: date
    stored_preferences: Mapping[str, Any] | None = None
    preference_overrides: Mapping[str, Any] | None = None
    session_length: str = "medium"
    focus_subjects: Sequence[str] | None = None
    load_distribution: LoadDistribution | None = None
    blocked_windows: Sequence[BlockedWindow] = ()
    existing_sessions: Sequence[Session] = ()


class SchedulePipeline:
    """Runs the staged pipeline for one learner and degrades through tiers."""

    def __init__(
        self,
        advisor: AdvisoryAssigner | None = None,
        config: SchedulingConfig = DEFAULT_CONFIG,
    ):
        self.advisor = advisor
        self.config = config

    def generate(
        self,
        request: PipelineInput,
        *,
        slots: Sequence[TimeSlot] | None = None,
        allow_emergency: bool = True,
    ) -> ScheduleResult:
        """Run the cascade until a tier produces a schedule."""
        errors: list[str] = []
        for tier in (GeneratorTier.ADVANCED, GeneratorTier.ENHANCED_RULE_BASED):
            try:
                result = self.run_tier(request, tier, slots=slots)
                result.errors = errors + result.errors
                return result
            except PipelineFailure as e:
                logger.error(f"Schedule generation for {request.learner_id}: {e.message}")
                errors.append(e.message)

        if not allow_emergency:
            raise PipelineFailure("rule_based", "; ".join(errors))

        result = self.run_emergency(request)
        result.errors = errors + result.errors
        return result

    def run_tier(
        self,
        request: PipelineInput,
        tier: GeneratorTier,
        *,
        slots: Sequence[TimeSlot] | None = None,
    ) -> ScheduleResult:
        stage_results: list[StageResult] = []
        warnings: list[str] = []
        config = self.config

        def run_stage(stage: PipelineStage, func, *args, **kwargs):
            started = time.time()
            try:
                value, data = func(*args, **kwargs)
            except Exception as e:
                stage_results.append(
                    StageResult(stage, False, time.time() - started, errors=[str(e)])
                )
                logger.error(f"Stage {stage.value} failed in {tier.value} tier: {e}")
                raise PipelineFailure(tier.value, f"{stage.value}: {e}") from e
            stage_results.append(StageResult(stage, True, time.time() - started, data=data))
            return value

        def analyze():
            profile = build_learner_profile(
                request.learner_id, request.stored_preferences, request.preference_overrides
            )
            context = analyze_context(
                profile,
                request.items,
                request.start_date,
                request.end_date,
                session_length=request.session_length,
                focus_subjects=request.focus_subjects,
                load_distribution=request.load_distribution,
                config=config,
            )
            return context, {
                "items": len(context.items),
                "subjects": len(context.grouped),
                "days": len(context.days),
                "session_length": context.session_length,
            }

        context = run_stage(PipelineStage.CONTEXT_ANALYSIS, analyze)
        profile = context.profile

        def make_slots():
            if slots is not None:
                generated = list(slots)
            else:
                generated = generate_time_slots(
                    context.days,
                    profile.preferred_start_time,
                    profile.preferred_end_time,
                    context.session_minutes,
                    profile.break_duration_minutes,
                    difficult_subjects_morning=profile.difficult_subjects_morning,
                    config=config,
                )
                generated = remove_blocked_slots(generated, request.blocked_windows)
                generated = remove_occupied_slots(generated, request.existing_sessions)
            return generated, {"slots": len(generated)}

        available = run_stage(PipelineStage.SLOT_GENERATION, make_slots)
        if len(context.items) > len(available):
            warnings.append(CapacityExhausted(len(context.items), len(available)).message)

        def assign():
            advisor = self.advisor if tier == GeneratorTier.ADVANCED else None
            outcome = assign_materials(
                context.grouped, available, profile, advisor=advisor, config=config
            )
            sessions = build_sessions(profile.learner_id, outcome.assignments, available, context.items)
            return (outcome, sessions), {
                "source": outcome.source.value,
                "assignments": len(outcome.assignments),
                "errors": outcome.errors,
            }

        outcome, sessions = run_stage(PipelineStage.ASSIGNMENT, assign)

        def optimize():
            used = {s.slot_id for s in sessions}
            spare = [slot for slot in available if slot.id not in used]
            optimized = optimize_cognitive_load(
                sessions,
                context.load_distribution,
                profile,
                spare,
                config,
                booked_minutes=booked_minutes_by_day(
                    profile.learner_id, request.existing_sessions
                ),
            )
            return optimized, {
                "passes": optimized.passes_applied,
                "changes": optimized.changes,
                "overloaded_dates": [d.isoformat() for d in optimized.overloaded_dates],
            }

        optimized = run_stage(PipelineStage.COGNITIVE_OPTIMIZATION, optimize)

        def validate():
            final, metadata = validate_and_enhance(
                optimized.sessions,
                context.items,
                profile,
                generator=tier,
                source=outcome.source,
                session_length=context.session_length,
                load_distribution=context.load_distribution,
                passes_applied=optimized.passes_applied,
                overloaded_dates=optimized.overloaded_dates,
                warnings=warnings,
                config=config,
            )
            return (final, metadata), {"unscheduled": len(metadata.unscheduled_items)}

        final, metadata = run_stage(PipelineStage.VALIDATION, validate)
        metadata.stage_results = [stage.to_dict() for stage in stage_results]

        logger.info(
            f"Generated {len(final)} sessions for {profile.learner_id} "
            f"({tier.value}, {outcome.source.value})"
        )
        return ScheduleResult(
            learner_id=profile.learner_id,
            success=True,
            sessions=final,
            metadata=metadata,
            errors=list(outcome.errors),
        )

    def run_emergency(self, request: PipelineInput) -> ScheduleResult:
        started = time.time()
        sessions = emergency_sessions(
            request.learner_id, request.items, request.start_date, request.end_date, self.config
        )
        metadata = build_metadata(
            sessions,
            generator=GeneratorTier.EMERGENCY_FALLBACK,
            source=AssignmentSource.EMERGENCY,
            unscheduled_items=[
                item.id
                for item in request.items
                if item.id not in {s.work_item_id for s in sessions}
            ],
            warnings=["Preferences ignored: emergency schedule"]
            + [
                f"Emergency session on {s.scheduled_date} overlaps an existing session"
                for s in double_booked(sessions, request.existing_sessions)
            ],
            config=self.config,
        )
        metadata.stage_results = [
            StageResult(
                PipelineStage.EMERGENCY,
                True,
                time.time() - started,
                data={"sessions": len(sessions)},
            ).to_dict()
        ]
        logger.warning(f"Emergency schedule with {len(sessions)} sessions for {request.learner_id}")
        return ScheduleResult(learner_id=request.learner_id, sessions=sessions, metadata=metadata)


def emergency_sessions(
    learner_id: str,
    items: Sequence[WorkItem],
    start_date: date,
    end_date: date,
    config: SchedulingConfig = DEFAULT_CONFIG,
) -> list[Session]:
    """One item per weekday at the emergency start time, weekends skipped."""
    weekdays = [day for day in date_range(start_date, end_date) if day.weekday() < 5]
    ordered = sorted(items, key=material_sort_key)
    return [
        Session(
            id=str(uuid.uuid4()),
            learner_id=learner_id,
            work_item_id=item.id,
            subject=item.subject.strip() or infer_subject(item.title),
            title=item.title,
            scheduled_date=day,
            start_time=config.emergency_start,
            duration_minutes=config.emergency_duration_minutes,
            reasoning="Emergency schedule: one item per weekday",
            cognitive_match=config.default_cognitive_weight,
            efficiency_score=config.band_for(config.emergency_start).efficiency,
        )
        for item, day in zip(ordered, weekdays)
    ]


def booked_minutes_by_day(learner_id: str, existing: Sequence[Session]) -> dict[date, int]:
    """Minutes already stored per day for one learner."""
    booked: dict[date, int] = {}
    for session in existing:
        if session.learner_id == learner_id:
            booked[session.scheduled_date] = (
                booked.get(session.scheduled_date, 0) + session.duration_minutes
            )
    return booked


def double_booked(sessions: Sequence[Session], existing: Sequence[Session]) -> list[Session]:
    return [
        session
        for session in sessions
        if any(
            other.learner_id == session.learner_id
            and other.scheduled_date == session.scheduled_date
            and other.start_minutes < session.end_minutes
            and session.start_minutes < other.end_minutes
            for other in existing
        )
    ]
