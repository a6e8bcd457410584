"""
Schedule validation and enhancement: coverage, reasoning and metadata.
"""

import logging
from collections.abc import Sequence
from datetime import date

from study_scheduler.config import DEFAULT_CONFIG, SchedulingConfig
from study_scheduler.models import (
    AssignmentSource,
    GeneratorTier,
    LearnerProfile,
    LoadDistribution,
    ScheduleMetadata,
    Session,
    WorkItem,
)

logger = logging.getLogger(__name__)

PASS_COVERAGE = "coverage_check"
PASS_REASONING = "reasoning_backfill"


def check_coverage(
    sessions: Sequence[Session], items: Sequence[WorkItem]
) -> tuple[list[Session], list[str]]:
    """Drop duplicate references to one work item and list unscheduled items."""
    kept: list[Session] = []
    scheduled: set[str] = set()
    for session in sorted(sessions, key=lambda s: s.sort_key):
        if session.work_item_id and session.work_item_id in scheduled:
            logger.warning(
                f"Dropping duplicate session {session.id} for work item {session.work_item_id}"
            )
            continue
        if session.work_item_id:
            scheduled.add(session.work_item_id)
        kept.append(session)

    unscheduled = [item.id for item in items if item.id not in scheduled]
    return kept, unscheduled


def describe_placement(
    session: Session, profile: LearnerProfile, config: SchedulingConfig = DEFAULT_CONFIG
) -> str:
    weight = config.weight_for(session.subject)
    band = config.band_for(session.start_time)
    demanding = weight >= 0.7
    reasoning = (
        f"{session.subject} (cognitive load {weight:.2f}) at "
        f"{session.start_time.strftime('%H:%M')} in the {band.window.value} window"
    )
    if demanding and profile.difficult_subjects_morning and band.start.hour < 12:
        reasoning += ", matching the preference for difficult subjects in the morning"
    elif demanding and not profile.difficult_subjects_morning and band.start.hour >= 12:
        reasoning += ", matching the preference for difficult subjects later in the day"
    return reasoning


def backfill_reasoning(
    sessions: Sequence[Session],
    profile: LearnerProfile,
    config: SchedulingConfig = DEFAULT_CONFIG,
) -> tuple[list[Session], int]:
    filled = 0
    result = []
    for session in sessions:
        if session.reasoning.strip():
            result.append(session)
            continue
        filled += 1
        result.append(
            session.model_copy(update={"reasoning": describe_placement(session, profile, config)})
        )
    return result, filled


def confidence_for(source: AssignmentSource, config: SchedulingConfig = DEFAULT_CONFIG) -> float:
    if source == AssignmentSource.ADVISORY:
        return config.advisory_confidence
    if source == AssignmentSource.RULE_BASED:
        return config.rule_based_confidence
    return config.emergency_confidence


def build_metadata(
    sessions: Sequence[Session],
    *,
    generator: GeneratorTier,
    source: AssignmentSource,
    session_length: str = "medium",
    load_distribution: LoadDistribution = LoadDistribution.EVENLY_DISTRIBUTED,
    passes_applied: Sequence[str] = (),
    unscheduled_items: Sequence[str] = (),
    overloaded_dates: Sequence[date] = (),
    warnings: Sequence[str] = (),
    config: SchedulingConfig = DEFAULT_CONFIG,
) -> ScheduleMetadata:
    total_minutes = sum(s.duration_minutes for s in sessions)
    return ScheduleMetadata(
        generator=generator,
        assignment_source=source,
        confidence=confidence_for(source, config),
        total_sessions=len(sessions),
        total_minutes=total_minutes,
        subjects_covered=len({s.subject for s in sessions}),
        days_scheduled=len({s.scheduled_date for s in sessions}),
        average_session_minutes=round(total_minutes / len(sessions), 1) if sessions else 0.0,
        session_length=session_length,
        load_distribution=load_distribution,
        passes_applied=list(passes_applied),
        unscheduled_items=list(unscheduled_items),
        overloaded_dates=sorted(set(overloaded_dates)),
        warnings=list(warnings),
    )


def validate_and_enhance(
    sessions: Sequence[Session],
    items: Sequence[WorkItem],
    profile: LearnerProfile,
    *,
    generator: GeneratorTier,
    source: AssignmentSource,
    session_length: str = "medium",
    load_distribution: LoadDistribution = LoadDistribution.EVENLY_DISTRIBUTED,
    passes_applied: Sequence[str] = (),
    overloaded_dates: Sequence[date] = (),
    warnings: Sequence[str] = (),
    config: SchedulingConfig = DEFAULT_CONFIG,
) -> tuple[list[Session], ScheduleMetadata]:
    covered, unscheduled = check_coverage(sessions, items)
    enhanced, filled = backfill_reasoning(covered, profile, config)
    if unscheduled:
        logger.info(f"{len(unscheduled)} work items left unscheduled for {profile.learner_id}")

    metadata = build_metadata(
        enhanced,
        generator=generator,
        source=source,
        session_length=session_length,
        load_distribution=load_distribution,
        passes_applied=[*passes_applied, PASS_COVERAGE, PASS_REASONING],
        unscheduled_items=unscheduled,
        overloaded_dates=overloaded_dates,
        warnings=warnings,
        config=config,
    )
    logger.debug(f"Backfilled reasoning for {filled} sessions")
    return sorted(enhanced, key=lambda s: s.sort_key), metadata
