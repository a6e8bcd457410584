"""
Context analysis: learner profile, material enrichment and available days.

Everything downstream works from the ``SchedulingContext`` produced here, so
the analysis is pure and deterministic for a given reference date.
"""

import logging
import re
from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from study_scheduler.config import DEFAULT_CONFIG, SchedulingConfig
from study_scheduler.models import (
    LearnerProfile,
    LoadDistribution,
    Urgency,
    WorkItem,
)
from study_scheduler.timeutils import date_range

logger = logging.getLogger(__name__)

GENERAL_SUBJECT = "General"

SUBJECT_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    (
        "Mathematics",
        ("math", "counting", "numbers", "equal", "groups", "algebra", "geometry", "word problems"),
    ),
    (
        "History",
        (
            "history",
            "timeline",
            "past",
            "artifacts",
            "symbols",
            "washington",
            "community",
            "family",
            "traditions",
            "holidays",
            "american",
            "world",
        ),
    ),
    ("Science", ("science", "experiment", "physics", "chemistry", "biology", "nature")),
    (
        "English Language Arts",
        ("reading", "writing", "grammar", "literature", "english", "story", "essay"),
    ),
)

LESSON_PATTERNS = (
    re.compile(r"lesson\s*(\d+)", re.IGNORECASE),
    re.compile(r"chapter\s*(\d+)", re.IGNORECASE),
    re.compile(r"unit\s*(\d+)", re.IGNORECASE),
    re.compile(r"part\s*(\d+)", re.IGNORECASE),
    re.compile(r"section\s*(\d+)", re.IGNORECASE),
    re.compile(r"^(\d+)\."),
    re.compile(r"^(\d+)\s"),
)
NO_LESSON_NUMBER = 999


@dataclass
class MaterialAnalysis:
    total_items: int = 0
    by_subject: dict[str, int] = field(default_factory=dict)
    by_content_type: dict[str, int] = field(default_factory=dict)
    urgent_item_ids: list[str] = field(default_factory=list)
    total_estimated_minutes: int = 0


@dataclass
class SchedulingContext:
    """Inputs of one single-learner pipeline run."""

    profile: LearnerProfile
    items: list[WorkItem]
    grouped: dict[str, list[WorkItem]]
    days: list[date]
    start_date: date
    end_date: date
    session_length: str
    session_minutes: int
    load_distribution: LoadDistribution
    analysis: MaterialAnalysis
    config: SchedulingConfig = DEFAULT_CONFIG

    @property
    def learner_id(self) -> str:
        return self.profile.learner_id


def build_learner_profile(
    learner_id: str,
    stored: Mapping[str, Any] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> LearnerProfile:
    """Merge stored preferences and request overrides over the defaults.

    Unset (None) values fall back to defaults. Malformed values raise
    ``pydantic.ValidationError``.
    """
    merged: dict[str, Any] = {}
    for source in (stored or {}, overrides or {}):
        merged.update({key: value for key, value in source.items() if value is not None})
    merged.pop("learner_id", None)
    return LearnerProfile(learner_id=learner_id, **merged)


def classify_urgency(
    due_date: date | None, reference: date, config: SchedulingConfig = DEFAULT_CONFIG
) -> Urgency:
    if due_date is None:
        return Urgency.NORMAL
    days_until_due = (due_date - reference).days
    if days_until_due <= config.high_urgency_days:
        return Urgency.HIGH
    if days_until_due <= config.medium_urgency_days:
        return Urgency.MEDIUM
    return Urgency.NORMAL


def estimate_duration(item: WorkItem, config: SchedulingConfig = DEFAULT_CONFIG) -> int:
    if item.estimated_minutes:
        return item.estimated_minutes
    return config.duration_for(item.content_type, item.max_grade_value)


def infer_subject(title: str) -> str:
    lowered = (title or "").lower()
    for subject, keywords in SUBJECT_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return subject
    return GENERAL_SUBJECT


def extract_lesson_number(title: str) -> int:
    if not title:
        return NO_LESSON_NUMBER
    for pattern in LESSON_PATTERNS:
        match = pattern.search(title)
        if match:
            return int(match.group(1))
    return NO_LESSON_NUMBER


def available_days(start: date, end: date, weekdays: Iterable[int]) -> list[date]:
    """Dates in [start, end] whose weekday is eligible."""
    eligible = set(weekdays)
    return [day for day in date_range(start, end) if day.weekday() in eligible]


def material_sort_key(item: WorkItem) -> tuple:
    return (
        item.due_date is None,
        item.due_date or date.max,
        extract_lesson_number(item.title),
        item.created_at is not None,
        item.created_at.timestamp() if item.created_at else 0.0,
        item.title,
        item.id,
    )


def group_by_subject(items: Sequence[WorkItem]) -> dict[str, list[WorkItem]]:
    """Group items by subject, each group in progression order."""
    grouped: dict[str, list[WorkItem]] = {}
    for item in items:
        grouped.setdefault(item.subject or GENERAL_SUBJECT, []).append(item)
    return {
        subject: sorted(group, key=material_sort_key)
        for subject, group in sorted(grouped.items())
    }


def recommend_session_length(
    profile: LearnerProfile, item_count: int, config: SchedulingConfig = DEFAULT_CONFIG
) -> str:
    if item_count <= 0:
        return config.default_session_length
    minutes_per_item = profile.max_daily_study_minutes / item_count
    if minutes_per_item < config.short_session_threshold_minutes:
        return "short"
    if minutes_per_item > config.long_session_threshold_minutes:
        return "long"
    return "medium"


def recommend_load_distribution(profile: LearnerProfile) -> LoadDistribution:
    if profile.difficult_subjects_morning:
        return LoadDistribution.FRONT_LOADED
    return LoadDistribution.EVENLY_DISTRIBUTED


def enrich_items(
    items: Iterable[WorkItem], reference: date, config: SchedulingConfig = DEFAULT_CONFIG
) -> list[WorkItem]:
    """Fill subject, urgency and estimated duration on immutable copies."""
    enriched = []
    for item in items:
        enriched.append(
            item.model_copy(
                update={
                    "subject": item.subject.strip() or infer_subject(item.title),
                    "urgency": classify_urgency(item.due_date, reference, config),
                    "estimated_minutes": estimate_duration(item, config),
                }
            )
        )
    return enriched


def analyze_materials(items: Sequence[WorkItem]) -> MaterialAnalysis:
    return MaterialAnalysis(
        total_items=len(items),
        by_subject=dict(Counter(item.subject for item in items)),
        by_content_type=dict(Counter(item.content_type or "unknown" for item in items)),
        urgent_item_ids=[item.id for item in items if item.urgency == Urgency.HIGH],
        total_estimated_minutes=sum(item.estimated_minutes or 0 for item in items),
    )


def analyze_context(
    profile: LearnerProfile,
    items: Sequence[WorkItem],
    start_date: date,
    end_date: date,
    *,
    session_length: str = "medium",
    focus_subjects: Sequence[str] | None = None,
    load_distribution: LoadDistribution | None = None,
    config: SchedulingConfig = DEFAULT_CONFIG,
) -> SchedulingContext:
    enriched = enrich_items(items, start_date, config)
    if focus_subjects:
        wanted = {subject.lower() for subject in focus_subjects}
        enriched = [item for item in enriched if item.subject.lower() in wanted]

    if session_length == "auto":
        session_length = recommend_session_length(profile, len(enriched), config)
    if session_length not in config.session_lengths:
        session_length = config.default_session_length

    days = available_days(start_date, end_date, profile.weekdays)
    analysis = analyze_materials(enriched)
    logger.info(
        f"Context for learner {profile.learner_id}: {len(enriched)} items, "
        f"{len(analysis.by_subject)} subjects, {len(days)} study days"
    )

    return SchedulingContext(
        profile=profile,
        items=enriched,
        grouped=group_by_subject(enriched),
        days=days,
        start_date=start_date,
        end_date=end_date,
        session_length=session_length,
        session_minutes=config.session_minutes(session_length),
        load_distribution=load_distribution or recommend_load_distribution(profile),
        analysis=analysis,
        config=config,
    )
