"""
Data models for study schedule generation using Pydantic.
"""

from dataclasses import dataclass
from datetime import date, datetime, time
from enum import Enum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_serializer,
    field_validator,
)

from study_scheduler.timeutils import WEEKDAY_NAMES, from_minutes, to_minutes, weekday_name


class Urgency(str, Enum):
    """Urgency of a work item relative to the run's start date."""

    HIGH = "high"
    MEDIUM = "medium"
    NORMAL = "normal"


class CognitiveWindow(str, Enum):
    """Time-of-day bands with decreasing cognitive efficiency."""

    PEAK_MORNING = "peak_morning"
    MID_DAY = "mid_day"
    AFTERNOON = "afternoon"
    REVIEW = "review"


class ReservationState(str, Enum):
    FREE = "free"
    RESERVED_EXISTING = "reserved_existing"
    RESERVED_ASSIGNMENT = "reserved_assignment"
    RESERVED_BLOCKED = "reserved_blocked"


class LoadDistribution(str, Enum):
    FRONT_LOADED = "front_loaded"
    EVENLY_DISTRIBUTED = "evenly_distributed"
    BACK_LOADED = "back_loaded"


class CoordinationMode(str, Enum):
    BALANCED = "balanced"
    STAGGERED = "staggered"
    SYNCHRONIZED = "synchronized"


class GeneratorTier(str, Enum):
    """Fallback cascade tier that produced a schedule."""

    ADVANCED = "advanced"
    ENHANCED_RULE_BASED = "enhanced_rule_based"
    EMERGENCY_FALLBACK = "emergency_fallback"


class AssignmentSource(str, Enum):
    ADVISORY = "advisory"
    RULE_BASED = "rule_based"
    EMERGENCY = "emergency"


class ConflictType(str, Enum):
    TIME_OVERLAP = "time_overlap"
    RESOURCE_DUPLICATE = "resource_duplicate"


DEFAULT_STUDY_DAYS = ["monday", "tuesday", "wednesday", "thursday", "friday"]


class WorkItem(BaseModel):
    """Pending unit of study work (lesson, worksheet, assignment...)."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Unique work item identifier")
    learner_id: str = Field(..., description="Owning learner")
    title: str = Field(..., description="Work item title")
    subject: str = Field("", description="Subject name; inferred from title when empty")
    due_date: date | None = Field(None, description="Due date")
    content_type: str | None = Field(None, description="worksheet, quiz, reading...")
    max_grade_value: float | None = Field(None, ge=0, description="Complexity indicator")
    created_at: datetime | None = Field(None, description="Creation time, ordering tiebreak")
    estimated_minutes: int | None = Field(None, gt=0, description="Estimated duration")
    urgency: Urgency | None = Field(None, description="Urgency classification")


class LearnerPreferences(BaseModel):
    """Stored study preferences; every field has a default."""

    model_config = ConfigDict(extra="ignore")

    preferred_start_time: time = time(9, 0)
    preferred_end_time: time = time(15, 0)
    max_daily_study_minutes: int = Field(240, ge=0, le=24 * 60)
    break_duration_minutes: int = Field(15, ge=0, le=240)
    difficult_subjects_morning: bool = True
    study_days: list[str] = Field(default_factory=lambda: list(DEFAULT_STUDY_DAYS))

    @field_validator("study_days")
    @classmethod
    def validate_study_days(cls, v: list[str]) -> list[str]:
        normalized = []
        for day in v:
            name = str(day).strip().lower()
            if name not in WEEKDAY_NAMES:
                raise ValueError(f"Unknown study day: {day!r}")
            if name not in normalized:
                normalized.append(name)
        return normalized


class LearnerProfile(LearnerPreferences):
    """Preferences merged over defaults for one learner and one run."""

    learner_id: str

    @property
    def weekdays(self) -> set[int]:
        return {WEEKDAY_NAMES.index(day) for day in self.study_days}

    @property
    def window_minutes(self) -> int:
        return max(0, to_minutes(self.preferred_end_time) - to_minutes(self.preferred_start_time))

    @property
    def cognitive_profile(self) -> dict[str, str]:
        return {
            "peak_hours": "morning" if self.difficult_subjects_morning else "afternoon",
            "attention_span": "high" if self.max_daily_study_minutes > 300 else "medium",
            "break_needs": "high" if self.break_duration_minutes > 20 else "standard",
        }

    @property
    def time_profile(self) -> dict[str, float]:
        return {
            "total_available_minutes": self.window_minutes,
            "effective_study_window": self.window_minutes * 0.8,
            "preferred_session_length": min(self.max_daily_study_minutes / 4, 60),
            "flexibility_score": len(self.study_days) / 7,
        }


class BlockedWindow(BaseModel):
    """Recurring window in which no slot may be used (lunch, appointments)."""

    start: time
    end: time
    reason: str = "blocked"
    days: list[str] | None = Field(None, description="Weekday names; None means every day")

    @field_validator("end")
    @classmethod
    def end_after_start(cls, v: time, info: ValidationInfo) -> time:
        start = info.data.get("start")
        if start is not None and v <= start:
            raise ValueError("End time must be after start time")
        return v

    def applies_to(self, day: date) -> bool:
        if self.days is None:
            return True
        return weekday_name(day) in {d.lower() for d in self.days}

    @field_serializer("start", "end")
    def serialize_time(self, v: time) -> str:
        return v.strftime("%H:%M")


@dataclass
class TimeSlot:
    """Candidate placement on a given date; mutable reservation state."""

    id: str
    date: date
    start: time
    end: time
    duration_minutes: int
    window: CognitiveWindow
    efficiency: float
    optimality_score: float = 0.0
    distribution_score: float = 0.0
    is_optimal: bool = False
    day_index: int = 0
    position: int = 0
    state: ReservationState = ReservationState.FREE
    owner: str | None = None
    reason: str | None = None

    @property
    def start_minutes(self) -> int:
        return to_minutes(self.start)

    @property
    def end_minutes(self) -> int:
        return to_minutes(self.end)

    @property
    def is_free(self) -> bool:
        return self.state == ReservationState.FREE

    @property
    def rank(self) -> float:
        return self.optimality_score + self.distribution_score

    def overlaps(self, start_minutes: int, end_minutes: int) -> bool:
        return self.start_minutes < end_minutes and self.end_minutes > start_minutes


class Session(BaseModel):
    """A scheduled study session."""

    id: str
    learner_id: str
    work_item_id: str | None = None
    subject: str
    title: str
    scheduled_date: date
    start_time: time
    duration_minutes: int = Field(..., gt=0)
    status: str = "scheduled"
    reasoning: str = ""
    cognitive_match: float = Field(0.0, ge=0.0, le=1.0)
    efficiency_score: float = Field(0.0, ge=0.0, le=1.0)
    slot_id: str | None = None
    joint_group: str | None = Field(None, description="Shared study group id")
    estimated_minutes: int | None = None

    @property
    def start_minutes(self) -> int:
        return to_minutes(self.start_time)

    @property
    def end_minutes(self) -> int:
        return self.start_minutes + self.duration_minutes

    @property
    def end_time(self) -> time:
        return from_minutes(self.end_minutes)

    @property
    def sort_key(self) -> tuple[date, time, str]:
        return (self.scheduled_date, self.start_time, self.id)

    @field_serializer("start_time")
    def serialize_start_time(self, v: time) -> str:
        return v.strftime("%H:%M")


class Conflict(BaseModel):
    """Overlap between sessions of two different learners."""

    session_a_id: str
    session_b_id: str
    learner_a: str
    learner_b: str
    scheduled_date: date
    conflict_type: ConflictType
    overlap_minutes: int = Field(..., ge=0)
    severity: float = Field(..., ge=0.0, le=1.0)
    subject_a: str = ""
    subject_b: str = ""


class ScheduleMetadata(BaseModel):
    generator: GeneratorTier
    assignment_source: AssignmentSource
    confidence: float = Field(..., ge=0.0, le=1.0)
    total_sessions: int = 0
    total_minutes: int = 0
    subjects_covered: int = 0
    days_scheduled: int = 0
    average_session_minutes: float = 0.0
    session_length: str = "medium"
    load_distribution: LoadDistribution = LoadDistribution.EVENLY_DISTRIBUTED
    passes_applied: list[str] = Field(default_factory=list)
    unscheduled_items: list[str] = Field(default_factory=list)
    overloaded_dates: list[date] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    stage_results: list[dict[str, Any]] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=datetime.now)


class ScheduleResult(BaseModel):
    """Schedule for one learner, sessions sorted by (date, start)."""

    learner_id: str
    success: bool = True
    sessions: list[Session] = Field(default_factory=list)
    metadata: ScheduleMetadata
    errors: list[str] = Field(default_factory=list)
    persisted_count: int = 0
    failed_writes: int = 0


class SharedStudyOpportunity(BaseModel):
    subject: str
    learner_ids: list[str]
    suggested_time: time | None = None

    @field_serializer("suggested_time")
    def serialize_suggested_time(self, v: time | None) -> str | None:
        return v.strftime("%H:%M") if v else None


class CoordinationMetadata(BaseModel):
    coordination_mode: str
    total_sessions: int = 0
    conflicts_detected: int = 0
    unresolved_conflicts: int = 0
    coordination_efficiency: float = 1.0
    resolution_source: str = "none"
    shared_study_opportunities: list[SharedStudyOpportunity] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=datetime.now)


class FamilyScheduleResult(BaseModel):
    success: bool = True
    coordination_mode: str
    schedules: dict[str, ScheduleResult] = Field(default_factory=dict)
    conflicts: list[Conflict] = Field(default_factory=list)
    unresolved_conflicts: list[Conflict] = Field(default_factory=list)
    metadata: CoordinationMetadata
    errors: list[str] = Field(default_factory=list)

    @property
    def all_sessions(self) -> list[Session]:
        sessions = [s for result in self.schedules.values() for s in result.sessions]
        return sorted(sessions, key=lambda s: s.sort_key)


SESSION_LENGTH_CHOICES = ("short", "medium", "long", "extended", "auto")


def normalize_session_length(value: str) -> str:
    value = value.strip().lower()
    if value not in SESSION_LENGTH_CHOICES:
        raise ValueError(f"session_length must be one of {', '.join(SESSION_LENGTH_CHOICES)}")
    return value


class ScheduleRequest(BaseModel):
    """Request for a single learner's schedule."""

    learner_id: str = Field(..., min_length=1)
    start_date: date
    end_date: date
    preferences: dict[str, Any] | None = Field(
        None, description="Overrides merged over stored preferences"
    )
    session_length: str = Field("medium", description="short, medium, long, extended or auto")
    focus_subjects: list[str] | None = Field(None, description="Restrict to these subjects")
    load_distribution: LoadDistribution | None = None
    blocked_windows: list[BlockedWindow] = Field(default_factory=list)
    use_advisory: bool = True
    persist: bool = True

    @field_validator("session_length")
    @classmethod
    def validate_session_length(cls, v: str) -> str:
        return normalize_session_length(v)


class FamilyScheduleRequest(BaseModel):
    """Request for a coordinated schedule across several learners."""

    learner_ids: list[str] = Field(..., min_length=1)
    start_date: date
    end_date: date
    coordination_mode: CoordinationMode = CoordinationMode.BALANCED
    preferences: dict[str, dict[str, Any]] = Field(
        default_factory=dict, description="Per-learner preference overrides"
    )
    blocked_windows: list[BlockedWindow] | None = Field(
        None, description="None applies the default lunch block"
    )
    session_length: str = "medium"
    use_advisory: bool = True
    persist: bool = True

    @field_validator("learner_ids")
    @classmethod
    def validate_learner_ids(cls, v: list[str]) -> list[str]:
        if any(not learner_id for learner_id in v):
            raise ValueError("learner_ids must not contain empty ids")
        if len(set(v)) != len(v):
            raise ValueError("learner_ids must be unique")
        return v

    @field_validator("session_length")
    @classmethod
    def validate_session_length(cls, v: str) -> str:
        return normalize_session_length(v)
