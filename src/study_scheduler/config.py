import logging
from dataclasses import dataclass, field
from datetime import time

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from study_scheduler.models import BlockedWindow, CognitiveWindow


class Settings(BaseSettings):
    """Engine settings"""

    # Advisory service (OpenAI)
    openai_api_key: str | None = Field(
        default=None, description="OpenAI API key; advisory tier is skipped without it"
    )
    advisory_model: str = Field(default="gpt-4o-mini", description="Chat model name")
    advisory_timeout_seconds: float = Field(
        default=30.0, gt=0, description="Per-call timeout for advisory requests"
    )
    advisory_max_retries: int = Field(default=1, ge=0)
    advisory_temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    advisory_cache_ttl_seconds: int = Field(
        default=3600, ge=1, description="TTL for cached advisory replies"
    )
    advisory_cache_size: int = Field(default=100, ge=1)

    # Rule-based rebalancing (OR-Tools)
    rebalance_timeout_seconds: float = Field(default=5.0, gt=0)

    # Environment
    environment: str = Field(
        default="development", pattern="^(development|staging|production|test)$"
    )
    log_level: str = Field(default="INFO")

    @field_validator("openai_api_key")
    @classmethod
    def validate_openai_api_key(cls, v: str | None) -> str | None:
        """Treat empty and placeholder keys as missing"""
        if v is None:
            return None
        v = v.strip()
        if not v or v == "your_openai_api_key":
            return None
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {v}")
        return v

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore"
    )


settings = Settings()


def configure_logging(level: str | None = None) -> None:
    """Configure root logging for scripts and services embedding the engine."""
    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level).upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # Client libraries log every request at INFO
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


@dataclass(frozen=True)
class CognitiveBand:
    window: CognitiveWindow
    start: time
    end: time
    efficiency: float

    def contains(self, value: time) -> bool:
        return self.start <= value < self.end


DEFAULT_COGNITIVE_WEIGHTS: dict[str, float] = {
    "Mathematics": 0.95,
    "Pre-Algebra": 0.95,
    "Algebra I": 0.95,
    "Science": 0.90,
    "Physical Science": 0.90,
    "Life Science": 0.90,
    "Chemistry": 0.90,
    "Physics": 0.90,
    "English Language Arts": 0.70,
    "Language Arts": 0.70,
    "English Literature": 0.70,
    "Social Studies": 0.65,
    "World History": 0.65,
    "American History": 0.65,
    "Art & Creativity": 0.40,
    "Visual Arts": 0.40,
    "Art": 0.40,
    "Physical Education & Health": 0.35,
    "Physical Education": 0.35,
    "Health & Fitness": 0.35,
    "Music": 0.30,
}

DEFAULT_CONTENT_DURATIONS: dict[str, int] = {
    "worksheet": 30,
    "assignment": 45,
    "quiz": 20,
    "test": 60,
    "reading": 25,
    "video": 35,
    "project": 90,
}

DEFAULT_SESSION_LENGTHS: dict[str, int] = {
    "short": 25,
    "medium": 45,
    "long": 73,
    "extended": 90,
}

DEFAULT_BANDS: tuple[CognitiveBand, ...] = (
    CognitiveBand(CognitiveWindow.PEAK_MORNING, time(9, 0), time(11, 30), 1.0),
    CognitiveBand(CognitiveWindow.MID_DAY, time(11, 30), time(14, 0), 0.8),
    CognitiveBand(CognitiveWindow.AFTERNOON, time(14, 0), time(17, 0), 0.6),
    CognitiveBand(CognitiveWindow.REVIEW, time(17, 0), time(18, 0), 0.5),
)


@dataclass(frozen=True)
class SchedulingConfig:
    """Heuristic tables and tunables shared by every pipeline stage."""

    cognitive_weights: dict[str, float] = field(
        default_factory=lambda: dict(DEFAULT_COGNITIVE_WEIGHTS)
    )
    default_cognitive_weight: float = 0.5
    content_durations: dict[str, int] = field(
        default_factory=lambda: dict(DEFAULT_CONTENT_DURATIONS)
    )
    default_content_duration: int = 30
    grade_reference_value: float = 50.0
    max_grade_multiplier: float = 2.0

    session_lengths: dict[str, int] = field(
        default_factory=lambda: dict(DEFAULT_SESSION_LENGTHS)
    )
    default_session_length: str = "medium"
    short_session_threshold_minutes: int = 30
    long_session_threshold_minutes: int = 60

    bands: tuple[CognitiveBand, ...] = DEFAULT_BANDS
    fallback_window: CognitiveWindow = CognitiveWindow.REVIEW
    fallback_efficiency: float = 0.5
    optimal_ranges: tuple[tuple[time, time], ...] = (
        (time(9, 0), time(11, 0)),
        (time(15, 0), time(17, 0)),
    )
    optimal_bonus: float = 0.2
    morning_preference_bonus: float = 0.3
    distribution_target: float = 0.618

    high_urgency_days: int = 1
    medium_urgency_days: int = 3

    severity_base: float = 0.5
    severity_same_subject: float = 0.3
    severity_weight_factor: float = 0.2
    severity_heavy_overlap_bonus: float = 0.2
    heavy_overlap_ratio: float = 0.8
    severity_threshold: float = 0.7
    stagger_step_minutes: int = 15
    max_stagger_steps: int = 4

    default_blocked_windows: tuple[BlockedWindow, ...] = (
        BlockedWindow(start=time(12, 0), end=time(13, 0), reason="lunch"),
    )

    emergency_start: time = time(9, 0)
    emergency_duration_minutes: int = 45

    advisory_confidence: float = 0.85
    rule_based_confidence: float = 0.75
    emergency_confidence: float = 0.5

    def weight_for(self, subject: str) -> float:
        """Cognitive load weight for a subject; unknown subjects get the default."""
        if subject in self.cognitive_weights:
            return self.cognitive_weights[subject]
        lowered = subject.strip().lower()
        for name, weight in self.cognitive_weights.items():
            if name.lower() == lowered:
                return weight
        return self.default_cognitive_weight

    def duration_for(self, content_type: str | None, max_grade_value: float | None = None) -> int:
        base = self.content_durations.get(
            (content_type or "").strip().lower(), self.default_content_duration
        )
        if max_grade_value:
            multiplier = min(max_grade_value / self.grade_reference_value, self.max_grade_multiplier)
            return max(1, round(base * multiplier))
        return base

    def session_minutes(self, length: str | None) -> int:
        return self.session_lengths.get(
            length or self.default_session_length,
            self.session_lengths[self.default_session_length],
        )

    def band_for(self, value: time) -> CognitiveBand:
        for band in self.bands:
            if band.contains(value):
                return band
        return CognitiveBand(self.fallback_window, value, value, self.fallback_efficiency)

    def is_optimal(self, value: time) -> bool:
        return any(start <= value <= end for start, end in self.optimal_ranges)


DEFAULT_CONFIG = SchedulingConfig()
