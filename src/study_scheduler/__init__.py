"""
Study Scheduler Package

Study schedule generation with cognitive-load optimization, a three-tier
fallback cascade and multi-learner family coordination.
"""

from .api import generate_family_schedule_api, generate_schedule_api
from .config import configure_logging
from .models import (
    CoordinationMode,
    FamilyScheduleRequest,
    FamilyScheduleResult,
    ScheduleRequest,
    ScheduleResult,
    Session,
    WorkItem,
)
from .pipeline import SchedulePipeline
from .service import SchedulingService
from .store import InMemoryScheduleStore

__version__ = "0.1.0"
__all__ = [
    "generate_schedule_api",
    "generate_family_schedule_api",
    "configure_logging",
    "SchedulePipeline",
    "SchedulingService",
    "InMemoryScheduleStore",
    "CoordinationMode",
    "FamilyScheduleRequest",
    "FamilyScheduleResult",
    "ScheduleRequest",
    "ScheduleResult",
    "Session",
    "WorkItem",
]
