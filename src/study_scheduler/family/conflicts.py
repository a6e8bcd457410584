"""
Cross-learner conflict detection and severity scoring.
"""

import logging
from collections.abc import Sequence

from study_scheduler.config import DEFAULT_CONFIG, SchedulingConfig
from study_scheduler.models import Conflict, ConflictType, Session
from study_scheduler.timeutils import overlap_minutes

logger = logging.getLogger(__name__)


def conflict_severity(
    a: Session, b: Session, overlap: int, config: SchedulingConfig = DEFAULT_CONFIG
) -> float:
    severity = config.severity_base
    if a.subject == b.subject:
        severity += config.severity_same_subject
    severity += config.severity_weight_factor * max(
        config.weight_for(a.subject), config.weight_for(b.subject)
    )
    longer = max(a.duration_minutes, b.duration_minutes)
    if longer and overlap >= config.heavy_overlap_ratio * longer:
        severity += config.severity_heavy_overlap_bonus
    return min(severity, 1.0)


def _same_group(a: Session, b: Session) -> bool:
    return a.joint_group is not None and a.joint_group == b.joint_group


def detect_conflicts(
    sessions: Sequence[Session], config: SchedulingConfig = DEFAULT_CONFIG
) -> list[Conflict]:
    """Find overlapping sessions of different learners on the same date.

    Sessions are swept in (date, start) order, so every overlapping pair is
    reported once. Same-start same-subject pairs are resource duplicates.
    Members of one joint-study group never conflict with each other.
    """
    ordered = sorted(sessions, key=lambda s: s.sort_key)
    conflicts: list[Conflict] = []

    for i, a in enumerate(ordered):
        for b in ordered[i + 1 :]:
            if b.scheduled_date != a.scheduled_date or b.start_minutes >= a.end_minutes:
                break
            if a.learner_id == b.learner_id or _same_group(a, b):
                continue
            overlap = overlap_minutes(a.start_minutes, a.end_minutes, b.start_minutes, b.end_minutes)
            if overlap <= 0:
                continue
            duplicate = a.start_time == b.start_time and a.subject == b.subject
            conflicts.append(
                Conflict(
                    session_a_id=a.id,
                    session_b_id=b.id,
                    learner_a=a.learner_id,
                    learner_b=b.learner_id,
                    scheduled_date=a.scheduled_date,
                    conflict_type=(
                        ConflictType.RESOURCE_DUPLICATE if duplicate else ConflictType.TIME_OVERLAP
                    ),
                    overlap_minutes=overlap,
                    severity=conflict_severity(a, b, overlap, config),
                    subject_a=a.subject,
                    subject_b=b.subject,
                )
            )

    if conflicts:
        logger.info(f"Detected {len(conflicts)} conflicts across {len(ordered)} sessions")
    return conflicts


def coordination_efficiency(conflict_count: int, session_count: int) -> float:
    if conflict_count == 0 or session_count == 0:
        return 1.0
    return max(0.0, 1 - conflict_count / session_count)
