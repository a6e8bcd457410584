"""
Tests for cross-learner conflict detection.
"""

from datetime import timedelta

import pytest

from study_scheduler.family.conflicts import (
    conflict_severity,
    coordination_efficiency,
    detect_conflicts,
)
from study_scheduler.models import ConflictType


class TestConflictDetection:
    """Test cases for overlap detection between learners."""

    def test_identical_sessions_are_severe_duplicates(self, make_session):
        sessions = [
            make_session("a", "kid1", "Mathematics", "09:00"),
            make_session("b", "kid2", "Mathematics", "09:00"),
        ]

        conflicts = detect_conflicts(sessions)

        assert len(conflicts) == 1
        conflict = conflicts[0]
        assert conflict.conflict_type == ConflictType.RESOURCE_DUPLICATE
        assert conflict.overlap_minutes == 45
        assert conflict.severity >= 0.8
        assert {conflict.learner_a, conflict.learner_b} == {"kid1", "kid2"}

    def test_partial_overlap_of_light_subjects(self, make_session):
        sessions = [
            make_session("a", "kid1", "Art", "09:00"),
            make_session("b", "kid2", "Music", "09:30"),
        ]

        conflicts = detect_conflicts(sessions)

        assert len(conflicts) == 1
        assert conflicts[0].conflict_type == ConflictType.TIME_OVERLAP
        assert conflicts[0].overlap_minutes == 15
        assert conflicts[0].severity == pytest.approx(0.58)

    def test_same_learner_never_conflicts(self, make_session):
        sessions = [
            make_session("a", "kid1", "Art", "09:00"),
            make_session("b", "kid1", "Music", "09:30"),
        ]

        assert detect_conflicts(sessions) == []

    def test_touching_sessions_do_not_conflict(self, make_session):
        sessions = [
            make_session("a", "kid1", "Art", "09:00"),
            make_session("b", "kid2", "Art", "09:45"),
        ]

        assert detect_conflicts(sessions) == []

    def test_different_days_do_not_conflict(self, make_session, monday):
        sessions = [
            make_session("a", "kid1", "Art", "09:00"),
            make_session("b", "kid2", "Art", "09:00", day=monday + timedelta(days=1)),
        ]

        assert detect_conflicts(sessions) == []

    def test_joint_group_members_do_not_conflict(self, make_session):
        sessions = [
            make_session("a", "kid1", "Science", "09:00", joint_group="joint_a"),
            make_session("b", "kid2", "Science", "09:00", joint_group="joint_a"),
            make_session("c", "kid3", "Art", "09:15"),
        ]

        conflicts = detect_conflicts(sessions)

        assert len(conflicts) == 2
        assert all("c" in (c.session_a_id, c.session_b_id) for c in conflicts)

    def test_long_session_overlapping_several(self, make_session):
        """Every overlapping pair is reported, not just neighbours."""
        sessions = [
            make_session("long", "kid1", "Art", "09:00", duration=120),
            make_session("x", "kid2", "Music", "09:15"),
            make_session("y", "kid3", "Music", "10:15"),
        ]

        conflicts = detect_conflicts(sessions)

        pairs = {frozenset((c.session_a_id, c.session_b_id)) for c in conflicts}
        assert frozenset(("long", "x")) in pairs
        assert frozenset(("long", "y")) in pairs


class TestSeverity:
    def test_severity_capped_at_one(self, make_session):
        a = make_session("a", "kid1", "Mathematics", "09:00")
        b = make_session("b", "kid2", "Mathematics", "09:00")

        assert conflict_severity(a, b, 45) == 1.0

    def test_heavy_overlap_bonus(self, make_session):
        a = make_session("a", "kid1", "Art", "09:00")
        b = make_session("b", "kid2", "Music", "09:05")

        assert conflict_severity(a, b, 40) == pytest.approx(0.78)
        assert conflict_severity(a, b, 10) == pytest.approx(0.58)


class TestCoordinationEfficiency:
    def test_efficiency(self):
        assert coordination_efficiency(0, 10) == 1.0
        assert coordination_efficiency(2, 10) == pytest.approx(0.8)
        assert coordination_efficiency(3, 0) == 1.0
        assert coordination_efficiency(20, 10) == 0.0
