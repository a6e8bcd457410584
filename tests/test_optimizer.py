"""
Tests for cognitive load optimization passes and schedule validation.
"""

from datetime import time, timedelta

import pytest

from study_scheduler.context import build_learner_profile
from study_scheduler.models import AssignmentSource, GeneratorTier, LoadDistribution
from study_scheduler.optimizer import (
    PASS_DAILY_CAP,
    PASS_REDISTRIBUTION,
    PASS_SUBJECT_VARIETY,
    enforce_daily_cap,
    improve_subject_variety,
    optimize_cognitive_load,
    redistribute_within_day,
)
from study_scheduler.slots import generate_time_slots
from study_scheduler.validation import (
    PASS_COVERAGE,
    backfill_reasoning,
    build_metadata,
    check_coverage,
    confidence_for,
    validate_and_enhance,
)


def subjects_in_order(sessions):
    return [s.subject for s in sorted(sessions, key=lambda s: s.sort_key)]


class TestRedistribution:
    """Test cases for within-day reordering by subject weight."""

    @pytest.fixture
    def day(self, make_session):
        return [
            make_session("art", "kid1", "Art", "09:00", slot_id="s0"),
            make_session("math", "kid1", "Mathematics", "10:00", slot_id="s1"),
            make_session("ela", "kid1", "English Language Arts", "11:00", slot_id="s2"),
        ]

    def test_front_loaded_puts_heavy_first(self, day):
        sessions, moved = redistribute_within_day(day, LoadDistribution.FRONT_LOADED)

        assert subjects_in_order(sessions) == ["Mathematics", "English Language Arts", "Art"]
        assert moved == 3

    def test_back_loaded_puts_heavy_last(self, day):
        sessions, _ = redistribute_within_day(day, LoadDistribution.BACK_LOADED)

        assert subjects_in_order(sessions) == ["Art", "English Language Arts", "Mathematics"]

    def test_even_distribution_alternates(self, day):
        sessions, _ = redistribute_within_day(day, LoadDistribution.EVENLY_DISTRIBUTED)

        assert subjects_in_order(sessions) == ["Mathematics", "Art", "English Language Arts"]

    def test_positions_are_reused(self, day):
        sessions, _ = redistribute_within_day(day, LoadDistribution.FRONT_LOADED)

        assert {(s.start_time, s.slot_id) for s in sessions} == {
            (time(9, 0), "s0"),
            (time(10, 0), "s1"),
            (time(11, 0), "s2"),
        }

    def test_joint_sessions_stay_put(self, make_session):
        day = [
            make_session("art", "kid1", "Art", "09:00", joint_group="joint_x"),
            make_session("math", "kid1", "Mathematics", "10:00"),
        ]

        sessions, moved = redistribute_within_day(day, LoadDistribution.FRONT_LOADED)

        assert subjects_in_order(sessions) == ["Art", "Mathematics"]
        assert moved == 0


class TestDailyCap:
    """Test cases for overflow handling."""

    def test_overflow_moves_to_later_day(self, make_session, monday):
        sessions = [
            make_session(f"s{i}", "kid1", "Art", f"{9 + i:02d}:00") for i in range(3)
        ]
        tuesday = monday + timedelta(days=1)
        spares = generate_time_slots([tuesday], time(9, 0), time(10, 0), 45, 15)

        capped, remaining, overloaded, moved = enforce_daily_cap(sessions, 90, spares)

        assert moved == 1
        assert overloaded == []
        assert remaining == []
        assert sum(s.duration_minutes for s in capped if s.scheduled_date == monday) == 90
        moved_session = next(s for s in capped if s.scheduled_date == tuesday)
        # The latest session of the day is the one that moves
        assert moved_session.id == "s2"

    def test_no_capacity_flags_overload(self, make_session, monday):
        sessions = [
            make_session(f"s{i}", "kid1", "Art", f"{9 + i:02d}:00") for i in range(3)
        ]

        capped, _, overloaded, moved = enforce_daily_cap(sessions, 90, [])

        assert moved == 0
        assert overloaded == [monday]
        assert len(capped) == 3

    def test_booked_minutes_count_toward_cap(self, make_session, monday):
        sessions = [make_session("s0", "kid1", "Art", "10:00")]
        tuesday = monday + timedelta(days=1)
        spares = generate_time_slots([tuesday], time(9, 0), time(11, 0), 45, 15)

        capped, _, overloaded, moved = enforce_daily_cap(
            sessions, 90, spares, booked_minutes={monday: 60, tuesday: 45}
        )

        assert moved == 1
        assert overloaded == []
        assert capped[0].scheduled_date == tuesday

    def test_fully_booked_days_are_flagged(self, make_session, monday):
        sessions = [make_session("s0", "kid1", "Art", "10:00")]
        tuesday = monday + timedelta(days=1)
        spares = generate_time_slots([tuesday], time(9, 0), time(10, 0), 45, 15)

        capped, _, overloaded, moved = enforce_daily_cap(
            sessions, 45, spares, booked_minutes={monday: 45, tuesday: 45}
        )

        assert moved == 0
        assert overloaded == [monday]
        assert capped[0].scheduled_date == monday


class TestSubjectVariety:
    def test_back_to_back_repeats_are_broken_up(self, make_session):
        sessions = [
            make_session("m1", "kid1", "Mathematics", "09:00"),
            make_session("m2", "kid1", "Mathematics", "10:00"),
            make_session("a1", "kid1", "Art", "11:00"),
        ]

        varied, _, changed = improve_subject_variety(sessions, [])

        assert subjects_in_order(varied) == ["Mathematics", "Art", "Mathematics"]
        assert changed == 1

    def test_repeat_moved_into_spare_slot(self, make_session, monday):
        sessions = [
            make_session("m1", "kid1", "Mathematics", "09:00"),
            make_session("m2", "kid1", "Mathematics", "10:00"),
            make_session("a1", "kid1", "Art", "11:00", duration=30),
        ]
        spares = [
            slot
            for slot in generate_time_slots([monday], time(9, 0), time(15, 0), 45, 15)
            if slot.start == time(13, 0)
        ]

        varied, remaining, _ = improve_subject_variety(sessions, spares)

        assert subjects_in_order(varied) == ["Mathematics", "Art", "Mathematics"]
        assert remaining == []


class TestOptimizeCognitiveLoad:
    def test_session_count_preserved(self, make_session, monday):
        sessions = [
            make_session(f"s{i}", "kid1", subject, f"{9 + i:02d}:00")
            for i, subject in enumerate(["Art", "Mathematics", "Mathematics", "Science", "Music"])
        ]
        profile = build_learner_profile("kid1", {"max_daily_study_minutes": 135})
        spares = generate_time_slots(
            [monday + timedelta(days=1)], time(9, 0), time(15, 0), 45, 15
        )

        outcome = optimize_cognitive_load(
            sessions, LoadDistribution.FRONT_LOADED, profile, spares
        )

        assert len(outcome.sessions) == 5
        assert outcome.passes_applied == [PASS_REDISTRIBUTION, PASS_DAILY_CAP, PASS_SUBJECT_VARIETY]
        for day in {s.scheduled_date for s in outcome.sessions}:
            minutes = sum(s.duration_minutes for s in outcome.sessions if s.scheduled_date == day)
            assert minutes <= 135 or day in outcome.overloaded_dates
        assert len({(s.scheduled_date, s.start_time) for s in outcome.sessions}) == 5

    def test_empty_schedule(self):
        outcome = optimize_cognitive_load(
            [], LoadDistribution.FRONT_LOADED, build_learner_profile("kid1")
        )

        assert outcome.sessions == []
        assert outcome.passes_applied == []


class TestValidation:
    """Test cases for coverage, reasoning and metadata."""

    def test_duplicate_work_items_dropped(self, make_session, make_item):
        sessions = [
            make_session("a", "kid1", "Art", "09:00", work_item_id="i1"),
            make_session("b", "kid1", "Art", "10:00", work_item_id="i1"),
        ]
        items = [make_item("i1", "Color wheel", "Art"), make_item("i2", "Clay", "Art")]

        kept, unscheduled = check_coverage(sessions, items)

        assert [s.id for s in kept] == ["a"]
        assert unscheduled == ["i2"]

    def test_reasoning_backfilled(self, make_session):
        sessions = [
            make_session("a", "kid1", "Mathematics", "09:00"),
            make_session("b", "kid1", "Art", "10:00", reasoning="keep me"),
        ]

        filled, count = backfill_reasoning(sessions, build_learner_profile("kid1"))

        assert count == 1
        assert "morning" in filled[0].reasoning
        assert filled[1].reasoning == "keep me"

    def test_confidence_by_source(self):
        assert confidence_for(AssignmentSource.ADVISORY) == 0.85
        assert confidence_for(AssignmentSource.RULE_BASED) == 0.75
        assert confidence_for(AssignmentSource.EMERGENCY) == 0.5

    def test_metadata_totals(self, make_session, monday):
        sessions = [
            make_session("a", "kid1", "Art", "09:00"),
            make_session("b", "kid1", "Mathematics", "10:00", duration=30),
            make_session("c", "kid1", "Art", "09:00", day=monday + timedelta(days=1)),
        ]

        metadata = build_metadata(
            sessions, generator=GeneratorTier.ADVANCED, source=AssignmentSource.RULE_BASED
        )

        assert metadata.total_sessions == 3
        assert metadata.total_minutes == 120
        assert metadata.subjects_covered == 2
        assert metadata.days_scheduled == 2
        assert metadata.average_session_minutes == 40.0
        assert metadata.confidence == 0.75

    def test_validate_and_enhance_appends_passes(self, make_session, make_item):
        sessions = [make_session("a", "kid1", "Art", "09:00", work_item_id="i1")]

        final, metadata = validate_and_enhance(
            sessions,
            [make_item("i1", "Color wheel", "Art")],
            build_learner_profile("kid1"),
            generator=GeneratorTier.ENHANCED_RULE_BASED,
            source=AssignmentSource.RULE_BASED,
            passes_applied=[PASS_REDISTRIBUTION],
        )

        assert len(final) == 1
        assert metadata.passes_applied[0] == PASS_REDISTRIBUTION
        assert PASS_COVERAGE in metadata.passes_applied
        assert metadata.unscheduled_items == []
