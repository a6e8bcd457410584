"""
Tests for the scheduling service: store loading, pipeline selection, persistence.
"""

from datetime import timedelta
from unittest.mock import Mock

import pytest

from study_scheduler.models import (
    AssignmentSource,
    CoordinationMode,
    FamilyScheduleRequest,
    ScheduleRequest,
)
from study_scheduler.service import SchedulingService
from study_scheduler.store import InMemoryScheduleStore


class FlakyStore(InMemoryScheduleStore):
    """Rejects every insert for one work item."""

    def __init__(self, *args, reject_item, **kwargs):
        super().__init__(*args, **kwargs)
        self.reject_item = reject_item

    def insert_session(self, session):
        if session.work_item_id == self.reject_item:
            raise ConnectionError("database went away")
        super().insert_session(session)


class UnreadableStore(InMemoryScheduleStore):
    def get_preferences(self, learner_id):
        raise ConnectionError("database went away")

    def get_scheduled_sessions(self, learner_ids, start_date, end_date):
        raise ConnectionError("database went away")


@pytest.fixture
def offline_client():
    client = Mock()
    client.is_available.return_value = False
    return client


@pytest.fixture
def schedule_request(monday, friday):
    def _request(**kwargs):
        kwargs.setdefault("end_date", friday)
        return ScheduleRequest(learner_id="kid1", start_date=monday, **kwargs)

    return _request


class TestGenerateSchedule:
    """Test cases for single-learner generation through the service."""

    def test_sessions_persisted(self, sample_items, offline_client, schedule_request):
        store = InMemoryScheduleStore(sample_items)
        service = SchedulingService(store, offline_client)

        result = service.generate_schedule(schedule_request())

        assert len(result.sessions) == 3
        assert result.persisted_count == 3
        assert result.failed_writes == 0
        assert {s.id for s in store.sessions} == {s.id for s in result.sessions}

    def test_persist_can_be_skipped(self, sample_items, offline_client, schedule_request):
        store = InMemoryScheduleStore(sample_items)

        result = SchedulingService(store, offline_client).generate_schedule(
            schedule_request(persist=False)
        )

        assert len(result.sessions) == 3
        assert result.persisted_count == 0
        assert store.sessions == []

    def test_failed_writes_are_counted(self, sample_items, offline_client, schedule_request):
        store = FlakyStore(sample_items, reject_item="s1")

        result = SchedulingService(store, offline_client).generate_schedule(schedule_request())

        assert result.persisted_count == 2
        assert result.failed_writes == 1
        assert "s1" not in {s.work_item_id for s in store.sessions}

    def test_read_failures_fall_back_to_defaults(
        self, sample_items, offline_client, schedule_request
    ):
        store = UnreadableStore(sample_items)

        result = SchedulingService(store, offline_client).generate_schedule(
            schedule_request(persist=False)
        )

        assert result.success is True
        assert len(result.sessions) == 3

    def test_request_preferences_override_stored(
        self, sample_items, offline_client, schedule_request
    ):
        store = InMemoryScheduleStore(
            sample_items, preferences={"kid1": {"study_days": ["monday"]}}
        )

        result = SchedulingService(store, offline_client).generate_schedule(
            schedule_request(preferences={"study_days": ["wednesday"]}, persist=False)
        )

        assert {s.scheduled_date.weekday() for s in result.sessions} == {2}

    def test_rule_based_path_skips_advisor(self, sample_items, schedule_request):
        client = Mock()
        service = SchedulingService(InMemoryScheduleStore(sample_items), client)

        result = service.generate_schedule(schedule_request(use_advisory=False))

        assert result.metadata.assignment_source == AssignmentSource.RULE_BASED
        client.call_tool.assert_not_called()

    def test_second_run_avoids_first_run(self, make_item, offline_client, schedule_request, monday):
        store = InMemoryScheduleStore([make_item("m1", "Lesson 1", "Mathematics")])
        service = SchedulingService(store, offline_client)
        first = service.generate_schedule(schedule_request(end_date=monday))

        store.work_items = [make_item("m2", "Lesson 2", "Mathematics")]
        second = service.generate_schedule(schedule_request(end_date=monday))

        assert first.sessions[0].start_time != second.sessions[0].start_time
        assert len(store.sessions) == 2

    def test_rerun_after_capped_day_keeps_every_write(
        self, make_item, offline_client, schedule_request, monday
    ):
        tuesday = monday + timedelta(days=1)
        store = InMemoryScheduleStore(
            [
                make_item("m1", "Lesson 1", "Mathematics"),
                make_item("m2", "Lesson 2", "Mathematics"),
            ],
            preferences={"kid1": {"max_daily_study_minutes": 45}},
        )
        service = SchedulingService(store, offline_client)
        first = service.generate_schedule(schedule_request(end_date=tuesday))

        assert {s.scheduled_date for s in first.sessions} == {monday, tuesday}

        store.work_items = [make_item("m3", "Lesson 3", "Mathematics")]
        second = service.generate_schedule(schedule_request(end_date=tuesday))

        assert second.failed_writes == 0
        assert second.persisted_count == 1
        assert len(store.sessions) == 3
        assert len({s.id for s in store.sessions}) == 3
        assert second.metadata.overloaded_dates == [second.sessions[0].scheduled_date]



class TestGenerateFamilySchedule:
    def test_family_sessions_persisted_per_learner(
        self, make_item, offline_client, monday, friday
    ):
        store = InMemoryScheduleStore(
            [
                make_item("k1", "Fractions", "Mathematics", learner_id="kid1"),
                make_item("k2", "Plants", "Science", learner_id="kid2"),
            ]
        )
        request = FamilyScheduleRequest(
            learner_ids=["kid1", "kid2"],
            start_date=monday,
            end_date=friday,
            coordination_mode=CoordinationMode.STAGGERED,
        )

        result = SchedulingService(store, offline_client).generate_family_schedule(request)

        assert result.coordination_mode == "staggered"
        assert {lid: s.persisted_count for lid, s in result.schedules.items()} == {
            "kid1": 1,
            "kid2": 1,
        }
        assert len(store.sessions) == 2

    def test_per_learner_overrides(self, make_item, offline_client, monday, friday):
        store = InMemoryScheduleStore(
            [
                make_item("k1", "Fractions", "Mathematics", learner_id="kid1"),
                make_item("k2", "Plants", "Science", learner_id="kid2"),
            ]
        )
        request = FamilyScheduleRequest(
            learner_ids=["kid1", "kid2"],
            start_date=monday,
            end_date=friday,
            preferences={"kid2": {"study_days": ["friday"]}},
            persist=False,
        )

        result = SchedulingService(store, offline_client).generate_family_schedule(request)

        assert result.schedules["kid2"].sessions[0].scheduled_date == friday
        assert store.sessions == []
