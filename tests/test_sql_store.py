"""
Tests for the SQLModel-backed schedule store.
"""

from datetime import date, time

import pytest
from sqlmodel import Session as DBSession

from study_scheduler.exceptions import PersistenceError
from study_scheduler.sql_store import (
    PreferenceRecord,
    ScheduleEntryRecord,
    SqlModelScheduleStore,
    WorkItemRecord,
)
from study_scheduler.store import load_preferences, persist_sessions


@pytest.fixture
def store(engine):
    sql_store = SqlModelScheduleStore(engine)
    sql_store.create_tables()
    return sql_store


def add_records(engine, *records):
    with DBSession(engine) as db:
        for record in records:
            db.add(record)
        db.commit()


class TestWorkItems:
    def test_only_pending_items_returned(self, store, engine):
        add_records(
            engine,
            WorkItemRecord(id="w1", learner_id="kid1", title="Fractions", subject="Mathematics"),
            WorkItemRecord(id="w2", learner_id="kid1", title="Done already", completed=True),
            WorkItemRecord(id="w3", learner_id="kid2", title="Someone else's"),
            WorkItemRecord(
                id="w4",
                learner_id="kid1",
                title="Plant quiz",
                content_type="quiz",
                due_date=date(2025, 6, 25),
            ),
        )

        items = store.get_pending_work_items("kid1")

        assert [item.id for item in items] == ["w1", "w4"]
        assert items[1].due_date == date(2025, 6, 25)
        assert items[1].content_type == "quiz"


class TestPreferences:
    def test_missing_preferences(self, store):
        assert store.get_preferences("kid1") is None

    def test_null_columns_are_omitted(self, store, engine):
        add_records(
            engine,
            PreferenceRecord(
                learner_id="kid1",
                preferred_start_time="08:30",
                study_days="monday, wednesday,friday",
            ),
        )

        prefs = store.get_preferences("kid1")

        assert prefs == {
            "preferred_start_time": "08:30",
            "study_days": ["monday", "wednesday", "friday"],
        }

    def test_read_failure_degrades_to_none(self, engine):
        # Tables were never created
        assert load_preferences(SqlModelScheduleStore(engine), "kid1") is None


class TestSessions:
    """Test cases for schedule entry reads and writes."""

    def test_round_trip(self, store, make_session, monday):
        session = make_session(
            "kid1:2025-06-23_slot_0",
            "kid1",
            "Mathematics",
            "09:00",
            work_item_id="w1",
            reasoning="math first",
            cognitive_match=0.95,
            slot_id="2025-06-23_slot_0",
        )

        store.insert_session(session)
        loaded = store.get_scheduled_sessions(["kid1"], monday, monday)

        assert len(loaded) == 1
        assert loaded[0].start_time == time(9, 0)
        assert loaded[0].model_dump() == session.model_dump()

    def test_filters_by_learner_date_and_status(self, store, make_session, monday, friday):
        store.insert_session(make_session("a", "kid1", "Art", "09:00"))
        store.insert_session(make_session("b", "kid2", "Art", "10:00"))
        store.insert_session(make_session("c", "kid1", "Art", "11:00", day=date(2025, 7, 1)))
        store.insert_session(make_session("d", "kid1", "Art", "13:00", status="completed"))

        loaded = store.get_scheduled_sessions(["kid1"], monday, friday)

        assert [s.id for s in loaded] == ["a"]
        assert store.get_scheduled_sessions([], monday, friday) == []

    def test_duplicate_insert_raises(self, store, make_session):
        session = make_session("a", "kid1", "Art", "09:00")
        store.insert_session(session)

        with pytest.raises(PersistenceError) as exc_info:
            store.insert_session(session)

        assert exc_info.value.error_code == "PERSISTENCE_ERROR"
        assert exc_info.value.operation == "insert_session"

    def test_failed_insert_is_counted(self, store, engine, make_session):
        sessions = [
            make_session("a", "kid1", "Art", "09:00"),
            make_session("a", "kid1", "Art", "10:00"),
            make_session("b", "kid1", "Music", "11:00"),
        ]

        persisted, failed = persist_sessions(store, sessions)

        assert (persisted, failed) == (2, 1)
        with DBSession(engine) as db:
            assert db.get(ScheduleEntryRecord, "a").start_time == "09:00"
