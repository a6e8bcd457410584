import os
from datetime import date, time

import pytest

# Set test environment variables before importing any application code
os.environ.update(
    {
        "OPENAI_API_KEY": "",
        "ENVIRONMENT": "test",
        "LOG_LEVEL": "DEBUG",
    }
)

# Import after setting environment variables
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from study_scheduler.cache import clear_cache
from study_scheduler.models import Session, WorkItem

# Monday
MONDAY = date(2025, 6, 23)


@pytest.fixture(autouse=True)
def fresh_advisory_cache():
    """Advisory replies must never leak between tests"""
    clear_cache()
    yield
    clear_cache()


@pytest.fixture
def monday() -> date:
    return MONDAY


@pytest.fixture
def friday() -> date:
    return date(2025, 6, 27)


@pytest.fixture
def make_item():
    def _make(item_id, title, subject="", learner_id="kid1", **kwargs):
        return WorkItem(id=item_id, learner_id=learner_id, title=title, subject=subject, **kwargs)

    return _make


@pytest.fixture
def make_session():
    def _make(
        session_id,
        learner_id,
        subject,
        start,
        day=MONDAY,
        duration=45,
        **kwargs,
    ):
        if isinstance(start, str):
            hours, minutes = start.split(":")
            start = time(int(hours), int(minutes))
        return Session(
            id=session_id,
            learner_id=learner_id,
            subject=subject,
            title=f"{subject} work",
            scheduled_date=day,
            start_time=start,
            duration_minutes=duration,
            **kwargs,
        )

    return _make


@pytest.fixture
def sample_items(make_item):
    """Three pending items for one learner across three subjects"""
    return [
        make_item("m1", "Lesson 1: Counting to 100", "Mathematics", content_type="worksheet"),
        make_item("s1", "Plant experiment", "Science", content_type="assignment"),
        make_item("a1", "Color wheel", "Art", content_type="project"),
    ]


@pytest.fixture
def engine():
    """Fresh in-memory SQLite engine for each test"""
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield test_engine
    test_engine.dispose()
