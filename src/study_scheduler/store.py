"""
Persistence port used by the scheduling service.

Reads degrade to defaults (no preferences, no items, no sessions) and writes
are independent: a failed insert is logged and counted, never fatal.
"""

import logging
from collections.abc import Iterable, Sequence
from datetime import date
from typing import Any, Protocol

from study_scheduler.models import Session, WorkItem

logger = logging.getLogger(__name__)


class ScheduleStore(Protocol):
    def get_pending_work_items(self, learner_id: str) -> list[WorkItem]: ...

    def get_preferences(self, learner_id: str) -> dict[str, Any] | None: ...

    def get_scheduled_sessions(
        self, learner_ids: Sequence[str], start_date: date, end_date: date
    ) -> list[Session]: ...

    def insert_session(self, session: Session) -> None: ...


class InMemoryScheduleStore:
    """Dictionary-backed store for embedding and tests."""

    def __init__(
        self,
        work_items: Iterable[WorkItem] = (),
        preferences: dict[str, dict[str, Any]] | None = None,
        sessions: Iterable[Session] = (),
    ):
        self.work_items: list[WorkItem] = list(work_items)
        self.preferences: dict[str, dict[str, Any]] = dict(preferences or {})
        self.sessions: list[Session] = list(sessions)

    def get_pending_work_items(self, learner_id: str) -> list[WorkItem]:
        return [item for item in self.work_items if item.learner_id == learner_id]

    def get_preferences(self, learner_id: str) -> dict[str, Any] | None:
        prefs = self.preferences.get(learner_id)
        return dict(prefs) if prefs is not None else None

    def get_scheduled_sessions(
        self, learner_ids: Sequence[str], start_date: date, end_date: date
    ) -> list[Session]:
        wanted = set(learner_ids)
        return [
            s
            for s in self.sessions
            if s.learner_id in wanted
            and start_date <= s.scheduled_date <= end_date
            and s.status == "scheduled"
        ]

    def insert_session(self, session: Session) -> None:
        if any(existing.id == session.id for existing in self.sessions):
            raise ValueError(f"Session {session.id} already exists")
        self.sessions.append(session)


def load_work_items(store: ScheduleStore, learner_id: str) -> list[WorkItem]:
    try:
        return list(store.get_pending_work_items(learner_id))
    except Exception as e:
        logger.error(f"Failed to load work items for {learner_id}: {e}")
        return []


def load_preferences(store: ScheduleStore, learner_id: str) -> dict[str, Any] | None:
    try:
        return store.get_preferences(learner_id)
    except Exception as e:
        logger.error(f"Failed to load preferences for {learner_id}: {e}")
        return None


def load_existing_sessions(
    store: ScheduleStore, learner_ids: Sequence[str], start_date: date, end_date: date
) -> list[Session]:
    try:
        return list(store.get_scheduled_sessions(learner_ids, start_date, end_date))
    except Exception as e:
        logger.error(f"Failed to load existing sessions: {e}")
        return []


def persist_sessions(store: ScheduleStore, sessions: Sequence[Session]) -> tuple[int, int]:
    """Insert sessions one by one; returns (persisted, failed)."""
    persisted = failed = 0
    for session in sessions:
        try:
            store.insert_session(session)
            persisted += 1
        except Exception as e:
            logger.error(f"Failed to persist session {session.id}: {e}")
            failed += 1
    if failed:
        logger.warning(f"Persisted {persisted} sessions, {failed} writes failed")
    return persisted, failed
