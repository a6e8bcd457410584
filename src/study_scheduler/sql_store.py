from collections.abc import Sequence
from datetime import UTC, date, datetime
from typing import Any

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session as DBSession
from sqlmodel import SQLModel, col, select
from sqlmodel import Field as SQLField

from study_scheduler.exceptions import PersistenceError
from study_scheduler.models import Session, WorkItem
from study_scheduler.timeutils import parse_hhmm


class WorkItemRecord(SQLModel, table=True):  # type: ignore[call-arg]
    """Pending work item database model"""

    __tablename__ = "work_items"

    id: str = SQLField(primary_key=True)
    learner_id: str = SQLField(index=True)
    title: str = SQLField(min_length=1, max_length=300)
    subject: str = SQLField(default="", max_length=100)
    due_date: date | None = SQLField(default=None)
    content_type: str | None = SQLField(default=None, max_length=50)
    max_grade_value: float | None = SQLField(default=None)
    completed: bool = SQLField(default=False)
    created_at: datetime | None = SQLField(default_factory=lambda: datetime.now(UTC))


class PreferenceRecord(SQLModel, table=True):  # type: ignore[call-arg]
    """Stored study preferences; NULL columns fall back to defaults"""

    __tablename__ = "study_preferences"

    learner_id: str = SQLField(primary_key=True)
    preferred_start_time: str | None = SQLField(default=None, max_length=5)
    preferred_end_time: str | None = SQLField(default=None, max_length=5)
    max_daily_study_minutes: int | None = SQLField(default=None)
    break_duration_minutes: int | None = SQLField(default=None)
    difficult_subjects_morning: bool | None = SQLField(default=None)
    study_days: str | None = SQLField(default=None, description="Comma-separated weekday names")


class ScheduleEntryRecord(SQLModel, table=True):  # type: ignore[call-arg]
    """Scheduled study session database model"""

    __tablename__ = "schedule_entries"

    id: str = SQLField(primary_key=True)
    learner_id: str = SQLField(index=True)
    work_item_id: str | None = SQLField(default=None)
    subject: str
    title: str
    scheduled_date: date = SQLField(index=True)
    start_time: str = SQLField(max_length=5)
    duration_minutes: int
    status: str = SQLField(default="scheduled")
    reasoning: str = SQLField(default="")
    cognitive_match: float = SQLField(default=0.0)
    efficiency_score: float = SQLField(default=0.0)
    slot_id: str | None = SQLField(default=None)
    joint_group: str | None = SQLField(default=None)
    created_at: datetime | None = SQLField(default_factory=lambda: datetime.now(UTC))


class SqlModelScheduleStore:
    """Schedule store backed by SQLModel tables"""

    def __init__(self, engine: Engine):
        self.engine = engine

    def create_tables(self) -> None:
        SQLModel.metadata.create_all(self.engine)

    def get_pending_work_items(self, learner_id: str) -> list[WorkItem]:
        with DBSession(self.engine) as session:
            records = session.exec(
                select(WorkItemRecord)
                .where(WorkItemRecord.learner_id == learner_id)
                .where(col(WorkItemRecord.completed).is_(False))
                .order_by(WorkItemRecord.id)
            ).all()
            return [
                WorkItem(
                    id=record.id,
                    learner_id=record.learner_id,
                    title=record.title,
                    subject=record.subject,
                    due_date=record.due_date,
                    content_type=record.content_type,
                    max_grade_value=record.max_grade_value,
                    created_at=record.created_at,
                )
                for record in records
            ]

    def get_preferences(self, learner_id: str) -> dict[str, Any] | None:
        with DBSession(self.engine) as session:
            record = session.get(PreferenceRecord, learner_id)
            if record is None:
                return None
            prefs = record.model_dump(exclude={"learner_id"}, exclude_none=True)
            if "study_days" in prefs:
                prefs["study_days"] = [
                    day.strip() for day in prefs["study_days"].split(",") if day.strip()
                ]
            return prefs

    def get_scheduled_sessions(
        self, learner_ids: Sequence[str], start_date: date, end_date: date
    ) -> list[Session]:
        if not learner_ids:
            return []
        with DBSession(self.engine) as session:
            records = session.exec(
                select(ScheduleEntryRecord)
                .where(col(ScheduleEntryRecord.learner_id).in_(list(learner_ids)))
                .where(ScheduleEntryRecord.scheduled_date >= start_date)
                .where(ScheduleEntryRecord.scheduled_date <= end_date)
                .where(ScheduleEntryRecord.status == "scheduled")
                .order_by(ScheduleEntryRecord.scheduled_date, ScheduleEntryRecord.start_time)
            ).all()
            return [
                Session(
                    id=record.id,
                    learner_id=record.learner_id,
                    work_item_id=record.work_item_id,
                    subject=record.subject,
                    title=record.title,
                    scheduled_date=record.scheduled_date,
                    start_time=parse_hhmm(record.start_time),
                    duration_minutes=record.duration_minutes,
                    status=record.status,
                    reasoning=record.reasoning,
                    cognitive_match=record.cognitive_match,
                    efficiency_score=record.efficiency_score,
                    slot_id=record.slot_id,
                    joint_group=record.joint_group,
                )
                for record in records
            ]

    def insert_session(self, session: Session) -> None:
        record = ScheduleEntryRecord(
            id=session.id,
            learner_id=session.learner_id,
            work_item_id=session.work_item_id,
            subject=session.subject,
            title=session.title,
            scheduled_date=session.scheduled_date,
            start_time=session.start_time.strftime("%H:%M"),
            duration_minutes=session.duration_minutes,
            status=session.status,
            reasoning=session.reasoning,
            cognitive_match=session.cognitive_match,
            efficiency_score=session.efficiency_score,
            slot_id=session.slot_id,
            joint_group=session.joint_group,
        )
        try:
            with DBSession(self.engine) as db:
                db.add(record)
                db.commit()
        except SQLAlchemyError as e:
            raise PersistenceError("insert_session", str(e)) from e
