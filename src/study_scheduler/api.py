"""
Dictionary wrappers around the scheduling service for embedding callers.
"""

import logging
import uuid
from datetime import date, datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from study_scheduler.exceptions import SchedulerError, ValidationError
from study_scheduler.models import (
    SESSION_LENGTH_CHOICES,
    CoordinationMode,
    FamilyScheduleRequest,
    ScheduleRequest,
    WorkItem,
)
from study_scheduler.service import SchedulingService

logger = logging.getLogger(__name__)


def _first_error_field(error: PydanticValidationError) -> str | None:
    errors = error.errors()
    if errors and errors[0].get("loc"):
        return ".".join(str(part) for part in errors[0]["loc"])
    return None


def parse_schedule_request(request_data: dict[str, Any]) -> ScheduleRequest:
    try:
        return ScheduleRequest.model_validate(request_data)
    except PydanticValidationError as e:
        raise ValidationError(str(e), field=_first_error_field(e)) from e


def parse_family_request(request_data: dict[str, Any]) -> FamilyScheduleRequest:
    try:
        return FamilyScheduleRequest.model_validate(request_data)
    except PydanticValidationError as e:
        raise ValidationError(str(e), field=_first_error_field(e)) from e


def _error_response(error: Exception) -> dict[str, Any]:
    if isinstance(error, SchedulerError):
        code, message = error.error_code, error.message
    else:
        code, message = "INTERNAL_ERROR", str(error)
    response: dict[str, Any] = {
        "success": False,
        "request_id": str(uuid.uuid4()),
        "generated_at": datetime.now().isoformat(),
        "error": {"code": code, "message": message},
        "result": None,
    }
    if isinstance(error, ValidationError) and error.field:
        response["error"]["field"] = error.field
    return response


def generate_schedule_api(
    request_data: dict[str, Any], service: SchedulingService
) -> dict[str, Any]:
    """
    API wrapper for single-learner schedule generation.

    Args:
        request_data: Dictionary containing schedule request data
        service: Configured scheduling service

    Returns:
        Dictionary containing the schedule, or an error description
    """
    try:
        request = parse_schedule_request(request_data)
        result = service.generate_schedule(request)
        return {
            "success": result.success,
            "request_id": str(uuid.uuid4()),
            "generated_at": datetime.now().isoformat(),
            "result": result.model_dump(mode="json"),
        }
    except Exception as e:
        logger.error(f"Schedule generation request failed: {e}")
        return _error_response(e)


def generate_family_schedule_api(
    request_data: dict[str, Any], service: SchedulingService
) -> dict[str, Any]:
    """
    API wrapper for coordinated family schedule generation.

    Args:
        request_data: Dictionary containing family schedule request data
        service: Configured scheduling service

    Returns:
        Dictionary containing every learner's schedule, or an error description
    """
    try:
        request = parse_family_request(request_data)
        result = service.generate_family_schedule(request)
        return {
            "success": result.success,
            "request_id": str(uuid.uuid4()),
            "generated_at": datetime.now().isoformat(),
            "result": result.model_dump(mode="json"),
        }
    except Exception as e:
        logger.error(f"Family schedule request failed: {e}")
        return _error_response(e)


def create_work_item_from_dict(item_data: dict[str, Any]) -> WorkItem:
    """
    Create WorkItem instance from loosely typed dictionary data.

    Unparseable due dates and grade values are dropped rather than rejected.
    """
    due_date = None
    raw_due = item_data.get("due_date")
    if isinstance(raw_due, datetime):
        due_date = raw_due.date()
    elif isinstance(raw_due, date):
        due_date = raw_due
    elif isinstance(raw_due, str) and raw_due:
        try:
            due_date = datetime.fromisoformat(raw_due.replace("Z", "+00:00")).date()
        except ValueError:
            due_date = None

    max_grade_value = None
    if item_data.get("max_grade_value") is not None:
        try:
            max_grade_value = float(item_data["max_grade_value"])
        except (TypeError, ValueError):
            max_grade_value = None

    return WorkItem(
        id=str(item_data["id"]),
        learner_id=str(item_data.get("learner_id") or item_data.get("child_id") or ""),
        title=item_data.get("title") or "Untitled",
        subject=item_data.get("subject") or item_data.get("subject_name") or "",
        due_date=due_date,
        content_type=item_data.get("content_type"),
        max_grade_value=max_grade_value,
    )


def validate_schedule_request(request_data: dict[str, Any]) -> str | None:
    """
    Validate schedule request data.

    Returns:
        Error message if validation fails, None if valid
    """
    is_family = "learner_ids" in request_data
    required = ["learner_ids" if is_family else "learner_id", "start_date", "end_date"]
    for field in required:
        if field not in request_data or request_data[field] in (None, "", []):
            return f"Missing required field: {field}"

    for field in ("start_date", "end_date"):
        value = request_data[field]
        if isinstance(value, date):
            continue
        try:
            datetime.strptime(str(value), "%Y-%m-%d")
        except ValueError:
            return f"{field} must be in YYYY-MM-DD format"

    session_length = request_data.get("session_length", "medium")
    if str(session_length).lower() not in SESSION_LENGTH_CHOICES:
        return f"session_length must be one of {', '.join(SESSION_LENGTH_CHOICES)}"

    if is_family:
        mode = request_data.get("coordination_mode", CoordinationMode.BALANCED.value)
        if mode not in {m.value for m in CoordinationMode}:
            return f"Unknown coordination mode: {mode}"
        if len(set(request_data["learner_ids"])) != len(request_data["learner_ids"]):
            return "learner_ids must be unique"

    return None
