"""
Tests for the dictionary API wrapper functions.
"""

from datetime import date
from unittest.mock import Mock

import pytest

from study_scheduler.api import (
    create_work_item_from_dict,
    generate_family_schedule_api,
    generate_schedule_api,
    validate_schedule_request,
)
from study_scheduler.exceptions import PersistenceError
from study_scheduler.service import SchedulingService
from study_scheduler.store import InMemoryScheduleStore


@pytest.fixture
def service(sample_items):
    client = Mock()
    client.is_available.return_value = False
    return SchedulingService(InMemoryScheduleStore(sample_items), client)


class TestScheduleAPI:
    """Test cases for the schedule API wrappers."""

    def test_generate_schedule_api_success(self, service):
        """Test successful single-learner generation."""
        request_data = {
            "learner_id": "kid1",
            "start_date": "2025-06-23",
            "end_date": "2025-06-27",
            "session_length": "Medium",
        }

        response = generate_schedule_api(request_data, service)

        assert response["success"] is True
        assert "request_id" in response
        assert "generated_at" in response
        result = response["result"]
        assert len(result["sessions"]) == 3
        assert result["sessions"][0]["start_time"].count(":") == 1
        assert result["metadata"]["session_length"] == "medium"
        assert result["persisted_count"] == 3

    def test_generate_schedule_api_validation_error(self, service):
        """Test API with an invalid date."""
        request_data = {
            "learner_id": "kid1",
            "start_date": "invalid-date",
            "end_date": "2025-06-27",
        }

        response = generate_schedule_api(request_data, service)

        assert response["success"] is False
        assert response["result"] is None
        assert response["error"]["code"] == "VALIDATION_ERROR"
        assert response["error"]["field"] == "start_date"

    def test_generate_schedule_api_scheduler_error(self):
        """Scheduler errors keep their own code."""
        service = Mock()
        service.generate_schedule.side_effect = PersistenceError("insert_session", "disk full")

        response = generate_schedule_api(
            {"learner_id": "kid1", "start_date": "2025-06-23", "end_date": "2025-06-27"}, service
        )

        assert response["error"] == {
            "code": "PERSISTENCE_ERROR",
            "message": "insert_session failed: disk full",
        }

    def test_generate_schedule_api_internal_error(self):
        """Unexpected exceptions are reported, not raised."""
        service = Mock()
        service.generate_schedule.side_effect = RuntimeError("boom")

        response = generate_schedule_api(
            {"learner_id": "kid1", "start_date": "2025-06-23", "end_date": "2025-06-27"}, service
        )

        assert response["success"] is False
        assert response["error"]["code"] == "INTERNAL_ERROR"
        assert response["error"]["message"] == "boom"

    def test_generate_family_schedule_api(self, service):
        """Test coordinated generation through the wrapper."""
        request_data = {
            "learner_ids": ["kid1", "kid2"],
            "start_date": "2025-06-23",
            "end_date": "2025-06-27",
            "coordination_mode": "staggered",
            "persist": False,
        }

        response = generate_family_schedule_api(request_data, service)

        assert response["success"] is True
        result = response["result"]
        assert result["coordination_mode"] == "staggered"
        assert set(result["schedules"]) == {"kid1", "kid2"}
        assert len(result["schedules"]["kid1"]["sessions"]) == 3
        assert result["schedules"]["kid2"]["sessions"] == []

    def test_generate_family_schedule_api_duplicate_learners(self, service):
        response = generate_family_schedule_api(
            {
                "learner_ids": ["kid1", "kid1"],
                "start_date": "2025-06-23",
                "end_date": "2025-06-27",
            },
            service,
        )

        assert response["success"] is False
        assert response["error"]["code"] == "VALIDATION_ERROR"
        assert "unique" in response["error"]["message"]


class TestCreateWorkItem:
    def test_create_work_item_from_dict(self):
        """Test work item creation from dictionary."""
        item = create_work_item_from_dict(
            {
                "id": 17,
                "child_id": "kid1",
                "title": "Fractions quiz",
                "subject_name": "Mathematics",
                "due_date": "2025-06-25T10:00:00Z",
                "content_type": "quiz",
                "max_grade_value": "40",
            }
        )

        assert item.id == "17"
        assert item.learner_id == "kid1"
        assert item.subject == "Mathematics"
        assert item.due_date == date(2025, 6, 25)
        assert item.max_grade_value == 40.0

    def test_lenient_fields(self):
        """Unparseable values are dropped rather than rejected."""
        item = create_work_item_from_dict(
            {"id": "w1", "learner_id": "kid1", "due_date": "next week", "max_grade_value": "n/a"}
        )

        assert item.title == "Untitled"
        assert item.due_date is None
        assert item.max_grade_value is None


class TestValidateScheduleRequest:
    """Test cases for pre-flight request validation."""

    def test_valid_requests(self):
        assert (
            validate_schedule_request(
                {"learner_id": "kid1", "start_date": "2025-06-23", "end_date": "2025-06-27"}
            )
            is None
        )
        assert (
            validate_schedule_request(
                {
                    "learner_ids": ["kid1", "kid2"],
                    "start_date": date(2025, 6, 23),
                    "end_date": "2025-06-27",
                    "coordination_mode": "synchronized",
                }
            )
            is None
        )

    @pytest.mark.parametrize(
        "request_data,message",
        [
            ({"start_date": "2025-06-23", "end_date": "2025-06-27"}, "Missing required field: learner_id"),
            ({"learner_id": "kid1", "start_date": "2025-06-23"}, "Missing required field: end_date"),
            (
                {"learner_id": "kid1", "start_date": "23/06/2025", "end_date": "2025-06-27"},
                "start_date must be in YYYY-MM-DD format",
            ),
            (
                {
                    "learner_id": "kid1",
                    "start_date": "2025-06-23",
                    "end_date": "2025-06-27",
                    "session_length": "huge",
                },
                "session_length must be one of short, medium, long, extended, auto",
            ),
            (
                {
                    "learner_ids": ["kid1"],
                    "start_date": "2025-06-23",
                    "end_date": "2025-06-27",
                    "coordination_mode": "chaotic",
                },
                "Unknown coordination mode: chaotic",
            ),
            (
                {"learner_ids": ["kid1", "kid1"], "start_date": "2025-06-23", "end_date": "2025-06-27"},
                "learner_ids must be unique",
            ),
            ({"learner_ids": [], "start_date": "2025-06-23", "end_date": "2025-06-27"}, "Missing required field: learner_ids"),
        ],
    )
    def test_invalid_requests(self, request_data, message):
        assert validate_schedule_request(request_data) == message
