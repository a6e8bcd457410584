"""
Strict schemas for advisory replies.

Replies are validated field by field and then against the ids that were
offered in the prompt. Anything unexpected raises ``AdvisoryServiceError`` so
callers treat a bad reply exactly like an outage.
"""

from collections.abc import Collection
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from study_scheduler.exceptions import AdvisoryServiceError


class AdvisoryAssignment(BaseModel):
    model_config = ConfigDict(extra="forbid")

    slot_id: str = Field(..., min_length=1)
    subject: str = Field(..., min_length=1)
    material_ids: list[str] = Field(..., min_length=1, max_length=1)
    reasoning: str = ""
    cognitive_match: float = Field(..., ge=0.0, le=1.0)


class AssignmentReply(BaseModel):
    model_config = ConfigDict(extra="forbid")

    assignments: list[AdvisoryAssignment]
    overall_strategy: str = ""
    confidence: float | None = Field(None, ge=0.0, le=1.0)


class Adjustment(BaseModel):
    """One conflict-resolution step proposed by the advisory service."""

    model_config = ConfigDict(extra="forbid")

    action: Literal["move", "swap", "merge"]
    session_id: str = Field(..., min_length=1)
    target_slot_id: str | None = None
    other_session_id: str | None = None
    reasoning: str = ""

    @model_validator(mode="after")
    def check_action_arguments(self) -> "Adjustment":
        if self.action == "move" and not self.target_slot_id:
            raise ValueError("move requires target_slot_id")
        if self.action in ("swap", "merge") and not self.other_session_id:
            raise ValueError(f"{self.action} requires other_session_id")
        return self


class RebalanceReply(BaseModel):
    model_config = ConfigDict(extra="forbid")

    adjustments: list[Adjustment]


def parse_assignment_reply(
    payload: dict[str, Any],
    slot_ids: Collection[str],
    material_ids: Collection[str],
) -> list[AdvisoryAssignment]:
    try:
        reply = AssignmentReply.model_validate(payload)
    except PydanticValidationError as e:
        raise AdvisoryServiceError(f"malformed assignment reply: {e}") from e

    seen_slots: set[str] = set()
    seen_materials: set[str] = set()
    for assignment in reply.assignments:
        if assignment.slot_id not in slot_ids:
            raise AdvisoryServiceError(f"unknown slot id {assignment.slot_id!r}")
        if assignment.slot_id in seen_slots:
            raise AdvisoryServiceError(f"slot {assignment.slot_id!r} assigned twice")
        seen_slots.add(assignment.slot_id)
        for material_id in assignment.material_ids:
            if material_id not in material_ids:
                raise AdvisoryServiceError(f"unknown material id {material_id!r}")
            if material_id in seen_materials:
                raise AdvisoryServiceError(f"material {material_id!r} assigned twice")
            seen_materials.add(material_id)
    return reply.assignments


def parse_rebalance_reply(
    payload: dict[str, Any],
    session_ids: Collection[str],
    slot_ids: Collection[str],
) -> list[Adjustment]:
    try:
        reply = RebalanceReply.model_validate(payload)
    except PydanticValidationError as e:
        raise AdvisoryServiceError(f"malformed rebalance reply: {e}") from e

    touched: set[str] = set()
    for adjustment in reply.adjustments:
        involved = [adjustment.session_id]
        if adjustment.other_session_id:
            involved.append(adjustment.other_session_id)
        for session_id in involved:
            if session_id not in session_ids:
                raise AdvisoryServiceError(f"unknown session id {session_id!r}")
            if session_id in touched:
                raise AdvisoryServiceError(f"session {session_id!r} adjusted twice")
            touched.add(session_id)
        if adjustment.target_slot_id and adjustment.target_slot_id not in slot_ids:
            raise AdvisoryServiceError(f"unknown slot id {adjustment.target_slot_id!r}")
    return reply.adjustments
