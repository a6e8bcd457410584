"""
Prompts and function definitions for the advisory service
"""

from collections.abc import Mapping, Sequence
from typing import Any

from study_scheduler.config import SchedulingConfig
from study_scheduler.models import Conflict, LearnerProfile, Session, TimeSlot, WorkItem

ASSIGNMENT_TOOL_NAME = "assign_study_materials"
REBALANCE_TOOL_NAME = "resolve_schedule_conflicts"

ASSIGNMENT_SYSTEM_PROMPT = (
    "You are an educational scheduling expert. Assign study materials to time "
    "slots so that demanding subjects land in high-efficiency slots, urgent "
    "materials come first and subjects are balanced across days."
)

REBALANCE_SYSTEM_PROMPT = (
    "You coordinate study schedules for several children in one household. "
    "Resolve the listed conflicts with the fewest changes possible."
)


def get_assignment_tool() -> dict[str, Any]:
    """Tool definition for material-to-slot assignment."""
    return {
        "type": "function",
        "function": {
            "name": ASSIGNMENT_TOOL_NAME,
            "description": "Assign each study material to exactly one time slot",
            "parameters": {
                "type": "object",
                "properties": {
                    "assignments": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "slot_id": {
                                    "type": "string",
                                    "description": "Exact slot id from the slot list",
                                },
                                "subject": {"type": "string"},
                                "material_ids": {
                                    "type": "array",
                                    "items": {"type": "string"},
                                    "description": "Exactly one material id",
                                },
                                "reasoning": {
                                    "type": "string",
                                    "description": "Why this placement is good",
                                },
                                "cognitive_match": {
                                    "type": "number",
                                    "description": "Fit between subject load and slot (0-1)",
                                },
                            },
                            "required": [
                                "slot_id",
                                "subject",
                                "material_ids",
                                "cognitive_match",
                            ],
                        },
                    },
                    "overall_strategy": {"type": "string"},
                    "confidence": {"type": "number"},
                },
                "required": ["assignments"],
            },
        },
    }


def get_rebalance_tool() -> dict[str, Any]:
    """Tool definition for conflict-resolution adjustments."""
    return {
        "type": "function",
        "function": {
            "name": REBALANCE_TOOL_NAME,
            "description": "Propose move, swap or merge adjustments for conflicting sessions",
            "parameters": {
                "type": "object",
                "properties": {
                    "adjustments": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "action": {
                                    "type": "string",
                                    "enum": ["move", "swap", "merge"],
                                },
                                "session_id": {"type": "string"},
                                "target_slot_id": {
                                    "type": "string",
                                    "description": "Free slot id, required for move",
                                },
                                "other_session_id": {
                                    "type": "string",
                                    "description": "Second session, required for swap and merge",
                                },
                                "reasoning": {"type": "string"},
                            },
                            "required": ["action", "session_id"],
                        },
                    }
                },
                "required": ["adjustments"],
            },
        },
    }


def _format_slot(slot: TimeSlot) -> str:
    return (
        f"{slot.id}: {slot.date.isoformat()} {slot.start.strftime('%H:%M')}-"
        f"{slot.end.strftime('%H:%M')} ({slot.window.value}, efficiency {slot.efficiency})"
    )


def _format_material(item: WorkItem) -> str:
    parts = [f'ID:{item.id} "{item.title}"']
    if item.due_date:
        parts.append(f"DUE:{item.due_date.isoformat()}")
    if item.urgency:
        parts.append(f"URGENCY:{item.urgency.value}")
    if item.estimated_minutes:
        parts.append(f"EST:{item.estimated_minutes}min")
    return " ".join(parts)


def build_assignment_prompt(
    profile: LearnerProfile,
    grouped: Mapping[str, Sequence[WorkItem]],
    slots: Sequence[TimeSlot],
    config: SchedulingConfig,
) -> str:
    slot_lines = "\n".join(_format_slot(slot) for slot in slots)
    material_lines = "\n".join(
        f"{subject}: " + ", ".join(_format_material(item) for item in items)
        for subject, items in grouped.items()
    )
    weight_lines = "\n".join(
        f"{subject}: {config.weight_for(subject)}" for subject in grouped
    )
    return f"""Create study assignments for learner {profile.learner_id}.

TIME SLOTS (best first):
{slot_lines}

MATERIALS BY SUBJECT:
{material_lines}

PREFERENCES:
- Difficult subjects in morning: {profile.difficult_subjects_morning}
- Max daily study minutes: {profile.max_daily_study_minutes}
- Break between sessions: {profile.break_duration_minutes} minutes

COGNITIVE LOAD WEIGHTS (higher = more demanding):
{weight_lines}

Rules:
1. Use only the exact slot ids and material ids listed above
2. Assign each material to at most one slot and each slot at most one material
3. Schedule materials with the nearest due date first
4. Match demanding subjects to high-efficiency slots
5. Keep lessons of one subject in their listed order
"""


def _format_session(session: Session) -> str:
    return (
        f"{session.id}: learner {session.learner_id}, {session.subject} "
        f"{session.scheduled_date.isoformat()} {session.start_time.strftime('%H:%M')} "
        f"({session.duration_minutes}min)"
    )


def build_rebalance_prompt(
    conflicts: Sequence[Conflict],
    sessions: Sequence[Session],
    free_slots: Sequence[TimeSlot],
) -> str:
    conflict_lines = "\n".join(
        f"- {c.session_a_id} vs {c.session_b_id}: {c.conflict_type.value}, "
        f"{c.overlap_minutes}min overlap, severity {c.severity:.2f}"
        for c in conflicts
    )
    session_lines = "\n".join(_format_session(session) for session in sessions)
    slot_lines = "\n".join(_format_slot(slot) for slot in free_slots)
    return f"""Resolve these schedule conflicts between children.

CONFLICTS:
{conflict_lines}

SESSIONS:
{session_lines}

FREE SLOTS:
{slot_lines}

Actions:
- move: put session_id into target_slot_id (must be a free slot above)
- swap: exchange the times of session_id and other_session_id
- merge: turn session_id and other_session_id into one joint study session

Adjust each session at most once and never drop a session.
"""
