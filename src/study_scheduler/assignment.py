"""
Assignment engine: pair work items with time slots.

The advisory service is asked first; any failure falls back to the
deterministic rule-based pairing, which never depends on external state.
"""

import logging
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from study_scheduler.advisory.client import AdvisoryClient
from study_scheduler.advisory.prompts import (
    ASSIGNMENT_SYSTEM_PROMPT,
    build_assignment_prompt,
    get_assignment_tool,
)
from study_scheduler.advisory.schemas import parse_assignment_reply
from study_scheduler.config import DEFAULT_CONFIG, SchedulingConfig
from study_scheduler.exceptions import AdvisoryServiceError
from study_scheduler.models import (
    AssignmentSource,
    LearnerProfile,
    Session,
    TimeSlot,
    WorkItem,
)

logger = logging.getLogger(__name__)


@dataclass
class SlotAssignment:
    slot_id: str
    subject: str
    material_ids: list[str]
    reasoning: str = ""
    cognitive_match: float = 0.0


@dataclass
class AssignmentOutcome:
    assignments: list[SlotAssignment]
    source: AssignmentSource
    errors: list[str] = field(default_factory=list)


def cognitive_match(weight: float, efficiency: float) -> float:
    return max(0.0, min(1.0, 1 - abs(weight - efficiency)))


def rule_based_assignments(
    grouped: Mapping[str, Sequence[WorkItem]],
    slots: Sequence[TimeSlot],
    profile: LearnerProfile,
    config: SchedulingConfig = DEFAULT_CONFIG,
) -> list[SlotAssignment]:
    """Greedy pairing of materials with slots by cognitive load.

    Slots are taken by descending efficiency. Subjects are visited heaviest
    first when the learner prefers difficult subjects in the morning,
    lightest first otherwise; materials keep their group order.
    """
    ordered_slots = sorted(slots, key=lambda s: (-s.efficiency, s.date, s.start, s.id))
    sign = -1 if profile.difficult_subjects_morning else 1
    subjects = sorted(grouped, key=lambda subject: (sign * config.weight_for(subject), subject))
    queue = [item for subject in subjects for item in grouped[subject]]

    assignments = []
    for slot, item in zip(ordered_slots, queue):
        weight = config.weight_for(item.subject)
        assignments.append(
            SlotAssignment(
                slot_id=slot.id,
                subject=item.subject,
                material_ids=[item.id],
                reasoning=(
                    f"{item.subject} (load {weight:.2f}) placed in "
                    f"{slot.window.value} slot (efficiency {slot.efficiency:.2f})"
                ),
                cognitive_match=cognitive_match(weight, slot.efficiency),
            )
        )
    return assignments


class AdvisoryAssigner:
    """Asks the advisory service for assignments and validates the reply."""

    def __init__(self, client: AdvisoryClient, config: SchedulingConfig = DEFAULT_CONFIG):
        self.client = client
        self.config = config

    def is_available(self) -> bool:
        return self.client.is_available()

    def assign(
        self,
        grouped: Mapping[str, Sequence[WorkItem]],
        slots: Sequence[TimeSlot],
        profile: LearnerProfile,
    ) -> list[SlotAssignment]:
        prompt = build_assignment_prompt(profile, grouped, slots, self.config)
        payload = self.client.call_tool(ASSIGNMENT_SYSTEM_PROMPT, prompt, get_assignment_tool())

        items_by_id = {item.id: item for items in grouped.values() for item in items}
        reply = parse_assignment_reply(payload, {slot.id for slot in slots}, items_by_id)
        return [
            SlotAssignment(
                slot_id=assignment.slot_id,
                # Subject always follows the material, not the reply
                subject=items_by_id[assignment.material_ids[0]].subject,
                material_ids=list(assignment.material_ids),
                reasoning=assignment.reasoning,
                cognitive_match=assignment.cognitive_match,
            )
            for assignment in reply
        ]


def assign_materials(
    grouped: Mapping[str, Sequence[WorkItem]],
    slots: Sequence[TimeSlot],
    profile: LearnerProfile,
    *,
    advisor: AdvisoryAssigner | None = None,
    config: SchedulingConfig = DEFAULT_CONFIG,
) -> AssignmentOutcome:
    errors: list[str] = []
    has_materials = any(grouped.values())

    if advisor is not None and has_materials and slots:
        if advisor.is_available():
            try:
                assignments = advisor.assign(grouped, slots, profile)
                logger.info(f"Advisory service assigned {len(assignments)} materials")
                return AssignmentOutcome(assignments, AssignmentSource.ADVISORY)
            except AdvisoryServiceError as e:
                logger.warning(f"Advisory assignment failed, using rule-based pairing: {e}")
                errors.append(e.message)
        else:
            errors.append("advisory service unavailable")

    return AssignmentOutcome(
        rule_based_assignments(grouped, slots, profile, config),
        AssignmentSource.RULE_BASED,
        errors,
    )


def build_sessions(
    learner_id: str,
    assignments: Sequence[SlotAssignment],
    slots: Sequence[TimeSlot],
    items: Sequence[WorkItem],
) -> list[Session]:
    """Turn assignments into sessions; a material is used at most once."""
    slots_by_id = {slot.id: slot for slot in slots}
    items_by_id = {item.id: item for item in items}
    used_materials: set[str] = set()
    used_slots: set[str] = set()
    sessions = []

    for assignment in assignments:
        slot = slots_by_id.get(assignment.slot_id)
        if slot is None or slot.id in used_slots:
            logger.warning(f"Skipping assignment to unusable slot {assignment.slot_id}")
            continue
        material_ids = [m for m in assignment.material_ids if m in items_by_id]
        material_ids = [m for m in material_ids if m not in used_materials]
        if not material_ids:
            continue

        item = items_by_id[material_ids[0]]
        used_materials.add(item.id)
        used_slots.add(slot.id)
        sessions.append(
            Session(
                id=str(uuid.uuid4()),
                learner_id=learner_id,
                work_item_id=item.id,
                subject=item.subject,
                title=item.title,
                scheduled_date=slot.date,
                start_time=slot.start,
                duration_minutes=slot.duration_minutes,
                reasoning=assignment.reasoning,
                cognitive_match=assignment.cognitive_match,
                efficiency_score=slot.efficiency,
                slot_id=slot.id,
                estimated_minutes=item.estimated_minutes,
            )
        )

    return sorted(sessions, key=lambda s: s.sort_key)
