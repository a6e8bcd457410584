"""
Scheduling service: loads inputs from the store, runs the engine, persists.
"""

import logging

from study_scheduler.advisory.client import AdvisoryClient
from study_scheduler.assignment import AdvisoryAssigner
from study_scheduler.config import DEFAULT_CONFIG, SchedulingConfig, settings
from study_scheduler.family.coordinator import FamilyCoordinator
from study_scheduler.family.rebalance import RebalanceConfig
from study_scheduler.family.strategies import RebalanceAdvisor
from study_scheduler.models import (
    FamilyScheduleRequest,
    FamilyScheduleResult,
    ScheduleRequest,
    ScheduleResult,
)
from study_scheduler.pipeline import PipelineInput, SchedulePipeline
from study_scheduler.store import (
    ScheduleStore,
    load_existing_sessions,
    load_preferences,
    load_work_items,
    persist_sessions,
)

logger = logging.getLogger(__name__)


class SchedulingService:
    def __init__(
        self,
        store: ScheduleStore,
        advisory_client: AdvisoryClient | None = None,
        config: SchedulingConfig = DEFAULT_CONFIG,
        rebalance_config: RebalanceConfig | None = None,
    ):
        self.store = store
        self.config = config
        client = advisory_client if advisory_client is not None else AdvisoryClient()
        rebalance_config = rebalance_config or RebalanceConfig(
            max_time_in_seconds=settings.rebalance_timeout_seconds
        )

        self.pipeline = SchedulePipeline(AdvisoryAssigner(client, config), config)
        self.rule_based_pipeline = SchedulePipeline(None, config)
        self.coordinator = FamilyCoordinator(
            self.pipeline, RebalanceAdvisor(client, config), config, rebalance_config
        )
        self.rule_based_coordinator = FamilyCoordinator(
            self.rule_based_pipeline, None, config, rebalance_config
        )

    def generate_schedule(self, request: ScheduleRequest) -> ScheduleResult:
        logger.info(
            f"Generating schedule for {request.learner_id} "
            f"{request.start_date} to {request.end_date}"
        )
        existing = load_existing_sessions(
            self.store, [request.learner_id], request.start_date, request.end_date
        )
        pipeline_input = PipelineInput(
            learner_id=request.learner_id,
            items=load_work_items(self.store, request.learner_id),
            start_date=request.start_date,
            end_date=request.end_date,
            stored_preferences=load_preferences(self.store, request.learner_id),
            preference_overrides=request.preferences,
            session_length=request.session_length,
            focus_subjects=request.focus_subjects,
            load_distribution=request.load_distribution,
            blocked_windows=request.blocked_windows,
            existing_sessions=existing,
        )
        pipeline = self.pipeline if request.use_advisory else self.rule_based_pipeline
        result = pipeline.generate(pipeline_input)

        if request.persist and result.sessions:
            result.persisted_count, result.failed_writes = persist_sessions(
                self.store, result.sessions
            )
        return result

    def generate_family_schedule(self, request: FamilyScheduleRequest) -> FamilyScheduleResult:
        logger.info(
            f"Generating {request.coordination_mode.value} family schedule for "
            f"{len(request.learner_ids)} learners"
        )
        existing = load_existing_sessions(
            self.store, request.learner_ids, request.start_date, request.end_date
        )
        inputs = [
            PipelineInput(
                learner_id=learner_id,
                items=load_work_items(self.store, learner_id),
                start_date=request.start_date,
                end_date=request.end_date,
                stored_preferences=load_preferences(self.store, learner_id),
                preference_overrides=request.preferences.get(learner_id),
                session_length=request.session_length,
                existing_sessions=existing,
            )
            for learner_id in request.learner_ids
        ]
        coordinator = self.coordinator if request.use_advisory else self.rule_based_coordinator
        result = coordinator.coordinate(
            inputs,
            mode=request.coordination_mode,
            session_length=request.session_length,
            blocked_windows=request.blocked_windows,
            existing_sessions=existing,
        )

        if request.persist:
            for schedule in result.schedules.values():
                if schedule.sessions:
                    schedule.persisted_count, schedule.failed_writes = persist_sessions(
                        self.store, schedule.sessions
                    )
        return result
