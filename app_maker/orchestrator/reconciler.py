"""Recovers stages whose terminal agent event never arrived.

A stage waiting on an agent task for longer than the threshold is checked
against the agent service. If the agent task has finished, the same
``agent:task-response`` task the bridge would have enqueued is enqueued now;
the response handler ignores it if the original event shows up after all.
"""

import asyncio
from datetime import datetime, timedelta

import httpx
import structlog

from app_maker.agents import AgentClient
from app_maker.contracts import AgentTaskStatusEvent
from app_maker.errors import AgentServiceError
from app_maker.models import DevStage, utcnow
from app_maker.queue import TaskQueue
from app_maker.repositories import ProjectRepository, StageRepository

logger = structlog.get_logger(__name__)


class StageReconciler:
    def __init__(
        self,
        stages: StageRepository,
        projects: ProjectRepository,
        agents: AgentClient,
        queue: TaskQueue,
        interval: float = 300.0,
        threshold: float = 1800.0,
    ):
        self.stages = stages
        self.projects = projects
        self.agents = agents
        self.queue = queue
        self.interval = interval
        self.threshold = threshold
        self._running = False

    async def run(self) -> None:
        self._running = True
        logger.info(
            "stage_reconciler_started", interval_sec=self.interval, threshold_sec=self.threshold
        )
        while self._running:
            try:
                await self.reconcile_once()
            except Exception as e:
                logger.error(
                    "stage_reconciler_error",
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
            await asyncio.sleep(self.interval)

    def stop(self) -> None:
        self._running = False

    async def reconcile_once(self, cutoff: datetime | None = None) -> int:
        """Check stale in-flight stages once; returns how many were re-enqueued."""
        cutoff = cutoff or utcnow() - timedelta(seconds=self.threshold)
        stages = await self.stages.list_in_flight(cutoff)
        if stages:
            logger.info("stale_stages_found", count=len(stages))

        recovered = 0
        for stage in stages:
            if await self._reconcile_stage(stage):
                recovered += 1
        return recovered

    async def _reconcile_stage(self, stage: DevStage) -> bool:
        try:
            result = await self.agents.get_task_status(stage.agent_task_id)
        except (AgentServiceError, httpx.HTTPError) as e:
            logger.warning(
                "stale_stage_status_unavailable",
                project_guid=stage.project_guid,
                stage=stage.name,
                agent_task_id=stage.agent_task_id,
                error=str(e),
            )
            return False

        if not result.is_terminal:
            logger.debug(
                "stale_stage_still_running",
                project_guid=stage.project_guid,
                stage=stage.name,
                progress=result.progress,
            )
            return False

        project = await self.projects.get_by_guid(stage.project_guid)
        if project is None:
            logger.info("stale_stage_project_gone", project_guid=stage.project_guid)
            return False

        await self.queue.enqueue_agent_task_response(
            AgentTaskStatusEvent(
                task_id=stage.agent_task_id,
                project_guid=stage.project_guid,
                dev_stage=stage.name,
                status=result.status,
                message=result.message,
            )
        )
        logger.info(
            "stale_stage_recovered",
            project_guid=stage.project_guid,
            stage=stage.name,
            agent_task_id=stage.agent_task_id,
            status=result.status,
        )
        return True
