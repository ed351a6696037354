"""Producer side of the job queue.

Layout under the configured prefix:

- ``{prefix}:queue:{name}``: one Redis stream per queue (critical, default, low)
- ``{prefix}:scheduled``: sorted set of tasks waiting for a retry, scored by due time
- ``{prefix}:result:{task_id}``: JSON status record with the task's retention
- ``{prefix}:archive``: capped list of tasks that failed for good
- ``{prefix}:consumer:{name}``: heartbeat of a live worker, expires when it dies
"""

from datetime import UTC, datetime
import json
import time
from typing import Any

from pydantic import BaseModel
import redis.asyncio as redis
import structlog

from app_maker.contracts import (
    AgentChatPayload,
    AgentTaskStatusEvent,
    ProjectArchivePayload,
    ProjectConfirmPayload,
    ProjectDeployPayload,
    ProjectInitPayload,
    ProjectStagePayload,
    QueueName,
    TaskResult,
    TaskType,
)
from app_maker.models import CommonStatus

from .result import ResultWriter
from .task import DEFAULT_RETENTION, QueuedTask

logger = structlog.get_logger(__name__)

CONSUMER_GROUP = "app-maker-workers"
STREAM_MAXLEN = 10_000
ARCHIVE_MAXLEN = 1_000

# Queue each task type goes to
TASK_QUEUES: dict[str, QueueName] = {
    TaskType.AGENT_TASK_RESPONSE.value: QueueName.CRITICAL,
    TaskType.PROJECT_INIT.value: QueueName.DEFAULT,
    TaskType.PROJECT_STAGE.value: QueueName.DEFAULT,
    TaskType.AGENT_CHAT.value: QueueName.DEFAULT,
    TaskType.PROJECT_DEPLOY.value: QueueName.DEFAULT,
    TaskType.PROJECT_CONFIRM.value: QueueName.DEFAULT,
    TaskType.PROJECT_DOWNLOAD.value: QueueName.LOW,
    TaskType.PROJECT_BACKUP.value: QueueName.LOW,
}


class TaskQueue:
    """Enqueues tasks and reads back their results."""

    def __init__(
        self,
        client: redis.Redis,
        prefix: str = "app-maker",
        default_max_retry: int = 1,
        retention: int = DEFAULT_RETENTION,
    ):
        self.client = client
        self.prefix = prefix
        self.default_max_retry = default_max_retry
        self.retention = max(retention, DEFAULT_RETENTION)

    def stream_key(self, queue: str | QueueName) -> str:
        name = queue.value if isinstance(queue, QueueName) else queue
        return f"{self.prefix}:queue:{name}"

    def result_key(self, task_id: str) -> str:
        return f"{self.prefix}:result:{task_id}"

    def consumer_key(self, consumer: str) -> str:
        return f"{self.prefix}:consumer:{consumer}"

    @property
    def scheduled_key(self) -> str:
        return f"{self.prefix}:scheduled"

    @property
    def archive_key(self) -> str:
        return f"{self.prefix}:archive"

    async def enqueue(
        self,
        task_type: TaskType | str,
        payload: BaseModel | dict[str, Any],
        queue: QueueName | str | None = None,
        max_retry: int | None = None,
        retention: int | None = None,
    ) -> str:
        """Put a task on its queue and return the new task id."""
        task_type = task_type.value if isinstance(task_type, TaskType) else task_type
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(mode="json")
        if queue is None:
            queue = TASK_QUEUES.get(task_type, QueueName.DEFAULT)
        queue = queue.value if isinstance(queue, QueueName) else queue

        task = QueuedTask(
            type=task_type,
            payload=payload,
            queue=queue,
            max_retry=self.default_max_retry if max_retry is None else max_retry,
            retention=max(retention or self.retention, DEFAULT_RETENTION),
        )

        await self.result_writer(task).update(CommonStatus.PENDING, 0, "queued")
        await self._push(task)
        logger.info(
            "task_enqueued",
            task_id=task.id,
            task_type=task_type,
            queue=queue,
            project_guid=task.project_guid,
        )
        return task.id

    async def _push(self, task: QueuedTask) -> None:
        await self.client.xadd(
            self.stream_key(task.queue),
            {"data": task.model_dump_json()},
            maxlen=STREAM_MAXLEN,
            approximate=True,
        )

    async def get_result(self, task_id: str) -> TaskResult | None:
        raw = await self.client.get(self.result_key(task_id))
        if not raw:
            return None
        return TaskResult.model_validate_json(raw)

    def result_writer(self, task: QueuedTask) -> ResultWriter:
        return ResultWriter(self.client, self.result_key(task.id), task.id, task.retention)

    async def schedule_retry(self, task: QueuedTask, delay: float) -> None:
        """Hold ``task`` in the scheduled set until ``delay`` seconds from now."""
        await self.client.zadd(self.scheduled_key, {task.model_dump_json(): time.time() + delay})

    async def promote_due(self, now: float | None = None) -> int:
        """Move due scheduled tasks back onto their queues."""
        now = time.time() if now is None else now
        due = await self.client.zrangebyscore(self.scheduled_key, "-inf", now)
        promoted = 0
        for member in due:
            # zrem succeeds for exactly one worker
            if not await self.client.zrem(self.scheduled_key, member):
                continue
            task = QueuedTask.model_validate_json(member)
            await self._push(task)
            promoted += 1
            logger.info(
                "task_retry_promoted", task_id=task.id, task_type=task.type, retried=task.retried
            )
        return promoted

    async def archive(self, task: QueuedTask, error: str) -> None:
        entry = {
            "task": task.model_dump(mode="json"),
            "error": error,
            "failed_at": datetime.now(UTC).isoformat(),
        }
        await self.client.lpush(self.archive_key, json.dumps(entry))
        await self.client.ltrim(self.archive_key, 0, ARCHIVE_MAXLEN - 1)

    # === Typed enqueuers ===

    async def enqueue_project_init(self, project_guid: str) -> str:
        return await self.enqueue(
            TaskType.PROJECT_INIT, ProjectInitPayload(project_guid=project_guid)
        )

    async def enqueue_project_stage(
        self, project_guid: str, stage_name: str, need_confirm: bool
    ) -> str:
        return await self.enqueue(
            TaskType.PROJECT_STAGE,
            ProjectStagePayload(
                project_guid=project_guid, stage_name=stage_name, need_confirm=need_confirm
            ),
        )

    async def enqueue_agent_task_response(self, event: AgentTaskStatusEvent) -> str:
        return await self.enqueue(TaskType.AGENT_TASK_RESPONSE, event)

    async def enqueue_agent_chat(
        self, project_guid: str, agent_type: str, message: str, user_id: int | None = None
    ) -> str:
        return await self.enqueue(
            TaskType.AGENT_CHAT,
            AgentChatPayload(
                project_guid=project_guid, agent_type=agent_type, message=message, user_id=user_id
            ),
        )

    async def enqueue_project_deploy(
        self,
        project_guid: str,
        environment: str = "dev",
        deploy_options: dict[str, Any] | None = None,
    ) -> str:
        return await self.enqueue(
            TaskType.PROJECT_DEPLOY,
            ProjectDeployPayload(
                project_guid=project_guid,
                environment=environment,
                deploy_options=deploy_options or {},
            ),
        )

    async def enqueue_project_confirm(self, project_guid: str, stage_name: str = "") -> str:
        return await self.enqueue(
            TaskType.PROJECT_CONFIRM,
            ProjectConfirmPayload(project_guid=project_guid, stage_name=stage_name),
        )

    async def enqueue_project_download(self, project_guid: str, project_path: str) -> str:
        return await self.enqueue(
            TaskType.PROJECT_DOWNLOAD,
            ProjectArchivePayload(project_guid=project_guid, project_path=project_path),
        )

    async def enqueue_project_backup(self, project_guid: str, project_path: str) -> str:
        return await self.enqueue(
            TaskType.PROJECT_BACKUP,
            ProjectArchivePayload(project_guid=project_guid, project_path=project_path),
        )
