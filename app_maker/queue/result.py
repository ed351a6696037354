from datetime import UTC, datetime

import redis.asyncio as redis
import structlog

from app_maker.contracts import TaskResult
from app_maker.models import CommonStatus

logger = structlog.get_logger(__name__)


class ResultWriter:
    """Writes the status record of one queue task.

    Every write refreshes the key's expiry to the task's retention, and
    ``updated_at`` never moves backwards for the task.
    """

    def __init__(self, client: redis.Redis, key: str, task_id: str, retention: int):
        self.client = client
        self.key = key
        self.task_id = task_id
        self.retention = retention
        self.last: TaskResult | None = None

    @property
    def progress(self) -> int:
        return self.last.progress if self.last else 0

    @property
    def terminal_written(self) -> bool:
        return self.last is not None and self.last.is_terminal

    async def update(
        self, status: CommonStatus | str, progress: int, message: str = ""
    ) -> TaskResult:
        status = status.value if isinstance(status, CommonStatus) else status
        progress = max(0, min(100, int(progress)))

        previous = self.last
        if previous is None:
            raw = await self.client.get(self.key)
            if raw:
                previous = TaskResult.model_validate_json(raw)

        updated_at = datetime.now(UTC)
        if previous is not None and previous.updated_at > updated_at:
            updated_at = previous.updated_at

        result = TaskResult(
            task_id=self.task_id,
            status=status,
            progress=progress,
            message=message,
            updated_at=updated_at,
        )
        await self.client.set(self.key, result.model_dump_json(), ex=self.retention)
        self.last = result
        logger.debug(
            "task_result_written", task_id=self.task_id, status=status, progress=progress
        )
        return result
