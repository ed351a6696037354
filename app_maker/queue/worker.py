"""Consumer side of the job queue."""

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
import random
import socket
import time
import uuid

from pydantic import ValidationError
import redis.asyncio as redis
import structlog

from app_maker.errors import SkipRetry
from app_maker.logging import bind_task_context
from app_maker.models import CommonStatus
from app_maker.redis import decode_stream_data, ensure_consumer_group

from .client import CONSUMER_GROUP, TaskQueue
from .result import ResultWriter
from .task import QueuedTask

logger = structlog.get_logger(__name__)

TaskHandler = Callable[[QueuedTask, ResultWriter], Awaitable[None]]

DEFAULT_WEIGHTS = {"critical": 6, "default": 3, "low": 1}
RECLAIM_BATCH = 100

StreamEntry = tuple[str, str, dict]


def weighted_queue_order(weights: dict[str, int], rng: random.Random | None = None) -> list[str]:
    """Random queue order where heavier queues tend to come first.

    Each queue appears ``weight`` times in a shuffled pool; first occurrences win.
    """
    rng = rng or random
    pool = [name for name, weight in weights.items() for _ in range(max(weight, 1))]
    rng.shuffle(pool)
    return list(dict.fromkeys(pool))


class QueueWorker:
    """Runs queue handlers with bounded concurrency and retry."""

    def __init__(
        self,
        queue: TaskQueue,
        handlers: dict[str, TaskHandler],
        concurrency: int = 10,
        weights: dict[str, int] | None = None,
        backoff_base: float = 2.0,
        backoff_cap: float = 300.0,
        block_ms: int = 1000,
        shutdown_timeout: float = 30.0,
        consumer_name: str | None = None,
        heartbeat_interval: float = 10.0,
        reclaim_idle: float = 30.0,
    ):
        self.queue = queue
        self.handlers = handlers
        self.weights = weights or DEFAULT_WEIGHTS
        self.semaphore = asyncio.Semaphore(concurrency)
        self.concurrency = concurrency
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self.block_ms = block_ms
        self.shutdown_timeout = shutdown_timeout
        self.consumer_name = consumer_name or f"{socket.gethostname()}-{uuid.uuid4().hex[:6]}"
        self.heartbeat_interval = heartbeat_interval
        self.reclaim_idle = reclaim_idle
        self.pending_tasks: set[asyncio.Task] = set()
        self._backlog: deque[StreamEntry] = deque()
        self._heartbeat_task: asyncio.Task | None = None
        self._next_reclaim = 0.0
        self._running = False

    @property
    def redis(self) -> redis.Redis:
        return self.queue.client

    def backoff(self, retried: int) -> float:
        return min(self.backoff_base * (2**retried), self.backoff_cap)

    async def ensure_groups(self) -> None:
        for name in self.weights:
            await ensure_consumer_group(self.redis, self.queue.stream_key(name), CONSUMER_GROUP)

    async def heartbeat(self) -> None:
        """Mark this consumer alive; the key outlives three missed beats."""
        await self.redis.set(
            self.queue.consumer_key(self.consumer_name),
            int(time.time()),
            ex=max(int(self.heartbeat_interval * 3), 1),
        )

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                await self.heartbeat()
            except Exception as e:
                logger.warning("worker_heartbeat_failed", error=str(e), error_type=type(e).__name__)

    async def claim_abandoned(self) -> list[StreamEntry]:
        """Take over entries read by consumers whose heartbeat has expired.

        Such an entry was delivered but never acknowledged, so its worker died
        while handling it.
        """
        min_idle_ms = int(self.reclaim_idle * 1000)
        claimed: list[StreamEntry] = []
        for name in self.weights:
            stream = self.queue.stream_key(name)
            pending = await self.redis.xpending_range(
                stream, CONSUMER_GROUP, min="-", max="+", count=RECLAIM_BATCH
            )
            alive = {self.consumer_name: True}
            stale_ids = []
            for entry in pending:
                consumer = entry["consumer"]
                if consumer not in alive:
                    alive[consumer] = bool(
                        await self.redis.exists(self.queue.consumer_key(consumer))
                    )
                if not alive[consumer] and entry["time_since_delivered"] >= min_idle_ms:
                    stale_ids.append(entry["message_id"])
            if not stale_ids:
                continue

            entries = await self.redis.xclaim(
                stream, CONSUMER_GROUP, self.consumer_name, min_idle_ms, stale_ids
            )
            for message_id, fields in entries:
                if not fields:
                    # Trimmed from the stream after delivery
                    await self.redis.xack(stream, CONSUMER_GROUP, message_id)
                    continue
                logger.warning("stream_entry_reclaimed", stream=stream, message_id=message_id)
                claimed.append((name, message_id, fields))
        return claimed

    async def _next_entry(self, block_ms: int | None) -> StreamEntry | None:
        if time.monotonic() >= self._next_reclaim:
            self._next_reclaim = time.monotonic() + self.heartbeat_interval
            self._backlog.extend(await self.claim_abandoned())
        if self._backlog:
            return self._backlog.popleft()
        return await self._read(block_ms)

    async def _read(self, block_ms: int | None) -> StreamEntry | None:
        """Read one entry, trying queues in weighted order."""
        for name in weighted_queue_order(self.weights):
            messages = await self.redis.xreadgroup(
                groupname=CONSUMER_GROUP,
                consumername=self.consumer_name,
                streams={self.queue.stream_key(name): ">"},
                count=1,
            )
            if messages:
                _stream, entries = messages[0]
                message_id, fields = entries[0]
                return name, message_id, fields

        if not block_ms:
            return None

        messages = await self.redis.xreadgroup(
            groupname=CONSUMER_GROUP,
            consumername=self.consumer_name,
            streams={self.queue.stream_key(name): ">" for name in self.weights},
            count=1,
            block=block_ms,
        )
        if not messages:
            return None
        stream, entries = messages[0]
        message_id, fields = entries[0]
        name = stream.rsplit(":", 1)[-1]
        return name, message_id, fields

    async def start(self) -> None:
        """Consume until ``stop`` is called."""
        await self.ensure_groups()
        await self.heartbeat()
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        self._running = True
        logger.info(
            "queue_worker_started",
            consumer=self.consumer_name,
            concurrency=self.concurrency,
            weights=self.weights,
        )

        while self._running:
            await self.semaphore.acquire()
            if not self._running:
                self.semaphore.release()
                break
            try:
                await self.queue.promote_due()
                entry = await self._next_entry(self.block_ms)
            except asyncio.CancelledError:
                self.semaphore.release()
                logger.info("queue_worker_cancelled")
                break
            except Exception as e:
                self.semaphore.release()
                logger.error("queue_read_error", error=str(e), error_type=type(e).__name__)
                await asyncio.sleep(1)
                continue

            if entry is None:
                self.semaphore.release()
                continue

            task = asyncio.create_task(self._process_and_release(*entry))
            self.pending_tasks.add(task)
            task.add_done_callback(self.pending_tasks.discard)

    async def _process_and_release(self, queue_name: str, message_id: str, fields: dict) -> None:
        try:
            await self.process_message(queue_name, message_id, fields)
        finally:
            self.semaphore.release()

    async def run_once(self) -> int:
        """Process everything currently due, one task at a time. Returns the count."""
        await self.ensure_groups()
        await self.heartbeat()
        self._next_reclaim = 0.0
        processed = 0
        while True:
            await self.queue.promote_due()
            entry = await self._next_entry(None)
            if entry is None:
                return processed
            await self.process_message(*entry)
            processed += 1

    async def process_message(self, queue_name: str, message_id: str, fields: dict) -> None:
        stream = self.queue.stream_key(queue_name)
        try:
            try:
                task = QueuedTask.model_validate(decode_stream_data(fields))
            except (ValueError, ValidationError) as e:
                logger.error(
                    "task_decode_failed",
                    stream=stream,
                    message_id=message_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                return
            await self.execute(task)
        finally:
            await self.redis.xack(stream, CONSUMER_GROUP, message_id)

    async def execute(self, task: QueuedTask) -> None:
        """Run the handler for ``task`` and record the outcome."""
        writer = self.queue.result_writer(task)

        with bind_task_context(task.id, task.type, task.project_guid):
            handler = self.handlers.get(task.type)
            if handler is None:
                message = f"no handler registered for task type {task.type}"
                logger.warning("task_handler_missing")
                await writer.update(CommonStatus.FAILED, 0, message)
                await self.queue.archive(task, message)
                return

            logger.info("task_started", retried=task.retried, queue=task.queue)
            await writer.update(CommonStatus.IN_PROGRESS, 0, "processing")

            try:
                await handler(task, writer)
            except SkipRetry as e:
                logger.warning("task_failed_permanently", error=str(e), error_type=type(e).__name__)
                if not writer.terminal_written:
                    await writer.update(CommonStatus.FAILED, writer.progress, str(e))
                await self.queue.archive(task, str(e))
                return
            except asyncio.CancelledError:
                # Interrupted by shutdown: hand the task back without charging a retry
                logger.warning("task_interrupted")
                await self.queue.schedule_retry(task, 0)
                raise
            except Exception as e:
                await self._handle_failure(task, writer, e)
                return

            if not writer.terminal_written:
                await writer.update(CommonStatus.DONE, 100, "completed")
            logger.info("task_completed", status=writer.last.status if writer.last else None)

    async def _handle_failure(
        self, task: QueuedTask, writer: ResultWriter, error: Exception
    ) -> None:
        if task.retried < task.max_retry:
            delay = self.backoff(task.retried)
            retry = task.model_copy(update={"retried": task.retried + 1})
            await self.queue.schedule_retry(retry, delay)
            await writer.update(
                CommonStatus.PENDING, writer.progress, f"retry scheduled in {delay:.0f}s: {error}"
            )
            logger.warning(
                "task_retry_scheduled",
                error=str(error),
                error_type=type(error).__name__,
                retried=retry.retried,
                max_retry=task.max_retry,
                delay_seconds=delay,
            )
            return

        logger.error(
            "task_failed",
            error=str(error),
            error_type=type(error).__name__,
            retried=task.retried,
            exc_info=True,
        )
        await writer.update(CommonStatus.FAILED, writer.progress, str(error))
        await self.queue.archive(task, str(error))

    async def stop(self) -> None:
        """Stop consuming and wait for running tasks."""
        self._running = False
        if self.pending_tasks:
            logger.info("waiting_for_pending_tasks", count=len(self.pending_tasks))
            _done, pending = await asyncio.wait(self.pending_tasks, timeout=self.shutdown_timeout)
            if pending:
                logger.warning("cancelling_pending_tasks", count=len(pending))
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            await asyncio.gather(self._heartbeat_task, return_exceptions=True)
            self._heartbeat_task = None
        await self.redis.delete(self.queue.consumer_key(self.consumer_name))
        logger.info("queue_worker_stopped")
