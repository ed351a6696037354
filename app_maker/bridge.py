"""Agent task bridge.

Listens to the agent task channel and turns every terminal agent event into an
``agent:task-response`` queue task. Non-terminal events are only logged.
"""

import asyncio
import json

from pydantic import ValidationError
import redis.asyncio as redis
import structlog

from app_maker.contracts import AgentTaskStatusEvent
from app_maker.models import CommonStatus
from app_maker.queue import TaskQueue

logger = structlog.get_logger(__name__)

DEFAULT_CHANNEL = "agent:task"
BACKOFF_INITIAL = 1.0
BACKOFF_MAX = 30.0


class AgentTaskBridge:
    def __init__(
        self,
        client: redis.Redis,
        queue: TaskQueue,
        channel: str = DEFAULT_CHANNEL,
        poll_timeout: float = 1.0,
    ):
        self.client = client
        self.queue = queue
        self.channel = channel
        self.poll_timeout = poll_timeout
        self._running = False

    async def handle_event(self, raw: str | bytes) -> str | None:
        """Process one published payload; returns the enqueued task id, if any."""
        try:
            event = AgentTaskStatusEvent.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError, TypeError) as e:
            logger.warning(
                "agent_task_event_invalid",
                error=str(e),
                error_type=type(e).__name__,
                raw_message=raw if isinstance(raw, str) else raw.decode(errors="replace"),
            )
            return None

        log = logger.bind(
            agent_task_id=event.task_id,
            project_guid=event.project_guid,
            dev_stage=event.dev_stage,
            status=event.status,
        )

        if event.status == CommonStatus.IN_PROGRESS.value:
            log.info("agent_task_in_progress", message=event.message)
            return None

        if not event.is_terminal:
            log.warning("unknown_agent_task_status")
            return None

        task_id = await self.queue.enqueue_agent_task_response(event)
        log.info("agent_task_response_enqueued", task_id=task_id)
        return task_id

    async def run(self) -> None:
        """Consume the channel until ``stop`` is called, resubscribing on errors."""
        self._running = True
        backoff = BACKOFF_INITIAL
        logger.info("agent_task_bridge_started", channel=self.channel)

        while self._running:
            pubsub = self.client.pubsub()
            try:
                await pubsub.subscribe(self.channel)
                logger.info("redis_channel_subscribed", channel=self.channel)
                backoff = BACKOFF_INITIAL
                await self._listen(pubsub)
            except asyncio.CancelledError:
                logger.info("agent_task_bridge_cancelled")
                raise
            except Exception as e:
                logger.error(
                    "agent_task_bridge_connection_lost",
                    error=str(e),
                    error_type=type(e).__name__,
                    retry_in_sec=backoff,
                )
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, BACKOFF_MAX)
            finally:
                await _close_pubsub(pubsub, self.channel)

        logger.info("agent_task_bridge_stopped")

    async def _listen(self, pubsub) -> None:
        while self._running:
            message = await pubsub.get_message(
                ignore_subscribe_messages=True, timeout=self.poll_timeout
            )
            if message is None:
                continue
            if message["type"] != "message":
                continue
            await self.handle_event(message["data"])

    def stop(self) -> None:
        self._running = False


async def _close_pubsub(pubsub, channel: str) -> None:
    try:
        await pubsub.unsubscribe(channel)
        await pubsub.aclose()
    except Exception as e:
        logger.warning(
            "redis_pubsub_close_failed",
            error=str(e),
            error_type=type(e).__name__,
        )
