"""Process dependency bundle.

Everything the orchestrator needs is built here once, in dependency order, and
handed to its users explicitly. ``stop`` tears the running parts down in the
reverse order of ``start``.
"""

import asyncio

import httpx
import redis.asyncio as redis
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
import structlog

from app_maker.agents import AgentClient
from app_maker.bridge import AgentTaskBridge
from app_maker.config import Settings
from app_maker.database import create_engine_and_sessionmaker, init_models
from app_maker.errors import AgentServiceError
from app_maker.orchestrator import (
    GitService,
    KeywordSummarizer,
    OrchestratorService,
    ProjectService,
    ProjectStateService,
    StageReconciler,
    TemplateService,
    ZipArchiver,
)
from app_maker.pipeline import Pipeline
from app_maker.queue import QueueWorker, TaskQueue
from app_maker.redis import RedisClient
from app_maker.repositories import (
    EpicRepository,
    MessageRepository,
    ProjectRepository,
    StageRepository,
    StoryRepository,
    UserRepository,
    ensure_id_sequences,
)
from app_maker.ws import ProjectNotifier, WebSocketHub

logger = structlog.get_logger(__name__)


class Container:
    def __init__(
        self,
        settings: Settings,
        redis_client: redis.Redis,
        engine: AsyncEngine,
        session_maker: async_sessionmaker[AsyncSession],
    ):
        self.settings = settings
        self.redis = redis_client
        self.engine = engine
        self.session_maker = session_maker
        self._redis_owner: RedisClient | None = None
        self._tasks: list[asyncio.Task] = []

        self.projects = ProjectRepository(session_maker)
        self.stages = StageRepository(session_maker)
        self.messages = MessageRepository(session_maker)
        self.epics = EpicRepository(session_maker)
        self.stories = StoryRepository(session_maker)
        self.users = UserRepository(session_maker)

        self.queue = TaskQueue(
            redis_client,
            prefix=settings.queue_prefix,
            default_max_retry=settings.task_max_retry,
            retention=settings.task_retention_seconds,
        )
        self.agents = AgentClient(
            settings.agents_server_url,
            timeout=settings.agent_request_timeout,
            poll_interval=settings.agent_poll_interval,
            max_poll_attempts=settings.agent_max_poll_attempts,
        )

        self.hub = WebSocketHub(
            read_timeout=settings.ws_read_timeout,
            ping_interval=settings.ws_ping_interval,
            write_timeout=settings.ws_write_timeout,
            send_buffer=settings.ws_send_buffer,
            stale_after=settings.ws_read_timeout,
            sweep_interval=settings.ws_sweep_interval,
        )
        self.notifier = ProjectNotifier(self.hub)

        self.pipeline = Pipeline.default(settings.dev_skip_stages)
        self.state = ProjectStateService(
            self.projects,
            self.stages,
            self.messages,
            self.notifier,
            self.queue,
            self.pipeline,
            settings,
        )
        self.orchestrator = OrchestratorService(
            state=self.state,
            projects=self.projects,
            stages=self.stages,
            epics=self.epics,
            stories=self.stories,
            users=self.users,
            agents=self.agents,
            queue=self.queue,
            pipeline=self.pipeline,
            settings=settings,
            summarizer=KeywordSummarizer(),
            templates=TemplateService(settings.template_path),
            git=GitService(settings),
            archiver=ZipArchiver(settings.archive_cache_dir),
        )
        # The hub is built before the orchestrator it reports feedback to
        self.hub.feedback_handler = self.orchestrator.handle_user_feedback

        self.project_service = ProjectService(self.projects, self.queue, settings)
        self.worker = QueueWorker(
            self.queue,
            self.orchestrator.handlers(),
            concurrency=settings.worker_concurrency,
            weights=settings.queue_weights,
            backoff_base=settings.retry_backoff_base,
            backoff_cap=settings.retry_backoff_cap,
            heartbeat_interval=settings.worker_heartbeat_interval,
            reclaim_idle=settings.task_reclaim_idle_seconds,
        )
        self.bridge = AgentTaskBridge(
            redis_client, self.queue, channel=settings.agent_task_channel
        )
        self.reconciler = StageReconciler(
            self.stages,
            self.projects,
            self.agents,
            self.queue,
            interval=settings.reconcile_interval,
            threshold=settings.reconcile_threshold,
        )

    @classmethod
    async def create(cls, settings: Settings) -> "Container":
        """Connect to Redis and the database described by ``settings``."""
        redis_owner = RedisClient(settings.redis_url)
        await redis_owner.connect()
        engine, session_maker = create_engine_and_sessionmaker(settings.database_url)
        container = cls(settings, redis_owner.redis, engine, session_maker)
        container._redis_owner = redis_owner
        return container

    async def start(self) -> None:
        await init_models(self.engine)
        await ensure_id_sequences(self.session_maker)
        await self._check_agent_service()

        self._tasks = [
            asyncio.create_task(self.hub.run(), name="websocket-hub"),
            asyncio.create_task(self.worker.start(), name="queue-worker"),
            asyncio.create_task(self.bridge.run(), name="agent-task-bridge"),
            asyncio.create_task(self.reconciler.run(), name="stage-reconciler"),
        ]
        logger.info(
            "container_started",
            environment=self.settings.environment.value,
            stages=self.pipeline.names(),
        )

    async def _check_agent_service(self) -> None:
        """Log the agent service version; an unreachable service is not fatal."""
        try:
            await self.agents.check_version()
        except (AgentServiceError, httpx.HTTPError) as e:
            logger.warning(
                "agent_service_unavailable",
                agents_server_url=self.settings.agents_server_url,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def stop(self) -> None:
        self.reconciler.stop()
        self.bridge.stop()
        await self.worker.stop()
        await self.hub.stop()

        for task in reversed(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        await self.agents.close()
        if self._redis_owner is not None:
            await self._redis_owner.close()
        await self.engine.dispose()
        logger.info("container_stopped")
