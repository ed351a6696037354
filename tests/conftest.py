"""Shared fixtures: SQLite state store, fake Redis, stubbed agent service."""

import asyncio
from dataclasses import dataclass, field
import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock
import zipfile

import fakeredis
from fakeredis import aioredis
import httpx
import pytest
import respx

from app_maker.config import Environment, Settings
from app_maker.container import Container
from app_maker.contracts import AgentTaskStatusEvent
from app_maker.database import create_engine_and_sessionmaker, init_models
from app_maker.orchestrator import CreateProjectRequest, GitService
from app_maker.repositories import ensure_id_sequences

AGENTS_URL = "http://agents.test"

TEMPLATE_FILES = {
    "README.md": "# ${PRODUCT_NAME}\n\n${PRODUCT_DESC}\n",
    "backend/.env": (
        "APP_SECRET_KEY=${APP_SECRET_KEY}\n"
        "DATABASE_NAME=${DATABASE_NAME}\n"
        "DATABASE_USER=${DATABASE_USER}\n"
        "DATABASE_PORT=${DATABASE_PORT}\n"
        "BACKEND_PORT=${BACKEND_PORT}\n"
    ),
    "frontend/env.template": "VITE_API_BASE_URL=${API_BASE_URL}\nPORT=${FRONTEND_PORT}\n",
    "replace.txt": "README.md\nbackend/.env\nfrontend/env.template\n",
    "rename.txt": "# generated by the template build\nfrontend/env.template -> frontend/.env\n",
}


def build_template(path: Path, files: dict[str, str] | None = None) -> Path:
    with zipfile.ZipFile(path, "w") as archive:
        for name, content in (files or TEMPLATE_FILES).items():
            archive.writestr(name, content)
    return path


class FakeConnection:
    """In-memory stand-in for a browser WebSocket."""

    def __init__(self):
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.sent: list[str] = []
        self.pings = 0
        self.closed = False
        self.close_code: int | None = None

    async def receive_text(self) -> str:
        item = await self.incoming.get()
        if item is None:
            raise ConnectionError("client disconnected")
        return item

    async def send_text(self, data: str) -> None:
        self.sent.append(data)

    async def ping(self) -> None:
        self.pings += 1

    async def close(self, code: int = 1000) -> None:
        self.closed = True
        self.close_code = code

    def frames(self) -> list[dict]:
        return [json.loads(text) for text in self.sent]


class AgentServiceStub:
    """respx-backed agent service.

    Every submit gets the next id ``T1``, ``T2``, ... and stays ``in_progress``
    until ``finish`` is called for it.
    """

    def __init__(self, router: respx.MockRouter):
        self.router = router
        self.counter = 0
        self.submitted: dict[str, tuple[str, dict]] = {}
        self.results: dict[str, dict] = {}
        # (status_code, body) answered to the next submit, or an exception it raises
        self.fail_next: tuple[int, dict] | Exception | None = None
        # path -> (status, message) for tasks that finish as soon as they are submitted
        self.auto_finish: dict[str, tuple[str, str]] = {}

        router.post(host="agents.test", path__regex=r"^/api/v1/(project|agent)/.+").mock(
            side_effect=self._submit
        )
        router.get(host="agents.test", path__regex=r"^/api/v1/tasks/(?P<task_id>[^/]+)$").mock(
            side_effect=self._status
        )
        router.get(host="agents.test", path="/api/v1/health").mock(
            return_value=httpx.Response(200, json={"status": "ok", "version": "test"})
        )

    def _submit(self, request: httpx.Request) -> httpx.Response:
        if self.fail_next is not None:
            failure, self.fail_next = self.fail_next, None
            if isinstance(failure, Exception):
                raise failure
            status_code, body = failure
            return httpx.Response(status_code, json=body)

        self.counter += 1
        task_id = f"T{self.counter}"
        path = request.url.path.removeprefix("/api/v1")
        self.submitted[task_id] = (path, json.loads(request.content))
        self.results[task_id] = {
            "task_id": task_id,
            "status": "in_progress",
            "progress": 10,
            "message": "",
        }
        if path in self.auto_finish:
            self.finish(task_id, *self.auto_finish[path])
        return httpx.Response(200, json={"code": 0, "message": "ok", "data": task_id})

    def _status(self, request: httpx.Request, task_id: str) -> httpx.Response:
        data = self.results.get(task_id)
        if data is None:
            return httpx.Response(404, json={"code": 404, "message": "task not found"})
        return httpx.Response(200, json={"code": 0, "message": "ok", "data": data})

    def finish(self, task_id: str, status: str = "done", message: str = "ok") -> None:
        self.results[task_id] = {
            "task_id": task_id,
            "status": status,
            "progress": 100,
            "message": message,
        }

    def open_tasks(self) -> list[str]:
        return [
            task_id
            for task_id, result in self.results.items()
            if result["status"] not in ("done", "failed")
        ]

    def paths(self) -> list[str]:
        return [path for path, _ in self.submitted.values()]

    def body(self, task_id: str) -> dict:
        return self.submitted[task_id][1]

    def task_for(self, dev_stage: str) -> str:
        """Latest agent task submitted for ``dev_stage``."""
        matches = [
            task_id
            for task_id, (_, body) in self.submitted.items()
            if body.get("dev_stage") == dev_stage
        ]
        assert matches, f"no agent task for {dev_stage}"
        return matches[-1]


@dataclass
class Harness:
    """A container wired to fakes plus helpers to drive the pipeline."""

    container: Container
    agent: AgentServiceStub
    response_tasks: dict[str, str] = field(default_factory=dict)
    clients: list = field(default_factory=list)

    async def run_tasks(self) -> int:
        return await self.container.worker.run_once()

    async def create_project(self, requirements: str = "Simple todo app", **kwargs):
        request = CreateProjectRequest(user_id=1, requirements=requirements, **kwargs)
        return await self.container.project_service.create_project(request)

    async def publish(self, task_id: str, status: str = "done", message: str = "ok") -> str | None:
        """Finish an agent task and deliver its terminal event through the bridge."""
        body = self.agent.body(task_id)
        self.agent.finish(task_id, status, message)
        event = AgentTaskStatusEvent(
            task_id=task_id,
            project_guid=body["project_guid"],
            agent_type=body.get("agent_type", ""),
            dev_stage=body.get("dev_stage") or "",
            status=status,
            message=message,
        )
        queue_task_id = await self.container.bridge.handle_event(event.model_dump_json())
        if queue_task_id:
            self.response_tasks[task_id] = queue_task_id
        return queue_task_id

    async def settle(self, replies: dict[str, tuple[str, str]] | None = None, rounds: int = 60):
        """Run queued tasks and answer open agent tasks until nothing is left.

        ``replies`` maps a stage name to the (status, message) its agent answers with.
        """
        replies = replies or {}
        for _ in range(rounds):
            await self.run_tasks()
            open_tasks = self.agent.open_tasks()
            if not open_tasks:
                return
            for task_id in open_tasks:
                stage = self.agent.body(task_id).get("dev_stage") or ""
                status, message = replies.get(stage, ("done", "ok"))
                await self.publish(task_id, status, message)
        raise AssertionError("pipeline did not settle")

    async def confirm_until(
        self,
        project_guid: str,
        stage: str,
        replies: dict[str, tuple[str, str]] | None = None,
        rounds: int = 20,
    ):
        """Settle and confirm paused stages until ``stage`` waits for confirmation."""
        for _ in range(rounds):
            await self.settle(replies)
            project = await self.project(project_guid)
            if project.confirm_stage == stage:
                return project
            if not project.waiting_for_user_confirm:
                raise AssertionError(f"project stopped in {project.status} at {project.dev_status}")
            await self.container.queue.enqueue_project_confirm(project_guid)
        raise AssertionError(f"{stage} never waited for confirmation")

    async def project(self, project_guid: str):
        return await self.container.projects.require(project_guid)

    async def stage(self, project_guid: str, name: str):
        return await self.container.stages.get_by_project_guid_and_name(project_guid, name)

    async def messages(self, project_guid: str):
        return await self.container.messages.get_by_project_guid(project_guid, page_size=500)

    async def subscribe(self, project_guid: str) -> FakeConnection:
        """Attach a fake browser subscribed to the project; frames land in its send queue."""
        hub = self.container.hub
        connection = FakeConnection()
        client = hub.new_client(connection, user_id="1")
        await hub.register(client)
        await hub.join(client, project_guid)
        self.clients.append((client, connection))
        return connection

    def drain(self, connection: FakeConnection) -> list[dict]:
        """Move queued frames of ``connection``'s client into ``connection.sent``."""
        for client, conn in self.clients:
            if conn is connection:
                while not client.send_queue.empty():
                    conn.sent.append(client.send_queue.get_nowait())
        return connection.frames()


@pytest.fixture
def template_zip(tmp_path) -> Path:
    return build_template(tmp_path / "template.zip")


@pytest.fixture
def settings(tmp_path, template_zip) -> Settings:
    return Settings(
        _env_file=None,
        environment=Environment.LOCAL_DEBUG,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'app_maker.db'}",
        redis_url="redis://fake:6379/0",
        agents_server_url=AGENTS_URL,
        agent_poll_interval=0.01,
        agent_max_poll_attempts=5,
        gitlab_url="",
        projects_root=str(tmp_path / "projects"),
        template_path=str(template_zip),
        archive_cache_dir=str(tmp_path / "cache"),
        ws_send_buffer=10_000,
        dev_skip_stages=[],
    )


@pytest.fixture
async def redis_client():
    client = aioredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
async def database(settings):
    engine, session_maker = create_engine_and_sessionmaker(settings.database_url)
    await init_models(engine)
    await ensure_id_sequences(session_maker)
    yield engine, session_maker
    await engine.dispose()


@pytest.fixture
def agent_service():
    with respx.mock(assert_all_called=False) as router:
        yield AgentServiceStub(router)


@pytest.fixture
async def container(settings, redis_client, database, agent_service):
    engine, session_maker = database
    container = Container(settings, redis_client, engine, session_maker)

    git = MagicMock(spec=GitService)
    git.initialize_and_push = AsyncMock(return_value="")
    container.orchestrator.git = git

    yield container
    await container.agents.close()


@pytest.fixture
def harness(container, agent_service) -> Harness:
    return Harness(container=container, agent=agent_service)
