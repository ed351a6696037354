"""HTTP client for the agent service."""

import asyncio
from typing import Any

import httpx
from pydantic import ValidationError
import structlog

from app_maker.contracts import AgentHealth, AgentResponse, TaskResult
from app_maker.errors import AgentServiceError, AgentTaskCancelledError, AgentTaskTimeoutError

from .requests import (
    AgentRequest,
    ApiDefinitionRequest,
    ArchitectureRequest,
    ChatRequest,
    DatabaseDesignRequest,
    DeployRequest,
    EpicsAndStoriesRequest,
    FixBugRequest,
    ImplementStoryRequest,
    RequirementsRequest,
    RunTestRequest,
    SetupProjectRequest,
    UxStandardRequest,
)

logger = structlog.get_logger(__name__)

API_PREFIX = "/api/v1"


class AgentClient:
    """Submits work to the agent service and polls agent tasks.

    Every submit returns the agent-side task id. The terminal outcome arrives
    later on the agent task channel or through ``wait_for_task_completion``.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        poll_interval: float = 5.0,
        max_poll_attempts: int = 1000,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=f"{self.base_url}{API_PREFIX}",
                timeout=self.timeout,
                headers={"Content-Type": "application/json"},
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def _request(self, method: str, path: str, body: AgentRequest | None = None) -> Any:
        """Send a request and unwrap the ``{code, message, data}`` envelope.

        Transport errors propagate as ``httpx.TransportError`` so callers can retry.
        """
        client = await self._get_client()
        json_body = body.model_dump(mode="json", exclude_none=True) if body else None
        response = await client.request(method, path, json=json_body)

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            message = _error_message(response)
            logger.warning(
                "agent_request_http_error",
                path=path,
                status_code=response.status_code,
                error=message,
            )
            raise AgentServiceError(message, status_code=response.status_code) from e

        try:
            envelope = AgentResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise AgentServiceError(f"malformed agent response from {path}: {e}") from e

        if not envelope.ok:
            logger.warning(
                "agent_request_rejected", path=path, code=envelope.code, error=envelope.message
            )
            raise AgentServiceError(envelope.message, code=envelope.code)
        return envelope.data

    async def _submit(self, path: str, body: AgentRequest) -> str:
        data = await self._request("POST", path, body)
        task_id = str(data or "")
        if not task_id:
            raise AgentServiceError(f"agent service returned no task id for {path}")
        logger.info(
            "agent_task_submitted",
            path=path,
            agent_task_id=task_id,
            project_guid=body.project_guid,
            dev_stage=body.dev_stage,
        )
        return task_id

    async def setup_project_environment(self, req: SetupProjectRequest) -> str:
        return await self._submit("/project/setup", req)

    async def analyse_project_brief(self, req: RequirementsRequest) -> str:
        return await self._submit("/agent/analyse/project-brief", req)

    async def get_prd(self, req: RequirementsRequest) -> str:
        return await self._submit("/agent/pm/prd", req)

    async def get_ux_standard(self, req: UxStandardRequest) -> str:
        return await self._submit("/agent/ux-expert/ux-standard", req)

    async def get_architecture(self, req: ArchitectureRequest) -> str:
        return await self._submit("/agent/architect/architect", req)

    async def get_database_design(self, req: DatabaseDesignRequest) -> str:
        return await self._submit("/agent/architect/database", req)

    async def get_api_definition(self, req: ApiDefinitionRequest) -> str:
        return await self._submit("/agent/architect/apidefinition", req)

    async def get_epics_and_stories(self, req: EpicsAndStoriesRequest) -> str:
        return await self._submit("/agent/po/epicsandstories", req)

    async def implement_story(self, req: ImplementStoryRequest) -> str:
        return await self._submit("/agent/dev/implstory", req)

    async def fix_bug(self, req: FixBugRequest) -> str:
        return await self._submit("/agent/dev/fixbug", req)

    async def run_test(self, req: RunTestRequest) -> str:
        return await self._submit("/agent/dev/runtest", req)

    async def deploy(self, req: DeployRequest) -> str:
        return await self._submit("/agent/dev/deploy", req)

    async def chat_with_agent(self, req: ChatRequest) -> str:
        return await self._submit("/agent/chat", req)

    async def get_task_status(self, task_id: str) -> TaskResult:
        data = await self._request("GET", f"/tasks/{task_id}")
        try:
            return TaskResult.model_validate(data)
        except ValidationError as e:
            raise AgentServiceError(f"malformed status for agent task {task_id}: {e}") from e

    async def wait_for_task_completion(
        self, task_id: str, cancel_event: asyncio.Event | None = None
    ) -> TaskResult:
        """Poll until the agent task is done or failed.

        Raises:
            AgentTaskTimeoutError: the attempt ceiling was reached.
            AgentTaskCancelledError: ``cancel_event`` was set.
        """
        for attempt in range(1, self.max_poll_attempts + 1):
            if cancel_event is not None and cancel_event.is_set():
                raise AgentTaskCancelledError(f"polling of agent task {task_id} cancelled")

            result = await self.get_task_status(task_id)
            if result.is_terminal:
                logger.info(
                    "agent_task_finished",
                    agent_task_id=task_id,
                    status=result.status,
                    attempts=attempt,
                )
                return result

            logger.debug(
                "agent_task_pending",
                agent_task_id=task_id,
                status=result.status,
                progress=result.progress,
                attempt=attempt,
            )
            if attempt == self.max_poll_attempts:
                break
            if cancel_event is None:
                await asyncio.sleep(self.poll_interval)
            else:
                try:
                    await asyncio.wait_for(cancel_event.wait(), timeout=self.poll_interval)
                except TimeoutError:
                    pass

        raise AgentTaskTimeoutError(task_id, self.max_poll_attempts)

    async def check_version(self) -> AgentHealth:
        client = await self._get_client()
        response = await client.get("/health")
        response.raise_for_status()
        body = response.json()
        if isinstance(body, dict) and "code" in body:
            body = body.get("data") or {}
        health = AgentHealth.model_validate(body)
        logger.info("agent_service_version", status=health.status, version=health.version)
        return health


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return response.text
