"""Agent service payloads: status events, task results and the response envelope."""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

TERMINAL_STATUSES = frozenset({"done", "failed"})


class AgentTaskStatusEvent(BaseModel):
    """Published by the agent service on the agent task channel."""

    task_id: str = Field(min_length=1)
    project_guid: str = Field(min_length=1)
    agent_type: str = ""
    dev_stage: str = ""
    status: str
    message: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class TaskResult(BaseModel):
    """Status record of a task, written by the queue and returned by the agent service."""

    task_id: str
    status: str
    progress: int = Field(default=0, ge=0, le=100)
    message: str = ""
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class AgentResponse(BaseModel):
    """``{code, message, data}`` envelope; ``code == 0`` means success."""

    code: int
    message: str = ""
    data: Any = None

    @property
    def ok(self) -> bool:
        return self.code == 0


class AgentHealth(BaseModel):
    status: str
    version: str = ""
