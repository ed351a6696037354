"""Job queue task types and payloads."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class TaskType(str, Enum):
    PROJECT_INIT = "project:init"
    PROJECT_STAGE = "project:stage"
    AGENT_TASK_RESPONSE = "agent:task-response"
    AGENT_CHAT = "agent:chat"
    PROJECT_DEPLOY = "project:deploy"
    PROJECT_DOWNLOAD = "project:download"
    PROJECT_BACKUP = "project:backup"
    PROJECT_CONFIRM = "project:confirm"


class QueueName(str, Enum):
    CRITICAL = "critical"
    DEFAULT = "default"
    LOW = "low"


class ProjectInitPayload(BaseModel):
    project_guid: str = Field(min_length=1)


class ProjectStagePayload(BaseModel):
    project_guid: str = Field(min_length=1)
    stage_name: str = Field(min_length=1)
    need_confirm: bool = False


class AgentChatPayload(BaseModel):
    project_guid: str = Field(min_length=1)
    agent_type: str = Field(min_length=1)
    message: str = Field(min_length=1)
    user_id: int | None = None


class ProjectDeployPayload(BaseModel):
    project_guid: str = Field(min_length=1)
    environment: str = "dev"
    deploy_options: dict[str, Any] = Field(default_factory=dict)


class ProjectArchivePayload(BaseModel):
    """Payload of project:download and project:backup."""

    project_guid: str = Field(min_length=1)
    project_path: str


class ProjectConfirmPayload(BaseModel):
    project_guid: str = Field(min_length=1)
    stage_name: str = ""
