"""WebSocket envelopes exchanged with browser clients."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
import uuid

from pydantic import BaseModel, ConfigDict, Field


class OutboundType(str, Enum):
    PROJECT_STAGE_UPDATE = "project_stage_update"
    PROJECT_MESSAGE = "project_message"
    PROJECT_INFO_UPDATE = "project_info_update"
    USER_CONFIRM_REQUIRED = "user_confirm_required"
    PONG = "pong"
    ERROR = "error"


class InboundType(str, Enum):
    PING = "ping"
    JOIN_PROJECT = "join_project"
    LEAVE_PROJECT = "leave_project"
    USER_FEEDBACK = "user_feedback"


class WebSocketMessage(BaseModel):
    """Outbound envelope ``{type, projectGuid, data, timestamp, id}``."""

    model_config = ConfigDict(populate_by_name=True)

    type: OutboundType
    project_guid: str = Field(default="", alias="projectGuid")
    data: Any = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class ClientMessage(BaseModel):
    """Inbound frame from a browser client."""

    model_config = ConfigDict(populate_by_name=True)

    type: str
    project_guid: str = Field(default="", alias="projectGuid")
    data: Any = None


class UserFeedback(BaseModel):
    """``data`` of a ``user_feedback`` frame."""

    agent_type: str = "dev"
    message: str = Field(min_length=1)
