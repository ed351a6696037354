"""Pydantic contracts for queue payloads, agent events and WebSocket frames."""

from .epics import MvpEpic, MvpEpicsDocument, MvpStory
from .events import AgentHealth, AgentResponse, AgentTaskStatusEvent, TaskResult
from .tasks import (
    AgentChatPayload,
    ProjectArchivePayload,
    ProjectConfirmPayload,
    ProjectDeployPayload,
    ProjectInitPayload,
    ProjectStagePayload,
    QueueName,
    TaskType,
)
from .ws import ClientMessage, InboundType, OutboundType, UserFeedback, WebSocketMessage

__all__ = [
    "AgentChatPayload",
    "AgentHealth",
    "AgentResponse",
    "AgentTaskStatusEvent",
    "ClientMessage",
    "InboundType",
    "MvpEpic",
    "MvpEpicsDocument",
    "MvpStory",
    "OutboundType",
    "ProjectArchivePayload",
    "ProjectConfirmPayload",
    "ProjectDeployPayload",
    "ProjectInitPayload",
    "ProjectStagePayload",
    "QueueName",
    "TaskResult",
    "TaskType",
    "UserFeedback",
    "WebSocketMessage",
]
