"""Builds project events and broadcasts them through the hub."""

from datetime import UTC, datetime
from typing import Any

import structlog

from app_maker.contracts import OutboundType, WebSocketMessage
from app_maker.models import ConversationMessage, DevStage, Project

from .hub import WebSocketHub

logger = structlog.get_logger(__name__)

# Project columns safe to send to browsers (no secrets, no tokens)
PROJECT_INFO_FIELDS = (
    "id",
    "guid",
    "name",
    "description",
    "status",
    "dev_status",
    "dev_progress",
    "current_task_id",
    "preview_url",
    "gitlab_repo_url",
    "waiting_for_user_confirm",
    "confirm_stage",
    "backend_port",
    "frontend_port",
    "updated_at",
)


def _event_id(row_id: str) -> str:
    return f"{row_id}_{int(datetime.now(UTC).timestamp())}"


class ProjectNotifier:
    """Broadcast failures are logged, never raised to the caller."""

    def __init__(self, hub: WebSocketHub):
        self.hub = hub

    async def _send(self, message: WebSocketMessage) -> None:
        try:
            delivered = await self.hub.broadcast(message.project_guid, message)
            logger.debug(
                "project_event_broadcast",
                event_type=message.type.value,
                project_guid=message.project_guid,
                delivered=delivered,
            )
        except Exception as e:
            logger.error(
                "project_event_broadcast_failed",
                event_type=message.type.value,
                project_guid=message.project_guid,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def notify_project_info(self, project: Project) -> None:
        data: dict[str, Any] = {key: getattr(project, key) for key in PROJECT_INFO_FIELDS}
        await self._send(
            WebSocketMessage(
                type=OutboundType.PROJECT_INFO_UPDATE,
                project_guid=project.guid,
                data=data,
                id=_event_id(project.id),
            )
        )

    async def notify_stage(self, stage: DevStage) -> None:
        await self._send(
            WebSocketMessage(
                type=OutboundType.PROJECT_STAGE_UPDATE,
                project_guid=stage.project_guid,
                data=stage.to_dict(),
                id=_event_id(stage.id),
            )
        )

    async def notify_message(self, message: ConversationMessage) -> None:
        await self._send(
            WebSocketMessage(
                type=OutboundType.PROJECT_MESSAGE,
                project_guid=message.project_guid,
                data=message.to_dict(),
                id=_event_id(message.id),
            )
        )

    async def notify_user_confirm(
        self, project: Project, stage_name: str, message: str = ""
    ) -> None:
        await self._send(
            WebSocketMessage(
                type=OutboundType.USER_CONFIRM_REQUIRED,
                project_guid=project.guid,
                data={"stage": stage_name, "message": message, "dev_status": project.dev_status},
                id=_event_id(project.id),
            )
        )
