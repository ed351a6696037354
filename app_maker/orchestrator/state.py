"""Project and stage state transitions shared by the task handlers.

Every transition is persisted first and then mirrored to subscribed browsers, so
a client always sees the state that is stored.
"""

import structlog

from app_maker.agents import get_role
from app_maker.config import Environment, Settings
from app_maker.models import (
    CommonStatus,
    ConversationMessage,
    DevStage,
    DevStatus,
    MessageType,
    Project,
    dev_progress,
    utcnow,
)
from app_maker.pipeline import STAGE_DESCRIPTIONS, Pipeline, StageItem, contains_question
from app_maker.queue import TaskQueue
from app_maker.repositories import MessageRepository, ProjectRepository, StageRepository
from app_maker.ws import ProjectNotifier

logger = structlog.get_logger(__name__)

PREVIEW_URL_TEMPLATES = {
    Environment.LOCAL_DEBUG: "http://localhost:{frontend_port}",
    Environment.DEVELOPMENT: "http://{guid}.app-maker.localhost",
    Environment.PRODUCTION: "http://{guid}.app-maker.lighthought.com",
}


def preview_url_for(project: Project, environment: Environment) -> str:
    return PREVIEW_URL_TEMPLATES[environment].format(
        guid=project.guid, frontend_port=project.frontend_port
    )


class ProjectStateService:
    def __init__(
        self,
        projects: ProjectRepository,
        stages: StageRepository,
        messages: MessageRepository,
        notifier: ProjectNotifier,
        queue: TaskQueue,
        pipeline: Pipeline,
        settings: Settings,
    ):
        self.projects = projects
        self.stages = stages
        self.messages = messages
        self.notifier = notifier
        self.queue = queue
        self.pipeline = pipeline
        self.settings = settings

    # === Project ===

    async def update_project(self, project: Project, **fields) -> Project:
        project = await self.projects.update(project.guid, **fields)
        await self.notifier.notify_project_info(project)
        return project

    async def update_project_to_status(self, project: Project, status: CommonStatus) -> Project:
        """Move the project to a coarse status.

        ``done`` and ``failed`` also set the matching development status; ``done``
        fills in the preview URL when it is still empty.
        """
        fields: dict = {"status": status.value}
        if status == CommonStatus.DONE:
            fields.update(
                dev_status=DevStatus.DONE.value,
                dev_progress=dev_progress(DevStatus.DONE),
                waiting_for_user_confirm=False,
                confirm_stage="",
            )
            if not project.preview_url:
                fields["preview_url"] = preview_url_for(project, self.settings.environment)
        elif status == CommonStatus.FAILED:
            fields.update(
                dev_status=DevStatus.FAILED.value,
                dev_progress=dev_progress(DevStatus.FAILED),
                waiting_for_user_confirm=False,
                confirm_stage="",
            )
        elif status == CommonStatus.IN_PROGRESS:
            fields.update(waiting_for_user_confirm=False, confirm_stage="")

        project = await self.update_project(project, **fields)
        logger.info("project_status_updated", project_guid=project.guid, status=status.value)
        return project

    async def update_project_to_stage(
        self, project: Project, stage_name: str, task_id: str
    ) -> Project:
        return await self.update_project(
            project,
            status=CommonStatus.IN_PROGRESS.value,
            dev_status=stage_name,
            dev_progress=dev_progress(stage_name),
            current_task_id=task_id,
            waiting_for_user_confirm=False,
            confirm_stage="",
        )

    async def ensure_preview_url(self, project_guid: str) -> Project:
        project = await self.projects.require(project_guid)
        if project.preview_url:
            return project
        return await self.update_project(
            project, preview_url=preview_url_for(project, self.settings.environment)
        )

    # === Stages ===

    async def create_or_update_stage(
        self, project: Project, stage_name: str, task_id: str
    ) -> tuple[DevStage, bool]:
        """Get or create the stage row and claim it for ``task_id``.

        Returns the stage and whether the claim succeeded. A stage that is done,
        or in flight for another task, is returned unclaimed.
        """
        stage, _ = await self.stages.get_or_create(
            project, stage_name, STAGE_DESCRIPTIONS.get(stage_name, stage_name)
        )
        if not await self.stages.try_claim(stage.id, task_id):
            fresh = await self.stages.get_by_project_guid_and_name(project.guid, stage_name)
            return fresh or stage, False

        stage = await self.stages.update(stage.id)
        await self.notifier.notify_stage(stage)
        return stage, True

    async def update_stage_status(
        self, stage: DevStage, status: CommonStatus, failed_reason: str = ""
    ) -> DevStage:
        fields: dict = {"status": status}
        if status == CommonStatus.DONE:
            fields["completed_at"] = utcnow()
        elif status == CommonStatus.FAILED:
            fields["failed_reason"] = failed_reason
            fields["agent_task_id"] = ""
        stage = await self.stages.update(stage.id, **fields)
        await self.notifier.notify_stage(stage)
        logger.info(
            "stage_status_updated",
            project_guid=stage.project_guid,
            stage=stage.name,
            status=stage.status,
        )
        return stage

    async def complete_stage(self, stage: DevStage) -> bool:
        """Mark the stage done; False when it already was (replayed completion)."""
        if not await self.stages.mark_done_if_not_done(stage.id):
            logger.info("stage_already_done", project_guid=stage.project_guid, stage=stage.name)
            return False
        stage = await self.stages.update(stage.id)
        await self.notifier.notify_stage(stage)
        logger.info("stage_completed", project_guid=stage.project_guid, stage=stage.name)
        return True

    async def fail_stage_and_project(
        self, project: Project, stage: DevStage | None, reason: str
    ) -> Project:
        if stage is not None:
            await self.update_stage_status(stage, CommonStatus.FAILED, reason)
        project = await self.update_project_to_status(project, CommonStatus.FAILED)
        stage_name = stage.name if stage is not None else project.dev_status
        await self.add_system_message(project.guid, f"Stage {stage_name} failed: {reason}")
        logger.warning(
            "stage_and_project_failed",
            project_guid=project.guid,
            stage=stage_name,
            reason=reason,
        )
        return project

    # === Confirmation ===

    async def pause_for_user_confirm(
        self, project: Project, stage: DevStage, message: str = ""
    ) -> Project:
        """Pause project and stage until the user confirms or replies."""
        stage = await self.update_stage_status(stage, CommonStatus.PAUSED)
        project = await self.update_project(
            project,
            status=CommonStatus.PAUSED.value,
            waiting_for_user_confirm=True,
            confirm_stage=stage.name,
        )
        await self.notifier.notify_user_confirm(project, stage.name, message)
        logger.info("project_waiting_for_user_confirm", project_guid=project.guid, stage=stage.name)
        return project

    async def get_paused_stage(self, project: Project) -> DevStage | None:
        """The project's current stage when it is paused, else None."""
        stage = await self.stages.get_by_project_guid_and_name(project.guid, project.dev_status)
        if stage is None or stage.status != CommonStatus.PAUSED.value:
            return None
        return stage

    async def resume_project(self, project_guid: str) -> tuple[Project, DevStage | None]:
        """Flip a paused project and its paused current stage back to in_progress."""
        project = await self.projects.require(project_guid)
        if project.status == CommonStatus.PAUSED.value:
            project = await self.update_project_to_status(project, CommonStatus.IN_PROGRESS)
            logger.info("project_resumed", project_guid=project_guid)

        stage = await self.stages.get_by_project_guid_and_name(project_guid, project.dev_status)
        if stage is not None and stage.status == CommonStatus.PAUSED.value:
            stage = await self.update_stage_status(stage, CommonStatus.IN_PROGRESS)
        return project, stage

    async def clear_user_confirm(self, project: Project) -> Project:
        return await self.update_project_to_status(project, CommonStatus.IN_PROGRESS)

    # === Messages ===

    async def create_and_notify_message(self, message: ConversationMessage) -> ConversationMessage:
        if message.type == MessageType.AGENT.value and (
            contains_question(message.content) or contains_question(message.markdown_content)
        ):
            message.has_question = True
            message.waiting_user_response = True
            logger.info(
                "agent_question_detected",
                project_guid=message.project_guid,
                agent_role=message.agent_role,
            )
        message = await self.messages.create(message)
        await self.notifier.notify_message(message)
        return message

    async def add_agent_message(
        self, project_guid: str, agent_type: str, content: str, markdown: str = ""
    ) -> ConversationMessage:
        role = get_role(agent_type)
        return await self.create_and_notify_message(
            ConversationMessage(
                project_guid=project_guid,
                type=MessageType.AGENT.value,
                agent_role=role.type.value,
                agent_name=role.name,
                content=content,
                is_markdown=bool(markdown),
                markdown_content=markdown,
                is_expanded=bool(markdown),
                has_question=False,
                waiting_user_response=False,
            )
        )

    async def add_system_message(
        self, project_guid: str, content: str, markdown: str = ""
    ) -> ConversationMessage:
        return await self.create_and_notify_message(
            ConversationMessage(
                project_guid=project_guid,
                type=MessageType.SYSTEM.value,
                agent_role="",
                agent_name="",
                content=content,
                is_markdown=bool(markdown),
                markdown_content=markdown,
                is_expanded=bool(markdown),
                has_question=False,
                waiting_user_response=False,
            )
        )

    async def add_user_message(self, project_guid: str, content: str) -> ConversationMessage:
        return await self.create_and_notify_message(
            ConversationMessage(
                project_guid=project_guid,
                type=MessageType.USER.value,
                agent_role="",
                agent_name="",
                content=content,
                is_markdown=False,
                markdown_content="",
                is_expanded=False,
                has_question=False,
                waiting_user_response=False,
            )
        )

    # === Advancing ===

    async def proceed_to_next_stage(self, project: Project, stage_name: str) -> str | None:
        """Enqueue the stage after ``stage_name``, or finish the project.

        Returns the enqueued task id.
        """
        item = self.pipeline.next(stage_name)
        if item is None:
            if project.status != CommonStatus.DONE.value:
                await self.update_project_to_status(project, CommonStatus.DONE)
                await self.add_system_message(project.guid, "Project development completed")
                logger.info("project_completed", project_guid=project.guid)
            return None
        return await self.schedule_stage(project, item)

    async def schedule_stage(self, project: Project, item: StageItem) -> str | None:
        """Create the stage row and enqueue its task.

        Only the call that creates the row (or finds it pending and never
        enqueued) enqueues, so replays never start a stage twice.
        """
        next_name = item.name.value
        stage, created = await self.stages.get_or_create(project, next_name, item.description)
        if not created and not (stage.status == CommonStatus.PENDING.value and not stage.task_id):
            logger.info(
                "next_stage_already_scheduled",
                project_guid=project.guid,
                stage=next_name,
                status=stage.status,
            )
            return None

        task_id = await self.queue.enqueue_project_stage(project.guid, next_name, item.need_confirm)
        await self.stages.update(stage.id, task_id=task_id)
        await self.update_project(project, current_task_id=task_id)
        logger.info(
            "next_stage_enqueued",
            project_guid=project.guid,
            stage=next_name,
            task_id=task_id,
        )
        return task_id
