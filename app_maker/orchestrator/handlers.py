"""Queue task handlers that drive projects through the development pipeline.

Handlers record expected failures (agent errors, failed agent tasks, broken
responses) in project state and finish normally. Transient errors propagate to
the worker, which retries them; ``SkipRetry`` errors finalize the task as failed.
"""

import httpx
import structlog

from app_maker.agents import AgentClient, AgentType
from app_maker.agents.requests import ChatRequest, DeployRequest
from app_maker.config import Settings
from app_maker.contracts import (
    AgentChatPayload,
    AgentTaskStatusEvent,
    ProjectArchivePayload,
    ProjectConfirmPayload,
    ProjectDeployPayload,
    ProjectInitPayload,
    ProjectStagePayload,
    TaskType,
    UserFeedback,
)
from app_maker.errors import AgentServiceError, NotFoundError, SkipRetry
from app_maker.models import (
    CHAT_STAGE,
    DEFAULT_PROJECT_NAME,
    CommonStatus,
    DevStage,
    DevStatus,
    Project,
)
from app_maker.pipeline import Pipeline, StageContext, StageItem
from app_maker.pipeline.handlers import MESSAGE_STAGE_DEPLOYED
from app_maker.queue import QueuedTask, ResultWriter, TaskHandler, TaskQueue
from app_maker.repositories import (
    EpicRepository,
    ProjectRepository,
    StageRepository,
    StoryRepository,
    UserRepository,
)

from .archive import ProjectArchiver
from .git import GitService
from .state import ProjectStateService
from .summary import ProjectSummarizer
from .template import TemplateService

logger = structlog.get_logger(__name__)

MESSAGE_AGENT_REPLIED = "Agent replied"


class OrchestratorService:
    def __init__(
        self,
        state: ProjectStateService,
        projects: ProjectRepository,
        stages: StageRepository,
        epics: EpicRepository,
        stories: StoryRepository,
        users: UserRepository,
        agents: AgentClient,
        queue: TaskQueue,
        pipeline: Pipeline,
        settings: Settings,
        summarizer: ProjectSummarizer,
        templates: TemplateService,
        git: GitService,
        archiver: ProjectArchiver,
    ):
        self.state = state
        self.projects = projects
        self.stages = stages
        self.epics = epics
        self.stories = stories
        self.users = users
        self.agents = agents
        self.queue = queue
        self.pipeline = pipeline
        self.settings = settings
        self.summarizer = summarizer
        self.templates = templates
        self.git = git
        self.archiver = archiver

    def handlers(self) -> dict[str, TaskHandler]:
        return {
            TaskType.PROJECT_INIT.value: self.handle_project_init,
            TaskType.PROJECT_STAGE.value: self.handle_project_stage,
            TaskType.AGENT_TASK_RESPONSE.value: self.handle_agent_task_response,
            TaskType.AGENT_CHAT.value: self.handle_agent_chat,
            TaskType.PROJECT_DEPLOY.value: self.handle_project_deploy,
            TaskType.PROJECT_CONFIRM.value: self.handle_project_confirm,
            TaskType.PROJECT_DOWNLOAD.value: self.handle_project_download,
            TaskType.PROJECT_BACKUP.value: self.handle_project_backup,
        }

    def _context(self, project: Project, stage_name: str) -> StageContext:
        return StageContext(
            project=project,
            stage_name=stage_name,
            agents=self.agents,
            state=self.state,
            epics=self.epics,
            stories=self.stories,
            users=self.users,
            settings=self.settings,
        )

    def _stage_item(self, stage_name: str) -> StageItem:
        item = self.pipeline.get(stage_name)
        if item is None:
            raise SkipRetry(f"unknown pipeline stage: {stage_name}")
        return item

    async def _fail(
        self,
        writer: ResultWriter,
        project: Project,
        stage: DevStage | None,
        reason: str,
    ) -> None:
        await self.state.fail_stage_and_project(project, stage, reason)
        await writer.update(CommonStatus.FAILED, writer.progress, reason)

    # === project:init ===

    async def handle_project_init(self, task: QueuedTask, writer: ResultWriter) -> None:
        payload = task.payload_as(ProjectInitPayload)
        project = await self.projects.require(payload.project_guid)
        stage_name = DevStatus.SETUP_ENVIRONMENT.value

        stage, claimed = await self.state.create_or_update_stage(project, stage_name, task.id)
        if stage.status == CommonStatus.DONE.value:
            logger.info("project_already_initialized", project_guid=project.guid)
            await writer.update(CommonStatus.DONE, 100, "project already initialized")
            return
        if not claimed:
            raise SkipRetry(f"initialization of {project.guid} is running in another task")

        project = await self.state.update_project_to_stage(project, stage_name, task.id)
        await writer.update(CommonStatus.IN_PROGRESS, 10, "initializing project")

        try:
            project = await self._init_name(project)
            await writer.update(CommonStatus.IN_PROGRESS, 30, "project name ready")

            if await self.templates.initialize(project):
                await self.state.add_system_message(
                    project.guid,
                    "Project template initialized",
                    f"{project.id}, {project.name}\n{project.project_path}",
                )
            await writer.update(CommonStatus.IN_PROGRESS, 60, "project template ready")

            if not project.gitlab_repo_url:
                repo_url = await self.git.initialize_and_push(project)
                if repo_url:
                    project = await self.state.update_project(project, gitlab_repo_url=repo_url)
                    await self.state.add_system_message(
                        project.guid, "Project code committed to GitLab", repo_url
                    )
            await writer.update(CommonStatus.IN_PROGRESS, 80, "project repository ready")
        except SkipRetry:
            raise
        except Exception as e:
            logger.error(
                "project_init_failed",
                project_guid=project.guid,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            await self._fail(writer, project, stage, str(e))
            return

        stage_task_id = await self.state.schedule_stage(project, self.pipeline.first())
        await self.state.complete_stage(stage)
        logger.info("project_initialized", project_guid=project.guid, stage_task_id=stage_task_id)
        await writer.update(CommonStatus.DONE, 100, "project initialized, pipeline started")

    async def _init_name(self, project: Project) -> Project:
        if not project.needs_name:
            return project
        summary = await self.summarizer.summarize(project.requirements)
        fields = {}
        if project.name in ("", DEFAULT_PROJECT_NAME) and summary.name:
            fields["name"] = summary.name
        if not project.description and summary.description:
            fields["description"] = summary.description
        if not fields:
            return project
        project = await self.state.update_project(project, **fields)
        await self.state.add_system_message(
            project.guid, "Project brief generated", f"{project.name}\n{project.description}"
        )
        logger.info("project_named", project_guid=project.guid, project_name=project.name)
        return project

    # === project:stage ===

    async def handle_project_stage(self, task: QueuedTask, writer: ResultWriter) -> None:
        payload = task.payload_as(ProjectStagePayload)
        project = await self.projects.require(payload.project_guid)
        item = self._stage_item(payload.stage_name)
        stage_name = item.name.value

        if item.skip_in_dev_mode and self.settings.is_development:
            logger.info("stage_skipped_in_dev_mode", project_guid=project.guid, stage=stage_name)
            await self.state.proceed_to_next_stage(project, stage_name)
            await writer.update(CommonStatus.DONE, 100, f"{stage_name} skipped")
            return

        stage, claimed = await self.state.create_or_update_stage(project, stage_name, task.id)
        if stage.status == CommonStatus.DONE.value:
            # Replayed task: the stage finished earlier
            await self.state.proceed_to_next_stage(project, stage_name)
            await writer.update(CommonStatus.DONE, 100, f"{stage_name} already done")
            return
        if not claimed:
            logger.info("stage_already_in_flight", project_guid=project.guid, stage=stage_name)
            await writer.update(CommonStatus.DONE, 100, f"{stage_name} already in flight")
            return
        await writer.update(CommonStatus.IN_PROGRESS, 10, "stage created")

        project = await self.state.update_project_to_stage(project, stage_name, task.id)
        await writer.update(CommonStatus.IN_PROGRESS, 30, f"project stage set to {stage_name}")

        try:
            agent_task_id = await item.req_handler(self._context(project, stage_name))
        except httpx.TransportError as e:
            if task.retried < task.max_retry:
                raise
            await self._fail(writer, project, stage, f"agent service unavailable: {e}")
            return
        except AgentServiceError as e:
            await self._fail(writer, project, stage, str(e))
            return
        except SkipRetry:
            raise
        except Exception as e:
            logger.error(
                "stage_request_failed",
                stage=stage_name,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            await self._fail(writer, project, stage, str(e))
            return

        if not agent_task_id:
            logger.info("stage_has_no_agent_task", project_guid=project.guid, stage=stage_name)
            if await self.state.complete_stage(stage):
                await self.state.proceed_to_next_stage(project, stage_name)
            await writer.update(CommonStatus.DONE, 100, f"{stage_name} completed without agent")
            return

        await self.stages.update(stage.id, agent_task_id=agent_task_id)
        logger.info(
            "stage_submitted_to_agent",
            project_guid=project.guid,
            stage=stage_name,
            agent_task_id=agent_task_id,
        )
        await writer.update(CommonStatus.DONE, 100, f"{stage_name} has request to agent")

    # === agent:task-response ===

    async def handle_agent_task_response(self, task: QueuedTask, writer: ResultWriter) -> None:
        event = task.payload_as(AgentTaskStatusEvent)
        await writer.update(CommonStatus.IN_PROGRESS, 10, "fetching agent task result")
        result = await self.agents.wait_for_task_completion(event.task_id)

        if event.dev_stage in ("", CHAT_STAGE):
            await self.state.add_agent_message(
                event.project_guid, event.agent_type, MESSAGE_AGENT_REPLIED, result.message
            )
            await writer.update(CommonStatus.DONE, 100, "agent chat reply recorded")
            return

        project = await self.projects.require(event.project_guid)
        stage = await self.stages.get_by_project_guid_and_name(project.guid, event.dev_stage)
        if stage is None:
            raise NotFoundError("stage", f"{project.guid}/{event.dev_stage}")

        if stage.status != CommonStatus.IN_PROGRESS.value:
            # Done, paused or failed: the response for this stage was already handled
            logger.info(
                "agent_response_already_handled",
                stage=stage.name,
                stage_status=stage.status,
                agent_task_id=event.task_id,
            )
            await writer.update(CommonStatus.DONE, 100, f"stage already {stage.status}")
            return
        if stage.agent_task_id and stage.agent_task_id != event.task_id:
            logger.info(
                "agent_response_stale",
                stage=stage.name,
                agent_task_id=event.task_id,
                current_agent_task_id=stage.agent_task_id,
            )
            await writer.update(CommonStatus.DONE, 100, "stale agent response ignored")
            return

        if event.status != CommonStatus.DONE.value:
            reason = result.message or event.message or f"agent task {event.status}"
            await self.state.fail_stage_and_project(project, stage, reason)
            await writer.update(CommonStatus.DONE, 100, "agent task failed, state recorded")
            return

        item = self._stage_item(stage.name)
        try:
            outcome = await item.resp_handler(self._context(project, stage.name), result)
        except Exception as e:
            logger.error(
                "stage_response_failed",
                stage=stage.name,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            await self.state.fail_stage_and_project(project, stage, str(e))
            await writer.update(CommonStatus.DONE, 100, "stage response failed, state recorded")
            return

        if outcome.continues:
            await self.stages.update(stage.id, agent_task_id=outcome.next_agent_task_id)
            logger.info(
                "stage_continues",
                stage=stage.name,
                agent_task_id=outcome.next_agent_task_id,
            )
            await writer.update(CommonStatus.DONE, 100, f"{stage.name} submitted follow-up work")
            return

        project = await self.projects.require(project.guid)
        if outcome.question:
            await self.state.pause_for_user_confirm(project, stage, result.message)
            await writer.update(CommonStatus.DONE, 100, "agent asked a question, waiting for user")
            return

        if project.auto_go_next or not item.need_confirm:
            if await self.state.complete_stage(stage):
                await self.state.proceed_to_next_stage(project, stage.name)
            await writer.update(CommonStatus.DONE, 100, f"{stage.name} completed")
            return

        await self.state.pause_for_user_confirm(project, stage, result.message)
        await writer.update(CommonStatus.DONE, 100, f"{stage.name} waiting for user confirmation")

    # === agent:chat ===

    async def handle_agent_chat(self, task: QueuedTask, writer: ResultWriter) -> None:
        payload = task.payload_as(AgentChatPayload)
        await writer.update(CommonStatus.IN_PROGRESS, 0, "processing chat")

        # A retried task already stored the user's message
        if task.retried == 0:
            await self.state.add_user_message(payload.project_guid, payload.message)
        await writer.update(CommonStatus.IN_PROGRESS, 10, "chat message saved")

        project = await self.projects.require(payload.project_guid)
        # Only a paused stage is handed to the chat; a running stage keeps its own agent task
        paused = await self.state.get_paused_stage(project)
        dev_stage = paused.name if paused is not None else CHAT_STAGE
        await writer.update(CommonStatus.IN_PROGRESS, 35, "chatting with agent")

        try:
            agent_task_id = await self.agents.chat_with_agent(
                ChatRequest(
                    project_guid=project.guid,
                    cli_tool=project.cli_tool or self.settings.default_cli_tool,
                    dev_stage=dev_stage,
                    agent_type=payload.agent_type,
                    message=payload.message,
                )
            )
        except AgentServiceError as e:
            await self.state.add_system_message(project.guid, f"Agent chat failed: {e}")
            await writer.update(CommonStatus.FAILED, writer.progress, str(e))
            return

        if paused is not None:
            # The reply finishes the resumed stage through the regular response path
            project, stage = await self.state.resume_project(project.guid)
            await self.stages.update(stage.id, agent_task_id=agent_task_id)
        logger.info("agent_chat_submitted", dev_stage=dev_stage, agent_task_id=agent_task_id)
        await writer.update(CommonStatus.DONE, 100, "chat sent to agent")

    async def handle_user_feedback(
        self, project_guid: str, user_id: str, feedback: UserFeedback
    ) -> None:
        """WebSocket ``user_feedback`` frames become ``agent:chat`` tasks."""
        await self.queue.enqueue_agent_chat(
            project_guid,
            feedback.agent_type or AgentType.DEV.value,
            feedback.message,
            user_id=int(user_id) if user_id.isdigit() else None,
        )

    # === project:confirm ===

    async def handle_project_confirm(self, task: QueuedTask, writer: ResultWriter) -> None:
        payload = task.payload_as(ProjectConfirmPayload)
        project = await self.projects.require(payload.project_guid)

        if project.waiting_for_user_confirm:
            stage_name = project.confirm_stage or payload.stage_name
            stage = await self.stages.get_by_project_guid_and_name(project.guid, stage_name)
            if stage is None:
                raise NotFoundError("stage", f"{project.guid}/{stage_name}")
            project = await self.state.clear_user_confirm(project)
            await self.state.complete_stage(stage)
            await self.state.proceed_to_next_stage(project, stage_name)
            await writer.update(CommonStatus.DONE, 100, f"{stage_name} confirmed")
            return

        if project.status == CommonStatus.FAILED.value:
            await self._retry_failed(project, payload.stage_name, writer)
            return

        logger.info("confirm_ignored", project_guid=project.guid, status=project.status)
        await writer.update(CommonStatus.DONE, 100, "nothing to confirm")

    async def _retry_failed(self, project: Project, stage_name: str, writer: ResultWriter) -> None:
        stage = None
        if stage_name:
            stage = await self.stages.get_by_project_guid_and_name(project.guid, stage_name)
        if stage is None:
            stage = await self.stages.get_latest_failed(project.guid)
        if stage is None:
            await writer.update(CommonStatus.DONE, 100, "no failed stage to retry")
            return

        if stage.name == DevStatus.SETUP_ENVIRONMENT.value:
            task_id = await self.queue.enqueue_project_init(project.guid)
        else:
            item = self._stage_item(stage.name)
            task_id = await self.queue.enqueue_project_stage(
                project.guid, stage.name, item.need_confirm
            )
        await self.state.update_project(
            project, status=CommonStatus.IN_PROGRESS.value, current_task_id=task_id
        )
        await self.state.add_system_message(project.guid, f"Retrying stage {stage.name}")
        logger.info("failed_stage_retried", project_guid=project.guid, stage=stage.name)
        await writer.update(CommonStatus.DONE, 100, f"{stage.name} re-enqueued")

    # === project:deploy ===

    async def handle_project_deploy(self, task: QueuedTask, writer: ResultWriter) -> None:
        payload = task.payload_as(ProjectDeployPayload)
        project = await self.projects.require(payload.project_guid)
        await writer.update(CommonStatus.IN_PROGRESS, 10, "deploying project")

        try:
            agent_task_id = await self.agents.deploy(
                DeployRequest(
                    project_guid=project.guid,
                    cli_tool=project.cli_tool or self.settings.default_cli_tool,
                    dev_stage=DevStatus.DEPLOY.value,
                    environment=payload.environment,
                    deploy_options=payload.deploy_options,
                )
            )
        except AgentServiceError as e:
            await self.state.add_system_message(project.guid, f"Deploy failed: {e}")
            await writer.update(CommonStatus.FAILED, writer.progress, str(e))
            return
        await writer.update(CommonStatus.IN_PROGRESS, 30, "waiting for deploy")

        result = await self.agents.wait_for_task_completion(agent_task_id)
        if result.status != CommonStatus.DONE.value:
            await self.state.add_system_message(project.guid, f"Deploy failed: {result.message}")
            await writer.update(CommonStatus.FAILED, writer.progress, result.message)
            return

        project = await self.state.ensure_preview_url(project.guid)
        await self.state.add_agent_message(
            project.guid,
            AgentType.DEV.value,
            f"{MESSAGE_STAGE_DEPLOYED}: {project.preview_url}",
            result.message,
        )
        logger.info("project_deployed", project_guid=project.guid, preview_url=project.preview_url)
        await writer.update(CommonStatus.DONE, 100, project.preview_url)

    # === project:download / project:backup ===

    async def handle_project_download(self, task: QueuedTask, writer: ResultWriter) -> None:
        payload = task.payload_as(ProjectArchivePayload)
        await writer.update(CommonStatus.IN_PROGRESS, 20, "zipping project files")
        path = await self.archiver.archive(payload.project_guid, payload.project_path)
        await writer.update(CommonStatus.DONE, 100, path)

    async def handle_project_backup(self, task: QueuedTask, writer: ResultWriter) -> None:
        payload = task.payload_as(ProjectArchivePayload)
        await writer.update(CommonStatus.IN_PROGRESS, 20, "zipping project files")
        path = await self.archiver.archive(payload.project_guid, payload.project_path)
        await writer.update(CommonStatus.IN_PROGRESS, 80, "deleting project directory")
        await self.archiver.remove(payload.project_path)
        await writer.update(CommonStatus.DONE, 100, path)
