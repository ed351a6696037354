"""Request and response hooks of the pipeline stages.

A request hook submits the stage's work to the agent service and returns the
agent task id, or ``""`` when there is nothing to wait for. A response hook
records the agent's final result and tells the orchestrator whether the stage
is finished or has submitted follow-up work.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from app_maker.agents import AgentClient, AgentType
from app_maker.agents.requests import (
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
from app_maker.config import Settings
from app_maker.contracts import TaskResult
from app_maker.models import CommonStatus, DevStatus, Project, Story
from app_maker.repositories import EpicRepository, StoryRepository, UserRepository

from .epics import EpicsExtractionError, extract_mvp_epics

if TYPE_CHECKING:
    from app_maker.orchestrator.state import ProjectStateService

logger = structlog.get_logger(__name__)

PATH_PRD = "docs/PRD.md"
PATH_UX_SPEC = "docs/ux/ux-spec.md"
PATH_PAGE_PROMPT = "docs/ux/page-prompt.md"
FOLDER_UX = "docs/ux"
FOLDER_ARCH = "docs/arch/"
FOLDER_DB = "docs/db/"
FOLDER_API = "docs/api/"
FOLDER_STORIES = "docs/stories"

BUG_DESCRIPTION = "Fix development issues"
MESSAGE_STORY_DEVELOPED = "Story developed"
MESSAGE_STAGE_DEPLOYED = "Project deployed"

CLI_TOOL_GEMINI = "gemini"


@dataclass
class StageContext:
    """What a hook may use while handling one stage of one project."""

    project: Project
    stage_name: str
    agents: AgentClient
    state: ProjectStateService
    epics: EpicRepository
    stories: StoryRepository
    users: UserRepository
    settings: Settings

    @property
    def cli_tool(self) -> str:
        return self.project.cli_tool or self.settings.default_cli_tool

    @property
    def project_dir(self) -> Path:
        return Path(self.project.project_path)


@dataclass
class StageOutcome:
    """Result of a response hook.

    ``next_agent_task_id`` set means the stage submitted more work and stays in
    flight. ``question`` means the agent asked the user something.
    """

    next_agent_task_id: str = ""
    question: bool = False

    @property
    def continues(self) -> bool:
        return bool(self.next_agent_task_id)


RequestHook = Callable[[StageContext], Awaitable[str]]
ResponseHook = Callable[[StageContext, TaskResult], Awaitable[StageOutcome]]


async def _reply(
    ctx: StageContext, agent_type: AgentType, content: str, result: TaskResult
) -> bool:
    """Append the agent's reply to the conversation; True when it asks a question."""
    message = await ctx.state.add_agent_message(
        ctx.project.guid, agent_type.value, content, result.message
    )
    return message.has_question


def reply_hook(agent_type: AgentType, content: str) -> ResponseHook:
    async def hook(ctx: StageContext, result: TaskResult) -> StageOutcome:
        return StageOutcome(question=await _reply(ctx, agent_type, content, result))

    return hook


# === Request hooks ===


async def request_setup_agents(ctx: StageContext) -> str:
    project = ctx.project
    user = await ctx.users.get_by_id(project.user_id)
    settings = ctx.settings

    def pick(project_value: str, user_attr: str, default: str) -> str:
        return project_value or (getattr(user, user_attr, "") if user else "") or default

    cli_tool = pick(project.cli_tool, "default_cli_tool", settings.default_cli_tool)
    return await ctx.agents.setup_project_environment(
        SetupProjectRequest(
            project_guid=project.guid,
            cli_tool=cli_tool,
            dev_stage=ctx.stage_name,
            gitlab_repo_url=project.gitlab_repo_url,
            setup_bmad_method=True,
            bmad_cli_type=cli_tool,
            ai_model=pick(project.ai_model, "default_ai_model", settings.default_ai_model),
            model_provider=pick(
                project.model_provider, "default_model_provider", settings.default_model_provider
            ),
            model_api_url=pick(
                project.model_api_url, "default_model_api_url", settings.default_model_api_url
            ),
            api_token=pick(project.api_token, "default_api_token", ""),
        )
    )


async def request_check_requirement(ctx: StageContext) -> str:
    return await ctx.agents.analyse_project_brief(
        RequirementsRequest(
            project_guid=ctx.project.guid,
            cli_tool=ctx.cli_tool,
            dev_stage=ctx.stage_name,
            requirements=ctx.project.requirements,
        )
    )


async def request_generate_prd(ctx: StageContext) -> str:
    return await ctx.agents.get_prd(
        RequirementsRequest(
            project_guid=ctx.project.guid,
            cli_tool=ctx.cli_tool,
            dev_stage=ctx.stage_name,
            requirements=ctx.project.requirements,
        )
    )


async def request_define_ux_standard(ctx: StageContext) -> str:
    return await ctx.agents.get_ux_standard(
        UxStandardRequest(
            project_guid=ctx.project.guid,
            cli_tool=ctx.cli_tool,
            dev_stage=ctx.stage_name,
            requirements=ctx.project.requirements,
            prd_path=PATH_PRD,
        )
    )


async def request_design_architecture(ctx: StageContext) -> str:
    return await ctx.agents.get_architecture(
        ArchitectureRequest(
            project_guid=ctx.project.guid,
            cli_tool=ctx.cli_tool,
            dev_stage=ctx.stage_name,
            prd_path=PATH_PRD,
            ux_spec_path=PATH_UX_SPEC,
            template_arch_description=ctx.settings.template_arch_description,
        )
    )


async def request_plan_epic_and_story(ctx: StageContext) -> str:
    return await ctx.agents.get_epics_and_stories(
        EpicsAndStoriesRequest(
            project_guid=ctx.project.guid,
            cli_tool=ctx.cli_tool,
            dev_stage=ctx.stage_name,
            prd_path=PATH_PRD,
            arch_folder=FOLDER_ARCH.rstrip("/"),
        )
    )


async def request_define_data_model(ctx: StageContext) -> str:
    return await ctx.agents.get_database_design(
        DatabaseDesignRequest(
            project_guid=ctx.project.guid,
            cli_tool=ctx.cli_tool,
            dev_stage=ctx.stage_name,
            prd_path=PATH_PRD,
            arch_folder=FOLDER_ARCH.rstrip("/"),
            stories_folder=FOLDER_STORIES,
        )
    )


async def request_define_api(ctx: StageContext) -> str:
    return await ctx.agents.get_api_definition(
        ApiDefinitionRequest(
            project_guid=ctx.project.guid,
            cli_tool=ctx.cli_tool,
            dev_stage=ctx.stage_name,
            prd_path=PATH_PRD,
            db_folder=FOLDER_DB.rstrip("/"),
            stories_folder=FOLDER_STORIES,
        )
    )


def has_page_prompt(project_dir: Path) -> bool:
    ux_dir = project_dir / FOLDER_UX
    if not ux_dir.is_dir():
        return False
    return any("prompt" in path.name for path in ux_dir.rglob("*") if path.is_file())


async def request_generate_pages(ctx: StageContext) -> str:
    if not has_page_prompt(ctx.project_dir):
        logger.warning("page_prompt_missing_skipping_pages", project_guid=ctx.project.guid)
        return ""

    agent_prompt = (
        "@.bmad-core/agents/dev.md" if ctx.cli_tool == CLI_TOOL_GEMINI else "@bmad/dev.mdc"
    )
    message = (
        f"{agent_prompt} Based on the page design prompts in @{PATH_PAGE_PROMPT}, "
        "generate the key page components under frontend/src/pages/ of the frontend project. "
        "Use Vue 3 + TypeScript + Naive UI and follow the existing code style and architecture. "
        "Only generate the pages explicitly defined in page-prompt.md."
    )
    return await ctx.agents.chat_with_agent(
        ChatRequest(
            project_guid=ctx.project.guid,
            cli_tool=ctx.cli_tool,
            dev_stage=ctx.stage_name,
            agent_type=AgentType.DEV.value,
            message=message,
        )
    )


def _implement_request(ctx: StageContext, epic_file: str, story_file: str) -> ImplementStoryRequest:
    return ImplementStoryRequest(
        project_guid=ctx.project.guid,
        cli_tool=ctx.cli_tool,
        dev_stage=ctx.stage_name,
        prd_path=PATH_PRD,
        arch_folder=FOLDER_ARCH,
        db_folder=FOLDER_DB,
        api_folder=FOLDER_API,
        ux_spec_path=PATH_UX_SPEC,
        epic_file=epic_file,
        story_file=story_file,
    )


async def _submit_story(ctx: StageContext, story: Story) -> str:
    await ctx.stories.update(story.id, status=CommonStatus.IN_PROGRESS)
    await ctx.epics.refresh_status(story.epic_id)
    logger.info(
        "story_submitted",
        project_guid=ctx.project.guid,
        story_id=story.id,
        story_number=story.story_number,
    )
    return await ctx.agents.implement_story(
        _implement_request(ctx, epic_file=story.file_path, story_file=story.file_path)
    )


async def request_develop_story(ctx: StageContext) -> str:
    story = await ctx.stories.get_next_pending_mvp_story(ctx.project.guid)
    if story is not None:
        return await _submit_story(ctx, story)

    if await ctx.epics.get_mvp_epics_by_project(ctx.project.guid):
        logger.info("mvp_stories_all_done", project_guid=ctx.project.guid)
        return ""

    # No planned epics: fall back to the story files the planning agent wrote
    stories_dir = ctx.project_dir / FOLDER_STORIES
    story_files = sorted(stories_dir.glob("*.md")) if stories_dir.is_dir() else []
    if ctx.settings.is_development and story_files:
        relative = f"{FOLDER_STORIES}/{story_files[0].name}"
        return await ctx.agents.implement_story(
            _implement_request(ctx, epic_file=relative, story_file=relative)
        )
    return await ctx.agents.implement_story(
        _implement_request(ctx, epic_file=f"{FOLDER_STORIES}/", story_file="")
    )


async def request_fix_bug(ctx: StageContext) -> str:
    return await ctx.agents.fix_bug(
        FixBugRequest(
            project_guid=ctx.project.guid,
            cli_tool=ctx.cli_tool,
            dev_stage=ctx.stage_name,
            bug_description=BUG_DESCRIPTION,
        )
    )


async def request_run_test(ctx: StageContext) -> str:
    return await ctx.agents.run_test(
        RunTestRequest(
            project_guid=ctx.project.guid, cli_tool=ctx.cli_tool, dev_stage=ctx.stage_name
        )
    )


async def request_deploy(ctx: StageContext) -> str:
    return await ctx.agents.deploy(
        DeployRequest(
            project_guid=ctx.project.guid,
            cli_tool=ctx.cli_tool,
            dev_stage=ctx.stage_name,
            environment=ctx.settings.deploy_environment,
            deploy_options={},
        )
    )


# === Response hooks ===


async def on_plan_epic_and_story(ctx: StageContext, result: TaskResult) -> StageOutcome:
    try:
        epics = extract_mvp_epics(result.message)
    except EpicsExtractionError as e:
        logger.warning(
            "mvp_epics_not_extracted", project_guid=ctx.project.guid, error=str(e)
        )
    else:
        try:
            saved = await ctx.epics.replace_for_project(ctx.project, epics)
            logger.info("mvp_epics_saved", project_guid=ctx.project.guid, epic_count=len(saved))
        except Exception as e:
            logger.error(
                "mvp_epics_save_failed",
                project_guid=ctx.project.guid,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )

    question = await _reply(ctx, AgentType.PO, "Epics and stories planned", result)
    return StageOutcome(question=question)


async def on_develop_story(ctx: StageContext, result: TaskResult) -> StageOutcome:
    story = await ctx.stories.get_in_progress_for_project(ctx.project.guid)
    content = MESSAGE_STORY_DEVELOPED
    if story is not None:
        await ctx.stories.update(story.id, status=CommonStatus.DONE)
        await ctx.epics.refresh_status(story.epic_id)
        content = f"{MESSAGE_STORY_DEVELOPED}: {story.story_number} {story.title}"

    question = await _reply(ctx, AgentType.DEV, content, result)
    if question or story is None or ctx.settings.is_development:
        return StageOutcome(question=question)

    next_story = await ctx.stories.get_next_pending_mvp_story(ctx.project.guid)
    if next_story is None:
        return StageOutcome()
    return StageOutcome(next_agent_task_id=await _submit_story(ctx, next_story))


async def on_deploy(ctx: StageContext, result: TaskResult) -> StageOutcome:
    project = await ctx.state.ensure_preview_url(ctx.project.guid)
    content = MESSAGE_STAGE_DEPLOYED
    if project.preview_url:
        content = f"{MESSAGE_STAGE_DEPLOYED}: {project.preview_url}"
    return StageOutcome(question=await _reply(ctx, AgentType.DEV, content, result))


STAGE_HOOKS: dict[DevStatus, tuple[RequestHook, ResponseHook]] = {
    DevStatus.SETUP_AGENTS: (
        request_setup_agents,
        reply_hook(AgentType.PM, "Project development environment is ready"),
    ),
    DevStatus.CHECK_REQUIREMENT: (
        request_check_requirement,
        reply_hook(AgentType.ANALYST, "Project requirements checked"),
    ),
    DevStatus.GENERATE_PRD: (
        request_generate_prd,
        reply_hook(AgentType.PM, "PRD document generated"),
    ),
    DevStatus.DEFINE_UX_STANDARD: (
        request_define_ux_standard,
        reply_hook(AgentType.UX_EXPERT, "UX standard defined"),
    ),
    DevStatus.DESIGN_ARCHITECTURE: (
        request_design_architecture,
        reply_hook(AgentType.ARCHITECT, "System architecture designed"),
    ),
    DevStatus.PLAN_EPIC_AND_STORY: (request_plan_epic_and_story, on_plan_epic_and_story),
    DevStatus.DEFINE_DATA_MODEL: (
        request_define_data_model,
        reply_hook(AgentType.ARCHITECT, "Data model defined"),
    ),
    DevStatus.DEFINE_API: (
        request_define_api,
        reply_hook(AgentType.ARCHITECT, "API defined"),
    ),
    DevStatus.GENERATE_PAGES: (
        request_generate_pages,
        reply_hook(AgentType.DEV, "Key frontend pages generated"),
    ),
    DevStatus.DEVELOP_STORY: (request_develop_story, on_develop_story),
    DevStatus.FIX_BUG: (
        request_fix_bug,
        reply_hook(AgentType.DEV, "Development issues fixed"),
    ),
    DevStatus.RUN_TEST: (
        request_run_test,
        reply_hook(AgentType.DEV, "Automated tests executed"),
    ),
    DevStatus.DEPLOY: (request_deploy, on_deploy),
}
