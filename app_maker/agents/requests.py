"""Request bodies accepted by the agent service."""

from typing import Any

from pydantic import BaseModel, Field


class AgentRequest(BaseModel):
    """Fields shared by every agent request.

    ``dev_stage`` is echoed back by the agent service in its status events.
    """

    project_guid: str
    cli_tool: str = ""
    dev_stage: str | None = None


class SetupProjectRequest(AgentRequest):
    gitlab_repo_url: str
    setup_bmad_method: bool = True
    bmad_cli_type: str
    ai_model: str = ""
    model_provider: str = ""
    model_api_url: str = ""
    api_token: str = ""


class RequirementsRequest(AgentRequest):
    requirements: str


class UxStandardRequest(AgentRequest):
    requirements: str
    prd_path: str


class ArchitectureRequest(AgentRequest):
    prd_path: str
    ux_spec_path: str
    template_arch_description: str


class DatabaseDesignRequest(AgentRequest):
    prd_path: str
    arch_folder: str
    stories_folder: str


class ApiDefinitionRequest(AgentRequest):
    prd_path: str
    db_folder: str
    stories_folder: str


class EpicsAndStoriesRequest(AgentRequest):
    prd_path: str
    arch_folder: str


class ImplementStoryRequest(AgentRequest):
    prd_path: str
    arch_folder: str
    db_folder: str
    api_folder: str
    ux_spec_path: str
    epic_file: str
    story_file: str = ""


class FixBugRequest(AgentRequest):
    bug_description: str


class RunTestRequest(AgentRequest):
    pass


class DeployRequest(AgentRequest):
    environment: str = "dev"
    deploy_options: dict[str, Any] = Field(default_factory=dict)


class ChatRequest(AgentRequest):
    agent_type: str
    message: str
