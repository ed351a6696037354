"""Project creation: the entry point that starts a project's pipeline."""

from pathlib import Path
import secrets
import string
import uuid

from pydantic import BaseModel, Field
import structlog

from app_maker.config import Settings
from app_maker.models import CommonStatus, DevStatus, Project, dev_progress
from app_maker.queue import TaskQueue
from app_maker.repositories import ProjectRepository

logger = structlog.get_logger(__name__)

DEFAULT_SUBNETWORK = "172.20.0.0/16"
DEFAULT_API_BASE_URL = "/api/v1"
PASSWORD_LENGTH = 16
# Symbols safe inside .env files, YAML and connection URLs
PASSWORD_SYMBOLS = "_-"


def generate_password(prefix: str = "", length: int = PASSWORD_LENGTH) -> str:
    """Random password that starts with ``prefix`` and holds each character class."""
    alphabet = string.ascii_letters + string.digits + PASSWORD_SYMBOLS
    required = [
        secrets.choice(string.ascii_lowercase),
        secrets.choice(string.ascii_uppercase),
        secrets.choice(string.digits),
        secrets.choice(PASSWORD_SYMBOLS),
    ]
    remaining = max(length - len(prefix) - len(required), 0)
    body = required + [secrets.choice(alphabet) for _ in range(remaining)]
    secrets.SystemRandom().shuffle(body)
    return prefix + "".join(body)


class CreateProjectRequest(BaseModel):
    user_id: int
    requirements: str = Field(min_length=1)
    name: str = ""
    description: str = ""
    cli_tool: str = ""
    ai_model: str = ""
    model_provider: str = ""
    model_api_url: str = ""
    api_token: str = ""
    auto_go_next: bool = False


class ProjectService:
    def __init__(self, projects: ProjectRepository, queue: TaskQueue, settings: Settings):
        self.projects = projects
        self.queue = queue
        self.settings = settings

    def project_path(self, user_id: int, guid: str) -> str:
        return str(Path(self.settings.projects_root) / str(user_id) / guid)

    async def create_project(self, request: CreateProjectRequest) -> Project:
        """Persist a new project and enqueue its initialization."""
        guid = uuid.uuid4().hex
        ports = await self.projects.get_next_available_ports()
        project = Project(
            guid=guid,
            user_id=request.user_id,
            name=request.name,
            description=request.description,
            requirements=request.requirements,
            project_path=self.project_path(request.user_id, guid),
            backend_port=ports.backend_port,
            frontend_port=ports.frontend_port,
            redis_port=ports.redis_port,
            postgres_port=ports.postgres_port,
            api_base_url=DEFAULT_API_BASE_URL,
            app_secret_key=generate_password("app"),
            database_password=generate_password("database"),
            redis_password=generate_password("redis"),
            jwt_secret_key=generate_password("jwt"),
            subnetwork=DEFAULT_SUBNETWORK,
            gitlab_repo_url="",
            preview_url="",
            cli_tool=request.cli_tool,
            ai_model=request.ai_model,
            model_provider=request.model_provider,
            model_api_url=request.model_api_url,
            api_token=request.api_token,
            status=CommonStatus.PENDING.value,
            dev_status=DevStatus.INITIALIZING.value,
            dev_progress=dev_progress(DevStatus.INITIALIZING),
            current_task_id="",
            waiting_for_user_confirm=False,
            confirm_stage="",
            auto_go_next=request.auto_go_next,
        )
        project = await self.projects.create(project)
        logger.info(
            "project_created",
            project_guid=guid,
            project_id=project.id,
            user_id=request.user_id,
            backend_port=ports.backend_port,
            frontend_port=ports.frontend_port,
        )

        task_id = await self.queue.enqueue_project_init(guid)
        return await self.projects.update(guid, current_task_id=task_id)
