"""Project model."""

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base
from .enums import CommonStatus, DevStatus

DEFAULT_PROJECT_NAME = "MyProject"


class Project(Base):
    """A generated software project and its development state."""

    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    guid: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, index=True)

    name: Mapped[str] = mapped_column(String(255), default="")
    description: Mapped[str] = mapped_column(Text, default="")
    requirements: Mapped[str] = mapped_column(Text, default="")
    project_path: Mapped[str] = mapped_column(String(1024), default="")

    # Ports and secrets substituted into the project template
    backend_port: Mapped[int] = mapped_column(Integer, default=0)
    frontend_port: Mapped[int] = mapped_column(Integer, default=0)
    redis_port: Mapped[int] = mapped_column(Integer, default=0)
    postgres_port: Mapped[int] = mapped_column(Integer, default=0)
    api_base_url: Mapped[str] = mapped_column(String(255), default="/api/v1")
    app_secret_key: Mapped[str] = mapped_column(String(255), default="")
    database_password: Mapped[str] = mapped_column(String(255), default="")
    redis_password: Mapped[str] = mapped_column(String(255), default="")
    jwt_secret_key: Mapped[str] = mapped_column(String(255), default="")
    subnetwork: Mapped[str] = mapped_column(String(64), default="172.20.0.0/16")

    gitlab_repo_url: Mapped[str] = mapped_column(String(1024), default="")
    preview_url: Mapped[str] = mapped_column(String(1024), default="")

    # Agent execution settings
    cli_tool: Mapped[str] = mapped_column(String(50), default="claude")
    ai_model: Mapped[str] = mapped_column(String(100), default="")
    model_provider: Mapped[str] = mapped_column(String(50), default="")
    model_api_url: Mapped[str] = mapped_column(String(500), default="")
    api_token: Mapped[str] = mapped_column(Text, default="")

    status: Mapped[str] = mapped_column(String(20), default=CommonStatus.PENDING.value)
    dev_status: Mapped[str] = mapped_column(String(50), default=DevStatus.INITIALIZING.value)
    dev_progress: Mapped[int] = mapped_column(Integer, default=0)
    current_task_id: Mapped[str] = mapped_column(String(64), default="")

    waiting_for_user_confirm: Mapped[bool] = mapped_column(Boolean, default=False)
    confirm_stage: Mapped[str] = mapped_column(String(50), default="")
    auto_go_next: Mapped[bool] = mapped_column(Boolean, default=False)

    @property
    def needs_name(self) -> bool:
        return not self.name or self.name == DEFAULT_PROJECT_NAME or not self.description
