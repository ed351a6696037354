"""User model.

Users are managed by the surrounding platform; the orchestrator only reads the
per-user defaults applied to new projects.
"""

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True)
    username: Mapped[str | None] = mapped_column(String(100), nullable=True)

    default_cli_tool: Mapped[str] = mapped_column(String(50), default="claude")
    default_ai_model: Mapped[str] = mapped_column(String(100), default="")
    default_model_provider: Mapped[str] = mapped_column(String(50), default="")
    default_model_api_url: Mapped[str] = mapped_column(String(500), default="")
    default_api_token: Mapped[str] = mapped_column(Text, default="")
    auto_go_next: Mapped[bool] = mapped_column(Boolean, default=False)
