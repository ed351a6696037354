"""Development stage model."""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base
from .enums import CommonStatus


class DevStage(Base):
    """One row per (project, stage): the stage's status, progress and in-flight agent task."""

    __tablename__ = "dev_stages"
    __table_args__ = (UniqueConstraint("project_guid", "name", name="uq_dev_stages_project_name"),)

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    project_id: Mapped[str] = mapped_column(String(32), index=True)
    project_guid: Mapped[str] = mapped_column(String(64), index=True)
    name: Mapped[str] = mapped_column(String(50))
    description: Mapped[str] = mapped_column(String(255), default="")

    status: Mapped[str] = mapped_column(String(20), default=CommonStatus.PENDING.value)
    progress: Mapped[int] = mapped_column(Integer, default=0)
    failed_reason: Mapped[str] = mapped_column(Text, default="")

    # Queue task that claimed the stage
    task_id: Mapped[str] = mapped_column(String(64), default="")
    # Agent-side task whose terminal event is awaited
    agent_task_id: Mapped[str] = mapped_column(String(64), default="")

    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
