"""Epic and story models produced by the planning stage."""

from sqlalchemy import Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base
from .enums import CommonStatus, Priority


class Epic(Base):
    __tablename__ = "project_epics"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    project_id: Mapped[str] = mapped_column(String(32), index=True)
    project_guid: Mapped[str] = mapped_column(String(64), index=True)
    epic_number: Mapped[int] = mapped_column(Integer)
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[str] = mapped_column(Text, default="")
    priority: Mapped[str] = mapped_column(String(4), default=Priority.P0.value)
    estimated_days: Mapped[float] = mapped_column(Float, default=0)
    status: Mapped[str] = mapped_column(String(20), default=CommonStatus.PENDING.value)
    file_path: Mapped[str] = mapped_column(String(1024), default="")

    stories: Mapped[list["Story"]] = relationship(
        back_populates="epic",
        order_by="Story.sort_key",
        lazy="raise",
    )


class Story(Base):
    __tablename__ = "epic_stories"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    epic_id: Mapped[str] = mapped_column(String(32), ForeignKey("project_epics.id"), index=True)
    # "1.2", "1.10" etc.; ordering uses sort_key
    story_number: Mapped[str] = mapped_column(String(20))
    sort_key: Mapped[int] = mapped_column(Integer, default=0)
    title: Mapped[str] = mapped_column(String(255))
    description: Mapped[str] = mapped_column(Text, default="")
    priority: Mapped[str] = mapped_column(String(4), default=Priority.P0.value)
    estimated_days: Mapped[float] = mapped_column(Float, default=0)
    status: Mapped[str] = mapped_column(String(20), default=CommonStatus.PENDING.value)
    file_path: Mapped[str] = mapped_column(String(1024), default="")
    depends: Mapped[str] = mapped_column(Text, default="")
    techs: Mapped[str] = mapped_column(Text, default="")

    epic: Mapped[Epic] = relationship(back_populates="stories", lazy="raise")


def story_sort_key(story_number: str) -> int:
    """Numeric ordering key for dotted story numbers ("1.10" sorts after "1.9")."""
    parts = [int(p) if p.isdigit() else 0 for p in str(story_number).split(".")[:3]]
    parts += [0] * (3 - len(parts))
    major, minor, patch = parts
    return major * 1_000_000 + minor * 1_000 + patch
