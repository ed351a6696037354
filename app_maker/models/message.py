"""Conversation message model."""

from sqlalchemy import Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base
from .enums import MessageType


class ConversationMessage(Base):
    __tablename__ = "project_msgs"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    project_guid: Mapped[str] = mapped_column(String(64), index=True)
    type: Mapped[str] = mapped_column(String(20), default=MessageType.SYSTEM.value)
    agent_role: Mapped[str] = mapped_column(String(50), default="")
    agent_name: Mapped[str] = mapped_column(String(100), default="")
    content: Mapped[str] = mapped_column(Text, default="")
    is_markdown: Mapped[bool] = mapped_column(Boolean, default=False)
    markdown_content: Mapped[str] = mapped_column(Text, default="")
    is_expanded: Mapped[bool] = mapped_column(Boolean, default=False)
    has_question: Mapped[bool] = mapped_column(Boolean, default=False)
    waiting_user_response: Mapped[bool] = mapped_column(Boolean, default=False)
