"""Database models package."""

from .base import Base, utcnow
from .enums import (
    CHAT_STAGE,
    CommonStatus,
    DevStatus,
    MessageType,
    Priority,
    dev_progress,
    stage_progress,
)
from .epic import Epic, Story, story_sort_key
from .message import ConversationMessage
from .project import DEFAULT_PROJECT_NAME, Project
from .sequence import IdSequence, format_table_id
from .stage import DevStage
from .user import User

__all__ = [
    "Base",
    "CHAT_STAGE",
    "CommonStatus",
    "ConversationMessage",
    "DEFAULT_PROJECT_NAME",
    "DevStage",
    "DevStatus",
    "Epic",
    "IdSequence",
    "MessageType",
    "Priority",
    "Project",
    "Story",
    "User",
    "dev_progress",
    "format_table_id",
    "stage_progress",
    "story_sort_key",
    "utcnow",
]
