"""Persistence access: one short-lived session per call."""

from .base import ensure_id_sequences, next_table_id
from .epics import EpicRepository, StoryRepository
from .messages import MessageRepository
from .projects import Ports, ProjectRepository
from .stages import StageRepository
from .users import UserRepository

__all__ = [
    "EpicRepository",
    "MessageRepository",
    "Ports",
    "ProjectRepository",
    "StageRepository",
    "StoryRepository",
    "UserRepository",
    "ensure_id_sequences",
    "next_table_id",
]
