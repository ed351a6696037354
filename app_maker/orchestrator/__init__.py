"""Task handlers and the services they drive."""

from .archive import ProjectArchiver, ZipArchiver
from .git import GitService
from .handlers import OrchestratorService
from .projects import CreateProjectRequest, ProjectService, generate_password
from .reconciler import StageReconciler
from .state import ProjectStateService, preview_url_for
from .summary import KeywordSummarizer, ProjectSummarizer, ProjectSummary
from .template import TemplateService

__all__ = [
    "CreateProjectRequest",
    "GitService",
    "KeywordSummarizer",
    "OrchestratorService",
    "ProjectArchiver",
    "ProjectService",
    "ProjectStateService",
    "ProjectSummarizer",
    "ProjectSummary",
    "StageReconciler",
    "TemplateService",
    "ZipArchiver",
    "generate_password",
    "preview_url_for",
]
