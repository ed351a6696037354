"""Project name and description derived from the requirements text."""

from dataclasses import dataclass
from typing import Protocol

from app_maker.models import DEFAULT_PROJECT_NAME

NAME_KEYWORDS = ("app", "web", "mobile", "platform", "tool", "system")


@dataclass
class ProjectSummary:
    name: str
    description: str


class ProjectSummarizer(Protocol):
    """Turns free-form requirements into a short project name and description."""

    async def summarize(self, requirements: str) -> ProjectSummary: ...


class KeywordSummarizer:
    """Names the project after the first known keyword in the requirements.

    ``"a web shop"`` becomes ``MyWebApp``; without a keyword the name is
    ``MyProject``. The requirements themselves become the description.
    """

    async def summarize(self, requirements: str) -> ProjectSummary:
        lowered = requirements.lower()
        name = DEFAULT_PROJECT_NAME
        for keyword in NAME_KEYWORDS:
            if keyword in lowered:
                name = f"My{keyword.capitalize()}App"
                break
        return ProjectSummary(name=name, description=requirements.strip())
