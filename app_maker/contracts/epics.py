"""Schema of the MVP epics document produced by the planning agent."""

from typing import Literal

from pydantic import BaseModel, Field, field_validator

PriorityLiteral = Literal["P0", "P1", "P2", "P3"]


class MvpStory(BaseModel):
    story_number: str
    title: str
    description: str = ""
    priority: PriorityLiteral = "P0"
    estimated_days: float = 0
    depends: str = ""
    techs: str = ""
    file_path: str = ""

    @field_validator("story_number", mode="before")
    @classmethod
    def coerce_story_number(cls, v: object) -> str:
        return str(v)

    @field_validator("depends", "techs", mode="before")
    @classmethod
    def join_lists(cls, v: object) -> str:
        if isinstance(v, list):
            return ", ".join(str(item) for item in v)
        return "" if v is None else str(v)


class MvpEpic(BaseModel):
    epic_number: int
    name: str
    description: str = ""
    priority: PriorityLiteral = "P0"
    estimated_days: float = 0
    file_path: str = ""
    stories: list[MvpStory] = Field(default_factory=list)


class MvpEpicsDocument(BaseModel):
    mvp_epics: list[MvpEpic]
