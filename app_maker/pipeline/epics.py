"""Extraction of the MVP epics document from the planning agent's markdown."""

import json
import re

from pydantic import ValidationError

from app_maker.contracts import MvpEpic, MvpEpicsDocument, MvpStory
from app_maker.models import Epic, story_sort_key

JSON_FENCE = re.compile(r"```json\s*(.*?)```", re.DOTALL)


class EpicsExtractionError(ValueError):
    pass


def extract_mvp_epics(content: str) -> list[MvpEpic]:
    """Parse the first fenced ```json block of ``content`` as ``{"mvp_epics": [...]}``."""
    match = JSON_FENCE.search(content or "")
    if match is None:
        if "```json" in (content or ""):
            raise EpicsExtractionError("json code block is not closed")
        raise EpicsExtractionError("no json code block found")

    try:
        document = MvpEpicsDocument.model_validate(json.loads(match.group(1).strip()))
    except json.JSONDecodeError as e:
        raise EpicsExtractionError(f"invalid json: {e}") from e
    except ValidationError as e:
        raise EpicsExtractionError(f"invalid mvp epics document: {e.error_count()} error(s)") from e

    if not document.mvp_epics:
        raise EpicsExtractionError("mvp_epics is empty")
    return document.mvp_epics


def to_mvp_epics(epics: list[Epic]) -> list[MvpEpic]:
    """Stored epics (with loaded stories) back to the document shape, in numeric order."""
    result = []
    for epic in sorted(epics, key=lambda e: e.epic_number):
        stories = sorted(epic.stories, key=lambda s: story_sort_key(s.story_number))
        result.append(
            MvpEpic(
                epic_number=epic.epic_number,
                name=epic.name,
                description=epic.description,
                priority=epic.priority,
                estimated_days=epic.estimated_days,
                file_path=epic.file_path,
                stories=[
                    MvpStory(
                        story_number=s.story_number,
                        title=s.title,
                        description=s.description,
                        priority=s.priority,
                        estimated_days=s.estimated_days,
                        depends=s.depends,
                        techs=s.techs,
                        file_path=s.file_path,
                    )
                    for s in stories
                ],
            )
        )
    return result


def serialize_mvp_epics(epics: list[Epic]) -> str:
    """Render stored epics as the fenced JSON block the planning agent emits."""
    document = MvpEpicsDocument(mvp_epics=to_mvp_epics(epics))
    return f"```json\n{document.model_dump_json(indent=2)}\n```"
