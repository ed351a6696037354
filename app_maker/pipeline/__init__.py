"""Stage table and per-stage agent interactions."""

from .epics import EpicsExtractionError, extract_mvp_epics, serialize_mvp_epics, to_mvp_epics
from .handlers import StageContext, StageOutcome
from .questions import contains_question
from .stages import STAGE_DESCRIPTIONS, STAGE_TABLE, Pipeline, StageItem

__all__ = [
    "EpicsExtractionError",
    "Pipeline",
    "STAGE_DESCRIPTIONS",
    "STAGE_TABLE",
    "StageContext",
    "StageItem",
    "StageOutcome",
    "contains_question",
    "extract_mvp_epics",
    "serialize_mvp_epics",
    "to_mvp_epics",
]
