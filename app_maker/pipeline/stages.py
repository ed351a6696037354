"""The fixed development pipeline."""

from collections.abc import Iterable
from dataclasses import dataclass

from app_maker.models import DevStatus

from .handlers import STAGE_HOOKS, RequestHook, ResponseHook


@dataclass(frozen=True)
class StageItem:
    name: DevStatus
    description: str
    need_confirm: bool
    skip_in_dev_mode: bool
    req_handler: RequestHook
    resp_handler: ResponseHook


# (stage, description, need_confirm) in execution order
STAGE_TABLE: tuple[tuple[DevStatus, str, bool], ...] = (
    (DevStatus.SETUP_AGENTS, "Prepare project agents environment", False),
    (DevStatus.CHECK_REQUIREMENT, "Check requirements", True),
    (DevStatus.GENERATE_PRD, "Generate PRD", True),
    (DevStatus.DEFINE_UX_STANDARD, "Define UX standard", True),
    (DevStatus.DESIGN_ARCHITECTURE, "Design architecture", True),
    (DevStatus.PLAN_EPIC_AND_STORY, "Plan epics and stories", True),
    (DevStatus.DEFINE_DATA_MODEL, "Define data model", True),
    (DevStatus.DEFINE_API, "Define API", True),
    (DevStatus.GENERATE_PAGES, "Generate frontend pages", True),
    (DevStatus.DEVELOP_STORY, "Develop stories", True),
    (DevStatus.FIX_BUG, "Fix bugs", False),
    (DevStatus.RUN_TEST, "Run tests", False),
    (DevStatus.DEPLOY, "Package and deploy", False),
)

STAGE_DESCRIPTIONS: dict[str, str] = {
    DevStatus.SETUP_ENVIRONMENT.value: "Prepare project environment",
    **{stage.value: description for stage, description, _ in STAGE_TABLE},
}


class Pipeline:
    """Ordered stage items with lookup by name."""

    def __init__(self, items: Iterable[StageItem]):
        self.items: list[StageItem] = list(items)
        self._index = {item.name.value: i for i, item in enumerate(self.items)}

    @classmethod
    def default(cls, dev_skip_stages: Iterable[str] = ()) -> "Pipeline":
        skipped = set(dev_skip_stages)
        items = []
        for stage, description, need_confirm in STAGE_TABLE:
            req_handler, resp_handler = STAGE_HOOKS[stage]
            items.append(
                StageItem(
                    name=stage,
                    description=description,
                    need_confirm=need_confirm,
                    skip_in_dev_mode=stage.value in skipped,
                    req_handler=req_handler,
                    resp_handler=resp_handler,
                )
            )
        return cls(items)

    def get(self, name: str) -> StageItem | None:
        index = self._index.get(name)
        return None if index is None else self.items[index]

    def next(self, name: str) -> StageItem | None:
        """The stage after ``name``; None for the last stage or an unknown name."""
        index = self._index.get(name)
        if index is None or index + 1 >= len(self.items):
            return None
        return self.items[index + 1]

    def first(self) -> StageItem:
        return self.items[0]

    def names(self) -> list[str]:
        return [item.name.value for item in self.items]

    def __contains__(self, name: object) -> bool:
        return name in self._index

    def __len__(self) -> int:
        return len(self.items)
