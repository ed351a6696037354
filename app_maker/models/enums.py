"""Status enumerations shared by models, pipeline and contracts."""

from enum import Enum


class CommonStatus(str, Enum):
    """Lifecycle status of projects, stages, epics, stories and queue tasks."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    FAILED = "failed"
    PAUSED = "paused"

    @property
    def is_terminal(self) -> bool:
        return self in (CommonStatus.DONE, CommonStatus.FAILED)


class DevStatus(str, Enum):
    """Fine-grained development status of a project.

    Besides the pipeline stage names this carries the init phases and the two
    terminal states.
    """

    INITIALIZING = "initializing"
    SETUP_ENVIRONMENT = "setup_environment"
    SETUP_AGENTS = "setup_agents"
    CHECK_REQUIREMENT = "check_requirement"
    GENERATE_PRD = "generate_prd"
    DEFINE_UX_STANDARD = "define_ux_standard"
    DESIGN_ARCHITECTURE = "design_architecture"
    PLAN_EPIC_AND_STORY = "plan_epic_and_story"
    DEFINE_DATA_MODEL = "define_data_model"
    DEFINE_API = "define_api"
    GENERATE_PAGES = "generate_pages"
    DEVELOP_STORY = "develop_story"
    FIX_BUG = "fix_bug"
    RUN_TEST = "run_test"
    DEPLOY = "deploy"
    DONE = "done"
    FAILED = "failed"


class MessageType(str, Enum):
    """Author of a conversation message."""

    USER = "user"
    AGENT = "agent"
    SYSTEM = "system"


class Priority(str, Enum):
    P0 = "P0"
    P1 = "P1"
    P2 = "P2"
    P3 = "P3"


# Sent by the agent service as dev_stage for free-form chat replies
CHAT_STAGE = "unknown"

DEV_PROGRESS: dict[DevStatus, int] = {
    DevStatus.INITIALIZING: 0,
    DevStatus.SETUP_ENVIRONMENT: 5,
    DevStatus.SETUP_AGENTS: 10,
    DevStatus.CHECK_REQUIREMENT: 15,
    DevStatus.GENERATE_PRD: 20,
    DevStatus.DEFINE_UX_STANDARD: 25,
    DevStatus.DESIGN_ARCHITECTURE: 30,
    DevStatus.PLAN_EPIC_AND_STORY: 35,
    DevStatus.DEFINE_DATA_MODEL: 40,
    DevStatus.DEFINE_API: 45,
    DevStatus.GENERATE_PAGES: 50,
    DevStatus.DEVELOP_STORY: 60,
    DevStatus.FIX_BUG: 75,
    DevStatus.RUN_TEST: 85,
    DevStatus.DEPLOY: 95,
    DevStatus.DONE: 100,
    DevStatus.FAILED: 0,
}

STAGE_PROGRESS: dict[CommonStatus, int] = {
    CommonStatus.PENDING: 0,
    CommonStatus.IN_PROGRESS: 50,
    CommonStatus.PAUSED: 50,
    CommonStatus.DONE: 100,
    CommonStatus.FAILED: 0,
}


def dev_progress(status: DevStatus | str) -> int:
    """Project progress percentage for a development status."""
    return DEV_PROGRESS[DevStatus(status)]


def stage_progress(status: CommonStatus | str) -> int:
    return STAGE_PROGRESS[CommonStatus(status)]
