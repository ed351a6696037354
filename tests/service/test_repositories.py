import pytest

from app_maker.contracts import MvpEpic, MvpStory
from app_maker.errors import NotFoundError
from app_maker.models import CommonStatus, ConversationMessage, Project
from app_maker.repositories import (
    EpicRepository,
    MessageRepository,
    ProjectRepository,
    StageRepository,
    StoryRepository,
)

pytestmark = pytest.mark.service


@pytest.fixture
def session_maker(database):
    return database[1]


@pytest.fixture
def projects(session_maker) -> ProjectRepository:
    return ProjectRepository(session_maker)


@pytest.fixture
def stages(session_maker) -> StageRepository:
    return StageRepository(session_maker)


async def new_project(projects: ProjectRepository, guid: str = "g1", **fields) -> Project:
    return await projects.create(Project(guid=guid, user_id=1, name="Shop", **fields))


class TestProjects:
    async def test_ids_are_sequential(self, projects):
        first = await new_project(projects, "g1")
        second = await new_project(projects, "g2")

        assert (first.id, second.id) == ("PROJ00000001", "PROJ00000002")
        assert first.status == "pending"
        assert first.created_at is not None

    async def test_update_and_soft_delete(self, projects):
        await new_project(projects)

        updated = await projects.update("g1", dev_status="generate_prd", dev_progress=15)
        assert (updated.dev_status, updated.dev_progress) == ("generate_prd", 15)
        assert await projects.is_owner("g1", 1)
        assert not await projects.is_owner("g1", 2)

        await projects.delete("g1")

        assert await projects.get_by_guid("g1") is None
        with pytest.raises(NotFoundError):
            await projects.require("g1")
        with pytest.raises(NotFoundError):
            await projects.update("g1", name="x")

    async def test_ports_skip_used_values(self, projects):
        assert (await projects.get_next_available_ports()).backend_port == 9501

        await new_project(
            projects,
            backend_port=9501,
            frontend_port=3501,
            redis_port=7501,
            postgres_port=5501,
        )
        ports = await projects.get_next_available_ports()

        assert (ports.backend_port, ports.frontend_port, ports.redis_port, ports.postgres_port) == (
            9502,
            3502,
            7502,
            5502,
        )


class TestStages:
    async def test_get_or_create_is_unique_per_project(self, projects, stages):
        project = await new_project(projects)

        stage, created = await stages.get_or_create(project, "generate_prd", "PRD")
        again, created_again = await stages.get_or_create(project, "generate_prd")

        assert created and not created_again
        assert again.id == stage.id
        assert stage.id.startswith("STAGE")
        assert (stage.status, stage.progress) == ("pending", 0)

    async def test_claim_and_complete(self, projects, stages):
        project = await new_project(projects)
        stage = await stages.create(project, "generate_prd")

        assert await stages.try_claim(stage.id, "q1")
        await stages.update(stage.id, agent_task_id="A1")
        # Another queue task cannot steal an in-flight stage
        assert not await stages.try_claim(stage.id, "q2")
        # The owning task may run again after a retry
        assert await stages.try_claim(stage.id, "q1")

        assert await stages.mark_done_if_not_done(stage.id)
        assert not await stages.mark_done_if_not_done(stage.id)
        assert not await stages.try_claim(stage.id, "q3")

        done = await stages.get_by_project_guid_and_name("g1", "generate_prd")
        assert (done.status, done.progress) == ("done", 100)
        assert done.completed_at is not None

    async def test_update_derives_progress_from_status(self, projects, stages):
        project = await new_project(projects)
        stage = await stages.create(project, "deploy")

        updated = await stages.update(stage.id, status=CommonStatus.FAILED, failed_reason="boom")

        assert (updated.status, updated.progress, updated.failed_reason) == ("failed", 0, "boom")
        latest = await stages.get_latest_failed("g1")
        assert latest.id == stage.id

    async def test_update_unknown_stage(self, stages):
        with pytest.raises(NotFoundError):
            await stages.update("STAGE99999999", status="done")


async def test_messages_paginate_in_order(session_maker):
    messages = MessageRepository(session_maker)
    for text in ("first", "second", "third"):
        await messages.create(ConversationMessage(project_guid="g1", content=text))
    await messages.create(ConversationMessage(project_guid="other", content="x"))

    page = await messages.get_by_project_guid("g1", page_size=2, offset=1)

    assert [m.content for m in page] == ["second", "third"]
    assert await messages.count_by_project_guid("g1") == 3


def plan() -> list[MvpEpic]:
    return [
        MvpEpic(
            epic_number=1,
            name="Accounts",
            file_path="docs/epics/epic-1.md",
            stories=[
                MvpStory(story_number="1.10", title="Reset password"),
                MvpStory(story_number="1.1", title="Sign up"),
                MvpStory(story_number="1.2", title="Avatars", priority="P1"),
            ],
        ),
        MvpEpic(
            epic_number=2,
            name="Reports",
            priority="P2",
            stories=[MvpStory(story_number="2.1", title="Export")],
        ),
    ]


async def test_epics_replace_and_mvp_selection(session_maker):
    projects = ProjectRepository(session_maker)
    epics = EpicRepository(session_maker)
    stories = StoryRepository(session_maker)
    project = await new_project(projects)

    stored = await epics.replace_for_project(project, plan())
    assert [e.name for e in stored] == ["Accounts", "Reports"]

    [mvp] = await epics.get_mvp_epics_by_project("g1")
    assert [s.story_number for s in mvp.stories] == ["1.1", "1.10"]
    assert all(s.file_path == "docs/epics/epic-1.md" for s in mvp.stories)

    first = await stories.get_next_pending_mvp_story("g1")
    assert first.title == "Sign up"
    await stories.update(first.id, status=CommonStatus.DONE)
    assert (await epics.refresh_status(mvp.id)).status == "in_progress"
    assert (await stories.get_next_pending_mvp_story("g1")).story_number == "1.10"

    # Planning again replaces the previous plan
    await epics.replace_for_project(project, plan()[:1])
    assert len(await epics.get_by_project_guid("g1")) == 1
    assert (await stories.get_next_pending_mvp_story("g1")).story_number == "1.1"
