"""End-to-end runs of the development pipeline against a stubbed agent service."""

import pytest

from app_maker.config import Environment
from app_maker.pipeline import STAGE_TABLE

pytestmark = pytest.mark.service

PO_REPLY = (
    "Epics are ready.\n"
    "```json\n"
    '{"mvp_epics":[{"epic_number":1,"name":"Auth","description":"...","priority":"P0",'
    '"estimated_days":3,"file_path":"epic1-auth-stories.md","stories":[{"story_number":"1.1",'
    '"title":"Login","description":"","priority":"P0","estimated_days":1,"depends":"",'
    '"techs":""}]}]}\n'
    "```\n"
)

ALL_STAGES = {"setup_environment", *(stage.value for stage, _, _ in STAGE_TABLE)}


def info_progress(frames: list[dict]) -> list[int]:
    return [f["data"]["dev_progress"] for f in frames if f["type"] == "project_info_update"]


async def test_happy_path_runs_every_stage(harness):
    project = await harness.create_project("Simple todo app", auto_go_next=True)
    browser = await harness.subscribe(project.guid)

    await harness.settle()

    project = await harness.project(project.guid)
    assert (project.status, project.dev_status, project.dev_progress) == ("done", "done", 100)
    assert project.name == "MyAppApp"
    assert project.preview_url == f"http://localhost:{project.frontend_port}"
    assert not project.waiting_for_user_confirm

    stages = await harness.container.stages.get_by_project_guid(project.guid)
    assert {s.name for s in stages} == ALL_STAGES
    assert all(s.status == "done" and s.progress == 100 for s in stages)

    assert harness.agent.paths() == [
        "/project/setup",
        "/agent/analyse/project-brief",
        "/agent/pm/prd",
        "/agent/ux-expert/ux-standard",
        "/agent/architect/architect",
        "/agent/po/epicsandstories",
        "/agent/architect/database",
        "/agent/architect/apidefinition",
        "/agent/dev/implstory",
        "/agent/dev/fixbug",
        "/agent/dev/runtest",
        "/agent/dev/deploy",
    ]

    frames = harness.drain(browser)
    progress = info_progress(frames)
    assert progress == sorted(progress)
    assert progress[-1] == 100
    done_frames = {
        f["data"]["name"]
        for f in frames
        if f["type"] == "project_stage_update" and f["data"]["status"] == "done"
    }
    assert done_frames == ALL_STAGES
    assert all(f["projectGuid"] == project.guid for f in frames)

    contents = [m.content for m in await harness.messages(project.guid)]
    assert contents[-1] == "Project development completed"
    assert "Project template initialized" in contents


async def test_question_pauses_the_stage(harness):
    project = await harness.create_project(auto_go_next=True)
    browser = await harness.subscribe(project.guid)

    await harness.settle({"generate_prd": ("done", "Do you want SSO?")})

    project = await harness.project(project.guid)
    assert project.status == "paused"
    assert project.waiting_for_user_confirm
    assert project.confirm_stage == "generate_prd"
    stages = await harness.container.stages.get_by_project_guid(project.guid)
    assert [s.name for s in stages if s.status == "paused"] == ["generate_prd"]
    assert await harness.stage(project.guid, "define_ux_standard") is None
    assert "/agent/ux-expert/ux-standard" not in harness.agent.paths()

    confirms = [f for f in harness.drain(browser) if f["type"] == "user_confirm_required"]
    assert [f["data"]["stage"] for f in confirms] == ["generate_prd"]
    assert confirms[0]["data"]["message"] == "Do you want SSO?"

    last = (await harness.messages(project.guid))[-1]
    assert (last.type, last.agent_role, last.has_question) == ("agent", "pm", True)


async def test_chat_reply_resumes_paused_stage(harness):
    project = await harness.create_project(auto_go_next=True)
    await harness.settle({"generate_prd": ("done", "Do you want SSO?")})

    await harness.container.queue.enqueue_agent_chat(project.guid, "pm", "Yes, SSO via Google")
    await harness.run_tasks()

    project = await harness.project(project.guid)
    assert project.status == "in_progress"
    assert not project.waiting_for_user_confirm
    assert (await harness.stage(project.guid, "generate_prd")).status == "in_progress"
    messages = await harness.messages(project.guid)
    assert (messages[-1].type, messages[-1].content) == ("user", "Yes, SSO via Google")

    [chat_task] = harness.agent.open_tasks()
    path, body = harness.agent.submitted[chat_task]
    assert path == "/agent/chat"
    assert (body["dev_stage"], body["agent_type"]) == ("generate_prd", "pm")

    await harness.publish(chat_task, "done", "PRD updated with Google SSO")
    await harness.run_tasks()

    assert (await harness.stage(project.guid, "generate_prd")).status == "done"
    assert (await harness.stage(project.guid, "define_ux_standard")).status == "in_progress"
    [ux_task] = harness.agent.open_tasks()
    assert harness.agent.body(ux_task)["dev_stage"] == "define_ux_standard"


async def test_planning_reply_is_stored_as_epics(harness):
    project = await harness.create_project()

    await harness.confirm_until(
        project.guid, "plan_epic_and_story", {"plan_epic_and_story": ("done", PO_REPLY)}
    )

    [epic] = await harness.container.epics.get_by_project_guid(project.guid)
    assert (epic.epic_number, epic.name, epic.priority) == (1, "Auth", "P0")
    [story] = epic.stories
    assert (story.story_number, story.title, story.status) == ("1.1", "Login", "pending")
    assert story.epic_id == epic.id
    assert (await harness.stage(project.guid, "plan_epic_and_story")).status == "paused"


async def test_confirm_advances_one_stage_at_a_time(harness):
    project = await harness.create_project()

    await harness.settle()

    project = await harness.project(project.guid)
    # setup_agents needs no confirmation, check_requirement does
    assert project.confirm_stage == "check_requirement"
    assert (await harness.stage(project.guid, "setup_agents")).status == "done"

    await harness.container.queue.enqueue_project_confirm(project.guid)
    await harness.settle()

    project = await harness.project(project.guid)
    assert (await harness.stage(project.guid, "check_requirement")).status == "done"
    assert project.confirm_stage == "generate_prd"


async def test_story_loop_in_development(harness, monkeypatch):
    monkeypatch.setattr(harness.container.settings, "environment", Environment.DEVELOPMENT)
    project = await harness.create_project(auto_go_next=True)

    await harness.settle({"plan_epic_and_story": ("done", PO_REPLY)})

    implement = [
        task_id
        for task_id, (path, _) in harness.agent.submitted.items()
        if path == "/agent/dev/implstory"
    ]
    assert len(implement) == 1
    assert harness.agent.body(implement[0])["story_file"] == "epic1-auth-stories.md"

    [epic] = await harness.container.epics.get_by_project_guid(project.guid)
    assert epic.status == "done"
    assert [s.status for s in epic.stories] == ["done"]
    assert (await harness.stage(project.guid, "develop_story")).status == "done"
    assert (await harness.stage(project.guid, "fix_bug")).status == "done"
    assert "/agent/dev/fixbug" in harness.agent.paths()

    project = await harness.project(project.guid)
    assert project.status == "done"
    assert project.preview_url == f"http://{project.guid}.app-maker.localhost"


async def test_agent_failure_fails_stage_and_project(harness):
    project = await harness.create_project(auto_go_next=True)

    await harness.settle({"design_architecture": ("failed", "LLM quota exceeded")})

    stage = await harness.stage(project.guid, "design_architecture")
    assert (stage.status, stage.failed_reason) == ("failed", "LLM quota exceeded")
    project = await harness.project(project.guid)
    assert (project.status, project.dev_status) == ("failed", "failed")
    assert await harness.stage(project.guid, "plan_epic_and_story") is None
    assert "/agent/po/epicsandstories" not in harness.agent.paths()

    response_task = harness.response_tasks[harness.agent.task_for("design_architecture")]
    result = await harness.container.queue.get_result(response_task)
    assert result.status == "done"

    messages = await harness.messages(project.guid)
    assert messages[-1].content == "Stage design_architecture failed: LLM quota exceeded"
