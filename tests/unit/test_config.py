import logging

import pytest
import structlog

from app_maker.config import Environment, Settings
from app_maker.logging import bind_task_context, setup_logging


def test_defaults():
    settings = Settings(_env_file=None)
    assert settings.environment == Environment.LOCAL_DEBUG
    assert settings.agent_task_channel == "agent:task"
    assert settings.queue_weights == {"critical": 6, "default": 3, "low": 1}
    assert settings.task_retention_seconds >= 4 * 60 * 60
    assert settings.dev_skip_stages == []


def test_environment_variables(monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "development")
    monkeypatch.setenv("AGENTS_SERVER_URL", "http://agents:8088/")
    monkeypatch.setenv("GITLAB_URL", "https://gitlab.example.com/")
    monkeypatch.setenv("DEV_SKIP_STAGES", '["fix_bug"]')
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = Settings(_env_file=None)

    assert settings.is_development
    assert settings.agents_server_url == "http://agents:8088"
    assert settings.gitlab_url == "https://gitlab.example.com"
    assert settings.dev_skip_stages == ["fix_bug"]
    assert settings.log_level == "DEBUG"


def test_invalid_log_level():
    with pytest.raises(ValueError):
        Settings(_env_file=None, log_level="chatty")


def test_short_retention_rejected():
    with pytest.raises(ValueError):
        Settings(_env_file=None, task_retention_seconds=60)


@pytest.fixture
def reset_structlog():
    yield
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()


def test_setup_logging_binds_service_and_quiets_http(reset_structlog):
    setup_logging(service_name="orchestrator-test", log_format="json", log_level="DEBUG")

    assert structlog.contextvars.get_contextvars()["service"] == "orchestrator-test"
    assert logging.getLogger("httpx").level == logging.WARNING


def test_task_context_is_restored(reset_structlog):
    structlog.contextvars.bind_contextvars(service="svc")

    with bind_task_context("t1", "project:stage", "p1"):
        context = structlog.contextvars.get_contextvars()
        assert (context["task_id"], context["project_guid"]) == ("t1", "p1")

    assert structlog.contextvars.get_contextvars() == {"service": "svc"}
