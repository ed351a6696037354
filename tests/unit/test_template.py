import zipfile

import pytest

from app_maker.errors import InitStepError
from app_maker.models import Project
from app_maker.orchestrator import TemplateService
from app_maker.orchestrator.template import parse_rename_line, placeholders

from conftest import build_template


@pytest.fixture
def project(tmp_path) -> Project:
    return Project(
        id="PROJ00000007",
        guid="g-7",
        user_id=42,
        name="MyWebApp",
        description="A web shop",
        project_path=str(tmp_path / "workspace"),
        backend_port=9501,
        frontend_port=3501,
        redis_port=7501,
        postgres_port=5501,
        api_base_url="/api/v1",
        app_secret_key="app-secret",
        database_password="db-secret",
        redis_password="redis-secret",
        jwt_secret_key="jwt-secret",
        subnetwork="172.20.0.0/16",
    )


def test_placeholders_cover_the_template_contract(project):
    values = placeholders(project)

    assert len(values) == 16
    assert values["${DATABASE_NAME}"] == "app_proj00000007"
    assert values["${DATABASE_USER}"] == "postgres"
    assert values["${DATABASE_PORT}"] == "5501"
    assert values["${USER_ID}"] == "42"
    assert values["${PROJECT_ID}"] == "PROJ00000007"


async def test_initialize_fills_and_renames(tmp_path, template_zip, project):
    service = TemplateService(str(template_zip))

    assert await service.initialize(project) is True

    workspace = tmp_path / "workspace"
    assert (workspace / "README.md").read_text() == "# MyWebApp\n\nA web shop\n"
    env = (workspace / "backend" / ".env").read_text()
    assert "APP_SECRET_KEY=app-secret" in env
    assert "DATABASE_NAME=app_proj00000007" in env
    assert "BACKEND_PORT=9501" in env
    assert (workspace / "frontend" / ".env").read_text() == "VITE_API_BASE_URL=/api/v1\nPORT=3501\n"
    assert not (workspace / "frontend" / "env.template").exists()
    assert not (workspace / "replace.txt").exists()
    assert not (workspace / "rename.txt").exists()


async def test_initialize_is_skipped_for_populated_workspace(tmp_path, template_zip, project):
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    (workspace / "keep.txt").write_text("${PRODUCT_NAME}")

    assert await TemplateService(str(template_zip)).initialize(project) is False
    assert (workspace / "keep.txt").read_text() == "${PRODUCT_NAME}"


async def test_without_replace_list_every_text_file_is_processed(tmp_path, project):
    archive = build_template(
        tmp_path / "plain.zip",
        {"a.txt": "${PRODUCT_NAME}", "nested/b.txt": "${JWT_SECRET_KEY}"},
    )
    with zipfile.ZipFile(archive, "a") as zf:
        zf.writestr("image.bin", bytes([0xFF, 0xFE, 0x00, 0x81]))

    await TemplateService(str(archive)).initialize(project)

    workspace = tmp_path / "workspace"
    assert (workspace / "a.txt").read_text() == "MyWebApp"
    assert (workspace / "nested" / "b.txt").read_text() == "jwt-secret"
    assert (workspace / "image.bin").read_bytes() == bytes([0xFF, 0xFE, 0x00, 0x81])


async def test_missing_archive(tmp_path, project):
    with pytest.raises(InitStepError, match="not found"):
        await TemplateService(str(tmp_path / "missing.zip")).initialize(project)


async def test_archive_escaping_the_workspace_is_rejected(tmp_path, project):
    archive = build_template(tmp_path / "evil.zip", {"../outside.txt": "x"})

    with pytest.raises(InitStepError, match="escapes"):
        await TemplateService(str(archive)).initialize(project)
    assert not (tmp_path / "outside.txt").exists()


@pytest.mark.parametrize(
    ("line", "expected"),
    [
        ("a.txt -> b.txt", ("a.txt", "b.txt")),
        ("  gitignore   .gitignore ", ("gitignore", ".gitignore")),
        ("# comment", None),
        ("", None),
        ("only-one", None),
        ("a -> ", None),
    ],
)
def test_parse_rename_line(line, expected):
    assert parse_rename_line(line) == expected
