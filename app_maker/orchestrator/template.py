"""Project workspace creation from the bundled template archive.

The archive may carry two control files at its root:

- ``replace.txt``: relative paths, one per line, whose placeholders are filled in.
  Without it every text file is processed.
- ``rename.txt``: lines ``old -> new`` (or ``old new``) of paths to move.

Both are removed once applied.
"""

import asyncio
from collections.abc import Callable
from functools import partial
from pathlib import Path
import shutil
import zipfile

import structlog

from app_maker.errors import InitStepError
from app_maker.models import Project

logger = structlog.get_logger(__name__)

REPLACE_FILE = "replace.txt"
RENAME_FILE = "rename.txt"
DEFAULT_DATABASE_USER = "postgres"


def placeholders(project: Project) -> dict[str, str]:
    return {
        "${PRODUCT_NAME}": project.name,
        "${PRODUCT_DESC}": project.description,
        "${APP_SECRET_KEY}": project.app_secret_key,
        "${DATABASE_PASSWORD}": project.database_password,
        "${REDIS_PASSWORD}": project.redis_password,
        "${JWT_SECRET_KEY}": project.jwt_secret_key,
        "${SUBNETWORK}": project.subnetwork,
        "${API_BASE_URL}": project.api_base_url,
        "${BACKEND_PORT}": str(project.backend_port),
        "${FRONTEND_PORT}": str(project.frontend_port),
        "${PROJECT_ID}": project.id,
        "${REDIS_PORT}": str(project.redis_port),
        "${DATABASE_PORT}": str(project.postgres_port),
        "${DATABASE_NAME}": database_name(project),
        "${DATABASE_USER}": DEFAULT_DATABASE_USER,
        "${USER_ID}": str(project.user_id),
    }


def database_name(project: Project) -> str:
    return f"app_{project.id.lower()}"


def is_empty_dir(path: Path) -> bool:
    return not path.exists() or (path.is_dir() and not any(path.iterdir()))


def parse_rename_line(line: str) -> tuple[str, str] | None:
    line = line.strip()
    if not line or line.startswith("#"):
        return None
    if "->" in line:
        old, _, new = line.partition("->")
    else:
        parts = line.split()
        if len(parts) != 2:
            return None
        old, new = parts
    old, new = old.strip(), new.strip()
    if not old or not new:
        return None
    return old, new


def _inside(root: Path, relative: str) -> Path:
    target = (root / relative).resolve()
    if root.resolve() not in (target, *target.parents):
        raise InitStepError(f"template path escapes project directory: {relative}")
    return target


class TemplateService:
    def __init__(self, template_path: str):
        self.template_path = Path(template_path)

    async def _run(self, func: Callable, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args))

    async def initialize(self, project: Project) -> bool:
        """Extract and fill in the template; False when the workspace already has files."""
        project_dir = Path(project.project_path)
        if not is_empty_dir(project_dir):
            logger.info(
                "template_already_initialized",
                project_guid=project.guid,
                project_path=str(project_dir),
            )
            return False
        await self._run(self.extract, project_dir)
        await self._run(self.replace_placeholders, project_dir, placeholders(project))
        await self._run(self.apply_renames, project_dir)
        logger.info(
            "template_initialized", project_guid=project.guid, project_path=str(project_dir)
        )
        return True

    def extract(self, project_dir: Path) -> int:
        if not self.template_path.is_file():
            raise InitStepError(f"template archive not found: {self.template_path}")
        project_dir.mkdir(parents=True, exist_ok=True)
        try:
            with zipfile.ZipFile(self.template_path) as archive:
                members = archive.infolist()
                for member in members:
                    _inside(project_dir, member.filename)
                archive.extractall(project_dir)
        except zipfile.BadZipFile as e:
            raise InitStepError(f"invalid template archive {self.template_path}: {e}") from e
        logger.debug("template_extracted", file_count=len(members), project_path=str(project_dir))
        return len(members)

    def replace_placeholders(self, project_dir: Path, values: dict[str, str]) -> int:
        control = project_dir / REPLACE_FILE
        if control.is_file():
            files = [
                _inside(project_dir, line.strip())
                for line in control.read_text(encoding="utf-8").splitlines()
                if line.strip()
            ]
            control.unlink()
        else:
            files = [path for path in project_dir.rglob("*") if path.is_file()]

        replaced = 0
        for path in files:
            if not path.is_file():
                logger.warning("template_replace_target_missing", path=str(path))
                continue
            try:
                text = path.read_text(encoding="utf-8")
            except UnicodeDecodeError:
                continue
            updated = text
            for placeholder, value in values.items():
                updated = updated.replace(placeholder, value)
            if updated != text:
                path.write_text(updated, encoding="utf-8")
                replaced += 1
        return replaced

    def apply_renames(self, project_dir: Path) -> int:
        control = project_dir / RENAME_FILE
        if not control.is_file():
            return 0
        renamed = 0
        for line in control.read_text(encoding="utf-8").splitlines():
            pair = parse_rename_line(line)
            if pair is None:
                continue
            source, target = _inside(project_dir, pair[0]), _inside(project_dir, pair[1])
            if not source.exists():
                logger.warning("template_rename_source_missing", source=pair[0])
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(source, target)
            renamed += 1
        control.unlink()
        return renamed
