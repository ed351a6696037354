"""Zip archives of project workspaces for download and backup."""

import asyncio
from pathlib import Path
import shutil
from typing import Protocol

import structlog

from app_maker.errors import NotFoundError

logger = structlog.get_logger(__name__)


class ProjectArchiver(Protocol):
    async def archive(self, project_guid: str, project_path: str) -> str: ...

    async def remove(self, project_path: str) -> None: ...


class ZipArchiver:
    """Writes ``{cache_dir}/{guid}.zip`` next to the other archives."""

    def __init__(self, cache_dir: str):
        self.cache_dir = Path(cache_dir)

    async def archive(self, project_guid: str, project_path: str) -> str:
        source = Path(project_path)
        if not source.is_dir():
            raise NotFoundError("project directory", project_path)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        base_name = str(self.cache_dir / project_guid)
        loop = asyncio.get_running_loop()
        path = await loop.run_in_executor(
            None, lambda: shutil.make_archive(base_name, "zip", root_dir=source)
        )
        logger.info("project_archived", project_guid=project_guid, archive_path=path)
        return path

    async def remove(self, project_path: str) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, lambda: shutil.rmtree(project_path, ignore_errors=True))
