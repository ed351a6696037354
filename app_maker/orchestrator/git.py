"""Initial commit of a generated project to the Git host."""

import asyncio
import os
from pathlib import Path
import shutil
from urllib.parse import urlsplit

import structlog

from app_maker.config import Environment, Settings
from app_maker.errors import InitStepError
from app_maker.models import Project

logger = structlog.get_logger(__name__)

GROUP = "app-maker"
BRANCHES = ("master", "main")


class GitService:
    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def use_http(self) -> bool:
        return self.settings.environment == Environment.LOCAL_DEBUG

    def remote_url(self, project: Project) -> str:
        """Remote of the project repository; http in local-debug, ssh elsewhere."""
        base = self.settings.gitlab_url
        if self.use_http:
            return f"{base}/{GROUP}/{project.guid}.git"
        host = urlsplit(base).hostname or base
        return f"git@{host}:{GROUP}/{project.guid}.git"

    def push_url(self, project: Project) -> str:
        url = self.remote_url(project)
        if not self.use_http or not self.settings.gitlab_token:
            return url
        parts = urlsplit(url)
        netloc = f"{self.settings.gitlab_username}:{self.settings.gitlab_token}@{parts.netloc}"
        return parts._replace(netloc=netloc).geturl()

    def _env(self) -> dict[str, str]:
        env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}
        if not self.use_http and self.settings.ssh_key_path:
            ssh = f"ssh -i {self.settings.ssh_key_path} -o IdentitiesOnly=yes"
            if self.settings.ssh_known_hosts:
                ssh += f" -o UserKnownHostsFile={self.settings.ssh_known_hosts}"
            else:
                ssh += " -o StrictHostKeyChecking=no"
            env["GIT_SSH_COMMAND"] = ssh
        return env

    async def _git(self, cwd: Path, *args: str) -> tuple[int, str, str]:
        git_path = shutil.which("git")
        if not git_path:
            raise InitStepError("git not found in PATH")

        proc = await asyncio.create_subprocess_exec(
            git_path,
            *args,
            cwd=cwd,
            env=self._env(),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await proc.communicate()
        return proc.returncode, stdout.decode().strip(), stderr.decode().strip()

    async def _run(self, cwd: Path, *args: str) -> str:
        code, stdout, stderr = await self._git(cwd, *args)
        if code != 0:
            # Never log push URLs, they may carry the token
            logger.error("git_command_failed", command=args[0], returncode=code, stderr=stderr)
            raise InitStepError(f"git {args[0]} failed: {stderr or stdout}")
        return stdout

    async def has_staged_changes(self, cwd: Path) -> bool:
        code, _, _ = await self._git(cwd, "diff", "--cached", "--quiet")
        return code == 1

    async def has_commits(self, cwd: Path) -> bool:
        code, _, _ = await self._git(cwd, "rev-parse", "--verify", "HEAD")
        return code == 0

    async def initialize_and_push(self, project: Project) -> str:
        """Commit the workspace and push it; returns the remote URL, or "" without a Git host."""
        project_dir = Path(project.project_path)
        if not project_dir.is_dir():
            raise InitStepError(f"project directory missing: {project_dir}")

        if not (project_dir / ".git").exists():
            await self._run(project_dir, "init")
        await self._run(project_dir, "config", "user.name", self.settings.gitlab_username)
        await self._run(project_dir, "config", "user.email", self.settings.gitlab_email)

        await self._run(project_dir, "add", "-A")
        if await self.has_staged_changes(project_dir):
            await self._run(
                project_dir, "commit", "-m", f"Auto commit by App Maker - {project.name}"
            )
        elif not await self.has_commits(project_dir):
            raise InitStepError("nothing to commit in project workspace")

        if not self.settings.gitlab_url:
            logger.warning("git_host_not_configured_skipping_push", project_guid=project.guid)
            return ""

        remote = self.remote_url(project)
        code, _, _ = await self._git(project_dir, "remote", "get-url", "origin")
        if code == 0:
            await self._run(project_dir, "remote", "set-url", "origin", remote)
        else:
            await self._run(project_dir, "remote", "add", "origin", remote)

        push_url = self.push_url(project)
        errors = []
        for branch in BRANCHES:
            code, _, stderr = await self._git(project_dir, "push", push_url, f"HEAD:{branch}")
            if code == 0:
                logger.info("git_pushed", project_guid=project.guid, branch=branch)
                return remote
            errors.append(stderr)
            logger.warning("git_push_failed", project_guid=project.guid, branch=branch)
        raise InitStepError(f"git push failed: {errors[-1]}")
