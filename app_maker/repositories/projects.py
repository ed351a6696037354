from dataclasses import dataclass
from typing import Any

from sqlalchemy import select

from app_maker.errors import NotFoundError
from app_maker.models import Project, utcnow

from .base import BaseRepository, next_table_id

# Ports that are never handed out to generated projects
RESERVED_PORTS = frozenset({80, 443, 3000, 5432, 6379, 8080, 8081, 8082, 8083, 8888, 8098})


@dataclass
class Ports:
    backend_port: int = 9501
    frontend_port: int = 3501
    redis_port: int = 7501
    postgres_port: int = 5501


class ProjectRepository(BaseRepository):
    async def get_by_guid(self, guid: str) -> Project | None:
        async with self.session_maker() as session:
            result = await session.execute(
                select(Project).where(Project.guid == guid, Project.deleted_at.is_(None))
            )
            return result.scalar_one_or_none()

    async def require(self, guid: str) -> Project:
        project = await self.get_by_guid(guid)
        if project is None:
            raise NotFoundError("project", guid)
        return project

    async def get_by_id(self, project_id: str) -> Project | None:
        async with self.session_maker() as session:
            result = await session.execute(
                select(Project).where(Project.id == project_id, Project.deleted_at.is_(None))
            )
            return result.scalar_one_or_none()

    async def create(self, project: Project) -> Project:
        async with self.session_maker() as session:
            project.id = await next_table_id(session, "PROJ")
            session.add(project)
            await session.commit()
            await session.refresh(project)
            return project

    async def update(self, guid: str, **fields: Any) -> Project:
        """Apply ``fields`` to the project and return the fresh row."""
        async with self.session_maker() as session:
            result = await session.execute(
                select(Project).where(Project.guid == guid, Project.deleted_at.is_(None))
            )
            project = result.scalar_one_or_none()
            if project is None:
                raise NotFoundError("project", guid)
            for key, value in fields.items():
                setattr(project, key, value)
            await session.commit()
            await session.refresh(project)
            return project

    async def delete(self, guid: str) -> None:
        await self.update(guid, deleted_at=utcnow())

    async def is_owner(self, guid: str, user_id: int) -> bool:
        project = await self.get_by_guid(guid)
        return project is not None and project.user_id == user_id

    async def get_next_available_ports(self) -> Ports:
        """Lowest free port per kind, counting up from the defaults."""
        async with self.session_maker() as session:
            result = await session.execute(
                select(
                    Project.backend_port,
                    Project.frontend_port,
                    Project.redis_port,
                    Project.postgres_port,
                ).where(Project.deleted_at.is_(None))
            )
            rows = result.all()

        ports = Ports()
        for index, field in enumerate(
            ("backend_port", "frontend_port", "redis_port", "postgres_port")
        ):
            used = {row[index] for row in rows}
            port = getattr(ports, field)
            while port in used or port in RESERVED_PORTS:
                port += 1
            setattr(ports, field, port)
        return ports
