from datetime import datetime
from typing import Any

from sqlalchemy import and_, not_, or_, select, update
from sqlalchemy.exc import IntegrityError

from app_maker.errors import NotFoundError
from app_maker.models import CommonStatus, DevStage, Project, stage_progress, utcnow

from .base import BaseRepository, next_table_id


class StageRepository(BaseRepository):
    def _live(self):
        return select(DevStage).where(DevStage.deleted_at.is_(None))

    async def get_by_project_guid_and_name(self, project_guid: str, name: str) -> DevStage | None:
        async with self.session_maker() as session:
            result = await session.execute(
                self._live().where(DevStage.project_guid == project_guid, DevStage.name == name)
            )
            return result.scalar_one_or_none()

    async def get_by_project_guid(self, project_guid: str) -> list[DevStage]:
        async with self.session_maker() as session:
            result = await session.execute(
                self._live()
                .where(DevStage.project_guid == project_guid)
                .order_by(DevStage.created_at, DevStage.id)
            )
            return list(result.scalars())

    async def get_latest_failed(self, project_guid: str) -> DevStage | None:
        async with self.session_maker() as session:
            result = await session.execute(
                self._live()
                .where(
                    DevStage.project_guid == project_guid,
                    DevStage.status == CommonStatus.FAILED.value,
                )
                .order_by(DevStage.updated_at.desc(), DevStage.id.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def create(
        self,
        project: Project,
        name: str,
        description: str = "",
        status: CommonStatus = CommonStatus.PENDING,
    ) -> DevStage:
        async with self.session_maker() as session:
            stage = DevStage(
                id=await next_table_id(session, "STAGE"),
                project_id=project.id,
                project_guid=project.guid,
                name=name,
                description=description,
                status=status.value,
                progress=stage_progress(status),
                failed_reason="",
                task_id="",
                agent_task_id="",
            )
            session.add(stage)
            await session.commit()
            await session.refresh(stage)
            return stage

    async def get_or_create(
        self, project: Project, name: str, description: str = ""
    ) -> tuple[DevStage, bool]:
        """Return the stage row and whether this call created it."""
        stage = await self.get_by_project_guid_and_name(project.guid, name)
        if stage is not None:
            return stage, False
        try:
            return await self.create(project, name, description), True
        except IntegrityError:
            # Created concurrently by another task
            stage = await self.get_by_project_guid_and_name(project.guid, name)
            if stage is None:
                raise
            return stage, False

    async def update(self, stage_id: str, **fields: Any) -> DevStage:
        async with self.session_maker() as session:
            stage = await session.get(DevStage, stage_id)
            if stage is None:
                raise NotFoundError("stage", stage_id)
            if "status" in fields and "progress" not in fields:
                fields["progress"] = stage_progress(fields["status"])
            for key, value in fields.items():
                setattr(stage, key, value.value if isinstance(value, CommonStatus) else value)
            await session.commit()
            await session.refresh(stage)
            return stage

    async def try_claim(self, stage_id: str, task_id: str) -> bool:
        """Atomically move the stage to in_progress for ``task_id``.

        Fails when the stage is already done, or when another task has it in flight
        with an outstanding agent task.
        """
        async with self.session_maker() as session:
            result = await session.execute(
                update(DevStage)
                .where(
                    DevStage.id == stage_id,
                    DevStage.status != CommonStatus.DONE.value,
                    not_(
                        and_(
                            DevStage.status == CommonStatus.IN_PROGRESS.value,
                            DevStage.agent_task_id != "",
                            DevStage.task_id != task_id,
                        )
                    ),
                )
                .values(
                    status=CommonStatus.IN_PROGRESS.value,
                    progress=stage_progress(CommonStatus.IN_PROGRESS),
                    task_id=task_id,
                    agent_task_id="",
                    failed_reason="",
                    started_at=utcnow(),
                    completed_at=None,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

    async def mark_done_if_not_done(self, stage_id: str) -> bool:
        """Set the stage done unless it already is; True when this call made the transition."""
        async with self.session_maker() as session:
            result = await session.execute(
                update(DevStage)
                .where(DevStage.id == stage_id, DevStage.status != CommonStatus.DONE.value)
                .values(
                    status=CommonStatus.DONE.value,
                    progress=stage_progress(CommonStatus.DONE),
                    failed_reason="",
                    completed_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

    async def list_in_flight(self, older_than: datetime) -> list[DevStage]:
        """In-progress stages awaiting an agent task, untouched since ``older_than``."""
        async with self.session_maker() as session:
            result = await session.execute(
                self._live().where(
                    DevStage.status == CommonStatus.IN_PROGRESS.value,
                    DevStage.agent_task_id != "",
                    or_(DevStage.updated_at < older_than, DevStage.updated_at.is_(None)),
                )
            )
            return list(result.scalars())
