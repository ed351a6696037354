from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import selectinload

from app_maker.contracts import MvpEpic
from app_maker.errors import NotFoundError
from app_maker.models import CommonStatus, Epic, Priority, Project, Story, story_sort_key, utcnow

from .base import BaseRepository, next_table_id


class EpicRepository(BaseRepository):
    async def get_by_project_guid(self, project_guid: str) -> list[Epic]:
        """All live epics with all live stories."""
        async with self.session_maker() as session:
            result = await session.execute(
                select(Epic)
                .where(Epic.project_guid == project_guid, Epic.deleted_at.is_(None))
                .options(selectinload(Epic.stories.and_(Story.deleted_at.is_(None))))
                .order_by(Epic.epic_number)
            )
            return list(result.scalars())

    async def get_mvp_epics_by_project(self, project_guid: str) -> list[Epic]:
        """P0 epics with their P0 stories only."""
        async with self.session_maker() as session:
            result = await session.execute(
                select(Epic)
                .where(
                    Epic.project_guid == project_guid,
                    Epic.deleted_at.is_(None),
                    Epic.priority == Priority.P0.value,
                )
                .options(
                    selectinload(
                        Epic.stories.and_(
                            Story.deleted_at.is_(None),
                            Story.priority == Priority.P0.value,
                        )
                    )
                )
                .order_by(Epic.epic_number)
            )
            return list(result.scalars())

    async def replace_for_project(self, project: Project, epics: list[MvpEpic]) -> list[Epic]:
        """Soft-delete the project's current epics and stories, then insert ``epics``."""
        now = utcnow()
        async with self.session_maker() as session:
            old_ids = select(Epic.id).where(
                Epic.project_guid == project.guid, Epic.deleted_at.is_(None)
            )
            await session.execute(
                update(Story)
                .where(Story.epic_id.in_(old_ids), Story.deleted_at.is_(None))
                .values(deleted_at=now)
                .execution_options(synchronize_session=False)
            )
            await session.execute(
                update(Epic)
                .where(Epic.project_guid == project.guid, Epic.deleted_at.is_(None))
                .values(deleted_at=now)
                .execution_options(synchronize_session=False)
            )

            for item in epics:
                epic = Epic(
                    id=await next_table_id(session, "EPIC"),
                    project_id=project.id,
                    project_guid=project.guid,
                    epic_number=item.epic_number,
                    name=item.name,
                    description=item.description,
                    priority=item.priority,
                    estimated_days=item.estimated_days,
                    status=CommonStatus.PENDING.value,
                    file_path=item.file_path,
                )
                session.add(epic)
                for story_item in item.stories:
                    session.add(
                        Story(
                            id=await next_table_id(session, "STORY"),
                            epic_id=epic.id,
                            story_number=story_item.story_number,
                            sort_key=story_sort_key(story_item.story_number),
                            title=story_item.title,
                            description=story_item.description,
                            priority=story_item.priority,
                            estimated_days=story_item.estimated_days,
                            status=CommonStatus.PENDING.value,
                            file_path=story_item.file_path or item.file_path,
                            depends=story_item.depends,
                            techs=story_item.techs,
                        )
                    )
            await session.commit()
        return await self.get_by_project_guid(project.guid)

    async def refresh_status(self, epic_id: str) -> Epic:
        """Recompute an epic's status: done iff every live story is done."""
        async with self.session_maker() as session:
            epic = await session.get(Epic, epic_id)
            if epic is None:
                raise NotFoundError("epic", epic_id)
            result = await session.execute(
                select(Story.status).where(Story.epic_id == epic_id, Story.deleted_at.is_(None))
            )
            statuses = list(result.scalars())
            if statuses and all(s == CommonStatus.DONE.value for s in statuses):
                epic.status = CommonStatus.DONE.value
            elif any(s != CommonStatus.PENDING.value for s in statuses):
                epic.status = CommonStatus.IN_PROGRESS.value
            else:
                epic.status = CommonStatus.PENDING.value
            await session.commit()
            return epic


class StoryRepository(BaseRepository):
    async def update(self, story_id: str, **fields: Any) -> Story:
        async with self.session_maker() as session:
            story = await session.get(Story, story_id)
            if story is None:
                raise NotFoundError("story", story_id)
            for key, value in fields.items():
                setattr(story, key, value.value if isinstance(value, CommonStatus) else value)
            await session.commit()
            return story

    def _mvp_stories(self, project_guid: str):
        return (
            select(Story)
            .join(Epic, Story.epic_id == Epic.id)
            .where(
                Epic.project_guid == project_guid,
                Epic.deleted_at.is_(None),
                Epic.priority == Priority.P0.value,
                Story.deleted_at.is_(None),
                Story.priority == Priority.P0.value,
            )
            .order_by(Epic.epic_number, Story.sort_key, Story.id)
        )

    async def get_in_progress_for_project(self, project_guid: str) -> Story | None:
        async with self.session_maker() as session:
            result = await session.execute(
                self._mvp_stories(project_guid)
                .where(Story.status == CommonStatus.IN_PROGRESS.value)
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def get_next_pending_mvp_story(self, project_guid: str) -> Story | None:
        """First MVP story that is not done, in epic then story order."""
        async with self.session_maker() as session:
            result = await session.execute(
                self._mvp_stories(project_guid)
                .where(Story.status != CommonStatus.DONE.value)
                .limit(1)
            )
            return result.scalar_one_or_none()
