from sqlalchemy import func, select

from app_maker.models import ConversationMessage

from .base import BaseRepository, next_table_id


class MessageRepository(BaseRepository):
    async def create(self, message: ConversationMessage) -> ConversationMessage:
        async with self.session_maker() as session:
            message.id = await next_table_id(session, "MSG")
            session.add(message)
            await session.commit()
            await session.refresh(message)
            return message

    async def get_by_project_guid(
        self, project_guid: str, page_size: int = 50, offset: int = 0
    ) -> list[ConversationMessage]:
        """Messages in conversation order."""
        async with self.session_maker() as session:
            result = await session.execute(
                select(ConversationMessage)
                .where(
                    ConversationMessage.project_guid == project_guid,
                    ConversationMessage.deleted_at.is_(None),
                )
                .order_by(ConversationMessage.created_at, ConversationMessage.id)
                .offset(offset)
                .limit(page_size)
            )
            return list(result.scalars())

    async def count_by_project_guid(self, project_guid: str) -> int:
        async with self.session_maker() as session:
            result = await session.execute(
                select(func.count())
                .select_from(ConversationMessage)
                .where(
                    ConversationMessage.project_guid == project_guid,
                    ConversationMessage.deleted_at.is_(None),
                )
            )
            return result.scalar_one()
