from sqlalchemy import select

from app_maker.models import User

from .base import BaseRepository


class UserRepository(BaseRepository):
    async def get_by_id(self, user_id: int) -> User | None:
        async with self.session_maker() as session:
            result = await session.execute(
                select(User).where(User.id == user_id, User.deleted_at.is_(None))
            )
            return result.scalar_one_or_none()
