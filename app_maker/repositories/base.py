from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app_maker.models import IdSequence, format_table_id

ID_PREFIXES = ("PROJ", "STAGE", "MSG", "EPIC", "STORY")


async def next_table_id(session: AsyncSession, prefix: str) -> str:
    """Allocate the next id for ``prefix`` inside the caller's transaction."""
    result = await session.execute(
        update(IdSequence)
        .where(IdSequence.name == prefix)
        .values(value=IdSequence.value + 1)
        .returning(IdSequence.value)
        .execution_options(synchronize_session=False)
    )
    value = result.scalar_one_or_none()
    if value is None:
        session.add(IdSequence(name=prefix, value=1))
        await session.flush()
        value = 1
    return format_table_id(prefix, value)


async def ensure_id_sequences(session_maker: async_sessionmaker[AsyncSession]) -> None:
    """Seed the counters so concurrent first inserts never race on creation."""
    async with session_maker() as session:
        for prefix in ID_PREFIXES:
            if await session.get(IdSequence, prefix) is None:
                session.add(IdSequence(name=prefix, value=0))
        await session.commit()


class BaseRepository:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker
