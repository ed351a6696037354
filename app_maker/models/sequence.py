"""Named counters backing human-readable table ids."""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class IdSequence(Base):
    """Monotonic counter per id prefix (PROJ, STAGE, MSG, EPIC, STORY)."""

    __tablename__ = "id_sequences"

    name: Mapped[str] = mapped_column(String(32), primary_key=True)
    value: Mapped[int] = mapped_column(BigInteger, default=0)


def format_table_id(prefix: str, value: int) -> str:
    """Render an id such as ``PROJ00000042``."""
    return f"{prefix}{value:08d}"
