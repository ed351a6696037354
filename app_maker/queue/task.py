"""Wire format of queued tasks."""

from datetime import UTC, datetime
from typing import Any, TypeVar
import uuid

from pydantic import BaseModel, Field, ValidationError

from app_maker.errors import PayloadValidationError

T = TypeVar("T", bound=BaseModel)

DEFAULT_RETENTION = 4 * 60 * 60


class QueuedTask(BaseModel):
    """A task as stored in a queue stream (JSON under the entry's ``data`` field)."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    queue: str = "default"
    max_retry: int = Field(default=1, ge=0)
    retried: int = Field(default=0, ge=0)
    retention: int = Field(default=DEFAULT_RETENTION, ge=DEFAULT_RETENTION)
    enqueued_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def payload_as(self, model: type[T]) -> T:
        """Validate the payload; invalid payloads are never retried."""
        try:
            return model.model_validate(self.payload)
        except ValidationError as e:
            raise PayloadValidationError(
                f"invalid {self.type} payload: {e.error_count()} error(s)"
            ) from e

    @property
    def project_guid(self) -> str | None:
        return self.payload.get("project_guid")
