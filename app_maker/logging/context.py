from contextlib import AbstractContextManager

import structlog


def set_correlation_id(correlation_id: str) -> None:
    """Set correlation ID for current context."""
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)


def bind_task_context(
    task_id: str, task_type: str, project_guid: str | None = None
) -> AbstractContextManager:
    """Bind queue task identifiers for the duration of a ``with`` block.

    Values bound before entering (service name, correlation id) are restored on exit.
    """
    context = {"task_id": task_id, "task_type": task_type}
    if project_guid:
        context["project_guid"] = project_guid
    return structlog.contextvars.bound_contextvars(**context)


def clear_context() -> None:
    """Clear all context variables."""
    structlog.contextvars.clear_contextvars()
