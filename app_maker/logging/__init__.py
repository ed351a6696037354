from .config import setup_logging
from .context import bind_task_context, clear_context, set_correlation_id

__all__ = [
    "setup_logging",
    "bind_task_context",
    "clear_context",
    "set_correlation_id",
]
