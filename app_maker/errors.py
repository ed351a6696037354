"""Error taxonomy shared by queue handlers.

``SkipRetry`` and its subclasses finalize a queue task as failed without retrying.
Any other exception escaping a handler is treated as transient and retried.
"""


class SkipRetry(Exception):
    """Non-retryable task failure."""


class PayloadValidationError(SkipRetry):
    """Task payload could not be decoded or failed validation."""


class NotFoundError(SkipRetry):
    """A referenced project, stage or user does not exist."""

    def __init__(self, entity: str, key: str):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} not found: {key}")


class AgentServiceError(Exception):
    """Agent service answered with a non-zero code or an HTTP error.

    The message is the agent's own text, surfaced unchanged to users.
    """

    def __init__(self, message: str, code: int | None = None, status_code: int | None = None):
        self.code = code
        self.status_code = status_code
        super().__init__(message)


class AgentTaskTimeoutError(Exception):
    """Polling an agent task exceeded the configured attempt ceiling."""

    def __init__(self, task_id: str, attempts: int):
        self.task_id = task_id
        self.attempts = attempts
        super().__init__(f"Agent task {task_id} did not finish after {attempts} polls")


class AgentTaskCancelledError(Exception):
    """Polling an agent task was cancelled by the caller."""


class InitStepError(Exception):
    """A project initialization step (template, git) failed."""
