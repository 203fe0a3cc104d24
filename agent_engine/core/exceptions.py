"""Error taxonomy for the task engine."""

from typing import Optional


class TaskEngineError(Exception):
    """Base class for every error raised by the task engine."""


class ValidationError(TaskEngineError):
    """A task field is missing or outside its enumeration."""


class NotFoundError(TaskEngineError):
    """The requested task (or other record) does not exist."""

    def __init__(self, task_id: object, kind: str = "Task"):
        self.task_id = task_id
        self.kind = kind
        super().__init__(f"{kind} {task_id} not found")


class InvalidTransitionError(TaskEngineError):
    """The requested status change is not allowed from the current status."""

    def __init__(self, task_id: object, current: str, requested: str):
        self.task_id = task_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Task {task_id} cannot move from '{current}' to '{requested}'"
        )


class NotWaitingError(TaskEngineError):
    """Resume was requested for a task that is not waiting for an event."""

    def __init__(self, task_id: object, status: str):
        self.task_id = task_id
        self.status = status
        super().__init__(
            f"Task {task_id} is not waiting for an external event (status: {status})"
        )


class NotFailedError(TaskEngineError):
    """Retry was requested for a task that has not failed."""

    def __init__(self, task_id: object, status: str):
        self.task_id = task_id
        self.status = status
        super().__init__(f"Task {task_id} cannot be retried from status '{status}'")


class RetryExhaustedError(TaskEngineError):
    """The task already used all of its retries."""

    def __init__(self, task_id: object, retry_count: int, max_retries: int):
        self.task_id = task_id
        self.retry_count = retry_count
        self.max_retries = max_retries
        super().__init__(
            f"Task {task_id} has exhausted its retries ({retry_count}/{max_retries})"
        )


class ConcurrentModificationError(TaskEngineError):
    """Another writer kept winning the optimistic version check."""

    def __init__(self, task_id: object, attempts: int):
        self.task_id = task_id
        self.attempts = attempts
        super().__init__(
            f"Task {task_id} was modified concurrently {attempts} times in a row"
        )


class ToolExecutionError(TaskEngineError):
    """A tool invocation failed or returned an unusable result."""

    def __init__(self, tool_name: str, message: str):
        self.tool_name = tool_name
        self.message = message
        super().__init__(f"Tool '{tool_name}' failed: {message}")


class ReasoningError(TaskEngineError):
    """The reasoning oracle failed or its output could not be used."""

    def __init__(self, message: str, raw_output: Optional[str] = None):
        self.raw_output = raw_output
        super().__init__(message)


__all__ = [
    "TaskEngineError",
    "ValidationError",
    "NotFoundError",
    "InvalidTransitionError",
    "NotWaitingError",
    "NotFailedError",
    "RetryExhaustedError",
    "ConcurrentModificationError",
    "ToolExecutionError",
    "ReasoningError",
]
