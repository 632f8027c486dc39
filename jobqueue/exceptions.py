"""
Queue system exceptions.

Admin and producer operations raise these typed errors so the HTTP layer can
map them without inspecting messages: ``status_code`` carries the intended
HTTP-equivalent status.
"""

from typing import Any


class QueueError(Exception):
    """Base class for all queue system errors."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error for an API response."""
        body: dict[str, Any] = {
            "message": self.message,
            "code": self.code,
            "status_code": self.status_code,
        }
        if self.details:
            body["details"] = self.details
        return body


class QueueUnavailableError(QueueError):
    """The queue system is not configured (no store connection string)."""

    status_code = 400
    code = "QUEUE_UNAVAILABLE"

    def __init__(self, message: str = "Queue system is unavailable", **kwargs: Any):
        super().__init__(message, **kwargs)


class QueueNotFoundError(QueueError):
    """The named queue is not registered."""

    status_code = 404
    code = "QUEUE_NOT_FOUND"

    def __init__(self, queue_name: str):
        super().__init__(f'Queue "{queue_name}" not found', {"queue": queue_name})
        self.queue_name = queue_name


class JobNotFoundError(QueueError):
    """The job does not exist in the queue."""

    status_code = 404
    code = "JOB_NOT_FOUND"

    def __init__(self, queue_name: str, job_id: str):
        super().__init__(
            f'Job "{job_id}" not found in queue "{queue_name}"',
            {"queue": queue_name, "job_id": job_id},
        )
        self.queue_name = queue_name
        self.job_id = job_id


class InvalidJobError(QueueError):
    """The job request is invalid for the target queue."""

    status_code = 400
    code = "INVALID_JOB"


class StoreError(QueueError):
    """A connection-level failure talking to the store."""

    status_code = 503
    code = "STORE_ERROR"


class HandlerNotFoundError(QueueError):
    """No handler is registered for a job type."""

    code = "HANDLER_NOT_FOUND"

    def __init__(self, queue_name: str, type_name: str):
        super().__init__(
            f"No handler registered for job type: {type_name}",
            {"queue": queue_name, "type": type_name},
        )
        self.queue_name = queue_name
        self.type_name = type_name


class JobTimeoutError(QueueError):
    """A handler exceeded its timeout."""

    code = "JOB_TIMEOUT"

    def __init__(self, timeout_ms: int):
        super().__init__(f"Job timed out after {timeout_ms}ms", {"timeout_ms": timeout_ms})
        self.timeout_ms = timeout_ms
