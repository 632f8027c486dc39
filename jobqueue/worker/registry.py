"""
Job handler registry.

Handlers are looked up by (queue, job type name). They must be idempotent:
delivery is at-least-once, so a job may run more than once after a worker
crash or a stall.

Handlers receive a JobContext and either return a JobResult (or any
JSON-serializable value, treated as a successful output) or raise.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from jobqueue.constants import DATA_JOB_TYPE_PREFIX, QueueName
from jobqueue.types.job import JobContext

logger = logging.getLogger(__name__)

# Type alias for job handler functions
JobHandler = Callable[[JobContext], Awaitable[Any]]


def data_job_type(kind: str) -> str:
    """Job type name of a data-processing job of ``kind``."""
    return f"{DATA_JOB_TYPE_PREFIX}{kind}"


class HandlerRegistry:
    """
    Maps (queue name, job type) to a handler.

    Written at startup, read by workers; registrations are expected to
    complete before workers start.
    """

    def __init__(self) -> None:
        self._handlers: dict[tuple[str, str], JobHandler] = {}

    def register(self, queue: str, type_name: str, handler: JobHandler) -> None:
        """Register (or replace) the handler of a job type on a queue."""
        self._handlers[(str(queue), type_name)] = handler
        logger.info(
            f"Registered handler for job type: {type_name}",
            extra={"queue": str(queue)},
        )

    def handler(self, queue: str, type_name: str) -> Callable[[JobHandler], JobHandler]:
        """
        Decorator form of ``register``.

        Example:
            @registry.handler("email", "send-email")
            async def send_email(context: JobContext) -> JobResult:
                ...
        """

        def decorator(fn: JobHandler) -> JobHandler:
            self.register(queue, type_name, fn)
            return fn

        return decorator

    def register_data_handler(self, kind: str, handler: JobHandler) -> None:
        """Register the handler of ``process-<kind>`` jobs on the data-processing queue."""
        self.register(QueueName.DATA_PROCESSING, data_job_type(kind), handler)

    def get(self, queue: str, type_name: str) -> JobHandler | None:
        return self._handlers.get((str(queue), type_name))

    def has(self, queue: str, type_name: str) -> bool:
        return (str(queue), type_name) in self._handlers

    def names(self, queue: str | None = None) -> list[str]:
        """Registered job type names, optionally for one queue."""
        return [
            type_name
            for (queue_name, type_name) in self._handlers
            if queue is None or queue_name == str(queue)
        ]
