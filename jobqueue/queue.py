"""
Queue handles and the default configuration of the known queues.
"""

import logging
from typing import Any

from jobqueue.constants import (
    COMPLETED_KEEP_AGE_SECONDS,
    CRON_COMPLETED_KEEP_COUNT,
    CRON_FAILED_KEEP_COUNT,
    FAILED_KEEP_AGE_SECONDS,
    QueueName,
)
from jobqueue.store.models import Job
from jobqueue.store.repository import JobRepository
from jobqueue.types.job import (
    JobOptions,
    KeepJobs,
    QueueConfig,
    RetentionPolicy,
    default_job_options,
)

logger = logging.getLogger(__name__)


def build_default_configs(
    max_attempts: int,
    backoff_delay_ms: int,
) -> dict[str, QueueConfig]:
    """
    Default configuration for the application's queues.

    The cron queue keeps fewer terminal jobs since every occurrence is a job.
    """
    cron_retention = RetentionPolicy(
        completed=KeepJobs(
            count=CRON_COMPLETED_KEEP_COUNT, max_age_seconds=COMPLETED_KEEP_AGE_SECONDS
        ),
        failed=KeepJobs(count=CRON_FAILED_KEEP_COUNT, max_age_seconds=FAILED_KEEP_AGE_SECONDS),
    )
    configs = {
        name.value: QueueConfig(
            name=name.value,
            default_job_options=default_job_options(max_attempts, backoff_delay_ms),
        )
        for name in (QueueName.EMAIL, QueueName.WEBHOOK, QueueName.DATA_PROCESSING)
    }
    configs[QueueName.CRON.value] = QueueConfig(
        name=QueueName.CRON.value,
        default_job_options=default_job_options(
            max_attempts, backoff_delay_ms, retention=cron_retention
        ),
    )
    return configs


class QueueHandle:
    """
    A named queue backed by the shared store connection.

    Handles are cheap views: all state lives in the store.
    """

    def __init__(self, config: QueueConfig, repository: JobRepository):
        self.config = config
        self.repository = repository
        self._closed = False

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def closed(self) -> bool:
        return self._closed

    async def add(
        self,
        type_name: str,
        payload: dict[str, Any],
        options: JobOptions | None = None,
    ) -> tuple[Job, bool]:
        """
        Enqueue a job with options merged over the queue defaults.

        Returns:
            Tuple of (Job, created); created is False for a deduplicated job_id.
        """
        if self._closed:
            raise RuntimeError(f"Queue {self.name} is closed")
        resolved = (options or JobOptions()).merged_over(self.config.default_job_options)
        return await self.repository.create_job(type_name, payload, resolved)

    async def get_job_counts(self) -> dict[str, int]:
        return await self.repository.get_job_counts()

    async def pause(self) -> None:
        await self.repository.pause()
        logger.info("Queue paused", extra={"queue": self.name})

    async def resume(self) -> None:
        await self.repository.resume()
        logger.info("Queue resumed", extra={"queue": self.name})

    async def is_paused(self) -> bool:
        return await self.repository.is_paused()

    async def close(self) -> None:
        """Detach the handle. The shared connection is closed by the system."""
        self._closed = True
        logger.debug("Queue closed", extra={"queue": self.name})
