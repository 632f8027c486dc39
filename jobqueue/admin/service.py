"""
Admin and introspection service.

Read and command operations over the queue system for the HTTP admin layer.
Every operation passes through ``QueueSystem.require_queue``, so an
unconfigured system raises QueueUnavailableError; unknown queues raise
QueueNotFoundError and store failures raise StoreError.
"""

import logging
from typing import TYPE_CHECKING

from pydantic import ValidationError

from jobqueue.constants import (
    CLEAN_BATCH_SIZE,
    DEFAULT_CLEAN_OLDER_THAN_MS,
    DEFAULT_LIST_END,
    DEFAULT_LIST_START,
    JobStatus,
    QueueName,
)
from jobqueue.exceptions import (
    InvalidJobError,
    JobNotFoundError,
    QueueNotFoundError,
    QueueUnavailableError,
)
from jobqueue.producers import add_data_job, add_email_job, add_webhook_job
from jobqueue.queue import QueueHandle
from jobqueue.store.connection import store_errors
from jobqueue.types.api import (
    AddJobRequest,
    AddJobResult,
    JobSummary,
    QueueStats,
    ScheduledEntry,
)
from jobqueue.types.job import JobOptions

if TYPE_CHECKING:
    from jobqueue.registry import QueueSystem
    from jobqueue.scheduler.cron import CronScheduler

logger = logging.getLogger(__name__)


def _stats(name: str, counts: dict[str, int], is_paused: bool) -> QueueStats:
    return QueueStats(
        name=name,
        waiting=counts.get(JobStatus.WAITING, 0),
        active=counts.get(JobStatus.ACTIVE, 0),
        completed=counts.get(JobStatus.COMPLETED, 0),
        failed=counts.get(JobStatus.FAILED, 0),
        delayed=counts.get(JobStatus.DELAYED, 0),
        paused=counts.get(JobStatus.PAUSED, 0),
        is_paused=is_paused,
    )


class QueueAdmin:
    """
    Admin service for queue management.

    Queues are the application's known queues plus any opened in this
    process.
    """

    def __init__(self, system: "QueueSystem", scheduler: "CronScheduler | None" = None):
        self.system = system
        self.scheduler = scheduler

    def _queue_names(self) -> list[str]:
        names = [name.value for name in QueueName]
        names.extend(name for name in self.system.queue_names if name not in names)
        return names

    def _get_queue(self, name: str) -> QueueHandle:
        """Resolve a queue, checking availability first."""
        if not self.system.available:
            raise QueueUnavailableError()
        if not self.system.is_known_queue(name):
            raise QueueNotFoundError(name)
        return self.system.require_queue(name)

    async def list_queues(self) -> list[QueueStats]:
        """
        Get stats for all queues and refresh the queue gauges.

        A queue whose counts cannot be read is reported with zero counts.
        """
        if not self.system.available:
            raise QueueUnavailableError()

        stats: list[QueueStats] = []
        for name in self._queue_names():
            queue = self.system.require_queue(name)
            try:
                counts = await queue.get_job_counts()
                is_paused = await queue.is_paused()
            except Exception as e:
                logger.error("Failed to get queue stats", extra={"queue": name, "error": str(e)})
                stats.append(QueueStats(name=name))
                continue

            self.system.metrics.update_queue_gauges(name, counts)
            stats.append(_stats(name, counts, is_paused))
        return stats

    async def get_queue_stats(self, name: str) -> QueueStats:
        """
        Get stats for one queue.

        Raises:
            QueueNotFoundError: If the queue is unknown.
        """
        queue = self._get_queue(name)
        async with store_errors("get_queue_stats"):
            counts = await queue.get_job_counts()
            is_paused = await queue.is_paused()
        return _stats(name, counts, is_paused)

    async def list_jobs(
        self,
        name: str,
        status: str = JobStatus.WAITING,
        start: int = DEFAULT_LIST_START,
        end: int = DEFAULT_LIST_END,
    ) -> list[JobSummary]:
        """
        List jobs of a queue by status, paginated by an inclusive offset range.

        Completed and failed jobs are listed newest first.
        Paused jobs are the waiting jobs of a paused queue, reported with
        status "paused".

        Raises:
            InvalidJobError: On an unknown status or a negative range.
        """
        try:
            job_status = JobStatus(status)
        except ValueError as e:
            raise InvalidJobError(f"Invalid status: {status}") from e
        if start < 0 or end < start:
            raise InvalidJobError(f"Invalid range: {start}-{end}")

        queue = self._get_queue(name)
        async with store_errors("list_jobs"):
            jobs = await queue.repository.list_jobs(job_status, start, end)
        return [job.to_summary() for job in jobs]

    async def get_job(self, name: str, job_id: str) -> JobSummary | None:
        """Get one job, or None if it does not exist."""
        queue = self._get_queue(name)
        async with store_errors("get_job"):
            job = await queue.repository.get_job(job_id)
        return job.to_summary() if job else None

    async def require_job(self, name: str, job_id: str) -> JobSummary:
        """
        Get one job.

        Raises:
            JobNotFoundError: If the job does not exist.
        """
        job = await self.get_job(name, job_id)
        if job is None:
            raise JobNotFoundError(name, job_id)
        return job

    async def add_job(self, name: str, body: AddJobRequest) -> AddJobResult | None:
        """
        Add a job, routed to the producer of the target queue.

        Returns:
            The job id and queue, or None when the producer did not queue it.

        Raises:
            InvalidJobError: For the cron queue, unknown queues without a
                producer, or invalid payloads.
        """
        if name == QueueName.CRON:
            raise InvalidJobError("Cron jobs cannot be added directly; use the scheduler")
        self._get_queue(name)

        try:
            options = JobOptions(
                job_id=body.job_id,
                delay_ms=body.delay_ms,
                priority=body.priority if name != QueueName.DATA_PROCESSING else None,
            )
        except ValidationError as e:
            raise InvalidJobError(
                "Invalid job options",
                {"errors": e.errors(include_url=False, include_context=False)},
            ) from e

        common = {"metadata": body.metadata, "request_id": body.request_id}
        if name == QueueName.EMAIL:
            job_id = await add_email_job(
                self.system,
                {
                    "to": body.to,
                    "subject": body.subject,
                    "body": body.body,
                    "template": body.template,
                    "template_data": body.template_data,
                    **common,
                },
                options,
            )
        elif name == QueueName.WEBHOOK:
            job_id = await add_webhook_job(
                self.system,
                {
                    "url": body.url,
                    "method": (body.method or "POST").upper(),
                    "headers": body.headers,
                    "body": body.payload,
                    "timeout_ms": body.timeout_ms,
                    **common,
                },
                options,
            )
        elif name == QueueName.DATA_PROCESSING:
            job_id = await add_data_job(
                self.system,
                {"type": body.type, "data": body.data, "priority": body.priority, **common},
                options,
            )
        else:
            raise InvalidJobError(f'No producer for queue "{name}"')

        if job_id is None:
            return None
        return AddJobResult(job_id=job_id, queue=name)

    async def retry_failed(self, name: str) -> int:
        """
        Move every failed job of a queue back to waiting, attempts reset to 0.

        Returns:
            Number of retried jobs.
        """
        queue = self._get_queue(name)
        async with store_errors("retry_failed"):
            count = await queue.repository.retry_failed()
        logger.info("Retried failed jobs", extra={"queue": name, "count": count})
        return count

    async def clean(
        self,
        name: str,
        status: str = JobStatus.COMPLETED,
        older_than_ms: int = DEFAULT_CLEAN_OLDER_THAN_MS,
    ) -> int:
        """
        Remove terminal jobs that finished more than ``older_than_ms`` ago.

        Returns:
            Number of removed jobs.
        """
        if status not in (JobStatus.COMPLETED, JobStatus.FAILED):
            raise InvalidJobError(f"Can only clean completed or failed jobs, got: {status}")
        if older_than_ms < 0:
            raise InvalidJobError("older_than_ms must not be negative")

        queue = self._get_queue(name)
        total = 0
        async with store_errors("clean"):
            while True:
                removed = await queue.repository.clean(
                    JobStatus(status), older_than_ms, limit=CLEAN_BATCH_SIZE
                )
                total += removed
                if removed < CLEAN_BATCH_SIZE:
                    break

        logger.info(
            "Cleaned jobs",
            extra={"queue": name, "status": status, "removed": total},
        )
        return total

    async def pause(self, name: str) -> bool:
        """Pause a queue. Returns False if the queue is unknown."""
        try:
            queue = self._get_queue(name)
        except QueueNotFoundError:
            return False
        async with store_errors("pause"):
            await queue.pause()
        return True

    async def resume(self, name: str) -> bool:
        """Resume a queue. Returns False if the queue is unknown."""
        try:
            queue = self._get_queue(name)
        except QueueNotFoundError:
            return False
        async with store_errors("resume"):
            await queue.resume()
        return True

    async def remove_job(self, name: str, job_id: str) -> bool:
        """
        Remove a job in any state.

        Removing an active job does not interrupt its handler; the handler's
        final transition is then ignored.

        Returns:
            False if the job does not exist.
        """
        queue = self._get_queue(name)
        async with store_errors("remove_job"):
            removed = await queue.repository.remove_job(job_id)
        if removed:
            logger.info("Job removed", extra={"queue": name, "job_id": job_id})
        return removed

    async def list_scheduled(self) -> list[ScheduledEntry]:
        """Scheduler entries, or an empty list without a scheduler."""
        if not self.system.available:
            raise QueueUnavailableError()
        scheduler = self.scheduler or self.system.scheduler
        if scheduler is None:
            return []
        return await scheduler.list_scheduled()
