"""
Job repository for store operations.
Implements the core data access patterns for job management on Redis.
"""

import json
import logging
import time
from dataclasses import replace
from typing import Any

from redis.asyncio import Redis

from jobqueue.constants import (
    CLEAN_BATCH_SIZE,
    DEFAULT_MAX_ATTEMPTS,
    JobStatus,
)
from jobqueue.exceptions import InvalidJobError
from jobqueue.store.keys import QueueKeys
from jobqueue.store.models import Job
from jobqueue.store.scripts import QueueScripts, flatten_fields
from jobqueue.types.job import BackoffPolicy, JobOptions, KeepJobs

logger = logging.getLogger(__name__)

# Delayed jobs promoted per claim
PROMOTE_BATCH_SIZE = 100
STALLED_BATCH_SIZE = 1000


def now_ms() -> int:
    """Current wall clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def _retention_args(keep: KeepJobs | None, now: int) -> tuple[str, str]:
    """Script arguments (keep count, cutoff) for a retention bound."""
    if keep is None:
        return "-1", "-1"
    count = str(keep.count) if keep.count is not None else "-1"
    cutoff = str(now - keep.max_age_seconds * 1000) if keep.max_age_seconds is not None else "-1"
    return count, cutoff


class JobRepository:
    """
    Repository for the jobs of one queue.

    Implements atomic operations for:
    - Job submission with idempotency
    - Claiming with an atomic pop (one job, one worker)
    - Status transitions guarded by the claim's lock token
    - Stalled job recovery, admin retry/clean/remove, pause/resume
    """

    def __init__(
        self,
        client: Redis,
        queue_name: str,
        prefix: str,
        scripts: QueueScripts | None = None,
    ):
        """
        Initialize the repository.

        Args:
            client: The async Redis client.
            queue_name: Name of the queue this repository operates on.
            prefix: Key prefix shared by all queues.
            scripts: Registered Lua scripts; created from the client if omitted.
        """
        self._client = client
        self.queue_name = queue_name
        self.keys = QueueKeys(prefix=prefix, queue=queue_name)
        self._scripts = scripts or QueueScripts(client)

    async def create_job(
        self,
        type_name: str,
        payload: dict[str, Any],
        options: JobOptions,
        now: int | None = None,
    ) -> tuple[Job, bool]:
        """
        Create a new job with idempotency support.

        When ``options.job_id`` names a job that still exists, no job is
        created and the existing one is returned.

        Args:
            type_name: Handler discriminator within the queue.
            payload: Opaque job payload.
            options: Fully resolved job options.
            now: Override for the current time (ms).

        Returns:
            Tuple of (Job, created) where created is True if a new job was created.

        Raises:
            InvalidJobError: If ``options.job_id`` is an integer string.
        """
        if options.job_id is not None and options.job_id.isdigit():
            raise InvalidJobError(f"Custom job id cannot be an integer: {options.job_id}")

        now = now if now is not None else now_ms()
        sequence = await self._client.incr(self.keys.seq)
        job_id = options.job_id or str(sequence)
        delay = options.delay_ms or 0

        job = Job(
            id=job_id,
            queue_name=self.queue_name,
            type_name=type_name,
            payload=payload,
            status=JobStatus.DELAYED if delay > 0 else JobStatus.WAITING,
            created_at=now,
            sequence=sequence,
            priority=options.priority or 0,
            max_attempts=options.max_attempts or DEFAULT_MAX_ATTEMPTS,
            backoff=options.backoff or BackoffPolicy(),
            delay_ms=delay,
            run_at=now + delay if delay > 0 else None,
            idempotency_key=options.job_id,
            timeout_ms=options.timeout_ms,
            retention=options.retention,
        )

        if delay > 0:
            target, score = "delayed", job.run_at
        else:
            target, score = "wait", job.wait_score

        created = await self._scripts.enqueue(
            keys=[self.keys.job(job_id), self.keys.wait, self.keys.delayed],
            args=[job_id, target, str(score), *flatten_fields(job.to_hash())],
        )

        if created:
            logger.info(
                "Created new job",
                extra={"job_id": job_id, "queue": self.queue_name, "type": type_name},
            )
            return job, True

        existing = await self.get_job(job_id)
        if existing is None:
            raise RuntimeError("Job should exist after conflict")

        logger.info(
            "Returned existing job (idempotent)",
            extra={"job_id": job_id, "queue": self.queue_name},
        )
        return existing, False

    async def get_job(self, job_id: str) -> Job | None:
        """
        Get a job by ID.

        Args:
            job_id: The job id.

        Returns:
            The Job or None if not found.
        """
        data = await self._client.hgetall(self.keys.job(job_id))
        if not data:
            return None
        return Job.from_hash(data)

    async def list_jobs(
        self,
        status: JobStatus,
        start: int = 0,
        end: int = 20,
    ) -> list[Job]:
        """
        List jobs in a status, paginated by an inclusive offset range.

        Waiting, delayed and active jobs are returned in execution order;
        completed and failed jobs newest first.

        Args:
            status: Status to list.
            start: First offset.
            end: Last offset (inclusive).

        Returns:
            List of jobs.
        """
        if status == JobStatus.PAUSED and not await self.is_paused():
            return []

        desc = status in (JobStatus.COMPLETED, JobStatus.FAILED)
        ids = await self._client.zrange(self.keys.for_status(status), start, end, desc=desc)
        if not ids:
            return []

        async with self._client.pipeline(transaction=False) as pipe:
            for job_id in ids:
                pipe.hgetall(self.keys.job(job_id))
            rows = await pipe.execute()

        jobs = [Job.from_hash(row) for row in rows if row]
        if status == JobStatus.PAUSED:
            # Paused jobs are stored as waiting
            jobs = [replace(job, status=JobStatus.PAUSED) for job in jobs]
        return jobs

    async def promote_delayed(self, now: int | None = None) -> int:
        """
        Move delayed jobs whose run_at has passed to waiting.

        Claims do this implicitly; exposed for maintenance and tests.

        Returns:
            Number of promoted jobs.
        """
        now = now if now is not None else now_ms()
        promoted = await self._scripts.promote_delayed(
            keys=[self.keys.wait, self.keys.delayed],
            args=[str(now), self.keys.job_prefix, PROMOTE_BATCH_SIZE],
        )
        return int(promoted)

    async def claim_job(
        self,
        lock_token: str,
        lock_duration_ms: int,
        now: int | None = None,
    ) -> Job | None:
        """
        Atomically claim the next ready job.

        Due delayed jobs are promoted first. Nothing is claimed while the
        queue is paused. The claimed job is moved to active with a
        visibility deadline of ``now + lock_duration_ms``.

        Args:
            lock_token: Token identifying this claim; later transitions must present it.
            lock_duration_ms: Visibility timeout.
            now: Override for the current time (ms).

        Returns:
            The claimed Job or None if nothing is ready.
        """
        now = now if now is not None else now_ms()
        job_id = await self._scripts.claim(
            keys=[self.keys.wait, self.keys.delayed, self.keys.active, self.keys.paused],
            args=[str(now), str(now + lock_duration_ms), lock_token, self.keys.job_prefix,
                  PROMOTE_BATCH_SIZE],
        )
        if job_id is None:
            return None

        job = await self.get_job(job_id)
        if job is None:
            # Removed between claim and read
            logger.warning("Claimed job disappeared", extra={"job_id": job_id})
        return job

    async def extend_lock(
        self,
        job_id: str,
        lock_token: str,
        lock_duration_ms: int,
    ) -> bool:
        """
        Extend the visibility deadline of an owned active job (heartbeat).

        Returns:
            True if the lock was extended, False if it is no longer owned.
        """
        extended = await self._scripts.extend_lock(
            keys=[self.keys.job(job_id), self.keys.active],
            args=[job_id, lock_token, str(now_ms() + lock_duration_ms)],
        )
        return bool(extended)

    async def update_progress(self, job_id: str, progress: int) -> bool:
        """
        Record handler progress. Advisory; ignored for missing jobs.

        Returns:
            True if the job exists.
        """
        key = self.keys.job(job_id)
        if not await self._client.exists(key):
            return False
        await self._client.hset(key, "progress", str(progress))
        return True

    async def complete_job(
        self,
        job: Job,
        lock_token: str,
        return_value: Any = None,
        now: int | None = None,
    ) -> Job | None:
        """
        Mark an active job as completed and apply completed-job retention.

        Args:
            job: The job as claimed.
            lock_token: Token of the claim.
            return_value: JSON-serializable handler output.
            now: Override for the current time (ms).

        Returns:
            Updated Job or None if the lock was lost (job removed or recovered).
        """
        now = now if now is not None else now_ms()
        keep = job.retention.completed if job.retention else None
        keep_count, cutoff = _retention_args(keep, now)
        encoded = json.dumps(return_value, default=str) if return_value is not None else ""

        result = await self._scripts.complete(
            keys=[self.keys.job(job.id), self.keys.active, self.keys.completed],
            args=[job.id, lock_token, str(now), encoded, keep_count, cutoff, self.keys.job_prefix],
        )

        if result < 0:
            logger.warning(
                "Cannot complete job - lock lost",
                extra={"job_id": job.id, "queue": self.queue_name, "reason": result},
            )
            return None

        logger.info("Job completed successfully", extra={"job_id": job.id})
        return replace(
            job,
            status=JobStatus.COMPLETED,
            attempts_made=int(result),
            finished_at=now,
            progress=100,
            return_value=return_value,
            lock_token=None,
        )

    async def fail_job(
        self,
        job: Job,
        lock_token: str,
        error: str,
        max_backoff_ms: int,
        terminal: bool = False,
        now: int | None = None,
    ) -> Job | None:
        """
        Handle job failure. Either re-arm it as delayed with backoff or fail it.

        Args:
            job: The job as claimed.
            lock_token: Token of the claim.
            error: Error message (no traceback).
            max_backoff_ms: Cap on the retry delay.
            terminal: Consume all remaining attempts and fail immediately.
            now: Override for the current time (ms).

        Returns:
            Updated Job or None if the lock was lost.
        """
        now = now if now is not None else now_ms()
        attempts_after = job.attempts_made + 1
        run_at = now + job.backoff.delay_for(attempts_after, max_backoff_ms)
        keep = job.retention.failed if job.retention else None
        keep_count, cutoff = _retention_args(keep, now)

        outcome, attempts = await self._scripts.fail(
            keys=[self.keys.job(job.id), self.keys.active, self.keys.delayed, self.keys.failed],
            args=[
                job.id,
                lock_token,
                str(now),
                error,
                str(run_at),
                "1" if terminal else "0",
                keep_count,
                cutoff,
                self.keys.job_prefix,
            ],
        )

        if outcome < 0:
            logger.warning(
                "Cannot fail job - lock lost",
                extra={"job_id": job.id, "queue": self.queue_name, "reason": outcome},
            )
            return None

        if outcome == 1:
            logger.info(
                "Job queued for retry",
                extra={"job_id": job.id, "attempt": attempts, "run_at": run_at},
            )
            return replace(
                job,
                status=JobStatus.DELAYED,
                attempts_made=int(attempts),
                run_at=run_at,
                failed_reason=error,
                lock_token=None,
            )

        logger.warning(
            f"Job failed after {attempts} attempts",
            extra={"job_id": job.id, "error": error},
        )
        return replace(
            job,
            status=JobStatus.FAILED,
            attempts_made=int(attempts),
            finished_at=now,
            failed_reason=error,
            lock_token=None,
        )

    async def recover_stalled(self, now: int | None = None) -> list[str]:
        """
        Return active jobs whose visibility deadline passed to waiting.

        Called by the reaper to handle worker crashes.

        Returns:
            Ids of recovered jobs.
        """
        now = now if now is not None else now_ms()
        recovered = await self._scripts.recover_stalled(
            keys=[self.keys.active, self.keys.wait],
            args=[str(now), self.keys.job_prefix, STALLED_BATCH_SIZE],
        )
        if recovered:
            logger.info(
                f"Recovered {len(recovered)} stalled jobs",
                extra={"queue": self.queue_name},
            )
        return list(recovered)

    async def retry_failed(self) -> int:
        """
        Move every failed job back to waiting with attempts reset to 0.

        Returns:
            Number of retried jobs.
        """
        count = await self._scripts.retry_failed(
            keys=[self.keys.failed, self.keys.wait],
            args=[self.keys.job_prefix],
        )
        return int(count)

    async def clean(
        self,
        status: JobStatus,
        older_than_ms: int,
        limit: int = CLEAN_BATCH_SIZE,
        now: int | None = None,
    ) -> int:
        """
        Remove up to ``limit`` terminal jobs finished more than ``older_than_ms`` ago.

        Returns:
            Number of removed jobs.
        """
        if status not in (JobStatus.COMPLETED, JobStatus.FAILED):
            raise ValueError(f"Cannot clean jobs in status {status}")
        now = now if now is not None else now_ms()
        removed = await self._scripts.clean(
            keys=[self.keys.for_status(status)],
            args=[str(now - older_than_ms), limit, self.keys.job_prefix],
        )
        return int(removed)

    async def remove_job(self, job_id: str) -> bool:
        """
        Remove a job in any state.

        Removing an active job does not stop its handler; the handler's final
        transition becomes a no-op.

        Returns:
            True if the job existed.
        """
        removed = await self._scripts.remove(
            keys=[
                self.keys.job(job_id),
                self.keys.wait,
                self.keys.delayed,
                self.keys.active,
                self.keys.completed,
                self.keys.failed,
            ],
            args=[job_id],
        )
        return bool(removed)

    async def pause(self) -> None:
        """Stop claims on this queue; enqueue keeps working."""
        await self._client.set(self.keys.paused, "1")

    async def resume(self) -> None:
        """Allow claims again."""
        await self._client.delete(self.keys.paused)

    async def is_paused(self) -> bool:
        return bool(await self._client.exists(self.keys.paused))

    async def get_job_counts(self) -> dict[str, int]:
        """
        Get job counts by status.

        ``paused`` counts waiting jobs held back while the queue is paused.

        Returns:
            Dictionary of status -> count.
        """
        async with self._client.pipeline(transaction=False) as pipe:
            pipe.zcard(self.keys.wait)
            pipe.zcard(self.keys.active)
            pipe.zcard(self.keys.completed)
            pipe.zcard(self.keys.failed)
            pipe.zcard(self.keys.delayed)
            pipe.exists(self.keys.paused)
            waiting, active, completed, failed, delayed, paused = await pipe.execute()

        return {
            JobStatus.WAITING.value: waiting,
            JobStatus.ACTIVE.value: active,
            JobStatus.COMPLETED.value: completed,
            JobStatus.FAILED.value: failed,
            JobStatus.DELAYED.value: delayed,
            JobStatus.PAUSED.value: waiting if paused else 0,
        }
