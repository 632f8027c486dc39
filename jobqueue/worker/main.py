"""
Worker process for executing jobs.

A worker claims jobs from one queue, runs the registered handler and
transitions the job according to the retry/backoff policy. ``run()`` is the
process entry point: it starts a worker per queue together with the reaper
and the cron scheduler.
"""

import asyncio
import logging
import signal
import time
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from prometheus_client import start_http_server

from jobqueue.config import get_settings
from jobqueue.constants import (
    SPAN_CLAIM_JOB,
    SPAN_COMPLETE_JOB,
    SPAN_EXECUTE_JOB,
    SPAN_FAIL_JOB,
    JobStatus,
    QueueName,
)
from jobqueue.exceptions import HandlerNotFoundError, JobTimeoutError
from jobqueue.observability.logging import job_log_context, setup_logging
from jobqueue.observability.metrics import setup_metrics
from jobqueue.observability.tracing import create_span, setup_tracing
from jobqueue.queue import QueueHandle
from jobqueue.store.models import Job
from jobqueue.types.job import JobContext, JobResult
from jobqueue.worker.handlers import (
    CLEANUP_JOB,
    HEALTH_CHECK_JOB,
    describe,
    register_builtin_cron_handlers,
    register_builtin_handlers,
)

if TYPE_CHECKING:
    from jobqueue.registry import QueueSystem

logger = logging.getLogger(__name__)

# Default cron entries started with the worker process
HEALTH_CHECK_EVERY_MS = 5 * 60 * 1000
CLEANUP_CRON_PATTERN = "0 3 * * *"


class Worker:
    """
    Job worker for one queue.

    Features:
    - Atomic claims through a store script (one job, one worker)
    - Up to ``concurrency`` handlers running at once in this process
    - Heartbeat extending the visibility deadline of in-flight jobs
    - Retry with backoff, terminal failure once attempts are exhausted
    - Graceful shutdown waiting for in-flight jobs
    """

    def __init__(
        self,
        system: "QueueSystem",
        queue: QueueHandle,
        concurrency: int | None = None,
        poll_interval: float | None = None,
    ):
        """
        Initialize the worker.

        Args:
            system: The owning queue system (handlers, metrics, settings).
            queue: The queue to consume.
            concurrency: Max simultaneously active jobs in this process.
            poll_interval: Seconds between polls when nothing is claimable.
        """
        settings = system.settings

        self.system = system
        self.queue = queue
        self.worker_id = f"{settings.worker_id}:{queue.name}"
        self.concurrency = concurrency or settings.queue_concurrency
        self.poll_interval = poll_interval or settings.worker_poll_interval_seconds
        self.heartbeat_interval = settings.worker_heartbeat_interval_seconds
        self.lock_duration_ms = int(settings.worker_lock_duration_seconds * 1000)
        self.shutdown_timeout = settings.worker_shutdown_timeout_seconds

        self._running = False
        self._closed = False
        self._current_jobs: dict[str, tuple[asyncio.Task, str]] = {}
        self._slots = asyncio.Semaphore(self.concurrency)
        self._wakeup = asyncio.Event()
        self._heartbeat_task: asyncio.Task | None = None
        self._loop_task: asyncio.Task | None = None

    @property
    def name(self) -> str:
        return self.queue.name

    @property
    def running(self) -> bool:
        return self._running

    @property
    def active_count(self) -> int:
        return len(self._current_jobs)

    def start_background(self) -> asyncio.Task:
        """Run the worker loop as a background task."""
        if self._loop_task is None or self._loop_task.done():
            self._loop_task = asyncio.create_task(self.start(), name=f"worker:{self.name}")
        return self._loop_task

    async def start(self) -> None:
        """Run the claim loop until stopped."""
        logger.info(
            "Worker starting",
            extra={"worker_id": self.worker_id, "queue": self.name, "concurrency": self.concurrency},
        )

        self._running = True
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

        try:
            while self._running:
                try:
                    claimed = await self._claim_available()
                    if not claimed:
                        await self._wait_for_work()
                except Exception as e:
                    logger.exception(
                        f"Error in worker loop: {e}",
                        extra={"worker_id": self.worker_id},
                    )
                    await self._wait_for_work()

            await self._drain()
        finally:
            if self._heartbeat_task:
                self._heartbeat_task.cancel()
                try:
                    await self._heartbeat_task
                except asyncio.CancelledError:
                    pass
            self._running = False

        logger.info("Worker stopped", extra={"worker_id": self.worker_id})

    async def stop(self) -> None:
        """Stop claiming new jobs. In-flight jobs are allowed to finish."""
        if self._running:
            logger.info("Worker stopping", extra={"worker_id": self.worker_id})
        self._running = False
        self._wakeup.set()

    async def close(self) -> None:
        """
        Stop the worker and wait for it, up to the shutdown timeout.

        Jobs still running after the timeout are cancelled; their locks
        expire and the reaper returns them to waiting. Idempotent.
        """
        if self._closed:
            return
        self._closed = True
        await self.stop()

        if self._loop_task is not None:
            done, _ = await asyncio.wait({self._loop_task}, timeout=self.shutdown_timeout)
            if not done:
                logger.warning(
                    "Worker did not stop in time, cancelling",
                    extra={"worker_id": self.worker_id, "in_flight": self.active_count},
                )
                await self._cancel_in_flight()
                self._loop_task.cancel()
                await asyncio.gather(self._loop_task, return_exceptions=True)
        else:
            await self._drain()

    async def run_once(self) -> int:
        """
        Claim as many jobs as there are free slots and run them to completion.

        Returns:
            Number of jobs processed.
        """
        tasks = await self._claim_available()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        return len(tasks)

    async def _claim_available(self) -> list[asyncio.Task]:
        """
        Claim jobs while slots are free and the queue has ready jobs.

        Returns:
            Tasks executing the claimed jobs.
        """
        tasks: list[asyncio.Task] = []
        while not self._slots.locked():
            await self._slots.acquire()
            token = uuid4().hex
            try:
                with create_span(SPAN_CLAIM_JOB, queue=self.name, worker_id=self.worker_id):
                    job = await self.queue.repository.claim_job(token, self.lock_duration_ms)
            except BaseException:
                self._slots.release()
                raise

            if job is None:
                self._slots.release()
                break

            task = asyncio.create_task(self._execute_job(job, token))
            self._current_jobs[job.id] = (task, token)
            tasks.append(task)

        if tasks:
            logger.debug(
                f"Claimed {len(tasks)} jobs",
                extra={"worker_id": self.worker_id, "queue": self.name},
            )
        return tasks

    async def _wait_for_work(self) -> None:
        """Sleep until the poll interval passes or a slot frees up."""
        self._wakeup.clear()
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=self.poll_interval)
        except TimeoutError:
            pass

    async def _drain(self) -> None:
        """Wait for in-flight jobs, cancelling what outlives the shutdown timeout."""
        if not self._current_jobs:
            return
        tasks = [task for task, _ in self._current_jobs.values()]
        logger.info(f"Waiting for {len(tasks)} jobs to complete", extra={"queue": self.name})
        _, pending = await asyncio.wait(tasks, timeout=self.shutdown_timeout)
        if pending:
            await self._cancel_in_flight()

    async def _cancel_in_flight(self) -> None:
        tasks = [task for task, _ in self._current_jobs.values()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _execute_job(self, job: Job, token: str) -> None:
        """
        Execute a single claimed job.

        Handles the full lifecycle:
        1. Run the handler (bounded by the job timeout)
        2. Mark the job completed, or fail it (retry with backoff or terminal)
        3. Record metrics for the transition

        Args:
            job: The claimed job.
            token: Lock token of the claim.
        """
        start_time = time.monotonic()
        with job_log_context(job.id, self.name, job.attempts_made + 1):
            try:
                context = JobContext(
                    job_id=job.id,
                    queue_name=self.name,
                    type_name=job.type_name,
                    attempt=job.attempts_made + 1,
                    max_attempts=job.max_attempts,
                    payload=job.payload,
                    worker_id=self.worker_id,
                    timeout_ms=job.timeout_ms,
                    _progress_reporter=lambda progress: self._report_progress(job.id, progress),
                )

                logger.info(
                    "Executing job",
                    extra={"job_id": job.id, "type": job.type_name, "attempt": context.attempt},
                )

                terminal = False
                with create_span(
                    SPAN_EXECUTE_JOB,
                    job_id=job.id,
                    queue=self.name,
                    type=job.type_name,
                    attempt=context.attempt,
                ):
                    try:
                        result = await self._run_handler(context)
                    except HandlerNotFoundError as e:
                        logger.error(e.message, extra={"job_id": job.id})
                        result = JobResult(success=False, error=e.message)
                        terminal = self.system.settings.missing_handler_fail_fast
                    except Exception as e:
                        logger.warning(
                            "Handler raised exception",
                            extra={"job_id": job.id, "error": str(e)},
                        )
                        result = JobResult(success=False, error=str(e) or type(e).__name__)

                duration = time.monotonic() - start_time
                result.duration_ms = duration * 1000

                if result.success:
                    await self._complete(job, token, result, duration)
                else:
                    await self._fail(job, token, result.error or "Unknown error", duration, terminal)

            except Exception as e:
                logger.exception(
                    "Exception executing job",
                    extra={"job_id": job.id, "error": str(e)},
                )
                try:
                    await self._fail(
                        job, token, f"Worker exception: {e}", time.monotonic() - start_time, False
                    )
                except Exception:
                    logger.exception("Failed to mark job as failed")

            finally:
                self._current_jobs.pop(job.id, None)
                self._slots.release()
                self._wakeup.set()

    async def _run_handler(self, context: JobContext) -> JobResult:
        """
        Look up and run the handler of a job.

        Raises:
            HandlerNotFoundError: If no handler is registered for the job type.
            JobTimeoutError: If the handler outlives the job timeout.
        """
        handler = self.system.handlers.get(self.name, context.type_name)
        if handler is None:
            raise HandlerNotFoundError(self.name, context.type_name)

        if context.timeout_ms:
            try:
                output = await asyncio.wait_for(handler(context), context.timeout_ms / 1000)
            except TimeoutError as e:
                raise JobTimeoutError(context.timeout_ms) from e
        else:
            output = await handler(context)

        if isinstance(output, JobResult):
            return output
        return JobResult(success=True, output=output)

    async def _complete(self, job: Job, token: str, result: JobResult, duration: float) -> None:
        with create_span(SPAN_COMPLETE_JOB, job_id=job.id, queue=self.name):
            updated = await self.queue.repository.complete_job(job, token, result.output)

        if updated is None:
            # Removed or recovered by the reaper while running
            return

        logger.info(
            "Job completed successfully",
            extra={"job_id": job.id, "duration": f"{duration:.2f}s"},
        )
        self.system.metrics.record_job_completed(self.name, duration)

    async def _fail(
        self,
        job: Job,
        token: str,
        error: str,
        duration: float,
        terminal: bool,
    ) -> None:
        with create_span(SPAN_FAIL_JOB, job_id=job.id, queue=self.name):
            updated = await self.queue.repository.fail_job(
                job,
                token,
                error,
                self.system.settings.max_backoff_delay_ms,
                terminal=terminal,
            )

        if updated is None:
            return

        will_retry = updated.status == JobStatus.DELAYED
        logger.warning(
            "Job failed",
            extra={
                "job_id": job.id,
                "error": error,
                "attempt": updated.attempts_made,
                "will_retry": will_retry,
            },
        )
        self.system.metrics.record_job_failed(self.name, will_retry, duration)

    async def _report_progress(self, job_id: str, progress: int) -> None:
        """Advisory progress write; failures are logged and ignored."""
        try:
            await self.queue.repository.update_progress(job_id, progress)
        except Exception as e:
            logger.warning(
                "Failed to update job progress",
                extra={"job_id": job_id, "error": str(e)},
            )

    async def _heartbeat_loop(self) -> None:
        """
        Periodically extend the locks of running jobs.

        This prevents jobs from being recovered as stalled by the reaper
        while they're still being executed, including while draining at
        shutdown.
        """
        while self._running or self._current_jobs:
            try:
                await asyncio.sleep(self.heartbeat_interval)

                for job_id, (_, token) in list(self._current_jobs.items()):
                    extended = await self.queue.repository.extend_lock(
                        job_id, token, self.lock_duration_ms
                    )
                    if extended:
                        logger.debug("Extended lock", extra={"job_id": job_id})
                    else:
                        logger.warning(
                            "Lost lock on running job",
                            extra={"job_id": job_id, "queue": self.name},
                        )

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception(f"Error in heartbeat loop: {e}")


async def schedule_default_jobs(scheduler: Any) -> None:
    """Schedule the built-in recurring jobs."""
    await scheduler.schedule(HEALTH_CHECK_JOB, every_ms=HEALTH_CHECK_EVERY_MS)
    await scheduler.schedule(CLEANUP_JOB, cron_pattern=CLEANUP_CRON_PATTERN)


async def run_async() -> None:
    """Run workers for every queue, the reaper and the cron scheduler."""
    from jobqueue.reaper.main import Reaper
    from jobqueue.registry import get_queue_system
    from jobqueue.scheduler.cron import CronScheduler

    setup_logging()
    settings = get_settings()
    if settings.tracing_enabled:
        setup_tracing()
    setup_metrics()

    system = get_queue_system()
    if not system.available:
        logger.error("Queue system unavailable - set QUEUE_REDIS_URL or REDIS_URL")
        return

    register_builtin_handlers(
        system.handlers,
        user_agent=settings.webhook_user_agent,
        webhook_timeout_ms=settings.webhook_default_timeout_ms,
    )
    scheduler = CronScheduler(system)
    register_builtin_cron_handlers(scheduler, system)
    system.attach_scheduler(scheduler)
    logger.info("Handlers registered", extra={"handlers": describe(system.handlers)})

    start_http_server(settings.prometheus_port)
    logger.info("Metrics server started", extra={"port": settings.prometheus_port})

    workers = [system.create_worker(name) for name in QueueName]
    reaper = Reaper(system)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_event.set)

    for worker in workers:
        if worker is not None:
            worker.start_background()
    reaper_task = asyncio.create_task(reaper.start())
    scheduler.start()
    await schedule_default_jobs(scheduler)

    try:
        await stop_event.wait()
    finally:
        logger.info("Shutdown signal received")
        await reaper.stop()
        await asyncio.gather(reaper_task, return_exceptions=True)
        await system.disconnect_all()


def run() -> None:
    """Run the worker process."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
