"""
Integration tests for worker functionality.

Workers run against the in-memory store; ``run_once`` drives single claim
rounds so the retry sequence stays deterministic.
"""

import asyncio

import pytest
from prometheus_client import CollectorRegistry

from jobqueue.constants import JobStatus, QueueName
from jobqueue.producers import add_data_job, add_email_job, add_webhook_job
from jobqueue.reaper import Reaper
from jobqueue.registry import QueueSystem
from jobqueue.store.repository import now_ms
from jobqueue.types.job import BackoffPolicy, JobContext, JobOptions, JobResult
from jobqueue.worker.handlers import register_builtin_handlers

IMMEDIATE_RETRY = BackoffPolicy(delay_ms=0)


def jobs_total(registry: CollectorRegistry, queue: str, status: str) -> float:
    return registry.get_sample_value("queue_jobs_total", {"queue": queue, "status": status}) or 0


class TestWorkerIntegration:
    """Integration tests for worker job processing."""

    async def test_email_job_lifecycle(
        self,
        system: QueueSystem,
        sample_email_payload,
        metrics_registry: CollectorRegistry,
    ):
        """Test complete job lifecycle: enqueue -> claim -> run -> complete."""
        register_builtin_handlers(system.handlers, "agent/1.0", 1000)
        job_id = await add_email_job(system, sample_email_payload)
        repository = system.require_queue(QueueName.EMAIL).repository
        assert [j.id for j in await repository.list_jobs(JobStatus.WAITING)] == [job_id]
        worker = system.create_worker(QueueName.EMAIL)

        assert await worker.run_once() == 1

        assert [j.id for j in await repository.list_jobs(JobStatus.COMPLETED)] == [job_id]
        job = await repository.get_job(job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.attempts_made == 1
        assert job.progress == 100
        assert job.return_value == {"sent": True}
        assert jobs_total(metrics_registry, "email", "completed") == 1

    async def test_webhook_failure_exhausts_attempts(
        self,
        system: QueueSystem,
        webhook_transport_factory,
        webhook_requests,
        metrics_registry: CollectorRegistry,
    ):
        """A webhook answering 500 is attempted five times, then fails."""
        register_builtin_handlers(
            system.handlers, "agent/1.0", 1000, transport=webhook_transport_factory(500)
        )
        job_id = await add_webhook_job(
            system,
            {"url": "https://example.com/hook", "body": {"event": "x"}},
            JobOptions(backoff=IMMEDIATE_RETRY),
        )
        worker = system.create_worker(QueueName.WEBHOOK)

        for _ in range(5):
            assert await worker.run_once() == 1
        assert await worker.run_once() == 0

        job = await system.require_queue(QueueName.WEBHOOK).repository.get_job(job_id)
        assert job.status == JobStatus.FAILED
        assert job.attempts_made == job.max_attempts == 5
        assert job.failed_reason == "Webhook failed with status 500"
        assert len(webhook_requests) == 5
        assert jobs_total(metrics_registry, "webhook", "retried") == 4
        assert jobs_total(metrics_registry, "webhook", "failed") == 1

    async def test_retry_then_success(self, system: QueueSystem):
        """Test that a failed job is retried and can then complete."""
        attempts: list[int] = []

        @system.handlers.handler("reports", "flaky")
        async def flaky(context: JobContext) -> dict:
            attempts.append(context.attempt)
            if context.attempt == 1:
                raise RuntimeError("temporary failure")
            return {"rows": 3}

        queue = system.require_queue("reports")
        job, _ = await queue.add("flaky", {}, JobOptions(backoff=IMMEDIATE_RETRY))
        worker = system.create_worker("reports")

        await worker.run_once()
        retried = await queue.repository.get_job(job.id)
        assert retried.status == JobStatus.DELAYED
        assert retried.failed_reason == "temporary failure"

        await worker.run_once()
        done = await queue.repository.get_job(job.id)
        assert attempts == [1, 2]
        assert done.status == JobStatus.COMPLETED
        assert done.attempts_made == 2
        assert done.return_value == {"rows": 3}

    async def test_exception_without_message(self, system: QueueSystem):
        @system.handlers.handler("reports", "broken")
        async def broken(context: JobContext) -> None:
            raise ValueError()

        queue = system.require_queue("reports")
        job, _ = await queue.add("broken", {}, JobOptions(max_attempts=1))

        await system.create_worker("reports").run_once()

        failed = await queue.repository.get_job(job.id)
        assert failed.status == JobStatus.FAILED
        assert failed.failed_reason == "ValueError"

    async def test_missing_handler_is_retried(self, system: QueueSystem):
        queue = system.require_queue("reports")
        job, _ = await queue.add("unknown", {}, JobOptions(max_attempts=2, backoff=IMMEDIATE_RETRY))
        worker = system.create_worker("reports")

        await worker.run_once()
        first = await queue.repository.get_job(job.id)
        assert first.status == JobStatus.DELAYED
        assert first.failed_reason == "No handler registered for job type: unknown"

        await worker.run_once()
        assert (await queue.repository.get_job(job.id)).status == JobStatus.FAILED

    async def test_missing_handler_fail_fast(self, system: QueueSystem):
        system.settings.missing_handler_fail_fast = True
        queue = system.require_queue("reports")
        job, _ = await queue.add("unknown", {})

        await system.create_worker("reports").run_once()

        failed = await queue.repository.get_job(job.id)
        assert failed.status == JobStatus.FAILED
        assert failed.attempts_made == failed.max_attempts == 3

    async def test_handler_timeout(self, system: QueueSystem):
        @system.handlers.handler("reports", "slow")
        async def slow(context: JobContext) -> None:
            await asyncio.sleep(5)

        queue = system.require_queue("reports")
        job, _ = await queue.add("slow", {}, JobOptions(max_attempts=1, timeout_ms=50))

        await system.create_worker("reports").run_once()

        failed = await queue.repository.get_job(job.id)
        assert failed.status == JobStatus.FAILED
        assert failed.failed_reason == "Job timed out after 50ms"

    async def test_unsuccessful_result_fails_job(self, system: QueueSystem):
        @system.handlers.handler("reports", "declined")
        async def declined(context: JobContext) -> JobResult:
            return JobResult(success=False, error="declined")

        queue = system.require_queue("reports")
        job, _ = await queue.add("declined", {}, JobOptions(max_attempts=1))

        await system.create_worker("reports").run_once()

        assert (await queue.repository.get_job(job.id)).failed_reason == "declined"

    async def test_pause_and_resume(self, system: QueueSystem, sample_email_payload):
        register_builtin_handlers(system.handlers, "agent/1.0", 1000)
        queue = system.require_queue(QueueName.EMAIL)
        worker = system.create_worker(QueueName.EMAIL)

        await queue.pause()
        job_id = await add_email_job(system, sample_email_payload)
        assert await worker.run_once() == 0
        assert (await queue.get_job_counts())["paused"] == 1

        await queue.resume()
        assert await worker.run_once() == 1
        assert (await queue.repository.get_job(job_id)).status == JobStatus.COMPLETED

    async def test_concurrent_submissions_deduplicate(self, system: QueueSystem):
        """Two producers submitting the same job id create one job, run once."""
        calls: list[str] = []

        async def import_rows(context: JobContext) -> None:
            calls.append(context.job_id)

        system.handlers.register_data_handler("csv-import", import_rows)
        payload = {"type": "csv-import", "data": {"rows": 10}}
        options = JobOptions(job_id="order-42")

        ids = await asyncio.gather(
            add_data_job(system, payload, options),
            add_data_job(system, payload, options),
        )

        assert ids == ["order-42", "order-42"]
        queue = system.require_queue(QueueName.DATA_PROCESSING)
        assert (await queue.get_job_counts())["waiting"] == 1

        worker = system.create_worker(QueueName.DATA_PROCESSING)
        await worker.run_once()
        await worker.run_once()
        assert calls == ["order-42"]

    async def test_concurrency_limit(self, system: QueueSystem):
        @system.handlers.handler("reports", "noop")
        async def noop(context: JobContext) -> None:
            return None

        queue = system.require_queue("reports")
        for _ in range(3):
            await queue.add("noop", {})
        worker = system.create_worker("reports", concurrency=2)

        assert await worker.run_once() == 2
        assert await worker.run_once() == 1

    async def test_remove_active_job(
        self,
        system: QueueSystem,
        metrics_registry: CollectorRegistry,
    ):
        """Removing a running job makes its final transition a no-op."""
        started = asyncio.Event()
        release = asyncio.Event()

        @system.handlers.handler("reports", "long")
        async def long_running(context: JobContext) -> dict:
            started.set()
            await release.wait()
            await context.update_progress(50)
            return {"done": True}

        queue = system.require_queue("reports")
        job, _ = await queue.add("long", {})
        worker = system.create_worker("reports")

        task = asyncio.create_task(worker.run_once())
        await asyncio.wait_for(started.wait(), timeout=5)
        assert await queue.repository.remove_job(job.id) is True
        release.set()
        await task

        assert await queue.repository.get_job(job.id) is None
        assert sum((await queue.get_job_counts()).values()) == 0
        assert jobs_total(metrics_registry, "reports", "completed") == 0

    async def test_background_worker(self, system: QueueSystem, sample_email_payload, wait_until):
        register_builtin_handlers(system.handlers, "agent/1.0", 1000)
        queue = system.require_queue(QueueName.EMAIL)
        worker = system.create_worker(QueueName.EMAIL)
        worker.start_background()

        for _ in range(3):
            await add_email_job(system, sample_email_payload)

        async def all_completed() -> bool:
            return (await queue.get_job_counts())["completed"] == 3

        await wait_until(all_completed)
        await worker.close()

        assert worker.running is False
        assert worker.active_count == 0

    async def test_heartbeat_continues_while_draining(self, system: QueueSystem):
        """A job still running during shutdown keeps its lock and is not recovered."""
        system.settings.worker_lock_duration_seconds = 1
        system.settings.worker_shutdown_timeout_seconds = 5
        started = asyncio.Event()
        release = asyncio.Event()

        @system.handlers.handler("reports", "long")
        async def long_running(context: JobContext) -> dict:
            started.set()
            await release.wait()
            return {"done": True}

        queue = system.require_queue("reports")
        job, _ = await queue.add("long", {})
        worker = system.create_worker("reports")
        worker.start_background()
        await asyncio.wait_for(started.wait(), timeout=5)

        closing = asyncio.create_task(worker.close())
        await asyncio.sleep(1.5)

        assert await Reaper(system).run_once() == 0

        release.set()
        await asyncio.wait_for(closing, timeout=5)

        done = await queue.repository.get_job(job.id)
        assert done.status == JobStatus.COMPLETED
        assert done.stalled_count == 0
        assert done.return_value == {"done": True}


class TestReaperIntegration:
    """Tests for stalled job recovery."""

    async def test_stalled_job_is_recovered(
        self,
        system: QueueSystem,
        sample_email_payload,
        metrics_registry: CollectorRegistry,
    ):
        """A job whose worker died goes back to waiting and runs again."""
        register_builtin_handlers(system.handlers, "agent/1.0", 1000)
        job_id = await add_email_job(system, sample_email_payload)
        repository = system.require_queue(QueueName.EMAIL).repository

        # Claimed by a worker that never finishes; its deadline is already past
        await repository.claim_job("crashed", lock_duration_ms=1, now=now_ms() - 1000)

        assert await Reaper(system).run_once() == 1
        assert metrics_registry.get_sample_value(
            "queue_stalled_jobs_recovered_total", {"queue": "email"}
        ) == 1

        await system.create_worker(QueueName.EMAIL).run_once()
        job = await repository.get_job(job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.stalled_count == 1
        assert job.attempts_made == 1

    async def test_reaper_polls_gauges(
        self,
        system: QueueSystem,
        sample_email_payload,
        metrics_registry: CollectorRegistry,
    ):
        await add_email_job(system, sample_email_payload)

        await Reaper(system).poll_gauges()

        assert metrics_registry.get_sample_value("queue_jobs_waiting", {"queue": "email"}) == 1

    async def test_reaper_loop_stops(self, system: QueueSystem):
        reaper = Reaper(system)
        task = asyncio.create_task(reaper.start())
        await asyncio.sleep(0.1)

        await reaper.stop()
        await asyncio.wait_for(task, timeout=5)

        assert task.done()


@pytest.mark.parametrize("status_code", [200, 201, 204])
async def test_webhook_success_codes(
    system: QueueSystem,
    webhook_transport_factory,
    status_code: int,
):
    register_builtin_handlers(
        system.handlers, "agent/1.0", 1000, transport=webhook_transport_factory(status_code)
    )
    job_id = await add_webhook_job(system, {"url": "https://example.com/hook"})

    await system.create_worker(QueueName.WEBHOOK).run_once()

    job = await system.require_queue(QueueName.WEBHOOK).repository.get_job(job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.return_value == {"status": status_code, "success": True}
