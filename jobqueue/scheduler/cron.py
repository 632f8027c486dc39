"""
Cron scheduler for recurring jobs.

Scheduler entries live in the store: a sorted set of entry names scored by
their next run time, plus a hash per entry. Any number of processes may run
a scheduler; for each occurrence, a compare-and-advance script lets exactly
one of them win, and the winner enqueues the occurrence as a normal job with
the deterministic id ``repeat:<name>:<run ms>``.

Occurrences missed while no scheduler was running are skipped: the next
run is always computed from the current time.
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

import pytz
from croniter import croniter

from jobqueue.constants import REPEAT_JOB_ID_PREFIX, SPAN_FIRE_SCHEDULE, QueueName
from jobqueue.exceptions import StoreError
from jobqueue.observability.tracing import create_span
from jobqueue.producers.base import enqueue
from jobqueue.store.connection import store_errors
from jobqueue.store.repository import now_ms
from jobqueue.types.api import ScheduledEntry
from jobqueue.types.job import JobOptions
from jobqueue.types.payloads import CronJobPayload
from jobqueue.worker.registry import JobHandler

if TYPE_CHECKING:
    from jobqueue.queue import QueueHandle
    from jobqueue.registry import QueueSystem

logger = logging.getLogger(__name__)

# Due entries handled per tick
TICK_BATCH_SIZE = 100


def next_run_at(
    after_ms: int,
    every_ms: int | None = None,
    cron_pattern: str | None = None,
    timezone: str = "UTC",
) -> int:
    """
    Next fire time strictly after ``after_ms``.

    ``every`` schedules fire on multiples of ``every_ms`` since the epoch;
    cron schedules are evaluated in ``timezone``.

    Returns:
        Epoch milliseconds.
    """
    if every_ms is not None:
        return (after_ms // every_ms + 1) * every_ms

    if cron_pattern is None:
        raise ValueError("Either every_ms or cron_pattern is required")

    tz = pytz.timezone(timezone)
    start = datetime.fromtimestamp(after_ms / 1000, tz)
    following = croniter(cron_pattern, start).get_next(datetime)
    return int(following.timestamp() * 1000)


def repeat_job_id(name: str, run_at_ms: int) -> str:
    """Job id of one occurrence of an entry."""
    return f"{REPEAT_JOB_ID_PREFIX}:{name}:{run_at_ms}"


def _validate_schedule(
    every_ms: int | None,
    cron_pattern: str | None,
    timezone: str,
    limit: int | None,
) -> None:
    if (every_ms is None) == (cron_pattern is None):
        raise ValueError("Exactly one of every_ms or cron_pattern must be given")
    if every_ms is not None and every_ms <= 0:
        raise ValueError("every_ms must be positive")
    if cron_pattern is not None and not croniter.is_valid(cron_pattern):
        raise ValueError(f"Invalid cron expression: {cron_pattern}")
    try:
        pytz.timezone(timezone)
    except pytz.UnknownTimeZoneError as e:
        raise ValueError(f"Unknown timezone: {timezone}") from e
    if limit is not None and limit < 1:
        raise ValueError("limit must be at least 1")


class CronScheduler:
    """
    Registers named recurring handlers and fires their occurrences.

    Handlers are registered on the cron queue of the system's handler
    registry, so fired jobs run through the regular worker machinery.
    """

    def __init__(
        self,
        system: "QueueSystem",
        queue_name: str = QueueName.CRON,
        poll_interval: float | None = None,
    ):
        self.system = system
        self.queue_name = str(queue_name)
        self.poll_interval = poll_interval or system.settings.scheduler_poll_interval_seconds
        self._handlers: dict[str, JobHandler] = {}
        self._running = False
        self._stopped = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def handler_names(self) -> list[str]:
        return list(self._handlers)

    def register_handler(self, name: str, handler: JobHandler) -> None:
        """Register the handler of a named recurring job."""
        self._handlers[name] = handler
        self.system.handlers.register(self.queue_name, name, handler)
        logger.info("Cron handler registered", extra={"name": name})

    def _queue(self) -> "QueueHandle | None":
        queue = self.system.get_queue(self.queue_name)
        if queue is None:
            logger.warning("Cron queue not available")
        return queue

    async def schedule(
        self,
        name: str,
        every_ms: int | None = None,
        cron_pattern: str | None = None,
        timezone: str = "UTC",
        limit: int | None = None,
        payload: Any = None,
    ) -> str | None:
        """
        Create or update a recurring job definition.

        Args:
            name: Entry name; also the handler name.
            every_ms: Fixed interval in milliseconds.
            cron_pattern: Cron expression, evaluated in ``timezone``.
            timezone: IANA timezone name for cron patterns.
            limit: Maximum number of occurrences.
            payload: Data passed to every occurrence.

        Returns:
            Id of the first occurrence's job, or None if the queue system is
            unavailable or no handler is registered for ``name``.

        Raises:
            ValueError: On an invalid schedule.
        """
        _validate_schedule(every_ms, cron_pattern, timezone, limit)

        queue = self._queue()
        if queue is None:
            return None

        if name not in self._handlers:
            logger.warning(
                "No handler registered for cron job, skipping schedule",
                extra={"name": name},
            )
            return None

        now = now_ms()
        next_run = next_run_at(now, every_ms, cron_pattern, timezone)
        keys = queue.repository.keys
        entry: dict[str, str] = {
            "name": name,
            "timezone": timezone,
            "next_run_at": str(next_run),
            "payload": json.dumps(payload),
            "updated_at": str(now),
        }
        if every_ms is not None:
            entry["every_ms"] = str(every_ms)
        if cron_pattern is not None:
            entry["cron_pattern"] = cron_pattern
        if limit is not None:
            entry["limit"] = str(limit)

        client = self.system.client
        async with store_errors("schedule"):
            async with client.pipeline(transaction=True) as pipe:
                # Schedule kind and limit are replaced on update
                pipe.hdel(keys.repeat_entry(name), "every_ms", "cron_pattern", "limit")
                pipe.hset(keys.repeat_entry(name), mapping=entry)
                pipe.hsetnx(keys.repeat_entry(name), "count", "0")
                pipe.zadd(keys.repeat, {name: next_run})
                await pipe.execute()

        scheduler_id = repeat_job_id(name, next_run)
        logger.info(
            "Cron job scheduled",
            extra={"name": name, "every_ms": every_ms, "cron": cron_pattern, "next_run_at": next_run},
        )
        return scheduler_id

    async def unschedule(self, name: str) -> bool:
        """
        Remove a recurring job definition.

        Occurrences already enqueued or running are unaffected.

        Returns:
            True if the entry existed.
        """
        queue = self._queue()
        if queue is None:
            return False

        keys = queue.repository.keys
        async with store_errors("unschedule"):
            async with self.system.client.pipeline(transaction=True) as pipe:
                pipe.zrem(keys.repeat, name)
                pipe.delete(keys.repeat_entry(name))
                removed, _ = await pipe.execute()

        if removed:
            logger.info("Cron job scheduler removed", extra={"name": name})
        return bool(removed)

    async def list_scheduled(self) -> list[ScheduledEntry]:
        """Scheduler entries ordered by next run time."""
        queue = self._queue()
        if queue is None:
            return []

        keys = queue.repository.keys
        client = self.system.client
        async with store_errors("list_scheduled"):
            names = await client.zrange(keys.repeat, 0, -1)
            if not names:
                return []
            async with client.pipeline(transaction=False) as pipe:
                for name in names:
                    pipe.hgetall(keys.repeat_entry(name))
                rows = await pipe.execute()

        entries = []
        for name, row in zip(names, rows):
            if not row:
                continue
            next_run = int(row["next_run_at"]) if row.get("next_run_at") else None
            entries.append(
                ScheduledEntry(
                    name=name,
                    next_run_at=(
                        datetime.fromtimestamp(next_run / 1000, pytz.UTC) if next_run else None
                    ),
                    cron_pattern=row.get("cron_pattern"),
                    every_ms=int(row["every_ms"]) if row.get("every_ms") else None,
                    timezone=row.get("timezone"),
                    limit=int(row["limit"]) if row.get("limit") else None,
                    count=int(row.get("count", 0)),
                )
            )
        return entries

    async def tick(self, now: int | None = None) -> int:
        """
        Fire every due entry once.

        The entry is advanced before its job is enqueued, so firing is
        at most once: if the enqueue fails the occurrence is lost, still
        counts towards ``limit``, and is logged as an error.

        Args:
            now: Override for the current time (ms).

        Returns:
            Number of occurrences this process fired.
        """
        queue = self.system.get_queue(self.queue_name)
        if queue is None:
            return 0

        now = now if now is not None else now_ms()
        keys = queue.repository.keys
        client = self.system.client

        due = await client.zrangebyscore(
            keys.repeat, "-inf", now, start=0, num=TICK_BATCH_SIZE, withscores=True
        )

        fired = 0
        for name, score in due:
            entry = await client.hgetall(keys.repeat_entry(name))
            if not entry:
                await client.zrem(keys.repeat, name)
                continue

            expected = int(score)
            every_ms = int(entry["every_ms"]) if entry.get("every_ms") else None
            following = next_run_at(
                now, every_ms, entry.get("cron_pattern"), entry.get("timezone") or "UTC"
            )

            won = await self.system.scripts.advance_schedule(
                keys=[keys.repeat, keys.repeat_entry(name)],
                args=[name, str(expected), str(following)],
            )
            if not won:
                # Another scheduler fired this occurrence
                continue

            occurrence_id = repeat_job_id(name, expected)
            with create_span(SPAN_FIRE_SCHEDULE, name=name, run_at=expected):
                payload = CronJobPayload(
                    name=name,
                    handler=name,
                    data=json.loads(entry.get("payload") or "null"),
                )
                try:
                    job_id = await enqueue(
                        self.system,
                        self.queue_name,
                        name,
                        payload.model_dump(mode="json"),
                        JobOptions(job_id=occurrence_id),
                    )
                except StoreError as e:
                    logger.error(
                        "Cron occurrence lost, enqueue failed",
                        extra={"name": name, "job_id": occurrence_id, "error": str(e)},
                    )
                    continue
            if job_id is not None:
                fired += 1
                logger.info(
                    "Cron job fired",
                    extra={"name": name, "job_id": job_id, "occurrence": int(won)},
                )
        return fired

    def start(self) -> asyncio.Task:
        """Run the tick loop as a background task."""
        if self._task is None or self._task.done():
            self._running = True
            self._stopped.clear()
            self._task = asyncio.create_task(self._loop(), name="cron-scheduler")
        return self._task

    async def _loop(self) -> None:
        logger.info(f"Cron scheduler starting with interval {self.poll_interval}s")
        while self._running:
            try:
                await self.tick()
            except Exception as e:
                logger.exception(f"Error in scheduler loop: {e}")
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.poll_interval)
            except TimeoutError:
                pass
        logger.info("Cron scheduler stopped")

    async def stop(self) -> None:
        """Stop the tick loop. Idempotent."""
        self._running = False
        self._stopped.set()
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
