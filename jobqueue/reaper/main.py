"""
Reaper for recovering stalled jobs.

The reaper runs periodically to find active jobs whose visibility deadline
passed and returns them to waiting. This handles worker crashes and
ensures at-least-once delivery. It also polls queue counts into the
metrics gauges.
"""

import asyncio
import logging
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from jobqueue.registry import QueueSystem

logger = logging.getLogger(__name__)


class Reaper:
    """
    Stalled job reaper.

    Runs periodically to:
    1. Find ACTIVE jobs whose lock deadline passed (worker crashed or stalled)
    2. Return them to WAITING for reprocessing
    3. Refresh queue gauges every ``metrics_poll_interval_seconds``
    """

    def __init__(
        self,
        system: "QueueSystem",
        interval_seconds: float | None = None,
        metrics_interval_seconds: float | None = None,
    ):
        """
        Initialize the reaper.

        Args:
            system: The queue system whose queues are reaped.
            interval_seconds: Seconds between reaper runs.
            metrics_interval_seconds: Seconds between gauge polls.
        """
        settings = system.settings
        self.system = system
        self.interval = interval_seconds or settings.reaper_interval_seconds
        self.metrics_interval = metrics_interval_seconds or settings.metrics_poll_interval_seconds
        self._running = False
        self._stopped = asyncio.Event()
        self._last_metrics_poll = 0.0

    async def start(self) -> None:
        """Start the reaper loop."""
        logger.info(f"Reaper starting with interval {self.interval}s")
        self._running = True
        self._stopped.clear()

        while self._running:
            try:
                recovered = await self.run_once()
                if recovered > 0:
                    logger.info(f"Recovered {recovered} stalled jobs")

                if time.monotonic() - self._last_metrics_poll >= self.metrics_interval:
                    await self.poll_gauges()
            except Exception as e:
                logger.exception(f"Error in reaper loop: {e}")

            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.interval)
            except TimeoutError:
                pass

        logger.info("Reaper stopped")

    async def stop(self) -> None:
        """Stop the reaper."""
        logger.info("Reaper stopping")
        self._running = False
        self._stopped.set()

    async def run_once(self) -> int:
        """
        Recover stalled jobs on every open queue once.

        Returns:
            Number of jobs recovered.
        """
        total = 0
        for name in self.system.queue_names:
            queue = self.system.get_queue(name)
            if queue is None:
                continue
            recovered = await queue.repository.recover_stalled()
            if recovered:
                self.system.metrics.record_stalled(name, len(recovered))
                logger.warning(
                    "Stalled jobs returned to waiting",
                    extra={"queue": name, "job_ids": recovered},
                )
            total += len(recovered)
        return total

    async def poll_gauges(self) -> None:
        """Refresh the per-queue gauges from the store."""
        self._last_metrics_poll = time.monotonic()
        for name in self.system.queue_names:
            queue = self.system.get_queue(name)
            if queue is None:
                continue
            try:
                counts = await queue.get_job_counts()
            except Exception as e:
                logger.warning("Failed to poll queue counts", extra={"queue": name, "error": str(e)})
                continue
            self.system.metrics.update_queue_gauges(name, counts)
