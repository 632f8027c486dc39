"""
Prometheus metrics collection.

Counters and histograms are updated by explicit calls from the worker after
each job transition; gauges are refreshed by periodic polls of queue counts.
No method raises: metric failures must never affect job processing.
"""

import logging
from typing import Any

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from jobqueue.constants import (
    METRIC_JOB_DURATION,
    METRIC_JOBS_ACTIVE,
    METRIC_JOBS_COMPLETED,
    METRIC_JOBS_DELAYED,
    METRIC_JOBS_FAILED,
    METRIC_JOBS_PAUSED,
    METRIC_JOBS_SUBMITTED,
    METRIC_JOBS_TOTAL,
    METRIC_JOBS_WAITING,
    METRIC_STALLED_RECOVERED,
    JobStatus,
)

logger = logging.getLogger(__name__)

# Global metrics instance
_metrics: "MetricsRecorder | None" = None


class MetricsRecorder:
    """
    Prometheus metrics recorder for the job queue.

    Collects metrics for:
    - Job submissions and outcomes per queue
    - Job execution duration
    - Queue counts by status (gauges)
    - Stalled job recovery
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics recorder.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.jobs_total = Counter(
            METRIC_JOBS_TOTAL,
            "Total number of processed jobs by outcome",
            ["queue", "status"],
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Job execution duration in seconds",
            ["queue"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
            registry=self._registry,
        )

        self.jobs_submitted = Counter(
            METRIC_JOBS_SUBMITTED,
            "Total number of jobs submitted",
            ["queue"],
            registry=self._registry,
        )

        self.stalled_recovered = Counter(
            METRIC_STALLED_RECOVERED,
            "Total number of stalled jobs returned to waiting",
            ["queue"],
            registry=self._registry,
        )

        self._gauges: dict[str, Gauge] = {
            JobStatus.WAITING.value: Gauge(
                METRIC_JOBS_WAITING, "Jobs waiting to be processed", ["queue"],
                registry=self._registry,
            ),
            JobStatus.ACTIVE.value: Gauge(
                METRIC_JOBS_ACTIVE, "Jobs currently being processed", ["queue"],
                registry=self._registry,
            ),
            JobStatus.DELAYED.value: Gauge(
                METRIC_JOBS_DELAYED, "Jobs delayed until a future time", ["queue"],
                registry=self._registry,
            ),
            JobStatus.FAILED.value: Gauge(
                METRIC_JOBS_FAILED, "Failed jobs retained", ["queue"],
                registry=self._registry,
            ),
            JobStatus.COMPLETED.value: Gauge(
                METRIC_JOBS_COMPLETED, "Completed jobs retained", ["queue"],
                registry=self._registry,
            ),
            JobStatus.PAUSED.value: Gauge(
                METRIC_JOBS_PAUSED, "Waiting jobs held by a paused queue", ["queue"],
                registry=self._registry,
            ),
        }

        # Process-local totals for snapshot()
        self._totals: dict[str, dict[str, float]] = {}
        self._counts: dict[str, dict[str, int]] = {}

    def _bump(self, queue: str, key: str, amount: float = 1) -> None:
        per_queue = self._totals.setdefault(queue, {})
        per_queue[key] = per_queue.get(key, 0) + amount

    def record_job_submitted(self, queue: str) -> None:
        """Record a newly created job."""
        try:
            self.jobs_submitted.labels(queue=queue).inc()
            self._bump(queue, "submitted")
        except Exception:
            logger.exception("Failed to record job submission", extra={"queue": queue})

    def record_job_completed(self, queue: str, duration_seconds: float) -> None:
        """Record a successful job execution."""
        try:
            self.jobs_total.labels(queue=queue, status=JobStatus.COMPLETED.value).inc()
            self.job_duration.labels(queue=queue).observe(duration_seconds)
            self._bump(queue, "completed")
        except Exception:
            logger.exception("Failed to record job completion", extra={"queue": queue})

    def record_job_failed(
        self,
        queue: str,
        will_retry: bool,
        duration_seconds: float | None = None,
    ) -> None:
        """Record a failed execution; ``will_retry`` marks a re-armed job."""
        status = "retried" if will_retry else JobStatus.FAILED.value
        try:
            self.jobs_total.labels(queue=queue, status=status).inc()
            if duration_seconds is not None:
                self.job_duration.labels(queue=queue).observe(duration_seconds)
            self._bump(queue, status)
        except Exception:
            logger.exception("Failed to record job failure", extra={"queue": queue})

    def record_stalled(self, queue: str, count: int) -> None:
        """Record stalled jobs recovered by the reaper."""
        if count <= 0:
            return
        try:
            self.stalled_recovered.labels(queue=queue).inc(count)
            self._bump(queue, "stalled", count)
        except Exception:
            logger.exception("Failed to record stalled jobs", extra={"queue": queue})

    def update_queue_gauges(self, queue: str, counts: dict[str, int]) -> None:
        """Set the per-status gauges of a queue from a job-counts poll."""
        try:
            for status, gauge in self._gauges.items():
                gauge.labels(queue=queue).set(counts.get(status, 0))
            self._counts[queue] = dict(counts)
        except Exception:
            logger.exception("Failed to update queue gauges", extra={"queue": queue})

    def snapshot(self) -> dict[str, Any]:
        """
        Pull-based view of what this process recorded.

        Returns:
            Mapping of queue name -> recorded totals and last polled counts.
        """
        try:
            queues = set(self._totals) | set(self._counts)
            return {
                queue: {
                    **self._totals.get(queue, {}),
                    "counts": dict(self._counts.get(queue, {})),
                }
                for queue in sorted(queues)
            }
        except Exception:
            logger.exception("Failed to build metrics snapshot")
            return {}

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        try:
            return generate_latest(self._registry)
        except Exception:
            logger.exception("Failed to render metrics")
            return b""

    def get_content_type(self) -> str:
        """Get the content type for metrics response."""
        return CONTENT_TYPE_LATEST


def setup_metrics() -> MetricsRecorder:
    """
    Set up and return the process-wide metrics recorder.

    Returns:
        MetricsRecorder: The metrics recorder instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsRecorder()
    return _metrics


def get_metrics() -> MetricsRecorder:
    """
    Get the process-wide metrics recorder, creating it on first use.

    Returns:
        MetricsRecorder: The metrics recorder instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
