"""
Unit tests for metrics recording.
"""

from prometheus_client import CollectorRegistry

from jobqueue.observability.metrics import MetricsRecorder


class TestMetricsRecorder:
    """Tests for the Prometheus metrics recorder."""

    def test_job_outcomes(self, metrics: MetricsRecorder, metrics_registry: CollectorRegistry):
        metrics.record_job_submitted("email")
        metrics.record_job_completed("email", 0.2)
        metrics.record_job_failed("email", will_retry=True, duration_seconds=0.1)
        metrics.record_job_failed("email", will_retry=False)

        def sample(status: str) -> float | None:
            return metrics_registry.get_sample_value(
                "queue_jobs_total", {"queue": "email", "status": status}
            )

        assert sample("completed") == 1
        assert sample("retried") == 1
        assert sample("failed") == 1
        assert metrics_registry.get_sample_value(
            "queue_jobs_submitted_total", {"queue": "email"}
        ) == 1
        assert metrics_registry.get_sample_value(
            "queue_job_duration_seconds_count", {"queue": "email"}
        ) == 2

    def test_stalled(self, metrics: MetricsRecorder, metrics_registry: CollectorRegistry):
        metrics.record_stalled("webhook", 3)
        metrics.record_stalled("webhook", 0)

        assert metrics_registry.get_sample_value(
            "queue_stalled_jobs_recovered_total", {"queue": "webhook"}
        ) == 3

    def test_queue_gauges(self, metrics: MetricsRecorder, metrics_registry: CollectorRegistry):
        metrics.update_queue_gauges("email", {"waiting": 4, "active": 1})

        assert metrics_registry.get_sample_value("queue_jobs_waiting", {"queue": "email"}) == 4
        assert metrics_registry.get_sample_value("queue_jobs_active", {"queue": "email"}) == 1
        assert metrics_registry.get_sample_value("queue_jobs_failed", {"queue": "email"}) == 0

    def test_snapshot(self, metrics: MetricsRecorder):
        metrics.record_job_submitted("email")
        metrics.record_job_submitted("email")
        metrics.record_job_completed("email", 0.1)
        metrics.update_queue_gauges("webhook", {"waiting": 2})

        snapshot = metrics.snapshot()

        assert snapshot["email"]["submitted"] == 2
        assert snapshot["email"]["completed"] == 1
        assert snapshot["email"]["counts"] == {}
        assert snapshot["webhook"]["counts"] == {"waiting": 2}

    def test_never_raises(self, metrics: MetricsRecorder):
        """Bad input is logged, not raised."""
        metrics.update_queue_gauges("email", {"waiting": "not a number"})
        metrics.record_job_completed("email", "slow")

        assert "email" not in metrics.snapshot()

    def test_exposition(self, metrics: MetricsRecorder):
        metrics.record_job_submitted("email")

        body = metrics.get_metrics()

        assert b"queue_jobs_submitted_total" in body
        assert metrics.get_content_type().startswith("text/plain")
