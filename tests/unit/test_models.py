"""
Unit tests for the stored job record.
"""

from jobqueue.constants import MAX_PRIORITY, JobStatus
from jobqueue.store.models import Job, wait_score
from jobqueue.types.job import BackoffPolicy, RetentionPolicy


def make_job(**overrides) -> Job:
    values = {
        "id": "42",
        "queue_name": "email",
        "type_name": "send-email",
        "payload": {"to": "a@b.com", "nested": {"n": [1, 2]}},
        "status": JobStatus.WAITING,
        "created_at": 1_700_000_000_000,
        "sequence": 42,
    }
    values.update(overrides)
    return Job(**values)


class TestWaitScore:
    """Tests for the waiting-set ordering."""

    def test_higher_priority_first(self):
        assert wait_score(5, 100) < wait_score(0, 1)
        assert wait_score(0, 1) < wait_score(-5, 1)

    def test_fifo_within_priority(self):
        assert wait_score(3, 10) < wait_score(3, 11)

    def test_extreme_priorities_keep_order(self):
        """Scores stay ordered at the priority bounds."""
        assert wait_score(MAX_PRIORITY, 10**6) < wait_score(MAX_PRIORITY - 1, 1)


class TestJobHash:
    """Tests for hash serialization."""

    def test_round_trip(self):
        """A job read back from its hash equals the original."""
        job = make_job(
            priority=3,
            attempts_made=1,
            max_attempts=5,
            backoff=BackoffPolicy(delay_ms=5000),
            run_at=1_700_000_005_000,
            failed_reason="boom",
            return_value={"sent": True},
            timeout_ms=30000,
            retention=RetentionPolicy(),
            idempotency_key="order-42",
        )

        assert Job.from_hash(job.to_hash()) == job

    def test_unset_fields_are_dropped(self):
        fields = make_job().to_hash()

        assert "failed_reason" not in fields
        assert "lock_token" not in fields
        assert fields["status"] == "waiting"
        assert fields["wait_score"] == str(wait_score(0, 42))

    def test_summary(self):
        summary = make_job(status=JobStatus.COMPLETED, attempts_made=1, finished_at=5).to_summary()

        assert summary.id == "42"
        assert summary.name == "send-email"
        assert summary.status == JobStatus.COMPLETED
        assert summary.attempts_made == 1
        assert summary.finished_on == 5
        assert summary.timestamp == 1_700_000_000_000

    def test_flags(self):
        assert make_job(status=JobStatus.FAILED).is_terminal
        assert not make_job(status=JobStatus.DELAYED).is_terminal
        assert make_job(attempts_made=2, max_attempts=3).is_retryable
        assert not make_job(attempts_made=3, max_attempts=3).is_retryable
