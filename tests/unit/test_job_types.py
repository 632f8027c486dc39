"""
Unit tests for job options, backoff and the handler context.
"""

import pytest
from pydantic import ValidationError

from jobqueue.constants import MAX_PRIORITY, BackoffType
from jobqueue.types.job import (
    BackoffPolicy,
    JobContext,
    JobOptions,
    KeepJobs,
    RetentionPolicy,
    default_job_options,
)

HOUR_MS = 60 * 60 * 1000


class TestBackoffPolicy:
    """Tests for retry delay computation."""

    def test_exponential_doubles(self):
        """Delay is base * 2^(attempts-1)."""
        policy = BackoffPolicy(delay_ms=1000)

        assert policy.delay_for(1, HOUR_MS) == 1000
        assert policy.delay_for(2, HOUR_MS) == 2000
        assert policy.delay_for(3, HOUR_MS) == 4000
        assert policy.delay_for(5, HOUR_MS) == 16000

    def test_delay_is_capped(self):
        """Large attempt counts never exceed the cap."""
        policy = BackoffPolicy(delay_ms=5000)

        assert policy.delay_for(30, HOUR_MS) == HOUR_MS

    def test_delays_non_decreasing(self):
        """Successive attempts never get a shorter delay."""
        policy = BackoffPolicy(delay_ms=700)
        delays = [policy.delay_for(n, 10_000) for n in range(1, 12)]

        assert delays == sorted(delays)
        assert delays[-1] == 10_000

    def test_fixed_backoff(self):
        """Fixed backoff is constant."""
        policy = BackoffPolicy(type=BackoffType.FIXED, delay_ms=250)

        assert {policy.delay_for(n, HOUR_MS) for n in range(1, 6)} == {250}

    def test_no_attempts_no_delay(self):
        assert BackoffPolicy().delay_for(0, HOUR_MS) == 0


class TestJobOptions:
    """Tests for option merging and validation."""

    def test_explicit_values_win(self):
        """Explicit options override the base; unset ones are inherited."""
        base = default_job_options(max_attempts=3, backoff_delay_ms=1000)
        explicit = JobOptions(max_attempts=5, priority=7)

        merged = explicit.merged_over(base)

        assert merged.max_attempts == 5
        assert merged.priority == 7
        assert merged.backoff == BackoffPolicy(delay_ms=1000)
        assert merged.retention == RetentionPolicy()

    def test_merge_without_base(self):
        options = JobOptions(delay_ms=10)

        assert options.merged_over(None) == options

    def test_priority_bounds(self):
        """Priorities outside the supported range are rejected."""
        JobOptions(priority=MAX_PRIORITY)

        with pytest.raises(ValidationError):
            JobOptions(priority=MAX_PRIORITY + 1)

    def test_max_attempts_must_be_positive(self):
        with pytest.raises(ValidationError):
            JobOptions(max_attempts=0)

    def test_integer_job_id_rejected(self):
        with pytest.raises(ValidationError):
            JobOptions(job_id="2")

        assert JobOptions(job_id="order-2").job_id == "order-2"

    def test_default_retention(self):
        """Defaults keep 1000 completed jobs for a day and 5000 failed for a week."""
        retention = RetentionPolicy()

        assert retention.completed == KeepJobs(count=1000, max_age_seconds=86400)
        assert retention.failed == KeepJobs(count=5000, max_age_seconds=7 * 86400)


class TestJobContext:
    """Tests for JobContext."""

    def test_is_last_attempt(self):
        """Test is_last_attempt property."""
        context = JobContext(
            job_id="1",
            queue_name="email",
            type_name="send-email",
            attempt=3,
            max_attempts=3,
            payload={},
        )

        assert context.is_last_attempt is True
        assert context.remaining_attempts == 0

    def test_not_last_attempt(self):
        """Test is_last_attempt when more attempts remain."""
        context = JobContext(
            job_id="1",
            queue_name="email",
            type_name="send-email",
            attempt=1,
            max_attempts=3,
            payload={},
        )

        assert context.is_last_attempt is False
        assert context.remaining_attempts == 2

    async def test_update_progress_is_clamped(self):
        """Progress is reported within 0-100."""
        reported: list[int] = []

        async def reporter(progress: int) -> None:
            reported.append(progress)

        context = JobContext(
            job_id="1",
            queue_name="data-processing",
            type_name="process-x",
            attempt=1,
            max_attempts=3,
            payload={},
            _progress_reporter=reporter,
        )

        await context.update_progress(50)
        await context.update_progress(150)
        await context.update_progress(-5)

        assert reported == [50, 100, 0]

    async def test_update_progress_without_reporter(self):
        """Without a reporter, progress updates are ignored."""
        context = JobContext(
            job_id="1",
            queue_name="email",
            type_name="send-email",
            attempt=1,
            max_attempts=1,
            payload={},
        )

        await context.update_progress(10)
