"""
Job-related type definitions for internal use.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field, field_validator

from jobqueue.constants import (
    COMPLETED_KEEP_AGE_SECONDS,
    COMPLETED_KEEP_COUNT,
    DEFAULT_BACKOFF_DELAY_MS,
    DEFAULT_MAX_ATTEMPTS,
    FAILED_KEEP_AGE_SECONDS,
    FAILED_KEEP_COUNT,
    MAX_PRIORITY,
    MIN_PRIORITY,
    BackoffType,
)


class BackoffPolicy(BaseModel):
    """
    Retry delay policy.

    Exponential: ``delay_ms * 2 ** (attempts_made - 1)``; fixed: ``delay_ms``.
    Both are capped by the caller-supplied maximum.
    """

    type: BackoffType = BackoffType.EXPONENTIAL
    delay_ms: int = Field(default=DEFAULT_BACKOFF_DELAY_MS, ge=0)

    def delay_for(self, attempts_made: int, cap_ms: int) -> int:
        """
        Compute the retry delay after a failed attempt.

        Args:
            attempts_made: Attempts made so far, including the one that failed.
            cap_ms: Upper bound for the delay.

        Returns:
            Delay in milliseconds.
        """
        if attempts_made < 1:
            return 0
        if self.type == BackoffType.FIXED:
            delay = self.delay_ms
        else:
            delay = self.delay_ms * 2 ** (attempts_made - 1)
        return min(cap_ms, delay)


class KeepJobs(BaseModel):
    """Bounds on retained terminal jobs. ``None`` means unbounded."""

    count: int | None = Field(default=None, ge=0)
    max_age_seconds: int | None = Field(default=None, ge=0)


class RetentionPolicy(BaseModel):
    """Retention for completed and failed jobs."""

    completed: KeepJobs = Field(
        default_factory=lambda: KeepJobs(
            count=COMPLETED_KEEP_COUNT, max_age_seconds=COMPLETED_KEEP_AGE_SECONDS
        )
    )
    failed: KeepJobs = Field(
        default_factory=lambda: KeepJobs(
            count=FAILED_KEEP_COUNT, max_age_seconds=FAILED_KEEP_AGE_SECONDS
        )
    )


class JobOptions(BaseModel):
    """
    Per-job options.

    Unset fields are inherited: explicit producer options take precedence
    over per-type defaults, which take precedence over queue defaults.
    """

    max_attempts: int | None = Field(default=None, ge=1)
    backoff: BackoffPolicy | None = None
    priority: int | None = Field(default=None, ge=MIN_PRIORITY, le=MAX_PRIORITY)
    delay_ms: int | None = Field(default=None, ge=0)
    job_id: str | None = Field(default=None, min_length=1)
    timeout_ms: int | None = Field(default=None, gt=0)
    retention: RetentionPolicy | None = None

    @field_validator("job_id")
    @classmethod
    def job_id_not_integer(cls, v: str | None) -> str | None:
        # Generated ids are the queue sequence number
        if v is not None and v.isdigit():
            raise ValueError("Custom job id cannot be an integer")
        return v

    def merged_over(self, base: "JobOptions | None") -> "JobOptions":
        """Return a copy where unset fields are taken from ``base``."""
        if base is None:
            return self.model_copy()
        values = base.model_dump(exclude_none=True)
        values.update(self.model_dump(exclude_none=True))
        return JobOptions.model_validate(values)


def default_job_options(
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    backoff_delay_ms: int = DEFAULT_BACKOFF_DELAY_MS,
    retention: RetentionPolicy | None = None,
) -> JobOptions:
    """Build fully populated queue-level default options."""
    return JobOptions(
        max_attempts=max_attempts,
        backoff=BackoffPolicy(delay_ms=backoff_delay_ms),
        retention=retention or RetentionPolicy(),
    )


class QueueConfig(BaseModel):
    """Configuration of a named queue."""

    name: str = Field(..., min_length=1)
    concurrency: int | None = Field(default=None, ge=1)
    default_job_options: JobOptions = Field(default_factory=default_job_options)


class JobResult(BaseModel):
    """
    Result of job execution.
    Returned by the executor after running a handler.
    """

    success: bool
    output: Any = None
    error: str | None = None
    duration_ms: float | None = None


ProgressReporter = Callable[[int], Awaitable[None]]


@dataclass
class JobContext:
    """
    Context passed to job handlers during execution.
    Contains job metadata and utilities for the handler.
    """

    job_id: str
    queue_name: str
    type_name: str
    attempt: int
    max_attempts: int
    payload: dict[str, Any]
    worker_id: str = ""
    timeout_ms: int | None = None
    _progress_reporter: ProgressReporter | None = field(default=None, repr=False)

    @property
    def is_last_attempt(self) -> bool:
        """Check if this is the last retry attempt."""
        return self.attempt >= self.max_attempts

    @property
    def remaining_attempts(self) -> int:
        """Get remaining retry attempts."""
        return max(0, self.max_attempts - self.attempt)

    async def update_progress(self, progress: int) -> None:
        """
        Report handler progress (0-100).

        Advisory only: never raises and has no effect on scheduling.
        """
        if self._progress_reporter is None:
            return
        await self._progress_reporter(max(0, min(100, int(progress))))
