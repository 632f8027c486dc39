"""
Admin/introspection request and response type definitions.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from jobqueue.constants import JobStatus


class QueueStats(BaseModel):
    """Job counts for one queue."""

    name: str
    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0
    paused: int = 0
    is_paused: bool = False


class JobSummary(BaseModel):
    """Job details returned by listings. Timestamps are epoch milliseconds."""

    id: str
    name: str
    queue: str
    data: dict[str, Any]
    status: JobStatus
    priority: int
    progress: int
    attempts_made: int
    max_attempts: int
    failed_reason: str | None = None
    return_value: Any = None
    timestamp: int
    run_at: int | None = None
    processed_on: int | None = None
    finished_on: int | None = None


class AddJobRequest(BaseModel):
    """
    Body for adding a job through the admin surface.

    Carries the union of the per-queue fields; the target queue decides
    which ones are used.
    """

    # Email fields
    to: str | None = None
    subject: str | None = None
    body: str | None = None
    template: str | None = None
    template_data: dict[str, Any] | None = None
    # Webhook fields
    url: str | None = None
    method: str | None = None
    headers: dict[str, str] | None = None
    payload: Any = None
    timeout_ms: int | None = Field(default=None, gt=0)
    # Data processing fields
    type: str | None = None
    data: Any = None
    priority: int | None = None
    # Common
    metadata: dict[str, Any] | None = None
    request_id: str | None = None
    job_id: str | None = None
    delay_ms: int | None = Field(default=None, ge=0)


class AddJobResult(BaseModel):
    """Response after adding a job."""

    job_id: str
    queue: str


class HealthStatus(BaseModel):
    """Queue system health."""

    connected: bool
    queue_names: list[str] = Field(default_factory=list)
    worker_names: list[str] = Field(default_factory=list)
    error: str | None = None


class ScheduledEntry(BaseModel):
    """A recurring job definition as stored by the scheduler."""

    name: str
    next_run_at: datetime | None = None
    cron_pattern: str | None = None
    every_ms: int | None = None
    timezone: str | None = None
    limit: int | None = None
    count: int = 0
