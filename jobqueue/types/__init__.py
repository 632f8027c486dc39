"""
Type definitions for the job queue.
Contains input/output type definitions for all functions, grouped by module.
"""

from jobqueue.types.api import (
    AddJobRequest,
    AddJobResult,
    HealthStatus,
    JobSummary,
    QueueStats,
    ScheduledEntry,
)
from jobqueue.types.job import (
    BackoffPolicy,
    JobContext,
    JobOptions,
    JobResult,
    KeepJobs,
    QueueConfig,
    RetentionPolicy,
    default_job_options,
)
from jobqueue.types.payloads import (
    CronJobPayload,
    DataJobPayload,
    EmailJobPayload,
    WebhookJobPayload,
)

__all__ = [
    # Admin types
    "QueueStats",
    "JobSummary",
    "AddJobRequest",
    "AddJobResult",
    "HealthStatus",
    "ScheduledEntry",
    # Job types
    "BackoffPolicy",
    "KeepJobs",
    "RetentionPolicy",
    "JobOptions",
    "QueueConfig",
    "JobResult",
    "JobContext",
    "default_job_options",
    # Payload types
    "EmailJobPayload",
    "WebhookJobPayload",
    "DataJobPayload",
    "CronJobPayload",
]
