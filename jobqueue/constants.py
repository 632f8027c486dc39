"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobStatus(StrEnum):
    """
    Job lifecycle states.

    State transitions:
    - DELAYED -> WAITING (run_at elapsed)
    - WAITING -> ACTIVE (claimed by a worker)
    - ACTIVE -> COMPLETED (handler succeeded)
    - ACTIVE -> DELAYED (handler failed, attempts remain; re-armed with backoff)
    - ACTIVE -> FAILED (handler failed, attempts exhausted)
    - ACTIVE -> WAITING (lock expired - stalled worker recovery)
    - FAILED -> WAITING (admin retry, attempts reset)
    """

    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"


# Statuses that can be listed and counted through the store sets
LISTABLE_STATUSES: tuple[JobStatus, ...] = (
    JobStatus.WAITING,
    JobStatus.DELAYED,
    JobStatus.ACTIVE,
    JobStatus.COMPLETED,
    JobStatus.FAILED,
)

TERMINAL_STATUSES: frozenset[JobStatus] = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED}
)


class QueueName(StrEnum):
    """Queues known to the application. The registry accepts other names too."""

    EMAIL = "email"
    WEBHOOK = "webhook"
    DATA_PROCESSING = "data-processing"
    CRON = "cron"


class BackoffType(StrEnum):
    """Retry delay strategies."""

    EXPONENTIAL = "exponential"
    FIXED = "fixed"


# Job type names
JOB_TYPE_SEND_EMAIL = "send-email"
JOB_TYPE_DELIVER_WEBHOOK = "deliver-webhook"
DATA_JOB_TYPE_PREFIX = "process-"
REPEAT_JOB_ID_PREFIX = "repeat"

# Default values
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_DELAY_MS = 1000
WEBHOOK_MAX_ATTEMPTS = 5
WEBHOOK_BACKOFF_DELAY_MS = 5000
DEFAULT_PRIORITY = 0

# Priority bounds keep the waiting-set score exact in a double:
# score = -priority * PRIORITY_SCORE_FACTOR + sequence
MAX_PRIORITY = 2**20
MIN_PRIORITY = -(2**20)
PRIORITY_SCORE_FACTOR = 2**32

# Retention defaults
COMPLETED_KEEP_COUNT = 1000
COMPLETED_KEEP_AGE_SECONDS = 24 * 60 * 60
FAILED_KEEP_COUNT = 5000
FAILED_KEEP_AGE_SECONDS = 7 * 24 * 60 * 60
CRON_COMPLETED_KEEP_COUNT = 100
CRON_FAILED_KEEP_COUNT = 500

# Admin defaults
DEFAULT_CLEAN_OLDER_THAN_MS = 24 * 60 * 60 * 1000
CLEAN_BATCH_SIZE = 1000
DEFAULT_LIST_START = 0
DEFAULT_LIST_END = 20

# Metrics names
METRIC_JOBS_TOTAL = "queue_jobs_total"
METRIC_JOB_DURATION = "queue_job_duration_seconds"
METRIC_JOBS_SUBMITTED = "queue_jobs_submitted_total"
METRIC_JOBS_WAITING = "queue_jobs_waiting"
METRIC_JOBS_ACTIVE = "queue_jobs_active"
METRIC_JOBS_DELAYED = "queue_jobs_delayed"
METRIC_JOBS_FAILED = "queue_jobs_failed"
METRIC_JOBS_COMPLETED = "queue_jobs_completed"
METRIC_JOBS_PAUSED = "queue_jobs_paused"
METRIC_STALLED_RECOVERED = "queue_stalled_jobs_recovered_total"

# Trace span names
SPAN_ENQUEUE_JOB = "enqueue_job"
SPAN_CLAIM_JOB = "claim_job"
SPAN_EXECUTE_JOB = "execute_job"
SPAN_COMPLETE_JOB = "complete_job"
SPAN_FAIL_JOB = "fail_job"
SPAN_FIRE_SCHEDULE = "fire_schedule"
