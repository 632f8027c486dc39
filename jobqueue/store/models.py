"""
Job record stored as a Redis hash.

Every Job instance is a transient view read from the store for a single
operation; other processes may change the underlying hash at any time.
"""

import json
from dataclasses import dataclass, field
from typing import Any

from jobqueue.constants import PRIORITY_SCORE_FACTOR, TERMINAL_STATUSES, JobStatus
from jobqueue.types.api import JobSummary
from jobqueue.types.job import BackoffPolicy, RetentionPolicy


def wait_score(priority: int, sequence: int) -> int:
    """
    Score of a job in the wait set.

    Lower scores are claimed first: higher priority wins, then enqueue order.
    """
    return -priority * PRIORITY_SCORE_FACTOR + sequence


def _int_or_none(value: str | None) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


@dataclass
class Job:
    """
    Job record representing a unit of work in a queue.

    Key invariants:
    - attempts_made never exceeds max_attempts
    - a FAILED job has attempts_made == max_attempts
    - lock_token is set only while the job is ACTIVE
    """

    id: str
    queue_name: str
    type_name: str
    payload: dict[str, Any]
    status: JobStatus
    created_at: int
    sequence: int = 0
    priority: int = 0
    attempts_made: int = 0
    max_attempts: int = 3
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)
    delay_ms: int = 0
    run_at: int | None = None
    progress: int = 0
    failed_reason: str | None = None
    return_value: Any = None
    processed_at: int | None = None
    finished_at: int | None = None
    idempotency_key: str | None = None
    timeout_ms: int | None = None
    stalled_count: int = 0
    retention: RetentionPolicy | None = None
    lock_token: str | None = None

    @property
    def wait_score(self) -> int:
        return wait_score(self.priority, self.sequence)

    @property
    def is_retryable(self) -> bool:
        """Check if another attempt is allowed after the current one."""
        return self.attempts_made < self.max_attempts

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_hash(self) -> dict[str, str]:
        """Serialize to Redis hash fields, dropping unset values."""
        fields: dict[str, Any] = {
            "id": self.id,
            "queue": self.queue_name,
            "name": self.type_name,
            "data": json.dumps(self.payload),
            "status": self.status.value,
            "created_at": self.created_at,
            "sequence": self.sequence,
            "priority": self.priority,
            "wait_score": self.wait_score,
            "attempts_made": self.attempts_made,
            "max_attempts": self.max_attempts,
            "backoff": self.backoff.model_dump_json(),
            "delay_ms": self.delay_ms,
            "run_at": self.run_at,
            "progress": self.progress,
            "failed_reason": self.failed_reason,
            "return_value": (
                json.dumps(self.return_value) if self.return_value is not None else None
            ),
            "processed_at": self.processed_at,
            "finished_at": self.finished_at,
            "idempotency_key": self.idempotency_key,
            "timeout_ms": self.timeout_ms,
            "stalled_count": self.stalled_count,
            "retention": self.retention.model_dump_json() if self.retention else None,
            "lock_token": self.lock_token,
        }
        return {key: str(value) for key, value in fields.items() if value is not None}

    @classmethod
    def from_hash(cls, data: dict[str, str]) -> "Job":
        """Build a Job from a Redis hash."""
        return_value = data.get("return_value")
        retention = data.get("retention")
        return cls(
            id=data["id"],
            queue_name=data["queue"],
            type_name=data["name"],
            payload=json.loads(data.get("data") or "{}"),
            status=JobStatus(data["status"]),
            created_at=int(data["created_at"]),
            sequence=int(data.get("sequence", 0)),
            priority=int(data.get("priority", 0)),
            attempts_made=int(data.get("attempts_made", 0)),
            max_attempts=int(data.get("max_attempts", 3)),
            backoff=(
                BackoffPolicy.model_validate_json(data["backoff"])
                if data.get("backoff")
                else BackoffPolicy()
            ),
            delay_ms=int(data.get("delay_ms", 0)),
            run_at=_int_or_none(data.get("run_at")),
            progress=int(data.get("progress", 0)),
            failed_reason=data.get("failed_reason") or None,
            return_value=json.loads(return_value) if return_value else None,
            processed_at=_int_or_none(data.get("processed_at")),
            finished_at=_int_or_none(data.get("finished_at")),
            idempotency_key=data.get("idempotency_key") or None,
            timeout_ms=_int_or_none(data.get("timeout_ms")),
            stalled_count=int(data.get("stalled_count", 0)),
            retention=RetentionPolicy.model_validate_json(retention) if retention else None,
            lock_token=data.get("lock_token") or None,
        )

    def to_summary(self) -> JobSummary:
        """Convert to the admin listing representation."""
        return JobSummary(
            id=self.id,
            name=self.type_name,
            queue=self.queue_name,
            data=self.payload,
            status=self.status,
            priority=self.priority,
            progress=self.progress,
            attempts_made=self.attempts_made,
            max_attempts=self.max_attempts,
            failed_reason=self.failed_reason,
            return_value=self.return_value,
            timestamp=self.created_at,
            run_at=self.run_at,
            processed_on=self.processed_at,
            finished_on=self.finished_at,
        )

    def __repr__(self) -> str:
        return (
            f"Job(id={self.id}, queue={self.queue_name}, type={self.type_name}, "
            f"status={self.status}, attempt={self.attempts_made}/{self.max_attempts})"
        )
