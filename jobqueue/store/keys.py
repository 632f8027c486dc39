"""
Redis key layout for a queue.
"""

from dataclasses import dataclass

from jobqueue.constants import JobStatus


@dataclass(frozen=True)
class QueueKeys:
    """
    Key names for one queue.

    Key structure:
        {prefix}:{queue}:seq              - INCR counter for ids and FIFO order
        {prefix}:{queue}:job:{id}         - Job hash
        {prefix}:{queue}:wait             - ZSET of waiting jobs (score = priority/sequence)
        {prefix}:{queue}:delayed          - ZSET of delayed jobs (score = run_at ms)
        {prefix}:{queue}:active           - ZSET of active jobs (score = lock deadline ms)
        {prefix}:{queue}:completed        - ZSET of completed jobs (score = finished_at ms)
        {prefix}:{queue}:failed           - ZSET of failed jobs (score = finished_at ms)
        {prefix}:{queue}:paused           - flag; present while the queue is paused
        {prefix}:{queue}:repeat           - ZSET of scheduler entries (score = next run ms)
        {prefix}:{queue}:repeat:{name}    - Scheduler entry hash
    """

    prefix: str
    queue: str

    @property
    def base(self) -> str:
        return f"{self.prefix}:{self.queue}"

    @property
    def seq(self) -> str:
        return f"{self.base}:seq"

    @property
    def job_prefix(self) -> str:
        return f"{self.base}:job:"

    def job(self, job_id: str) -> str:
        return f"{self.job_prefix}{job_id}"

    @property
    def wait(self) -> str:
        return f"{self.base}:wait"

    @property
    def delayed(self) -> str:
        return f"{self.base}:delayed"

    @property
    def active(self) -> str:
        return f"{self.base}:active"

    @property
    def completed(self) -> str:
        return f"{self.base}:completed"

    @property
    def failed(self) -> str:
        return f"{self.base}:failed"

    @property
    def paused(self) -> str:
        return f"{self.base}:paused"

    @property
    def repeat(self) -> str:
        return f"{self.base}:repeat"

    def repeat_entry(self, name: str) -> str:
        return f"{self.base}:repeat:{name}"

    def for_status(self, status: JobStatus) -> str:
        """Set key holding jobs in ``status``. Paused jobs live in the wait set."""
        if status == JobStatus.PAUSED:
            return self.wait
        return {
            JobStatus.WAITING: self.wait,
            JobStatus.DELAYED: self.delayed,
            JobStatus.ACTIVE: self.active,
            JobStatus.COMPLETED: self.completed,
            JobStatus.FAILED: self.failed,
        }[status]
