"""
Email queue producer.
"""

import logging
from typing import TYPE_CHECKING, Any

from jobqueue.constants import JOB_TYPE_SEND_EMAIL, QueueName
from jobqueue.producers.base import enqueue, validate_payload
from jobqueue.types.job import JobOptions
from jobqueue.types.payloads import EmailJobPayload

if TYPE_CHECKING:
    from jobqueue.registry import QueueSystem

logger = logging.getLogger(__name__)


async def add_email_job(
    system: "QueueSystem",
    payload: EmailJobPayload | dict[str, Any],
    options: JobOptions | None = None,
) -> str | None:
    """Queue a ``send-email`` job. Returns None when the queue system is unavailable."""
    email = validate_payload(EmailJobPayload, payload)
    job_id = await enqueue(
        system,
        QueueName.EMAIL,
        JOB_TYPE_SEND_EMAIL,
        email.model_dump(mode="json", exclude_none=True),
        options,
    )
    if job_id is not None:
        logger.info(
            "Email job queued",
            extra={"job_id": job_id, "subject": email.subject, "request_id": email.request_id},
        )
    return job_id
