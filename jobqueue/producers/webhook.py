"""
Webhook queue producer.

Webhooks retry more aggressively than other jobs: 5 attempts starting at a
5 second backoff, and each delivery is bounded by the payload's timeout.
"""

import logging
from typing import TYPE_CHECKING, Any

from jobqueue.constants import (
    JOB_TYPE_DELIVER_WEBHOOK,
    WEBHOOK_BACKOFF_DELAY_MS,
    WEBHOOK_MAX_ATTEMPTS,
    QueueName,
)
from jobqueue.producers.base import enqueue, validate_payload
from jobqueue.types.job import BackoffPolicy, JobOptions
from jobqueue.types.payloads import WebhookJobPayload

if TYPE_CHECKING:
    from jobqueue.registry import QueueSystem

logger = logging.getLogger(__name__)


def webhook_job_options(timeout_ms: int) -> JobOptions:
    """Per-type defaults of webhook jobs."""
    return JobOptions(
        max_attempts=WEBHOOK_MAX_ATTEMPTS,
        backoff=BackoffPolicy(delay_ms=WEBHOOK_BACKOFF_DELAY_MS),
        timeout_ms=timeout_ms,
    )


async def add_webhook_job(
    system: "QueueSystem",
    payload: WebhookJobPayload | dict[str, Any],
    options: JobOptions | None = None,
) -> str | None:
    """Queue a ``deliver-webhook`` job. Returns None when the queue system is unavailable."""
    webhook = validate_payload(WebhookJobPayload, payload)
    timeout_ms = webhook.timeout_ms or system.settings.webhook_default_timeout_ms
    resolved = (options or JobOptions()).merged_over(webhook_job_options(timeout_ms))

    job_id = await enqueue(
        system,
        QueueName.WEBHOOK,
        JOB_TYPE_DELIVER_WEBHOOK,
        webhook.model_dump(mode="json", exclude_none=True),
        resolved,
    )
    if job_id is not None:
        logger.info(
            "Webhook job queued",
            extra={"job_id": job_id, "url": webhook.url, "method": webhook.method},
        )
    return job_id
