"""
Built-in job handlers.

Job handlers must be idempotent - they may be executed multiple times
for the same job in case of worker crashes or stalls.
"""

import asyncio
import logging
import resource
import time
from typing import TYPE_CHECKING, Any

import httpx

from jobqueue.constants import (
    DEFAULT_CLEAN_OLDER_THAN_MS,
    JOB_TYPE_DELIVER_WEBHOOK,
    JOB_TYPE_SEND_EMAIL,
    JobStatus,
    QueueName,
)
from jobqueue.types.job import JobContext, JobResult
from jobqueue.types.payloads import EmailJobPayload, WebhookJobPayload
from jobqueue.worker.registry import HandlerRegistry, JobHandler

if TYPE_CHECKING:
    from jobqueue.registry import QueueSystem
    from jobqueue.scheduler.cron import CronScheduler

logger = logging.getLogger(__name__)

HEALTH_CHECK_JOB = "system-health-check"
CLEANUP_JOB = "cleanup-completed-jobs"
EXAMPLE_EXPORT_KIND = "example-export"

_STARTED_AT = time.monotonic()

# Delay simulating an email provider round-trip
EMAIL_SEND_DELAY_SECONDS = 0.1
# Methods sending a JSON body
BODY_METHODS = ("POST", "PUT", "PATCH", "DELETE")


async def handle_send_email(context: JobContext) -> JobResult:
    """
    Send an email.

    Delivery is simulated; swap in a provider client (SMTP, SES, ...) here.
    """
    email = EmailJobPayload.model_validate(context.payload)
    logger.info(
        "Processing email job",
        extra={"job_id": context.job_id, "subject": email.subject, "request_id": email.request_id},
    )

    await asyncio.sleep(EMAIL_SEND_DELAY_SECONDS)
    await context.update_progress(100)

    logger.info("Email sent successfully", extra={"job_id": context.job_id})
    return JobResult(success=True, output={"sent": True})


def make_webhook_handler(
    user_agent: str,
    default_timeout_ms: int,
    transport: httpx.AsyncBaseTransport | None = None,
) -> JobHandler:
    """
    Build the webhook delivery handler.

    Args:
        user_agent: User-Agent header sent with every delivery.
        default_timeout_ms: Timeout when the payload has none.
        transport: Optional httpx transport (tests use MockTransport).

    Returns:
        The handler.
    """

    async def handle_deliver_webhook(context: JobContext) -> JobResult:
        webhook = WebhookJobPayload.model_validate(context.payload)
        timeout = (webhook.timeout_ms or default_timeout_ms) / 1000

        headers = {
            "Content-Type": "application/json",
            "User-Agent": user_agent,
            "X-Webhook-ID": context.job_id,
            "X-Request-ID": webhook.request_id or "",
            **(webhook.headers or {}),
        }

        logger.info(
            "Processing webhook delivery",
            extra={"job_id": context.job_id, "url": webhook.url, "method": webhook.method},
        )

        async with httpx.AsyncClient(transport=transport, timeout=timeout) as client:
            response = await client.request(
                method=webhook.method,
                url=webhook.url,
                headers=headers,
                json=webhook.body if webhook.body is not None and webhook.method in BODY_METHODS else None,
            )

        if not response.is_success:
            logger.warning(
                "Webhook delivery failed with non-2xx status",
                extra={
                    "job_id": context.job_id,
                    "url": webhook.url,
                    "status": response.status_code,
                    "response": response.text[:500],
                },
            )
            return JobResult(
                success=False,
                error=f"Webhook failed with status {response.status_code}",
            )

        await context.update_progress(100)
        logger.info(
            "Webhook delivered successfully",
            extra={"job_id": context.job_id, "status": response.status_code},
        )
        return JobResult(
            success=True,
            output={"status": response.status_code, "success": True},
        )

    return handle_deliver_webhook


async def handle_example_export(context: JobContext) -> JobResult:
    """Example data handler reporting progress in steps."""
    logger.info("Running example export handler", extra={"job_id": context.job_id})
    for progress in (25, 50, 75):
        await context.update_progress(progress)
        await asyncio.sleep(0.1)
    await context.update_progress(100)
    return JobResult(success=True, output={"success": True, "processed": 1})


def make_health_check_handler(system: "QueueSystem") -> JobHandler:
    """Cron handler logging process health and store connectivity."""

    async def handle_health_check(context: JobContext) -> JobResult:
        usage = resource.getrusage(resource.RUSAGE_SELF)
        health = await system.check_health()
        uptime = round(time.monotonic() - _STARTED_AT)
        # ru_maxrss is in kilobytes on Linux
        max_rss_mb = round(usage.ru_maxrss / 1024)

        logger.info(
            "System health check completed",
            extra={"max_rss_mb": max_rss_mb, "uptime": uptime, "store_connected": health.connected},
        )
        return JobResult(
            success=True,
            output={
                "healthy": health.connected,
                "memory": {"max_rss_mb": max_rss_mb},
                "uptime": uptime,
            },
        )

    return handle_health_check


def make_cleanup_handler(
    system: "QueueSystem",
    older_than_ms: int = DEFAULT_CLEAN_OLDER_THAN_MS,
) -> JobHandler:
    """Cron handler removing completed jobs older than ``older_than_ms`` from every open queue."""

    async def handle_cleanup(context: JobContext) -> JobResult:
        removed: dict[str, int] = {}
        for name in system.queue_names:
            queue = system.get_queue(name)
            if queue is None:
                continue
            total = 0
            while True:
                count = await queue.repository.clean(JobStatus.COMPLETED, older_than_ms)
                total += count
                if count == 0:
                    break
            removed[name] = total

        logger.info("Cleanup of old completed jobs finished", extra={"removed": removed})
        return JobResult(success=True, output={"success": True, "removed": removed})

    return handle_cleanup


def register_builtin_handlers(
    registry: HandlerRegistry,
    user_agent: str,
    webhook_timeout_ms: int,
    transport: httpx.AsyncBaseTransport | None = None,
) -> None:
    """Register the email, webhook and example data handlers."""
    registry.register(QueueName.EMAIL, JOB_TYPE_SEND_EMAIL, handle_send_email)
    registry.register(
        QueueName.WEBHOOK,
        JOB_TYPE_DELIVER_WEBHOOK,
        make_webhook_handler(user_agent, webhook_timeout_ms, transport),
    )
    registry.register_data_handler(EXAMPLE_EXPORT_KIND, handle_example_export)


def register_builtin_cron_handlers(scheduler: "CronScheduler", system: "QueueSystem") -> None:
    """Register the health-check and cleanup cron handlers."""
    scheduler.register_handler(HEALTH_CHECK_JOB, make_health_check_handler(system))
    scheduler.register_handler(CLEANUP_JOB, make_cleanup_handler(system))


def describe(registry: HandlerRegistry) -> dict[str, Any]:
    """Registered job types per queue, for startup logging."""
    return {name.value: registry.names(name) for name in QueueName}
