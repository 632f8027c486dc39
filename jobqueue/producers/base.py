"""
Generic job submission.

Every producer goes through ``enqueue``: an unavailable queue system yields
None ("not queued") instead of an error, while store failures surface as
StoreError.
"""

import logging
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel, ValidationError

from jobqueue.constants import SPAN_ENQUEUE_JOB
from jobqueue.exceptions import InvalidJobError
from jobqueue.observability.tracing import create_span
from jobqueue.store.connection import store_errors
from jobqueue.types.job import JobOptions

if TYPE_CHECKING:
    from jobqueue.registry import QueueSystem

logger = logging.getLogger(__name__)

PayloadT = TypeVar("PayloadT", bound=BaseModel)


def validate_payload(model: type[PayloadT], payload: PayloadT | dict[str, Any]) -> PayloadT:
    """
    Coerce a producer payload into its model.

    Raises:
        InvalidJobError: If the payload does not match the model.
    """
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise InvalidJobError(
            f"Invalid {model.__name__}",
            {"errors": e.errors(include_url=False, include_context=False)},
        ) from e


async def enqueue(
    system: "QueueSystem",
    queue_name: str,
    type_name: str,
    payload: dict[str, Any],
    options: JobOptions | None = None,
) -> str | None:
    """
    Submit a job to a named queue.

    Options merge over the queue's default job options; explicit values win.
    A ``job_id`` naming a job that still exists returns that job's id.

    Args:
        system: The queue system.
        queue_name: Target queue.
        type_name: Handler discriminator within the queue.
        payload: Opaque job payload.
        options: Per-job overrides.

    Returns:
        The job id, or None if the queue system is unavailable.

    Raises:
        StoreError: On connection-level store failures.
    """
    queue = system.get_queue(queue_name)
    if queue is None:
        logger.warning(
            "Queue not available, job not queued",
            extra={"queue": queue_name, "type": type_name},
        )
        return None

    with create_span(SPAN_ENQUEUE_JOB, queue=queue_name, type=type_name):
        async with store_errors("enqueue"):
            job, created = await queue.add(type_name, payload, options)

    if created:
        system.metrics.record_job_submitted(queue.name)

    logger.info(
        "Job queued" if created else "Job already queued",
        extra={"job_id": job.id, "queue": queue.name, "type": type_name},
    )
    return job.id
