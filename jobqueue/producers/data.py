"""
Data processing queue producer.
"""

import logging
from typing import TYPE_CHECKING, Any

from jobqueue.constants import QueueName
from jobqueue.producers.base import enqueue, validate_payload
from jobqueue.types.job import JobOptions
from jobqueue.types.payloads import DataJobPayload
from jobqueue.worker.registry import data_job_type

if TYPE_CHECKING:
    from jobqueue.registry import QueueSystem

logger = logging.getLogger(__name__)


async def add_data_job(
    system: "QueueSystem",
    payload: DataJobPayload | dict[str, Any],
    options: JobOptions | None = None,
) -> str | None:
    """
    Queue a ``process-<type>`` job.

    The priority comes from the options, falling back to the payload's.
    """
    data = validate_payload(DataJobPayload, payload)
    resolved = options or JobOptions()
    if resolved.priority is None and data.priority is not None:
        resolved = resolved.model_copy(update={"priority": data.priority})

    job_id = await enqueue(
        system,
        QueueName.DATA_PROCESSING,
        data_job_type(data.type),
        data.model_dump(mode="json", exclude_none=True),
        resolved,
    )
    if job_id is not None:
        logger.info("Data processing job queued", extra={"job_id": job_id, "type": data.type})
    return job_id
