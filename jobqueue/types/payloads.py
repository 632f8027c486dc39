"""
Queue-specific job payload definitions.

The core never inspects payloads; these models validate what producers put
on the email, webhook, data-processing and cron queues.
"""

from typing import Any, Literal

from pydantic import BaseModel, Field

from jobqueue.constants import MAX_PRIORITY, MIN_PRIORITY

HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE"]


class EmailJobPayload(BaseModel):
    """Email job payload."""

    to: str = Field(..., min_length=1, description="Recipient email address")
    subject: str = Field(..., description="Email subject")
    body: str = Field(..., description="Email body (HTML or plain text)")
    template: str | None = None
    template_data: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None
    request_id: str | None = None


class WebhookJobPayload(BaseModel):
    """Webhook delivery job payload."""

    url: str = Field(..., min_length=1, description="Target URL")
    method: HttpMethod = "POST"
    headers: dict[str, str] | None = None
    body: Any = None
    timeout_ms: int | None = Field(default=None, gt=0)
    metadata: dict[str, Any] | None = None
    request_id: str | None = None


class DataJobPayload(BaseModel):
    """Data processing job payload."""

    type: str = Field(..., min_length=1, description="Processing type identifier")
    data: Any = None
    priority: int | None = Field(default=None, ge=MIN_PRIORITY, le=MAX_PRIORITY)
    metadata: dict[str, Any] | None = None
    request_id: str | None = None


class CronJobPayload(BaseModel):
    """Payload of a job fired by the cron scheduler."""

    name: str
    handler: str
    data: Any = None
    request_id: str | None = None
