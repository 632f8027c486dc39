"""
Application configuration using Pydantic Settings.
Loads configuration from environment variables with sensible defaults.
"""

import os
import socket
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Store (Redis). Without a URL the queue system is "unavailable".
    queue_redis_url: str | None = None
    redis_url: str | None = None
    queue_enabled: bool = True
    queue_key_prefix: str = "jobqueue"

    # Worker Configuration
    queue_concurrency: int = Field(default=5, ge=1)
    worker_id: str = Field(default_factory=_default_worker_id)
    worker_poll_interval_seconds: float = 1.0
    worker_lock_duration_seconds: int = 30
    worker_heartbeat_interval_seconds: float = 10.0
    worker_shutdown_timeout_seconds: float = 30.0

    # Reaper Configuration
    reaper_interval_seconds: float = 5.0
    metrics_poll_interval_seconds: float = 15.0

    # Scheduler Configuration
    scheduler_poll_interval_seconds: float = 1.0

    # Retry Defaults
    default_max_attempts: int = 3
    default_backoff_delay_ms: int = 1000
    max_backoff_delay_ms: int = 60 * 60 * 1000
    missing_handler_fail_fast: bool = False

    # Webhooks
    webhook_default_timeout_ms: int = 30_000
    webhook_user_agent: str = "jobqueue-webhook/1.0"

    # Observability
    otel_exporter_otlp_endpoint: str = "http://localhost:4317"
    otel_service_name: str = "jobqueue"
    tracing_enabled: bool = False
    prometheus_port: int = 9090
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    @property
    def redis_url_for_queues(self) -> str | None:
        """Connection string for the queue store, or None when not configured."""
        if not self.queue_enabled:
            return None
        return self.queue_redis_url or self.redis_url or None


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
