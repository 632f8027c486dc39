"""
Structured logging setup using structlog.

Modules log through ``logging.getLogger(__name__)`` with ``extra={...}``;
the stdlib records are rendered by structlog's ProcessorFormatter.
"""

import logging
import sys
from contextlib import AbstractContextManager
from typing import Any

import structlog
from opentelemetry import trace

from jobqueue.config import get_settings

# Third-party loggers capped at WARNING
NOISY_LOGGERS = ("httpx", "httpcore", "redis")


def add_trace_context(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Add OpenTelemetry trace and span ids of the current span to a log record."""
    span = trace.get_current_span()
    if span and span.is_recording():
        ctx = span.get_span_context()
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def setup_logging(level: str | None = None, log_format: str | None = None) -> None:
    """
    Configure structured logging for the worker process.

    Args:
        level: Log level override; defaults to ``settings.log_level``.
        log_format: ``json`` or ``console``; defaults to ``settings.log_format``.
    """
    settings = get_settings()
    level_name = (level or settings.log_level).upper()
    log_level = getattr(logging, level_name, logging.INFO)
    fmt = log_format or settings.log_format

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        add_trace_context,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ExtraAdder(),
    ]

    if fmt == "json":
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(log_level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger bound to ``name``."""
    return structlog.get_logger(name)


def job_log_context(job_id: str, queue: str, attempt: int) -> AbstractContextManager[None]:
    """Bind a job's id, queue and attempt to every log record emitted inside the block."""
    return structlog.contextvars.bound_contextvars(job_id=job_id, queue=queue, attempt=attempt)
