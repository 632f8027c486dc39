"""
Observability module.
Contains logging, metrics, and tracing setup.
"""

from jobqueue.observability.logging import (
    get_logger,
    job_log_context,
    setup_logging,
)
from jobqueue.observability.metrics import (
    MetricsRecorder,
    get_metrics,
    setup_metrics,
)
from jobqueue.observability.tracing import create_span, get_tracer, setup_tracing

__all__ = [
    "setup_logging",
    "get_logger",
    "job_log_context",
    "setup_metrics",
    "get_metrics",
    "MetricsRecorder",
    "setup_tracing",
    "get_tracer",
    "create_span",
]
