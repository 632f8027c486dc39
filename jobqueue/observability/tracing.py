"""
OpenTelemetry tracing setup.

Until ``setup_tracing()`` runs, ``get_tracer()`` hands out a tracer from the
global provider, which is a no-op unless something else installed one.
"""

import logging
from contextlib import AbstractContextManager
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Span, Tracer

from jobqueue import __version__
from jobqueue.config import get_settings

logger = logging.getLogger(__name__)

# Global tracer instance
_tracer: Tracer | None = None


def setup_tracing(enable_console_export: bool = False) -> Tracer:
    """
    Set up OpenTelemetry tracing with an OTLP exporter.

    Args:
        enable_console_export: If True, also export spans to console.

    Returns:
        Tracer: The tracer instance.
    """
    global _tracer

    settings = get_settings()

    resource = Resource.create(
        {
            "service.name": settings.otel_service_name,
            "service.version": __version__,
        }
    )
    provider = TracerProvider(resource=resource)

    try:
        otlp_exporter = OTLPSpanExporter(
            endpoint=settings.otel_exporter_otlp_endpoint,
            insecure=True,
        )
        provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
    except Exception as e:
        logger.warning("OTLP exporter unavailable", extra={"error": str(e)})

    if enable_console_export:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(provider)
    _tracer = trace.get_tracer(settings.otel_service_name)

    logger.info(
        "Tracing configured",
        extra={"endpoint": settings.otel_exporter_otlp_endpoint},
    )
    return _tracer


def get_tracer() -> Tracer:
    """
    Get the tracer instance.

    Returns:
        Tracer: The configured tracer, or one from the global provider.
    """
    if _tracer is not None:
        return _tracer
    return trace.get_tracer(get_settings().otel_service_name)


def create_span(name: str, /, **attributes: Any) -> AbstractContextManager[Span]:
    """
    Start a span as the current span, with ``None`` attributes dropped.

    Args:
        name: Span name.
        **attributes: Span attributes.

    Returns:
        A context manager yielding the span.
    """
    return get_tracer().start_as_current_span(
        name,
        attributes={key: str(value) for key, value in attributes.items() if value is not None},
    )
