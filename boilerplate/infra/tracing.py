"""
infra/tracing.py

OpenTelemetry tracer construction.

The provider is private to the application instance (not installed
globally), so several apps (e.g. in tests) can trace independently.
"""

from __future__ import annotations

from typing import Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SpanExporter, SimpleSpanProcessor

from ..core.config import Settings


def build_tracer_provider(settings: Settings, exporter: Optional[SpanExporter] = None) -> TracerProvider:
    provider = TracerProvider(
        resource=Resource.create(
            {"service.name": settings.APP_NAME, "deployment.environment": settings.ENVIRONMENT}
        )
    )
    if exporter is not None:
        provider.add_span_processor(SimpleSpanProcessor(exporter))
    elif settings.TRACING_EXPORTER.lower() == "console":
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    return provider


def build_tracer(settings: Settings, exporter: Optional[SpanExporter] = None) -> Optional[trace.Tracer]:
    """Return a tracer when tracing is enabled, else None (the tracing stages become pass-through)."""
    if not settings.TRACING_ENABLED:
        return None
    return build_tracer_provider(settings, exporter).get_tracer("boilerplate.http")
