"""
infra/observability.py

Observability sink used by the request pipeline.

Non-developer summary:
----------------------
The pipeline reports two kinds of facts: notable events (e.g. a client hit
the rate limit) and timings (how long validation and business logic took).
By default they become OpenTelemetry metrics; tests plug in a recorder.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Protocol

from opentelemetry import metrics

logger = logging.getLogger(__name__)


class ObservabilitySink(Protocol):
    def record_event(self, name: str, attributes: Optional[Mapping[str, Any]] = None) -> None:
        ...

    def record_duration(self, operation: str, phase: str, duration_ms: float, status: str) -> None:
        ...


class TelemetrySink:
    """
    OpenTelemetry-backed sink. Uses the globally configured MeterProvider,
    which is a no-op until the deployment installs an SDK provider.
    """

    def __init__(self, meter_name: str = "boilerplate.http"):
        meter = metrics.get_meter(meter_name)
        self._events = meter.create_counter(
            name="app.events",
            description="Notable pipeline events (rate limit hits, ...)",
            unit="1",
        )
        self._durations = meter.create_histogram(
            name="app.operation.duration",
            description="Duration of dispatch phases per operation",
            unit="ms",
        )

    def record_event(self, name: str, attributes: Optional[Mapping[str, Any]] = None) -> None:
        attrs = {k: str(v) for k, v in (attributes or {}).items()}
        attrs["event"] = name
        self._events.add(1, attrs)
        logger.info("observability event", extra={"event": name, "endpoint": attrs.get("endpoint")})

    def record_duration(self, operation: str, phase: str, duration_ms: float, status: str) -> None:
        self._durations.record(
            duration_ms,
            {"operation": operation, "phase": phase, "outcome": status},
        )
        logger.debug(
            "operation phase finished",
            extra={"operation": operation, "phase": phase, "durationMs": round(duration_ms, 3), "outcome": status},
        )
