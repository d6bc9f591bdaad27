"""
middleware/tracing.py

Distributed tracing stages (OpenTelemetry).

- TracingMiddleware opens a SERVER span per request, continuing the caller's
  trace when a W3C `traceparent` header is present, and binds the trace/span
  ids to the RequestContext.
- TraceEnrichmentMiddleware decorates that span with request attributes and,
  once the response is known, the user id, status code and handler error.

Both are pass-through when tracing is disabled (no tracer).
"""

from __future__ import annotations

from typing import Optional

from fastapi import Request
from opentelemetry import propagate, trace
from opentelemetry.trace import SpanKind, Status, StatusCode
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from starlette.types import ASGIApp

from ..core.context import get_request_context


class TracingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, tracer: Optional[trace.Tracer] = None) -> None:
        super().__init__(app)
        self.tracer = tracer

    async def dispatch(self, request: Request, call_next):
        if self.tracer is None:
            return await call_next(request)

        ctx = get_request_context(request)
        parent = propagate.extract(dict(request.headers))
        with self.tracer.start_as_current_span(
            f"{request.method} {request.url.path}",
            context=parent,
            kind=SpanKind.SERVER,
        ) as span:
            sc = span.get_span_context()
            ctx.bind(trace_id=format(sc.trace_id, "032x"), span_id=format(sc.span_id, "016x"))
            request.state.span = span
            response: Response = await call_next(request)
        return response


class TraceEnrichmentMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        span = getattr(request.state, "span", None)
        if span is None:
            return await call_next(request)

        ctx = get_request_context(request)
        span.set_attribute("http.request.method", request.method)
        span.set_attribute("url.path", request.url.path)
        span.set_attribute("client.address", ctx.client_ip)

        response: Response = await call_next(request)

        # Known only after authentication ran
        if ctx.user_id:
            span.set_attribute("enduser.id", ctx.user_id)
        span.set_attribute("http.response.status_code", response.status_code)

        err = getattr(request.state, "error", None)
        if err is not None:
            span.record_exception(err)
            span.set_status(Status(StatusCode.ERROR, str(getattr(err, "code", type(err).__name__))))
        elif response.status_code >= 500:
            span.set_status(Status(StatusCode.ERROR))
        return response
