"""
core/dispatch.py

Typed handler dispatch.

Business logic is written as plain async functions:

    async def create_report(ctx: RequestContext, payload: CreateReport) -> ReportOut: ...
    async def ping(ctx: RequestContext) -> dict: ...

`handle()` turns such a function into a request handler that binds and
validates the input, calls the function under the request deadline,
translates any failure into an HTTPError and shapes the success through the
route's responder (JSON, no-content or file).
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Optional, Type, get_type_hints
from urllib.parse import quote

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel
from starlette.responses import JSONResponse, Response

from ..guards.permissions import normalize_permissions, require_permissions
from .context import get_request_context
from .errors import HTTPError
from .storage_errors import translate
from .validation import bind_and_validate

logger = logging.getLogger(__name__)

Handler = Callable[..., Awaitable[Any]]

AUTO = object()  # input model resolved from the handler's type hints


# ---------------------------------------------------------------------------
# Responders (one per response shape, chosen when the route is registered)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FileResult:
    filename: str
    content_type: str
    content: bytes


class Responder(ABC):
    default_status: int = 200

    @abstractmethod
    def render(self, output: Any, status_code: int) -> Response:
        ...


class JSONResponder(Responder):
    default_status = 200

    def render(self, output: Any, status_code: int) -> Response:
        return JSONResponse(content=jsonable_encoder(output), status_code=status_code)


class NoContentResponder(Responder):
    default_status = 204

    def render(self, output: Any, status_code: int) -> Response:
        return Response(status_code=status_code)


class FileResponder(Responder):
    default_status = 200

    def render(self, output: Any, status_code: int) -> Response:
        if not isinstance(output, FileResult):
            raise TypeError(f"file routes must return FileResult, got {type(output).__name__}")
        return Response(
            content=output.content,
            status_code=status_code,
            media_type=output.content_type,
            headers={"Content-Disposition": content_disposition(output.filename)},
        )


def content_disposition(filename: str) -> str:
    fallback = filename.encode("ascii", "ignore").decode("ascii").replace("\\", "").replace('"', "") or "download"
    value = f'attachment; filename="{fallback}"'
    if fallback != filename:
        value += f"; filename*=UTF-8''{quote(filename)}"
    return value


JSON = JSONResponder()
NO_CONTENT = NoContentResponder()
FILE = FileResponder()


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

def resolve_input_model(func: Handler) -> Optional[Type[BaseModel]]:
    """
    The second positional parameter's annotation is the input model; handlers
    taking only the context have no input.
    """
    params = list(inspect.signature(func).parameters.values())
    if len(params) < 2:
        return None
    hints = get_type_hints(func)
    model = hints.get(params[1].name)
    if not (inspect.isclass(model) and issubclass(model, BaseModel)):
        raise TypeError(f"{func.__name__}: input parameter must be annotated with a pydantic model")
    return model


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000.0


def handle(
    func: Handler,
    responder: Responder = JSON,
    *,
    input_model: Any = AUTO,
    operation: Optional[str] = None,
    status_code: Optional[int] = None,
    permissions: Iterable[str] = (),
    auth_required: bool = False,
) -> Callable[[Request], Awaitable[Response]]:
    model = resolve_input_model(func) if input_model is AUTO else input_model
    op = operation or func.__name__
    status = status_code or responder.default_status
    required = sorted(normalize_permissions(permissions))

    async def endpoint(request: Request) -> Response:
        ctx = get_request_context(request)
        sink = request.app.state.observability
        log = ctx.logger or logger

        # Phase 1: authorize, bind, validate
        payload = None
        started = time.perf_counter()
        outcome = "error"
        try:
            if required:
                require_permissions(ctx, *required)
            if model is not None:
                payload = await bind_and_validate(request, model)
            outcome = "ok"
        except HTTPError as err:
            request.state.error = err
            raise
        finally:
            sink.record_duration(op, "validation", _elapsed_ms(started), outcome)

        # Phase 2: business logic
        started = time.perf_counter()
        outcome = "error"
        try:
            call = func(ctx) if model is None else func(ctx, payload)
            output = await asyncio.wait_for(call, timeout=ctx.remaining())
            outcome = "ok"
        except Exception as exc:
            err = translate(exc)
            request.state.error = err
            if err.status >= 500:
                log.error("handler failed", exc_info=exc, extra={"operation": op})
            raise err from exc
        finally:
            sink.record_duration(op, "handler", _elapsed_ms(started), outcome)

        return responder.render(output, status)

    endpoint.__name__ = func.__name__
    endpoint.__qualname__ = func.__qualname__
    endpoint.__doc__ = func.__doc__
    endpoint.auth_required = auth_required  # type: ignore[attr-defined]
    endpoint.operation = op  # type: ignore[attr-defined]
    return endpoint
