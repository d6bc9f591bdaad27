"""
core/routing.py

Register business functions as routes.

    router = APIRouter()

    @route(router, "POST", "/reports", status_code=201, auth_required=True)
    async def create_report(ctx: RequestContext, payload: CreateReport) -> ReportOut: ...

Each route is a Typed Dispatch endpoint; the middleware chain wraps it once
the router is included in the application.
"""

from __future__ import annotations

from typing import Any, Callable, Iterable, Optional, Union

from fastapi import APIRouter, FastAPI, Request
from starlette.routing import Match

from .dispatch import AUTO, JSON, Handler, Responder, handle


def add_route(
    router: Union[APIRouter, FastAPI],
    method: str,
    path: str,
    func: Handler,
    responder: Responder = JSON,
    *,
    auth_required: bool = False,
    permissions: Iterable[str] = (),
    status_code: Optional[int] = None,
    input_model: Any = AUTO,
    operation: Optional[str] = None,
    **route_kwargs: Any,
) -> Callable:
    permissions = tuple(permissions)
    endpoint = handle(
        func,
        responder,
        input_model=input_model,
        operation=operation,
        status_code=status_code,
        permissions=permissions,
        # Permission checks need an identity
        auth_required=auth_required or bool(permissions),
    )
    router.add_api_route(
        path,
        endpoint,
        methods=[method.upper()],
        name=operation or func.__name__,
        status_code=status_code or responder.default_status,
        **route_kwargs,
    )
    return endpoint


def route(
    router: Union[APIRouter, FastAPI],
    method: str,
    path: str,
    responder: Responder = JSON,
    **options: Any,
) -> Callable[[Handler], Handler]:
    """Decorator form of add_route(); returns the business function unchanged."""

    def decorator(func: Handler) -> Handler:
        add_route(router, method, path, func, responder, **options)
        return func

    return decorator


def route_requires_auth(request: Request) -> bool:
    """Whether the route this request will reach was registered with auth_required."""
    for candidate in request.app.router.routes:
        match, _ = candidate.matches(request.scope)
        if match == Match.FULL:
            endpoint = getattr(candidate, "endpoint", None)
            return bool(getattr(endpoint, "auth_required", False))
    return False
