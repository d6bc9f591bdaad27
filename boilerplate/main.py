"""
main.py

FastAPI application factory for the boilerplate backend.

Non-developer summary (what this file does):
--------------------------------------------
- Sets up JSON logging and builds the FastAPI app.
- Adds the request pipeline (outermost first, each request passes them in order):
    1) Rate limiting (per client IP, in memory)
    2) Strict CORS (allow-listed origins only)
    3) Security headers
    4) Request id (adds/echoes X-Request-ID, creates the request context)
    5) Tracing (OpenTelemetry span per request, when enabled)
    6) Trace enrichment (method, path, user, status on the span)
    7) Context enrichment (request-scoped logger, deadline)
    8) Authentication (bearer token -> user)
    9) Request logging (one line per request)
   10) Panic recovery (unexpected crash -> 500, process keeps serving)
   11) Error formatting (every error becomes {code, message, errors?, action?})
- Mounts routes:
    - Status: /status
    - API routes under the API base path (e.g., /api/v1/me)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .core.config import Settings, get_settings
from .core.errors import register_error_handlers
from .core.logging import configure_logging
from .infra.database import Database
from .infra.observability import ObservabilitySink, TelemetrySink
from .infra.redis import close_redis, create_redis
from .infra.tracing import build_tracer
from .middleware.auth import AuthMiddleware
from .middleware.context import ContextEnrichmentMiddleware
from .middleware.cors import CORSMiddlewareStrict
from .middleware.rate_limit import RateLimiter, RateLimitMiddleware
from .middleware.recovery import PanicRecoveryMiddleware
from .middleware.request_id import RequestIdMiddleware
from .middleware.request_logger import RequestLoggerMiddleware
from .middleware.security_headers import SecurityHeadersMiddleware
from .middleware.tracing import TraceEnrichmentMiddleware, TracingMiddleware
from .routers import me as me_router
from .routers import status as status_router
from .security.auth_provider import AuthProvider, JwtAuthProvider
from .services.jobs import JobService

logger = logging.getLogger(__name__)

_UNSET = object()


def create_app(
    settings: Optional[Settings] = None,
    *,
    auth_provider: Optional[AuthProvider] = None,
    rate_limiter: Optional[RateLimiter] = None,
    observability: Optional[ObservabilitySink] = None,
    database: Optional[Database] = None,
    redis_client: object = _UNSET,
    tracer: object = _UNSET,
    jobs: Optional[JobService] = None,
) -> FastAPI:
    """
    Build and configure the FastAPI application.

    Every collaborator can be injected (tests, alternative providers); the
    defaults are built from settings. Pass redis_client=None / tracer=None to
    explicitly run without Redis / tracing.
    """
    s = settings or get_settings()

    # 1) Logging (structured JSON with requestId, service, stage)
    configure_logging(s.LOG_LEVEL, service=s.APP_NAME, stage=s.ENVIRONMENT)

    # 2) Collaborators
    database = database if database is not None else Database.from_settings(s)
    redis_client = create_redis(s) if redis_client is _UNSET else redis_client
    tracer = build_tracer(s) if tracer is _UNSET else tracer
    observability = observability if observability is not None else TelemetrySink()
    rate_limiter = rate_limiter if rate_limiter is not None else RateLimiter.from_rate(s.RATE_LIMIT)
    auth_provider = auth_provider if auth_provider is not None else JwtAuthProvider(s)
    jobs = jobs if jobs is not None else JobService.from_settings(s)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("starting", extra={"event": "startup"})
        yield
        await database.close()
        await close_redis(redis_client)
        logger.info("stopped", extra={"event": "shutdown"})

    # 3) App instance
    app = FastAPI(
        title=s.APP_NAME,
        version="1.0.0",
        openapi_url="/openapi.json",
        docs_url="/docs" if s.is_local else None,  # hide Swagger outside local
        redoc_url=None,
        lifespan=lifespan,
    )
    app.state.settings = s
    app.state.database = database
    app.state.redis = redis_client
    app.state.observability = observability
    app.state.jobs = jobs

    # 4) Middlewares: Starlette runs the LAST added first, so add innermost first
    app.add_middleware(PanicRecoveryMiddleware)
    app.add_middleware(RequestLoggerMiddleware)
    app.add_middleware(AuthMiddleware, provider=auth_provider)
    app.add_middleware(ContextEnrichmentMiddleware, timeout_sec=s.SERVER_WRITE_TIMEOUT_SEC)
    app.add_middleware(TraceEnrichmentMiddleware)
    app.add_middleware(TracingMiddleware, tracer=tracer)
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware, hsts=not s.is_local)
    app.add_middleware(CORSMiddlewareStrict, allowed_origins=s.ALLOWED_ORIGIN_LIST)
    app.add_middleware(RateLimitMiddleware, limiter=rate_limiter, sink=observability)

    # 5) Routers
    app.include_router(status_router.router, prefix="")
    app.include_router(me_router.router, prefix=s.API_BASE_PATH.rstrip("/"))

    # 6) Error handlers (uniform body everywhere)
    register_error_handlers(app)

    return app


# App instance for local uvicorn runs, e.g.:
# uvicorn boilerplate.main:app --reload --port 8000
app = create_app()
