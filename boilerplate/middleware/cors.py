"""
middleware/cors.py

Strict, allow-list based CORS middleware.

Non-developer summary:
----------------------
Browsers block cross-site requests unless the server explicitly allows them.
We only allow requests from origins listed in BOILERPLATE_CORS_ALLOWED_ORIGINS
(e.g., https://app.example.com, http://localhost:3000); "*" allows any origin.
Unknown origins receive no CORS headers, and their preflights are refused.
"""

from __future__ import annotations

from typing import Iterable, List, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from starlette.types import ASGIApp

from ..core.errors import REQUEST_ID_HEADER, error_response, forbidden, request_id_for


ALLOWED_METHODS: List[str] = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
# Headers the browser is allowed to send.
ALLOWED_HEADERS = {"Content-Type", "Authorization", "X-Request-ID", "Idempotency-Key", "traceparent", "tracestate"}


class CORSMiddlewareStrict(BaseHTTPMiddleware):
    """
    Enforces:
      - Only configured origins are allowed ("*" = any).
      - Preflight (OPTIONS + Access-Control-Request-Method) ends here:
        204 with CORS headers, or 403 FORBIDDEN envelope.
      - Actual requests from approved origins get the CORS headers; others
        pass through untouched.

    Notes:
      * The exact Origin is echoed even for "*" so credentials keep working.
      * Preflight caching is set to 600 seconds by default (tunable).
    """

    def __init__(self, app: ASGIApp, allowed_origins: Iterable[str], max_age: int = 600):
        super().__init__(app)
        self.allowed_origins: List[str] = [o.strip() for o in allowed_origins if o and o.strip()]
        self.allow_any = "*" in self.allowed_origins
        self.max_age = max_age

    async def dispatch(self, request: Request, call_next):
        origin = request.headers.get("Origin")

        # --- Handle preflight (OPTIONS) early ---
        if request.method == "OPTIONS" and request.headers.get("Access-Control-Request-Method"):
            return self._handle_preflight(request, origin)

        # --- Simple/actual request flow ---
        response: Response = await call_next(request)

        if origin and self._is_allowed_origin(origin):
            self._apply_cors_headers(response, origin)
        return response

    def _handle_preflight(self, request: Request, origin: Optional[str]) -> Response:
        if not origin or not self._is_allowed_origin(origin):
            return error_response(forbidden("Origin not allowed."), request)

        req_method = request.headers.get("Access-Control-Request-Method", "").upper()
        if req_method not in ALLOWED_METHODS:
            return error_response(forbidden("Method not allowed by CORS."), request)

        resp = Response(status_code=204)
        self._apply_cors_headers(resp, origin)
        resp.headers["Access-Control-Allow-Methods"] = ", ".join(ALLOWED_METHODS)
        resp.headers["Access-Control-Allow-Headers"] = ", ".join(sorted(ALLOWED_HEADERS))
        resp.headers["Access-Control-Max-Age"] = str(self.max_age)
        resp.headers[REQUEST_ID_HEADER] = request_id_for(request)
        return resp

    def _apply_cors_headers(self, response: Response, origin: str) -> None:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Vary"] = "Origin"  # ensure proxies don't mix origins
        response.headers["Access-Control-Allow-Credentials"] = "true"
        response.headers["Access-Control-Expose-Headers"] = REQUEST_ID_HEADER

    def _is_allowed_origin(self, origin: str) -> bool:
        return self.allow_any or origin in self.allowed_origins
