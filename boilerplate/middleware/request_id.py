"""
middleware/request_id.py

Guarantees an X-Request-ID for every request and creates the per-request
RequestContext:
  - request.state.request_id (plain id, used by error responses)
  - request.state.ctx (RequestContext, enriched by the following stages)

Non-developer summary:
----------------------
This adds a unique id to each request so we can trace it across services
and logs. If the caller provides one, we keep it; otherwise we create one.
"""

from __future__ import annotations

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from ..core.context import RequestContext
from ..core.errors import REQUEST_ID_HEADER, accept_request_id
from .rate_limit import _client_ip


class RequestIdMiddleware(BaseHTTPMiddleware):
    """
    - Accept or generate a request id.
    - Create the RequestContext with the request basics.
    - Echo the id back in the response header.
    """

    header_name: str = REQUEST_ID_HEADER

    async def dispatch(self, request: Request, call_next):
        rid = accept_request_id(request.headers.get(self.header_name))

        request.state.request_id = rid
        request.state.ctx = RequestContext(
            request_id=rid,
            method=request.method,
            path=request.url.path,
            client_ip=_client_ip(request),
        )

        response: Response = await call_next(request)
        response.headers[self.header_name] = rid
        return response
