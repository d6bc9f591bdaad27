"""
core/context.py

Per-request context accumulated by the middleware chain.

Non-developer summary:
----------------------
Each request gets one RequestContext. Middlewares add facts to it as they
learn them (request id, who the caller is, trace ids, a logger that already
knows all of that). Handlers receive it as an explicit argument; nothing is
looked up from globals.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, MutableMapping, Optional, Tuple

from fastapi import Request


class ContextFieldAlreadySet(RuntimeError):
    """Raised when a stage tries to overwrite a field set by an earlier stage."""


@dataclass
class RequestContext:
    request_id: str
    method: str = ""
    path: str = ""
    client_ip: str = ""
    user_id: Optional[str] = None
    user_role: Optional[str] = None
    permissions: FrozenSet[str] = field(default_factory=frozenset)
    trace_id: Optional[str] = None
    span_id: Optional[str] = None
    logger: Optional["ContextLogger"] = None
    deadline: Optional[float] = None  # time.monotonic() instant

    def bind(self, **values: Any) -> "RequestContext":
        """
        Set fields exactly once. Setting an already-populated field raises
        ContextFieldAlreadySet; unknown names raise AttributeError.
        """
        for name, value in values.items():
            if name not in self.__dataclass_fields__:
                raise AttributeError(f"RequestContext has no field {name!r}")
            current = getattr(self, name)
            if current not in (None, "", frozenset()):
                raise ContextFieldAlreadySet(f"RequestContext.{name} is already set")
            if name == "permissions":
                value = frozenset(value or ())
            setattr(self, name, value)
        return self

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    def remaining(self) -> Optional[float]:
        """Seconds left before the request deadline (None when unbounded)."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def log_fields(self) -> Dict[str, Any]:
        fields = {
            "requestId": self.request_id,
            "method": self.method or None,
            "path": self.path or None,
            "clientIp": self.client_ip or None,
            "traceId": self.trace_id,
            "spanId": self.span_id,
            "userId": self.user_id,
            "userRole": self.user_role,
        }
        return {k: v for k, v in fields.items() if v is not None}


class ContextLogger(logging.LoggerAdapter):
    """
    Logger adapter that stamps every record with the owning request's fields.
    Fields learned later in the chain (userId) show up automatically.
    """

    def __init__(self, logger: logging.Logger, context: RequestContext):
        super().__init__(logger, {})
        self.context = context

    def process(self, msg: str, kwargs: MutableMapping[str, Any]) -> Tuple[str, MutableMapping[str, Any]]:
        extra = dict(self.context.log_fields())
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs


def get_request_context(request: Request) -> RequestContext:
    ctx = getattr(request.state, "ctx", None)
    if ctx is None:
        raise RuntimeError("RequestContext missing: RequestIdMiddleware is not installed")
    return ctx
