"""
middleware/rate_limit.py

Per-client rate limiting, first stage of the chain:
- Fixed window per client IP (e.g., 20/s from settings.RATE_LIMIT).
- In-process counters behind a lock; each client's window rolls on its own.
- Over the limit -> 429 RATE_LIMITED envelope + a "rate_limit_hit" event.

Non-developer summary:
----------------------
This protects the API from bursts and abuse. A client sending more requests
than allowed inside one window gets "Too many requests" until its window
resets. Counters live in memory, so each API process limits independently.
"""

from __future__ import annotations

import re
import threading
import time
from typing import Callable, Dict, Tuple

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from ..core.errors import error_response, rate_limited
from ..infra.observability import ObservabilitySink


_rate_pattern = re.compile(r"^\s*(\d+)\s*/\s*([smhd])\s*$", re.IGNORECASE)
_unit_seconds = {"s": 1, "m": 60, "h": 3600, "d": 86400}


def _parse_rate(s: str) -> Tuple[int, int]:
    """
    Parses a simple rate string like "20/s" -> (20, 1)
    """
    m = _rate_pattern.match(s or "")
    if not m:
        # default to 20/s if misconfigured
        return 20, 1
    count = int(m.group(1))
    window = _unit_seconds[m.group(2).lower()]
    return count, window


def _client_ip(request: Request) -> str:
    # Behind a proxy/ALB the first X-Forwarded-For hop is the original client
    xff = request.headers.get("x-forwarded-for")
    if xff:
        first = xff.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else "unknown"


class RateLimiter:
    """
    Fixed-window counter keyed by client.

    allow(key) increments the key's counter for the current window and tells
    whether the request fits the limit. `clock` is injectable for tests.
    """

    def __init__(self, limit: int, window: float, clock: Callable[[], float] = time.monotonic):
        if limit <= 0 or window <= 0:
            raise ValueError("rate limit and window must be positive")
        self.limit = limit
        self.window = float(window)
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: Dict[str, Tuple[float, int]] = {}  # key -> (window start, count)
        self._next_prune = 0.0

    @classmethod
    def from_rate(cls, rate: str, clock: Callable[[], float] = time.monotonic) -> "RateLimiter":
        limit, window = _parse_rate(rate)
        return cls(limit, window, clock=clock)

    def allow(self, key: str) -> bool:
        with self._lock:
            now = self._clock()
            self._prune(now)
            start, count = self._windows.get(key, (now, 0))
            if now - start >= self.window:
                start, count = now, 0
            count += 1
            self._windows[key] = (start, count)
            return count <= self.limit

    def _prune(self, now: float) -> None:
        # Caller holds the lock. Runs at most once per window.
        if now < self._next_prune:
            return
        stale = [k for k, (start, _) in self._windows.items() if now - start >= self.window]
        for k in stale:
            del self._windows[k]
        self._next_prune = now + self.window

    def __len__(self) -> int:
        return len(self._windows)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Rejects requests over the per-client limit before any other stage runs.
    The 429 still carries an X-Request-ID (echoed or generated).
    """

    def __init__(self, app: ASGIApp, limiter: RateLimiter, sink: ObservabilitySink) -> None:
        super().__init__(app)
        self.limiter = limiter
        self.sink = sink

    async def dispatch(self, request: Request, call_next):
        if not self.limiter.allow(_client_ip(request)):
            self.sink.record_event("rate_limit_hit", {"endpoint": request.url.path})
            return error_response(rate_limited(), request)
        return await call_next(request)
