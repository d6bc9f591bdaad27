"""
core/logging.py

JSON logging setup.

Non-developer summary:
----------------------
This makes logs machine-readable and easy to filter. Request-scoped lines
carry requestId, userId, traceId, ... because the per-request ContextLogger
passes them as record extras; this formatter picks them up.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Extras copied from records into the JSON payload (safe subset).
EXTRA_FIELDS = (
    "requestId",
    "method",
    "path",
    "clientIp",
    "traceId",
    "spanId",
    "userId",
    "userRole",
    "status",
    "latencyMs",
    "operation",
    "phase",
    "durationMs",
    "outcome",
    "event",
    "endpoint",
    "taskType",
    "taskId",
    "queue",
    "missing",
)

_installed_handler: Optional[logging.Handler] = None


class JsonFormatter(logging.Formatter):
    """
    Minimal JSON log formatter that adds common fields and whitelisted extras.
    """

    def __init__(self, service: str, stage: str):
        super().__init__()
        self.service = service
        self.stage = stage

    def format(self, record: logging.LogRecord) -> str:
        # Base envelope
        payload: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "service": self.service,
            "stage": self.stage,
        }

        for key in EXTRA_FIELDS:
            if hasattr(record, key):
                payload[key] = getattr(record, key)

        # Exceptions keep their full stack server-side only
        if record.exc_info:
            payload["exc"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "stack": self.formatException(record.exc_info),
            }

        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


def _setup_handler(level: int, formatter: logging.Formatter) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def configure_logging(level_str: str = "INFO", *, service: str = "boilerplate-backend", stage: str = "local") -> None:
    """
    Configure root and uvicorn loggers to use JSON.

    Safe to call more than once: only the handler installed by a previous call
    is replaced, handlers added by others (pytest's caplog, ...) stay.
    """
    global _installed_handler
    level = getattr(logging, (level_str or "INFO").upper(), logging.INFO)

    formatter = JsonFormatter(service=service, stage=stage)
    handler = _setup_handler(level, formatter)

    # Root logger
    root = logging.getLogger()
    if _installed_handler is not None:
        root.removeHandler(_installed_handler)
    root.setLevel(level)
    root.addHandler(handler)

    # Align uvicorn/access loggers
    for name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
        lg = logging.getLogger(name)
        for h in list(lg.handlers):
            lg.removeHandler(h)
        lg.setLevel(level)
        lg.propagate = True

    _installed_handler = handler
