"""
schemas/common.py

Shared DTOs used across endpoints (error body, status report, caller identity).

Non-developer summary:
----------------------
This describes the common JSON shapes we return, like the {code, message}
error object. Having a typed model helps keep responses consistent and
testable, and documents them in the OpenAPI schema.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class FieldErrorBody(BaseModel):
    field: str = Field(..., description="Dotted path of the offending input field (e.g., items.0.sku)")
    message: str = Field(..., description="What is wrong with it (e.g., required)")


class ActionBody(BaseModel):
    type: str = Field(..., description="What the client should do (e.g., redirect)")
    message: str = Field(..., description="Human-readable hint")
    value: Optional[str] = Field(None, description="Action argument (e.g., the redirect target)")


class ErrorBody(BaseModel):
    code: str = Field(..., description="Stable error code (e.g., VALIDATION_ERROR)")
    message: str = Field(..., description="Human-readable message (safe for UI)")
    errors: Optional[List[FieldErrorBody]] = Field(None, description="Per-field problems, in input order")
    action: Optional[ActionBody] = None


CheckResult = Literal["ok", "fail"]


class StatusResponse(BaseModel):
    status: Literal["healthy", "unhealthy"]
    timestamp: datetime
    environment: str
    checks: Dict[str, CheckResult]


class MeResponse(BaseModel):
    userId: str
    role: Optional[str] = None
    permissions: List[str] = Field(default_factory=list)
    requestId: str


# Documented on every route; the envelope itself is produced by core/errors.py
ERROR_RESPONSES = {
    400: {"model": ErrorBody},
    401: {"model": ErrorBody},
    403: {"model": ErrorBody},
    429: {"model": ErrorBody},
    500: {"model": ErrorBody},
}
