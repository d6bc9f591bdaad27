"""
core/errors.py

HTTPError taxonomy, uniform error envelope and exception handlers.

Non-developer summary:
----------------------
No matter where an error happens, the client sees the same structure:
{ code, message, errors?, action? } with the matching HTTP status. Internal
details (stack traces, database messages) only ever go to server logs.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_LENGTH = 128

# ---------- Closed set of codes ----------

BAD_REQUEST = "BAD_REQUEST"
VALIDATION_ERROR = "VALIDATION_ERROR"
UNAUTHORIZED = "UNAUTHORIZED"
FORBIDDEN = "FORBIDDEN"
NOT_FOUND = "NOT_FOUND"
RATE_LIMITED = "RATE_LIMITED"
INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"

STATUS_BY_CODE: Dict[str, int] = {
    BAD_REQUEST: 400,
    VALIDATION_ERROR: 400,
    UNAUTHORIZED: 401,
    FORBIDDEN: 403,
    NOT_FOUND: 404,
    RATE_LIMITED: 429,
    INTERNAL_SERVER_ERROR: 500,
}

GENERIC_INTERNAL_MESSAGE = "An unexpected error occurred. Please try again later."


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"field": self.field, "message": self.message}


@dataclass(frozen=True)
class Action:
    """Client hint attached to an error, e.g. Action("redirect", "Sign in again", "/login")."""
    type: str
    message: str
    value: str

    def to_dict(self) -> Dict[str, str]:
        return {"type": self.type, "message": self.message, "value": self.value}


class HTTPError(Exception):
    """
    Canonical client-facing error. Raise it from business logic, e.g.:

        raise HTTPError(FORBIDDEN, "You cannot edit this record.", status=403)

    Instances are built once at the point of failure and never mutated.
    """

    def __init__(
        self,
        code: str,
        message: str,
        *,
        status: Optional[int] = None,
        field_errors: Optional[Iterable[FieldError]] = None,
        action: Optional[Action] = None,
        override: bool = False,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status = status if status is not None else STATUS_BY_CODE.get(code, 500)
        self.field_errors: tuple[FieldError, ...] = tuple(field_errors or ())
        self.action = action
        self.override = override

    def __repr__(self) -> str:
        return f"HTTPError(code={self.code!r}, status={self.status}, message={self.message!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, HTTPError):
            return NotImplemented
        return (
            self.code == other.code
            and self.message == other.message
            and self.status == other.status
            and self.field_errors == other.field_errors
            and self.action == other.action
            and self.override == other.override
        )

    __hash__ = Exception.__hash__


# ---------- Constructors for the common cases ----------

def bad_request(message: str = "Bad request.", field_errors: Optional[Iterable[FieldError]] = None) -> HTTPError:
    return HTTPError(BAD_REQUEST, message, field_errors=field_errors)


def validation_error(field_errors: Iterable[FieldError], message: str = "Request validation failed.") -> HTTPError:
    return HTTPError(VALIDATION_ERROR, message, field_errors=field_errors)


def unauthorized(message: str = "Authentication required.", action: Optional[Action] = None) -> HTTPError:
    return HTTPError(UNAUTHORIZED, message, action=action)


def forbidden(message: str = "You do not have permission to perform this action.") -> HTTPError:
    return HTTPError(FORBIDDEN, message)


def not_found(message: str = "Resource not found.") -> HTTPError:
    return HTTPError(NOT_FOUND, message)


def rate_limited(message: str = "Too many requests. Please slow down.") -> HTTPError:
    return HTTPError(RATE_LIMITED, message)


def internal_error() -> HTTPError:
    return HTTPError(INTERNAL_SERVER_ERROR, GENERIC_INTERNAL_MESSAGE)


# ---------- Envelope ----------

def normalize(err: HTTPError) -> HTTPError:
    """
    Apply formatter rules: without `override`, a known code decides the status
    and 5xx messages are replaced by the generic one.
    """
    if err.override:
        return err
    status = STATUS_BY_CODE.get(err.code, err.status)
    message = GENERIC_INTERNAL_MESSAGE if status >= 500 else err.message
    if status == err.status and message == err.message:
        return err
    return HTTPError(
        err.code,
        message,
        status=status,
        field_errors=err.field_errors,
        action=err.action,
        override=False,
    )


def error_body(err: HTTPError) -> Dict[str, Any]:
    body: Dict[str, Any] = {"code": err.code, "message": err.message}
    if err.field_errors:
        body["errors"] = [fe.to_dict() for fe in err.field_errors]
    if err.action is not None:
        body["action"] = err.action.to_dict()
    return body


def accept_request_id(incoming: Optional[str]) -> str:
    """Use the caller's id when it is 1-128 chars after trimming, otherwise mint one."""
    incoming = incoming.strip() if incoming else ""
    return incoming if 0 < len(incoming) <= MAX_REQUEST_ID_LENGTH else str(uuid.uuid4())


def request_id_for(request: Optional[Request]) -> str:
    # Prefer the value set by RequestIdMiddleware, fallback to header, then a fresh id.
    if request is None:
        return str(uuid.uuid4())
    rid = getattr(request.state, "request_id", None)
    if rid:
        return rid
    return accept_request_id(request.headers.get(REQUEST_ID_HEADER))


def error_response(err: HTTPError, request: Optional[Request] = None) -> JSONResponse:
    """
    Build the JSON error response. Always carries an X-Request-ID header, even
    when produced before the request-id stage has run.
    """
    err = normalize(err)
    response = JSONResponse(status_code=err.status, content=error_body(err))
    response.headers[REQUEST_ID_HEADER] = request_id_for(request)
    return response


# ---------- Exception handlers plugged in main.py ----------

_FRAMEWORK_CODES = {
    400: BAD_REQUEST,
    401: UNAUTHORIZED,
    403: FORBIDDEN,
    404: NOT_FOUND,
    429: RATE_LIMITED,
}


async def http_error_handler(request: Request, exc: HTTPError) -> JSONResponse:
    """Serialize our HTTPError as-is (after formatter normalization)."""
    return error_response(exc, request)


async def storage_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Storage errors that escaped dispatch still go through the taxonomy."""
    from .storage_errors import translate

    return error_response(translate(exc), request)


async def framework_http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """
    Convert Starlette/FastAPI HTTPException (unknown route, wrong method, ...)
    into our envelope.
    """
    if exc.status_code >= 500:
        return error_response(internal_error(), request)
    code = _FRAMEWORK_CODES.get(exc.status_code, BAD_REQUEST)
    msg = exc.detail if isinstance(exc.detail, str) else "Request failed."
    err = HTTPError(code, msg, status=exc.status_code, override=True)
    response = error_response(err, request)
    if exc.headers:
        for key, value in exc.headers.items():
            response.headers.setdefault(key, value)
    return response


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    FastAPI-native routes (not going through dispatch) still report field
    errors in our shape.
    """
    from .validation import field_errors_from

    return error_response(validation_error(field_errors_from(exc.errors())), request)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Catch-all for anything else. We do not leak internal errors to clients.
    """
    logger.error("Unhandled exception", exc_info=exc)
    return error_response(internal_error(), request)


def register_error_handlers(app: FastAPI) -> None:
    """Install the global error formatter on the application."""
    app.add_exception_handler(HTTPError, http_error_handler)
    app.add_exception_handler(SQLAlchemyError, storage_error_handler)
    app.add_exception_handler(StarletteHTTPException, framework_http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
