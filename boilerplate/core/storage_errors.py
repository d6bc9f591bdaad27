"""
core/storage_errors.py

Translate relational-store failures into the HTTP error taxonomy.

Two levels:
  1) map_storage_code(): native PostgreSQL SQLSTATE -> StorageErrorCode (closed set)
  2) translate(): any error -> HTTPError (storage errors via a fixed template)

Raw database text never reaches the client; column/table names are only used
to build short, safe messages.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Optional

from sqlalchemy.exc import DBAPIError, NoResultFound

from .errors import (
    BAD_REQUEST,
    NOT_FOUND,
    FieldError,
    HTTPError,
    internal_error,
)


class StorageErrorCode(str, Enum):
    NOT_NULL_VIOLATION = "NotNullViolation"
    FOREIGN_KEY_VIOLATION = "ForeignKeyViolation"
    UNIQUE_VIOLATION = "UniqueViolation"
    CHECK_VIOLATION = "CheckViolation"
    NOT_FOUND = "NotFound"
    OTHER = "Other"


# https://www.postgresql.org/docs/current/errcodes-appendix.html
SQLSTATE_TABLE = {
    "23502": StorageErrorCode.NOT_NULL_VIOLATION,
    "23503": StorageErrorCode.FOREIGN_KEY_VIOLATION,
    "23001": StorageErrorCode.FOREIGN_KEY_VIOLATION,  # restrict_violation
    "23505": StorageErrorCode.UNIQUE_VIOLATION,
    "23514": StorageErrorCode.CHECK_VIOLATION,
    "P0002": StorageErrorCode.NOT_FOUND,  # no_data_found (PL/pgSQL)
    "02000": StorageErrorCode.NOT_FOUND,  # no_data
}


def map_storage_code(native_code: Optional[str]) -> StorageErrorCode:
    """Total over the native code space: anything not in the table is OTHER."""
    if not native_code:
        return StorageErrorCode.OTHER
    return SQLSTATE_TABLE.get(str(native_code).strip().upper(), StorageErrorCode.OTHER)


# =================================================================================================================
# Diagnostics extraction
# =================================================================================================================

@dataclass
class StorageDiagnostics:
    code: Optional[str] = None
    table: Optional[str] = None
    column: Optional[str] = None
    constraint: Optional[str] = None
    message: str = ""


def _candidates(err: BaseException) -> Iterable[Any]:
    """
    The error itself, SQLAlchemy's wrapped DBAPI error, and the driver
    exception chained under it (asyncpg surfaces through __cause__).
    """
    seen: list[int] = []
    queue: list[Any] = [err]
    while queue:
        item = queue.pop(0)
        if item is None or id(item) in seen:
            continue
        seen.append(id(item))
        yield item
        queue.append(getattr(item, "orig", None))
        queue.append(getattr(item, "__cause__", None))


def _first_attr(obj: Any, *names: str) -> Optional[str]:
    for name in names:
        value = getattr(obj, name, None)
        if isinstance(value, str) and value:
            return value
    return None


def extract_diagnostics(err: BaseException) -> StorageDiagnostics:
    diag = StorageDiagnostics()
    for item in _candidates(err):
        # asyncpg / psycopg expose sqlstate, psycopg2 exposes pgcode
        diag.code = diag.code or _first_attr(item, "sqlstate", "pgcode")
        diag.table = diag.table or _first_attr(item, "table_name")
        diag.column = diag.column or _first_attr(item, "column_name")
        diag.constraint = diag.constraint or _first_attr(item, "constraint_name")
        pg_diag = getattr(item, "diag", None)
        if pg_diag is not None:
            diag.table = diag.table or _first_attr(pg_diag, "table_name")
            diag.column = diag.column or _first_attr(pg_diag, "column_name")
            diag.constraint = diag.constraint or _first_attr(pg_diag, "constraint_name")
        if not diag.message and not isinstance(item, DBAPIError):
            diag.message = str(item)

    if not diag.column:
        diag.column = _column_from_message(diag.message) or _column_from_constraint(diag.constraint, diag.table)
    return diag


def _column_from_message(msg: str) -> Optional[str]:
    """
    Common PostgreSQL messages:
      - 'null value in column "username" violates not-null constraint'
      - 'DETAIL:  Key (email)=(a@b.com) already exists.'
    """
    if not msg:
        return None
    m = re.search(r'null value in column "(?P<col>[^"]+)"', msg, flags=re.IGNORECASE)
    if m:
        return m.group("col")
    m = re.search(r"key \((?P<cols>[^)]+)\)=", msg, flags=re.IGNORECASE)
    if m:
        cols = [c.strip().strip('"') for c in m.group("cols").split(",")]
        return ", ".join(cols)
    return None


def _column_from_constraint(constraint: Optional[str], table: Optional[str]) -> Optional[str]:
    # Default PostgreSQL naming: <table>_<column>_key / _fkey / _check
    if not constraint:
        return None
    m = re.match(r"^(?P<body>.+)_(key|fkey|check|not_null)$", constraint)
    if not m:
        return None
    body = m.group("body")
    if table and body.startswith(f"{table}_"):
        body = body[len(table) + 1:]
    return body or None


def _entity_name(table: Optional[str]) -> str:
    if not table:
        return "record"
    name = table.split(".")[-1].replace("_", " ")
    if name.endswith("ies"):
        return name[:-3] + "y"
    if name.endswith("s") and not name.endswith("ss"):
        return name[:-1]
    return name


# =================================================================================================================
# Translation
# =================================================================================================================

def is_storage_error(err: BaseException) -> bool:
    if isinstance(err, (DBAPIError, NoResultFound)):
        return True
    return any(_first_attr(item, "sqlstate", "pgcode") for item in _candidates(err))


def _from_storage(err: BaseException) -> HTTPError:
    if isinstance(err, NoResultFound):
        return HTTPError(NOT_FOUND, "Resource not found.")

    diag = extract_diagnostics(err)
    code = map_storage_code(diag.code)
    entity = _entity_name(diag.table)
    column = diag.column

    if code is StorageErrorCode.NOT_NULL_VIOLATION:
        if column:
            return HTTPError(BAD_REQUEST, f"{column} is required.", field_errors=[FieldError(column, "required")])
        return HTTPError(BAD_REQUEST, f"A required field is missing for {entity}.")

    if code is StorageErrorCode.FOREIGN_KEY_VIOLATION:
        if column:
            return HTTPError(
                BAD_REQUEST,
                f"Referenced {column} does not exist.",
                field_errors=[FieldError(column, "references a record that does not exist")],
            )
        return HTTPError(BAD_REQUEST, f"Referenced {entity} does not exist.")

    if code is StorageErrorCode.CHECK_VIOLATION:
        if column:
            return HTTPError(
                BAD_REQUEST,
                f"Invalid value for {column}.",
                field_errors=[FieldError(column, "is invalid")],
            )
        return HTTPError(BAD_REQUEST, f"Invalid value for {entity}.")

    if code is StorageErrorCode.UNIQUE_VIOLATION:
        if column:
            return HTTPError(BAD_REQUEST, f"A {entity} with this {column} already exists.")
        return HTTPError(BAD_REQUEST, f"This {entity} already exists.")

    if code is StorageErrorCode.NOT_FOUND:
        return HTTPError(NOT_FOUND, f"{entity.capitalize()} not found.")

    return internal_error()


def translate(err: BaseException) -> HTTPError:
    """
    Total, pure mapping to the client-facing taxonomy:
      - HTTPError is returned unchanged
      - storage errors go through map_storage_code + templates
      - anything else becomes a generic 500
    """
    if isinstance(err, HTTPError):
        return err
    if is_storage_error(err):
        return _from_storage(err)
    return internal_error()
