"""
core/validation.py

Bind raw request data to a pydantic model and validate it.

Two steps, short-circuiting:
  1) bind      -> query + JSON body + path params merged into one dict and
                  coerced into the model's types. Failure: 400 BAD_REQUEST,
                  no field errors.
  2) validate  -> declarative rules on the model (required, min/max, one-of,
                  email/phone/uuid formats, nested models and lists), then the
                  optional `validate_request()` hook. Failure: 400
                  VALIDATION_ERROR with one entry per failing field.
"""

from __future__ import annotations

import json
import re
import types
from typing import Annotated, Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Type, TypeVar, Union, get_args, get_origin

from fastapi import Request
from pydantic import AfterValidator, BaseModel, ConfigDict, ValidationError

from .errors import FieldError, HTTPError, bad_request, validation_error

M = TypeVar("M", bound=BaseModel)

_BODY_METHODS = {"POST", "PUT", "PATCH", "DELETE"}
_SEQUENCE_ORIGINS = (list, tuple, set, frozenset)

# pydantic error types that mean "could not coerce the raw value into the
# declared type" (a bind failure rather than a rule violation)
BIND_ERROR_TYPES = frozenset(
    {
        "json_invalid",
        "json_type",
        "model_type",
        "model_attributes_type",
        "dataclass_type",
        "dict_type",
        "list_type",
        "tuple_type",
        "set_type",
        "string_type",
        "bytes_type",
        "int_type",
        "int_parsing",
        "int_from_float",
        "float_type",
        "float_parsing",
        "bool_type",
        "bool_parsing",
        "decimal_type",
        "decimal_parsing",
        "date_type",
        "date_parsing",
        "datetime_type",
        "datetime_parsing",
        "time_type",
        "time_parsing",
    }
)

_E164 = re.compile(r"^\+[1-9]\d{6,14}$")


def _check_phone(value: str) -> str:
    cleaned = re.sub(r"[\s\-().]", "", value)
    if not _E164.match(cleaned):
        raise ValueError("must be a valid phone number in E.164 format")
    return cleaned


Phone = Annotated[str, AfterValidator(_check_phone)]


class RuleViolation(ValueError):
    """Raised from `validate_request` to reject one field."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class RequestModel(BaseModel):
    """
    Base class for request payloads.

    Override `validate_request` for checks that span several fields. A
    RuleViolation names the failing field; a plain ValueError is reported as a
    request-level VALIDATION_ERROR. HTTPErrors pass through unchanged.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    def validate_request(self) -> None:
        return None


# ---------------------------------------------------------------------------
# Error message mapping
# ---------------------------------------------------------------------------

def _field_path(loc: Sequence[Any]) -> str:
    return ".".join(str(part) for part in loc) if loc else "body"


def _message_for(error: Mapping[str, Any]) -> str:
    etype = error.get("type", "")
    ctx = error.get("ctx") or {}
    if etype == "missing":
        return "required"
    if etype == "string_too_short":
        return f"must be at least {ctx.get('min_length')} characters"
    if etype == "string_too_long":
        return f"must be at most {ctx.get('max_length')} characters"
    if etype == "too_short":
        return f"must contain at least {ctx.get('min_length')} items"
    if etype == "too_long":
        return f"must contain at most {ctx.get('max_length')} items"
    if etype == "greater_than_equal":
        return f"must be at least {ctx.get('ge')}"
    if etype == "greater_than":
        return f"must be greater than {ctx.get('gt')}"
    if etype == "less_than_equal":
        return f"must be at most {ctx.get('le')}"
    if etype == "less_than":
        return f"must be less than {ctx.get('lt')}"
    if etype in ("literal_error", "enum"):
        return f"must be one of: {ctx.get('expected')}"
    if etype == "string_pattern_mismatch":
        return "has an invalid format"
    if etype in ("uuid_parsing", "uuid_type", "uuid_version"):
        return "must be a valid UUID"
    if etype in ("url_parsing", "url_type", "url_scheme"):
        return "must be a valid URL"
    if etype == "value_error":
        msg = str(error.get("msg", ""))
        return msg[len("Value error, "):] if msg.startswith("Value error, ") else msg
    return str(error.get("msg", "is invalid"))


def field_errors_from(errors: Iterable[Mapping[str, Any]]) -> List[FieldError]:
    """One FieldError per failing field, in the order pydantic reports them (declaration order)."""
    out: List[FieldError] = []
    seen: set[str] = set()
    for error in errors:
        loc = [p for p in error.get("loc", ()) if p not in ("body", "query", "path")]
        field = _field_path(loc)
        if field in seen:
            continue
        seen.add(field)
        out.append(FieldError(field, _message_for(error)))
    return out


def _bind_failure(errors: Sequence[Mapping[str, Any]]) -> Optional[HTTPError]:
    for error in errors:
        if error.get("type") in BIND_ERROR_TYPES:
            field = _field_path(error.get("loc", ()))
            return bad_request(f"Invalid value for {field}: {error.get('msg')}")
    return None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def validate_payload(data: Mapping[str, Any], model: Type[M]) -> M:
    """
    Run bind (type coercion) and validation on already-parsed data.
    Raises HTTPError on failure.
    """
    try:
        value = model.model_validate(dict(data))
    except ValidationError as exc:
        errors = exc.errors()
        bind_err = _bind_failure(errors)
        if bind_err is not None:
            raise bind_err from None
        raise validation_error(field_errors_from(errors)) from None

    hook = getattr(value, "validate_request", None)
    if callable(hook):
        try:
            hook()
        except HTTPError:
            raise
        except RuleViolation as exc:
            raise validation_error([FieldError(exc.field, exc.message)]) from None
        except ValueError as exc:
            raise validation_error([], message=str(exc)) from None
    return value


def _is_sequence(annotation: Any) -> bool:
    origin = get_origin(annotation)
    if origin is Annotated:
        return _is_sequence(get_args(annotation)[0])
    if origin is Union or origin is types.UnionType:
        return any(_is_sequence(arg) for arg in get_args(annotation) if arg is not type(None))
    return annotation in _SEQUENCE_ORIGINS or origin in _SEQUENCE_ORIGINS


def sequence_fields(model: Type[BaseModel]) -> FrozenSet[str]:
    """Names (and aliases) of the model's list-like fields."""
    names = set()
    for name, info in model.model_fields.items():
        if _is_sequence(info.annotation):
            names.add(name)
            if info.alias:
                names.add(info.alias)
    return frozenset(names)


async def read_request_data(request: Request, model: Optional[Type[BaseModel]] = None) -> Dict[str, Any]:
    """
    Merge query params, JSON body and path params (path wins).

    A query key bound to a list-like field of `model` is always passed as a
    list, so `?tags=a` and `?tags=a&tags=b` both bind. Repeating any other key
    still yields a list, which fails to bind.
    """
    list_keys = sequence_fields(model) if model is not None else frozenset()
    data: Dict[str, Any] = {}
    for key in request.query_params.keys():
        values = request.query_params.getlist(key)
        data[key] = values if key in list_keys or len(values) > 1 else values[0]

    if request.method in _BODY_METHODS:
        raw = await request.body()
        if raw.strip():
            content_type = request.headers.get("content-type", "")
            if content_type and "json" not in content_type.lower():
                raise bad_request(f"Unsupported content type: {content_type.split(';')[0]}")
            try:
                body = json.loads(raw)
            except ValueError as exc:
                raise bad_request(f"Malformed JSON body: {exc}") from None
            if not isinstance(body, dict):
                raise bad_request("Request body must be a JSON object.")
            data.update(body)

    data.update(request.path_params)
    return data


async def bind_and_validate(request: Request, model: Type[M]) -> M:
    data = await read_request_data(request, model)
    return validate_payload(data, model)
