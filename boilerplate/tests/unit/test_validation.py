from datetime import date
from typing import Annotated, List, Literal, Optional
from uuid import UUID

import pytest
from pydantic import BaseModel, EmailStr, Field

from boilerplate.core.errors import BAD_REQUEST, VALIDATION_ERROR, FieldError, HTTPError, forbidden
from boilerplate.core.validation import (
    Phone,
    RequestModel,
    RuleViolation,
    field_errors_from,
    sequence_fields,
    validate_payload,
)


class LineItem(BaseModel):
    sku: str = Field(min_length=3)
    quantity: int = Field(ge=1, le=100)


class CreateOrder(RequestModel):
    customer_email: EmailStr
    phone: Optional[Phone] = None
    channel: Literal["web", "mobile"] = "web"
    items: List[LineItem] = Field(min_length=1)
    coupon: Optional[str] = Field(None, pattern=r"^[A-Z0-9]{4,12}$")


class Transfer(RequestModel):
    source: UUID
    target: UUID
    amount: int = Field(gt=0)

    def validate_request(self) -> None:
        if self.source == self.target:
            raise ValueError("source and target must differ")
        if self.amount > 1_000_000:
            raise forbidden("Amount requires manual approval.")


A = "7c9e6679-7425-40de-944b-e07fc1f90ae7"
B = "16fd2706-8baf-433b-82eb-8c7fada847da"


def test_valid_payload_is_bound_to_the_model():
    order = validate_payload(
        {"customer_email": "ana@example.com", "items": [{"sku": "ABC-1", "quantity": "2"}], "unknown": 1},
        CreateOrder,
    )
    assert order.items[0].quantity == 2
    assert order.channel == "web"


def test_missing_fields_are_reported_as_required_in_declaration_order():
    with pytest.raises(HTTPError) as ei:
        validate_payload({}, CreateOrder)
    err = ei.value
    assert err.code == VALIDATION_ERROR
    assert err.status == 400
    assert err.field_errors == (
        FieldError("customer_email", "required"),
        FieldError("items", "required"),
    )


def test_nested_errors_use_dotted_paths():
    with pytest.raises(HTTPError) as ei:
        validate_payload(
            {"customer_email": "ana@example.com", "items": [{"sku": "AB", "quantity": 500}]},
            CreateOrder,
        )
    assert ei.value.field_errors == (
        FieldError("items.0.sku", "must be at least 3 characters"),
        FieldError("items.0.quantity", "must be at most 100"),
    )


def test_type_coercion_failure_is_a_bind_error_without_field_errors():
    with pytest.raises(HTTPError) as ei:
        validate_payload(
            {"customer_email": "ana@example.com", "items": [{"sku": "ABC", "quantity": "many"}]},
            CreateOrder,
        )
    assert ei.value.code == BAD_REQUEST
    assert ei.value.field_errors == ()
    assert "items.0.quantity" in ei.value.message


@pytest.mark.parametrize(
    "payload, field",
    [
        ({"customer_email": "not-an-email"}, "customer_email"),
        ({"phone": "12345"}, "phone"),
        ({"channel": "fax"}, "channel"),
        ({"coupon": "lowercase"}, "coupon"),
        ({"items": []}, "items"),
    ],
)
def test_format_and_constraint_rules(payload, field):
    data = {"customer_email": "ana@example.com", "items": [{"sku": "ABC", "quantity": 1}]}
    data.update(payload)
    with pytest.raises(HTTPError) as ei:
        validate_payload(data, CreateOrder)
    assert ei.value.code == VALIDATION_ERROR
    assert [fe.field for fe in ei.value.field_errors] == [field]


def test_phone_is_normalized_to_e164():
    order = validate_payload(
        {"customer_email": "ana@example.com", "phone": "+1 (415) 555-0100", "items": [{"sku": "ABC", "quantity": 1}]},
        CreateOrder,
    )
    assert order.phone == "+14155550100"


def test_invalid_uuid_message():
    with pytest.raises(HTTPError) as ei:
        validate_payload({"source": "nope", "target": B, "amount": 1}, Transfer)
    assert ei.value.field_errors == (FieldError("source", "must be a valid UUID"),)


def test_hook_value_error_becomes_validation_error():
    with pytest.raises(HTTPError) as ei:
        validate_payload({"source": A, "target": A, "amount": 5}, Transfer)
    assert ei.value.code == VALIDATION_ERROR
    assert ei.value.message == "source and target must differ"


class Booking(RequestModel):
    check_in: date
    check_out: date

    def validate_request(self) -> None:
        if self.check_out <= self.check_in:
            raise RuleViolation("check_out", "must be after check_in")


def test_hook_can_name_the_failing_field():
    with pytest.raises(HTTPError) as ei:
        validate_payload({"check_in": "2026-05-02", "check_out": "2026-05-01"}, Booking)
    assert ei.value.code == VALIDATION_ERROR
    assert ei.value.field_errors == (FieldError("check_out", "must be after check_in"),)


def test_sequence_fields_follow_annotations():
    class Filters(RequestModel):
        tags: List[str] = []
        ids: Optional[List[int]] = None
        labels: set[str] | None = None
        name: Optional[str] = None
        sku: Annotated[List[str], Field(alias="skus")] = []

    assert sequence_fields(Filters) == {"tags", "ids", "labels", "sku", "skus"}


def test_hook_http_error_passes_through():
    with pytest.raises(HTTPError) as ei:
        validate_payload({"source": A, "target": B, "amount": 2_000_000}, Transfer)
    assert ei.value == forbidden("Amount requires manual approval.")


def test_hook_does_not_run_when_rules_fail():
    """
    amount fails the rule (gt=0); the hook's "must differ" check never runs.
    """
    with pytest.raises(HTTPError) as ei:
        validate_payload({"source": A, "target": A, "amount": 0}, Transfer)
    assert ei.value.field_errors == (FieldError("amount", "must be greater than 0"),)


def test_field_errors_from_strips_location_prefixes_and_dedupes():
    errors = [
        {"type": "missing", "loc": ("body", "name"), "msg": "Field required"},
        {"type": "string_too_short", "loc": ("body", "name"), "msg": "short", "ctx": {"min_length": 2}},
        {"type": "int_parsing", "loc": ("query", "page"), "msg": "Input should be a valid integer"},
    ]
    assert field_errors_from(errors) == [
        FieldError("name", "required"),
        FieldError("page", "Input should be a valid integer"),
    ]
