import json
import uuid

from boilerplate.core.dispatch import FILE, JSON, NO_CONTENT, FileResult, content_disposition
from boilerplate.core.errors import (
    BAD_REQUEST,
    GENERIC_INTERNAL_MESSAGE,
    INTERNAL_SERVER_ERROR,
    MAX_REQUEST_ID_LENGTH,
    NOT_FOUND,
    REQUEST_ID_HEADER,
    Action,
    FieldError,
    HTTPError,
    accept_request_id,
    error_body,
    error_response,
    normalize,
    unauthorized,
)


def test_error_body_shape():
    err = HTTPError(
        BAD_REQUEST,
        "Check the highlighted fields.",
        field_errors=[FieldError("email", "required"), FieldError("items.0.sku", "is invalid")],
    )
    assert error_body(err) == {
        "code": "BAD_REQUEST",
        "message": "Check the highlighted fields.",
        "errors": [
            {"field": "email", "message": "required"},
            {"field": "items.0.sku", "message": "is invalid"},
        ],
    }


def test_error_body_with_action_and_no_field_errors():
    err = unauthorized(action=Action("redirect", "Sign in again", "/login"))
    assert error_body(err) == {
        "code": "UNAUTHORIZED",
        "message": "Authentication required.",
        "action": {"type": "redirect", "message": "Sign in again", "value": "/login"},
    }


def test_known_code_decides_status_without_override():
    err = normalize(HTTPError(NOT_FOUND, "Gone.", status=418))
    assert err.status == 404


def test_server_errors_get_the_generic_message():
    err = normalize(HTTPError(INTERNAL_SERVER_ERROR, "psycopg: connection refused at 10.0.0.5"))
    assert err.status == 500
    assert err.message == GENERIC_INTERNAL_MESSAGE


def test_override_is_serialized_as_constructed():
    original = HTTPError("TEAPOT", "Short and stout.", status=418, override=True)
    assert normalize(original) is original
    response = error_response(original)
    assert response.status_code == 418
    assert json.loads(response.body) == {"code": "TEAPOT", "message": "Short and stout."}


def test_error_response_always_has_a_request_id():
    response = error_response(HTTPError(BAD_REQUEST, "Nope."))
    assert response.status_code == 400
    assert response.headers[REQUEST_ID_HEADER]


def test_accept_request_id_applies_the_length_bound():
    assert accept_request_id("  rid-1  ") == "rid-1"
    assert accept_request_id("x" * MAX_REQUEST_ID_LENGTH) == "x" * MAX_REQUEST_ID_LENGTH
    for rejected in (None, "", "   ", "x" * (MAX_REQUEST_ID_LENGTH + 1)):
        assert uuid.UUID(accept_request_id(rejected))


def test_responders():
    ok = JSON.render({"id": 1}, 201)
    assert ok.status_code == 201
    assert json.loads(ok.body) == {"id": 1}

    empty = NO_CONTENT.render({"ignored": True}, 204)
    assert empty.status_code == 204
    assert empty.body == b""

    file = FILE.render(FileResult("report.csv", "text/csv", b"a,b\n1,2\n"), 200)
    assert file.body == b"a,b\n1,2\n"
    assert file.headers["content-type"].startswith("text/csv")
    assert file.headers["content-disposition"] == 'attachment; filename="report.csv"'


def test_content_disposition_for_non_ascii_names():
    value = content_disposition('résumé "final".pdf')
    assert value.startswith('attachment; filename="rsum final.pdf"')
    assert "filename*=UTF-8''r%C3%A9sum%C3%A9%20%22final%22.pdf" in value
