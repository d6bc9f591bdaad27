import logging

import pytest
from fastapi import APIRouter
from fastapi.testclient import TestClient

from boilerplate.core.context import RequestContext
from boilerplate.core.routing import add_route
from boilerplate.security.auth_provider import JwtAuthProvider
from boilerplate.security.token_service import issue_access_token

router = APIRouter()


async def whoami(ctx: RequestContext) -> dict:
    return {"userId": ctx.user_id, "authenticated": ctx.is_authenticated}


async def export_reports(ctx: RequestContext) -> dict:
    return {"exported": True}


add_route(router, "GET", "/public/whoami", whoami)
add_route(router, "POST", "/reports/export", export_reports, permissions=["reports.export"])


@pytest.fixture
def client(make_app):
    app = make_app()
    app.include_router(router, prefix="/api/v1")
    return TestClient(app)


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


def test_me_requires_authentication(client, auth_provider):
    r = client.get("/api/v1/me", headers={"X-Request-ID": "rid-anon"})
    assert r.status_code == 401
    assert r.json() == {"code": "UNAUTHORIZED", "message": "Authentication required."}
    assert r.headers["X-Request-ID"] == "rid-anon"
    # no credential, nothing to verify
    assert auth_provider.calls == []


def test_invalid_token_on_protected_route_is_logged(client, caplog):
    with caplog.at_level(logging.WARNING, logger="boilerplate.request"):
        r = client.get("/api/v1/me", headers={**bearer("forged"), "X-Request-ID": "rid-forged"})
    assert r.status_code == 401
    assert r.json()["code"] == "UNAUTHORIZED"

    failures = [rec for rec in caplog.records if getattr(rec, "event", None) == "unauthorized"]
    assert len(failures) == 1
    assert failures[0].requestId == "rid-forged"


def test_me_returns_the_caller(client):
    r = client.get("/api/v1/me", headers={**bearer("member-token"), "X-Request-ID": "rid-me"})
    assert r.status_code == 200
    assert r.json() == {
        "userId": "u-1",
        "role": "member",
        "permissions": ["reports.read"],
        "requestId": "rid-me",
    }


def test_public_route_continues_anonymously(client):
    assert client.get("/api/v1/public/whoami").json() == {"userId": None, "authenticated": False}
    # a bad credential is ignored rather than rejected on public routes
    assert client.get("/api/v1/public/whoami", headers=bearer("forged")).json()["authenticated"] is False
    assert client.get("/api/v1/public/whoami", headers=bearer("admin-token")).json() == {
        "userId": "u-admin",
        "authenticated": True,
    }


def test_non_bearer_scheme_is_treated_as_missing(client):
    r = client.get("/api/v1/me", headers={"Authorization": "Basic dXNlcjpwYXNz"})
    assert r.status_code == 401


def test_permissions_are_enforced(client, sink):
    r = client.post("/api/v1/reports/export", headers=bearer("member-token"))
    assert r.status_code == 403
    assert r.json()["code"] == "FORBIDDEN"
    assert sink.durations == [("export_reports", "validation", "error")]

    r = client.post("/api/v1/reports/export", headers=bearer("admin-token"))
    assert r.status_code == 200
    assert r.json() == {"exported": True}


def test_permission_routes_require_authentication(client):
    assert client.post("/api/v1/reports/export").status_code == 401


def test_default_jwt_provider_end_to_end(make_app, settings):
    """
    The default provider verifies our own bearer JWTs.
    """
    client = TestClient(make_app(auth_provider=JwtAuthProvider(settings)))
    token, _ = issue_access_token(settings, user_id="u-42", role="admin", permissions=["x.read"])

    r = client.get("/api/v1/me", headers=bearer(token))
    assert r.status_code == 200
    assert r.json()["userId"] == "u-42"
    assert r.json()["permissions"] == ["x.read"]

    expired, _ = issue_access_token(settings, user_id="u-42", ttl_sec=-3600)
    assert client.get("/api/v1/me", headers=bearer(expired)).status_code == 401


class UnreachableProvider:
    async def verify(self, credential):
        raise ConnectionError("identity service unreachable")


def test_provider_outage_fails_only_protected_routes(make_app, caplog):
    app = make_app(auth_provider=UnreachableProvider())
    app.include_router(router, prefix="/api/v1")
    client = TestClient(app)

    # /status still reports on its dependencies instead of failing the request
    r = client.get("/status", headers=bearer("whatever"))
    assert r.status_code == 503
    assert r.json()["checks"] == {"database": "ok", "redis": "fail"}
    assert client.get("/api/v1/public/whoami", headers=bearer("whatever")).json() == {
        "userId": None,
        "authenticated": False,
    }

    with caplog.at_level(logging.ERROR, logger="boilerplate.request"):
        r = client.get("/api/v1/me", headers=bearer("whatever"))
    assert r.status_code == 500
    assert r.json()["code"] == "INTERNAL_SERVER_ERROR"
    assert any(rec.getMessage() == "auth provider failed" for rec in caplog.records)
