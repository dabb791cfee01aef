"""Integration tests for the HTTP surface.

Tests the complete flow through FastAPI:
- Registration and duplicate detection
- Code validation, replay and resend
- Login and token verification
- Admin lookup
- Error envelope mapping for every failure kind
"""

import asyncio

import pytest
from fastapi.testclient import TestClient

from ssoauth import app as app_module
from ssoauth.service.errors import PersistenceFailureError
from ssoauth.service.runtime import get_runtime


class Outbox:
    def __init__(self):
        self.sent = []

    def send_verification_code(self, to_email, code):
        self.sent.append((to_email, code))
        return True

    def code_for(self, email):
        return next(code for to, code in reversed(self.sent) if to == email)


@pytest.fixture
def client():
    """Create a test client for the API."""
    return TestClient(app_module.app)


@pytest.fixture
def outbox():
    box = Outbox()
    get_runtime().credentials.dispatcher = box
    return box


@pytest.fixture
def app_id():
    runtime = get_runtime()
    application = asyncio.run(runtime.store.create_app("portal", b"portal-secret"))
    return application.id


def _register(client, email="user@example.com", password="pw123"):
    return client.post("/v1/auth/register", json={"email": email, "password": password})


class TestRegister:
    def test_register_creates_user(self, client, outbox):
        response = _register(client)

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "ok"
        assert body["data"]["user_id"] >= 1
        assert body["request_id"]
        assert outbox.sent[0][0] == "user@example.com"

    def test_register_duplicate_is_conflict(self, client, outbox):
        _register(client)
        response = _register(client, password="another")

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "conflict"

    def test_register_invalid_email(self, client, outbox):
        response = _register(client, email="not-an-email")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "validation_error"
        assert outbox.sent == []

    def test_register_missing_field(self, client, outbox):
        response = client.post("/v1/auth/register", json={"email": "user@example.com"})

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "validation_error"
        assert "body.password" in error["details"]["fields"]


class TestCodeFlow:
    def test_validate_code_once(self, client, outbox):
        _register(client)
        code = outbox.code_for("user@example.com")

        first = client.post(
            "/v1/auth/validate_code", json={"email": "user@example.com", "code": code}
        )
        assert first.status_code == 200
        assert first.json()["data"] == {"valid_code": True}

        second = client.post(
            "/v1/auth/validate_code", json={"email": "user@example.com", "code": code}
        )
        assert second.status_code == 409
        assert second.json()["error"]["code"] == "conflict"

    def test_wrong_code_is_generic_unauthorized(self, client, outbox):
        _register(client)
        code = outbox.code_for("user@example.com")
        wrong = "999999" if code != "999999" else "999998"

        for _ in range(2):
            response = client.post(
                "/v1/auth/validate_code", json={"email": "user@example.com", "code": wrong}
            )
            assert response.status_code == 401
            assert response.json()["error"]["message"] == "invalid credentials"

    def test_empty_code(self, client):
        response = client.post(
            "/v1/auth/validate_code", json={"email": "user@example.com", "code": " "}
        )
        assert response.status_code == 400

    def test_resend_code(self, client, outbox):
        _register(client)

        response = client.post("/v1/auth/resend_code", json={"email": "user@example.com"})
        assert response.status_code == 200
        assert response.json()["data"] == {"status": "sent"}
        assert len(outbox.sent) == 2

        code = outbox.code_for("user@example.com")
        validated = client.post(
            "/v1/auth/validate_code", json={"email": "user@example.com", "code": code}
        )
        assert validated.status_code == 200


class TestLogin:
    def test_login_and_verify_token(self, client, outbox, app_id):
        _register(client)

        response = client.post(
            "/v1/auth/login",
            json={"email": "user@example.com", "password": "pw123", "app_id": app_id},
        )
        assert response.status_code == 200
        token = response.json()["data"]["token"]
        assert token.count(".") == 2

        verified = client.post("/v1/auth/verify_token", json={"token": token, "app_id": app_id})
        assert verified.status_code == 200
        claims = verified.json()["data"]["claims"]
        assert claims["identity"] == "user@example.com"
        assert claims["app_id"] == app_id

    def test_login_wrong_password(self, client, outbox, app_id):
        _register(client)

        response = client.post(
            "/v1/auth/login",
            json={"email": "user@example.com", "password": "nope", "app_id": app_id},
        )
        assert response.status_code == 401
        error = response.json()["error"]
        assert error["code"] == "unauthorized"
        assert error["message"] == "invalid credentials"

    def test_login_unknown_user_and_app(self, client, outbox, app_id):
        _register(client)

        unknown_user = client.post(
            "/v1/auth/login",
            json={"email": "ghost@example.com", "password": "pw123", "app_id": app_id},
        )
        assert unknown_user.status_code == 404

        unknown_app = client.post(
            "/v1/auth/login",
            json={"email": "user@example.com", "password": "pw123", "app_id": app_id + 50},
        )
        assert unknown_app.status_code == 404
        assert unknown_app.json()["error"]["code"] == "not_found"

    def test_verify_token_garbage(self, client, app_id):
        response = client.post("/v1/auth/verify_token", json={"token": "a.b.c", "app_id": app_id})
        assert response.status_code == 401


class TestIsAdmin:
    def test_is_admin(self, client, outbox):
        user_id = _register(client).json()["data"]["user_id"]

        response = client.get(f"/v1/users/{user_id}/is_admin")
        assert response.status_code == 200
        assert response.json()["data"] == {"is_admin": False}

        asyncio.run(get_runtime().store.set_admin(user_id, True))
        assert client.get(f"/v1/users/{user_id}/is_admin").json()["data"] == {"is_admin": True}

    def test_is_admin_zero_is_invalid(self, client):
        response = client.get("/v1/users/0/is_admin")
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "validation_error"

    def test_is_admin_unknown_user(self, client):
        response = client.get("/v1/users/424242/is_admin")
        assert response.status_code == 404


class TestInfrastructureErrors:
    def test_store_outage_is_opaque(self, client, monkeypatch):
        async def _fail(user_id, **kwargs):
            raise PersistenceFailureError(
                "store operation failed", detail={"op": "is_admin", "dsn": "postgresql://db"}
            )

        monkeypatch.setattr(get_runtime().credentials, "is_admin", _fail)

        response = client.get("/v1/users/1/is_admin")
        assert response.status_code == 500
        error = response.json()["error"]
        assert error["code"] == "server_error"
        assert error["message"] == "internal server error"
        assert error["details"] is None


def test_request_id_is_echoed(client):
    response = client.get("/healthz", headers={"X-Request-ID": "req-123"})

    assert response.status_code == 200
    assert response.headers["X-Request-ID"] == "req-123"
    assert response.json()["checks"]["database"]["type"] == "memory"
    assert response.json()["checks"]["redis"] == {"status": "not_configured"}


def test_error_envelope_carries_request_id(client):
    response = client.get("/v1/users/0/is_admin", headers={"X-Request-ID": "req-456"})
    assert response.json()["request_id"] == "req-456"
