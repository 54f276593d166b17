"""
tests/test_api_routes.py -- Integration tests for the HTTP surface.

These tests exercise the full stack: FastAPI routing -> session/CSRF
dependencies -> auth/ entities -> error envelope. Unit testing individual
route functions would miss middleware, dependency injection, and response
model serialization -- integration tests are the right tool here.

Fixtures used (from conftest.py):
  - client:    TestClient over the real app with a migrated in-memory database
  - api_admin: (client, headers) where headers carry the admin's Bearer + CSRF token
"""

from __future__ import annotations

from fastapi.testclient import TestClient

USER_PASSWORD = "firstPassword"


def _login(client: TestClient, username: str, password: str) -> dict[str, str]:
    resp = client.post("/api/v1/sessions/password", json={"username": username, "password": password})
    assert resp.status_code == 201, resp.text
    body = resp.json()
    return {"Authorization": f"Bearer {body['id']}", "X-CSRFToken": body["csrf_token"]}


def _create_user(client: TestClient, headers: dict[str, str], username: str, admin: bool = False) -> None:
    resp = client.post(
        "/api/v1/users",
        json={"username": username, "password": USER_PASSWORD, "admin": admin},
        headers=headers,
    )
    assert resp.status_code == 201, resp.text


class TestSessions:
    def test_login_returns_session_and_csrf(self, client: TestClient) -> None:
        resp = client.post("/api/v1/sessions/password", json={"username": "admin", "password": "AdminPassword!1"})
        assert resp.status_code == 201
        data = resp.json()
        assert data["username"] == "admin"
        assert data["admin"] is True
        assert resp.headers["X-CSRFToken"] == data["csrf_token"]
        assert resp.headers["Cache-Control"] == "no-store"

    def test_bad_credentials_are_indistinguishable(self, client: TestClient) -> None:
        wrong = client.post("/api/v1/sessions/password", json={"username": "admin", "password": "wrongPassword"})
        unknown = client.post("/api/v1/sessions/password", json={"username": "nobody", "password": "wrongPassword"})
        assert wrong.status_code == unknown.status_code == 404
        assert wrong.json() == unknown.json()
        assert wrong.json()["error"]["message"] == "Invalid user or password"

    def test_missing_fields_are_422(self, client: TestClient) -> None:
        resp = client.post("/api/v1/sessions/password", json={"username": "admin"})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_current_session(self, api_admin) -> None:
        client, headers = api_admin
        resp = client.get("/api/v1/sessions", headers={"Authorization": headers["Authorization"]})
        assert resp.status_code == 200
        assert resp.headers["X-CSRFToken"] == headers["X-CSRFToken"]

    def test_no_session_is_401(self, client: TestClient) -> None:
        assert client.get("/api/v1/sessions").status_code == 401
        resp = client.get("/api/v1/sessions", headers={"Authorization": "Bearer not-a-session"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_logout(self, api_admin) -> None:
        client, headers = api_admin
        assert client.delete("/api/v1/sessions", headers=headers).status_code == 204
        assert client.get("/api/v1/sessions", headers=headers).status_code == 401


class TestCsrf:
    def test_write_without_csrf_token_is_rejected(self, api_admin) -> None:
        client, headers = api_admin
        resp = client.post(
            "/api/v1/users",
            json={"username": "alice", "password": USER_PASSWORD},
            headers={"Authorization": headers["Authorization"]},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Invalid CSRFToken.  Please refresh and try again"

    def test_write_with_wrong_csrf_token_is_rejected(self, api_admin) -> None:
        client, headers = api_admin
        resp = client.delete(
            "/api/v1/sessions",
            headers={"Authorization": headers["Authorization"], "X-CSRFToken": "forged"},
        )
        assert resp.status_code == 400
        assert client.get("/api/v1/sessions", headers=headers).status_code == 200


class TestUsers:
    def test_create_and_get(self, api_admin) -> None:
        client, headers = api_admin
        _create_user(client, headers, "alice")

        resp = client.get("/api/v1/users/alice", headers=headers)
        assert resp.status_code == 200
        data = resp.json()
        assert data["username"] == "alice"
        assert data["admin"] is False
        assert data["active"] is True
        assert data["version"] == 0
        assert "hash" not in data

    def test_get_self(self, api_admin) -> None:
        client, headers = api_admin
        _create_user(client, headers, "alice")
        alice = _login(client, "alice", USER_PASSWORD)
        assert client.get("/api/v1/users", headers=alice).json()["username"] == "alice"

    def test_non_admin_cannot_create_or_read_others(self, api_admin) -> None:
        client, headers = api_admin
        _create_user(client, headers, "alice")
        alice = _login(client, "alice", USER_PASSWORD)

        resp = client.post("/api/v1/users", json={"username": "bob", "password": USER_PASSWORD}, headers=alice)
        assert resp.status_code == 401
        assert client.get("/api/v1/users/admin", headers=alice).status_code == 401

    def test_duplicate_user_is_400(self, api_admin) -> None:
        client, headers = api_admin
        _create_user(client, headers, "alice")
        resp = client.post("/api/v1/users", json={"username": "alice", "password": USER_PASSWORD}, headers=headers)
        assert resp.status_code == 400
        assert "already exists" in resp.json()["error"]["message"]

    def test_unknown_user_is_404(self, api_admin) -> None:
        client, headers = api_admin
        assert client.get("/api/v1/users/nobody", headers=headers).status_code == 404

    def test_update_with_stale_version_is_409(self, api_admin) -> None:
        client, headers = api_admin
        _create_user(client, headers, "alice")

        first = client.put("/api/v1/users/alice", json={"version": 0, "admin": True}, headers=headers)
        assert first.status_code == 200
        assert first.json()["version"] == 1

        stale = client.put("/api/v1/users/alice", json={"version": 0, "admin": False}, headers=headers)
        assert stale.status_code == 409
        assert stale.json()["error"]["code"] == "conflict"

    def test_change_own_password_logs_out_other_sessions(self, api_admin) -> None:
        client, headers = api_admin
        _create_user(client, headers, "alice")
        current = _login(client, "alice", USER_PASSWORD)
        other = _login(client, "alice", USER_PASSWORD)

        resp = client.put(
            "/api/v1/users/alice/password",
            json={"new_password": "secondPassword", "old_password": USER_PASSWORD},
            headers=current,
        )
        assert resp.status_code == 204
        assert client.get("/api/v1/sessions", headers=other).status_code == 401
        assert client.get("/api/v1/sessions", headers=current).status_code == 200
        _login(client, "alice", "secondPassword")

    def test_weak_new_password_names_the_rule(self, api_admin) -> None:
        client, headers = api_admin
        resp = client.put(
            "/api/v1/users/admin/password",
            json={"new_password": "abc", "old_password": "AdminPassword!1"},
            headers=headers,
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Passwords must be at least 10 characters long"


class TestPasswordTest:
    def test_strong_password(self, client: TestClient) -> None:
        assert client.post("/api/v1/password/test", json={"password": "correcthorsebatterystaple"}).status_code == 204

    def test_weak_password(self, client: TestClient) -> None:
        resp = client.post("/api/v1/password/test", json={"password": "password123"})
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "This password is too common and insecure, please choose another"


class TestSettings:
    def test_list_requires_admin(self, api_admin) -> None:
        client, headers = api_admin
        resp = client.get("/api/v1/settings", headers=headers)
        assert resp.status_code == 200
        assert resp.json()["password.minLength"] == 10

        _create_user(client, headers, "alice")
        alice = _login(client, "alice", USER_PASSWORD)
        assert client.get("/api/v1/settings", headers=alice).status_code == 401

    def test_update_and_reset(self, api_admin) -> None:
        client, headers = api_admin
        resp = client.put("/api/v1/settings", json={"id": "password.minLength", "value": 12}, headers=headers)
        assert resp.status_code == 204
        assert client.get("/api/v1/settings", headers=headers).json()["password.minLength"] == 12

        resp = client.delete("/api/v1/settings/password.minLength", headers=headers)
        assert resp.status_code == 204
        assert client.get("/api/v1/settings", headers=headers).json()["password.minLength"] == 10

    def test_boolean_setting(self, api_admin) -> None:
        client, headers = api_admin
        resp = client.put("/api/v1/settings", json={"id": "password.requireNumber", "value": True}, headers=headers)
        assert resp.status_code == 204
        assert client.get("/api/v1/settings", headers=headers).json()["password.requireNumber"] is True

    def test_unknown_setting_is_404(self, api_admin) -> None:
        client, headers = api_admin
        resp = client.put("/api/v1/settings", json={"id": "nope", "value": 1}, headers=headers)
        assert resp.status_code == 404
        assert client.delete("/api/v1/settings/nope", headers=headers).status_code == 404

    def test_out_of_range_value_is_400(self, api_admin) -> None:
        client, headers = api_admin
        resp = client.put("/api/v1/settings", json={"id": "password.minLength", "value": 2}, headers=headers)
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "password.minLength must be at least 8"
