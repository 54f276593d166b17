"""
tests/conftest.py -- Shared test fixtures for QueryBoard.

This module provides:
  - db:         a freshly migrated in-memory system database with the
                bootstrap admin; yields a logged-in admin Session
  - empty_db:   a freshly migrated in-memory system database with no users
  - make_user:  factory that creates a user (as admin) and logs it in
  - client:     TestClient over the real FastAPI app, on top of `db`
  - api_admin:  (client, headers) with the admin's Bearer + CSRF headers

Design: DATA_DIR=":memory:" makes db.connection.sysdb an in-memory database
on a StaticPool, so the TestClient's worker threads all see the same data.
sysdb.close() discards it; the next statement opens a blank one. Each test
therefore gets its own database.

The environment must be set before any project import: get_settings() is
cached on first call and hashing.VERSIONS reads BCRYPT_ROUNDS at import time.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Generator

# CRITICAL: set before any core/db/auth/api import.
os.environ["DATA_DIR"] = ":memory:"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["STARTUP_PASSWORD"] = "AdminPassword!1"
os.environ["LOGIN_RATE_LIMIT"] = "1000/minute"
os.environ["ALLOWED_HOSTS"] = '["testserver", "localhost"]'

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.password import Password
from auth.session import Session
from auth.user import User
from db.connection import sysdb
from db.schema import SYSTEM
from db.schema_control import ensure_schema

ADMIN_PASSWORD = "AdminPassword!1"
USER_PASSWORD = "firstPassword"


@pytest.fixture
def empty_db() -> Generator[None, None, None]:
    """A migrated system database with no users."""
    sysdb.close()
    ensure_schema(sysdb, SYSTEM)
    yield
    sysdb.close()


@pytest.fixture
def db(empty_db) -> Session:
    """A migrated system database with the bootstrap admin, logged in."""
    User.ensure_admin()
    return Password.login("admin", ADMIN_PASSWORD, False, "127.0.0.1", "pytest")


@pytest.fixture
def make_user(db: Session) -> Callable[..., Session]:
    """Return a factory: make_user("alice") creates alice and returns a logged-in Session."""

    def _make(username: str, password: str = USER_PASSWORD, admin: bool = False) -> Session:
        User.create(db, username, password, admin)
        return Password.login(username, password, False, "127.0.0.1", "pytest")

    return _make


@pytest.fixture
def client(db: Session) -> Generator[TestClient, None, None]:
    """TestClient over the real app. The lifespan's schema and admin steps are no-ops here."""
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


@pytest.fixture
def api_admin(client: TestClient) -> tuple[TestClient, dict[str, str]]:
    """Log the admin in over HTTP and return the headers every admin request needs."""
    resp = client.post("/api/v1/sessions/password", json={"username": "admin", "password": ADMIN_PASSWORD})
    assert resp.status_code == 201, resp.text
    body = resp.json()
    return client, auth_headers(body["id"], body["csrf_token"])


def auth_headers(session_id: str, csrf_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {session_id}", "X-CSRFToken": csrf_token}
