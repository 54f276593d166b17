"""
auth/dependencies.py -- FastAPI Depends() helpers for session authentication.

A session is presented as `Authorization: Bearer <session id>`. The id is
looked up with Session.get(), which answers None for a missing, logged out,
or expired session alike.

try_get_session() is the soft variant (returns None on failure).
get_session() wraps it, raises Unauthorized if there is no live session, and
enforces the CSRF check on state-changing methods.
require_admin() wraps get_session() and raises Unauthorized for non-admins.

CSRF: every request other than GET/HEAD/OPTIONS that carries a session must
echo that session's csrf_token in the X-CSRFToken header. GET /sessions
returns the current token (rotated once it is older than
session.csrfAgeMinutes).

Errors are raised as auth.errors types; api/main.py maps them to responses.

Layer rule: no imports from api/. This module may import from fastapi
(for Request) because it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Request

from auth.errors import Failure, Unauthorized
from auth.session import Session

CSRF_HEADER = "X-CSRFToken"
SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


def _bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def try_get_session(request: Request) -> Optional[Session]:
    """Return the live session named by the Authorization header, or None.

    Never raises for a bad or missing token. Callers that need a hard 401
    should use get_session().
    """
    token = _bearer_token(request)
    if not token:
        return None
    return Session.get(token)


def get_session(request: Request) -> Session:
    """Require a live session; on writes, also require a matching CSRF token.

    Use as a FastAPI dependency:
        @router.put("/protected")
        def route(session: Session = Depends(get_session)): ...
    """
    session = try_get_session(request)
    if session is None:
        raise Unauthorized()

    if request.method not in SAFE_METHODS and not session.check_csrf(request.headers.get(CSRF_HEADER)):
        raise Failure("Invalid CSRFToken.  Please refresh and try again")

    return session


def require_admin(session: Session = Depends(get_session)) -> Session:
    """Require a live session whose user is an admin."""
    if not session.is_admin():
        raise Unauthorized("Admin access required")
    return session
