"""
api/routes/v1/users.py -- User accounts and passwords.

Routes:
  POST /api/v1/users                      -- create user (admin only)
  GET  /api/v1/users                      -- the caller's own user
  GET  /api/v1/users/{username}           -- self or admin
  PUT  /api/v1/users/{username}           -- version-checked update; 409 on a stale version
  PUT  /api/v1/users/{username}/password  -- change own password, or admin reset
  POST /api/v1/password/test              -- check a candidate against the password policy

Handlers only translate between JSON and the auth/ entities. Authorization
beyond "has a session" (self vs admin, admin-only fields) is decided by the
User entity, which is given the caller's session explicitly.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import limiter, login_limit
from api.models import PasswordChange, PasswordTest, UserCreate, UserResponse, UserUpdate
from auth import policy
from auth.dependencies import get_session
from auth.session import Session
from auth.user import User, UserUpdates

# Auth policy:
# - POST /api/v1/users:                     requires session; User.create() requires admin
# - GET  /api/v1/users:                     requires session
# - GET  /api/v1/users/{username}:          requires session; User.get() requires self or admin
# - PUT  /api/v1/users/{username}:          requires session + CSRF; admin-only fields checked in User.update()
# - PUT  /api/v1/users/{username}/password: requires session + CSRF
# - POST /api/v1/password/test:             public, rate limited
router = APIRouter()


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(body: UserCreate, session: Session = Depends(get_session)) -> UserResponse:
    """Create a user with a temporary password. Admin only."""
    user = User.create(session, body.username, body.password, body.admin)
    return _user_to_response(user)


@router.get("/users", response_model=UserResponse)
def me(session: Session = Depends(get_session)) -> UserResponse:
    """Return the user that owns the caller's session."""
    return _user_to_response(session.user())


@router.get("/users/{username}", response_model=UserResponse)
def get_user(username: str, session: Session = Depends(get_session)) -> UserResponse:
    return _user_to_response(User.get(session, username))


@router.put("/users/{username}", response_model=UserResponse)
def update_user(username: str, body: UserUpdate, session: Session = Depends(get_session)) -> UserResponse:
    """Update admin access or the activation window.

    body.version must match the stored version. A stale version means another
    writer got there first: the response is 409 and the client should re-read.
    """
    user = User.get(session, username)
    user.update(
        session,
        UserUpdates(
            version=body.version,
            admin=body.admin,
            start_date=body.start_date,
            end_date=body.end_date,
            clear_end_date=body.clear_end_date,
        ),
    )
    return _user_to_response(user)


@router.put("/users/{username}/password", status_code=204)
def set_password(username: str, body: PasswordChange, session: Session = Depends(get_session)) -> Response:
    """Change a password. Every other session of that user is logged out."""
    user = User.get(session, username)
    user.set_password(session, body.new_password, body.old_password)
    return Response(status_code=204)


@limiter.limit(login_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/password/test", status_code=204)
def test_password(request: Request, body: PasswordTest) -> Response:
    """Answer 204 if the password passes the current policy, 400 naming the broken rule if not."""
    policy.validate(body.password)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _user_to_response(user: User) -> UserResponse:
    return UserResponse(
        username=user.username,
        admin=user.admin,
        active=user.active(),
        start_date=user.start_date,
        end_date=user.end_date,
        version=user.version,
        created_by=user.created_by,
        created_date=user.created_date,
        updated_by=user.updated_by,
        updated_date=user.updated_date,
    )
