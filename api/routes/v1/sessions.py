"""
api/routes/v1/sessions.py -- Login, current session, and logout.

Routes:
  POST   /api/v1/sessions/password  -- password login; 201 with session id + CSRF token
  GET    /api/v1/sessions           -- current session; X-CSRFToken response header
  DELETE /api/v1/sessions           -- log out the current session; 204

Security:
  POST /sessions/password is rate-limited per IP (LOGIN_RATE_LIMIT).
  Password.login() gives the same "Invalid user or password" answer for an
  unknown username and a wrong password, and equalizes timing between them.
  Do NOT pre-check the username here -- that re-introduces enumeration.
  Cache-Control: no-store on every response carrying a session id or token.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_limit
from api.models import LoginRequest, SessionResponse
from auth.dependencies import CSRF_HEADER, get_session
from auth.password import Password
from auth.session import Session

# Auth policy:
# - POST   /api/v1/sessions/password: public -- the login endpoint must be unauthenticated
# - GET    /api/v1/sessions:          requires a live session (get_session)
# - DELETE /api/v1/sessions:          requires a live session + CSRF token (get_session)
router = APIRouter()


@limiter.limit(login_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/sessions/password", response_model=SessionResponse, status_code=201)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password and open a new session."""
    session = Password.login(
        body.username,
        body.password,
        body.remember_me,
        request.client.host if request.client else "unknown",
        request.headers.get("User-Agent"),
    )
    resp = JSONResponse(
        status_code=201,
        content=_session_to_response(session).model_dump(mode="json"),
    )
    resp.headers[CSRF_HEADER] = session.csrf_token
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.get("/sessions", response_model=SessionResponse)
def current_session(session: Session = Depends(get_session)) -> JSONResponse:
    """Return the caller's session, rotating its CSRF token if it has aged out."""
    token = session.refresh_csrf()
    resp = JSONResponse(content=_session_to_response(session).model_dump(mode="json"))
    resp.headers[CSRF_HEADER] = token
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.delete("/sessions", status_code=204)
def logout(session: Session = Depends(get_session)) -> Response:
    """Invalidate the caller's session. Other sessions of the same user stay valid."""
    session.logout()
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _session_to_response(session: Session) -> SessionResponse:
    return SessionResponse(
        id=session.id,
        username=session.username,
        csrf_token=session.csrf_token,
        expires=session.expires,
        admin=session.is_admin(),
    )
