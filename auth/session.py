"""
auth/session.py -- Login sessions and their CSRF tokens.

A session id and its CSRF token are two independent 256-bit random values.
The id authenticates the bearer; the CSRF token must be echoed on every
state-changing request to prove the request came from a page that already
held the session.

Lifecycle: Valid -> Invalidated (logout / logout_all, one way) or
Valid -> Expired (time based). Expiry is evaluated when a session is read;
nothing sweeps old rows.

get() answers None for a missing, invalidated, or expired id alike, so a
caller cannot learn how long a stolen id used to be good for.
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Optional

from auth import app_settings
from auth.errors import Failure
from db.connection import parse_bool, parse_datetime, random_token, sysdb, utcnow

if TYPE_CHECKING:
    from auth.user import User

logger = logging.getLogger("queryboard.auth")

TOKEN_BITS = 256

_sql = {
    "insert": sysdb.prepare_update(
        """
        insert into sessions (
            session_id,
            username,
            valid,
            csrf_token,
            csrf_date,
            ip_address,
            user_agent,
            expires,
            created_date
        ) values (
            :session_id,
            :username,
            :valid,
            :csrf_token,
            :csrf_date,
            :ip_address,
            :user_agent,
            :expires,
            :created_date
        )
        """
    ),
    "get": sysdb.prepare_query(
        """
        select  session_id,
                username,
                valid,
                csrf_token,
                csrf_date,
                ip_address,
                user_agent,
                expires,
                created_date
        from    sessions
        where   session_id = :session_id
        """
    ),
    "logout": sysdb.prepare_update("update sessions set valid = 0 where session_id = :session_id"),
    "invalidate_all": sysdb.prepare_update(
        """
        update  sessions
        set     valid = 0
        where   username = :username
        and     session_id <> :session_id
        and     expires >= :now
        and     valid = 1
        """
    ),
    "update_csrf": sysdb.prepare_update(
        """
        update  sessions
        set     csrf_token = :csrf_token,
                csrf_date = :csrf_date
        where   session_id = :session_id
        """
    ),
}


@dataclass
class Session:
    id: str
    username: str
    csrf_token: str
    csrf_date: datetime
    valid: bool
    ip_address: str
    expires: datetime
    user_agent: Optional[str] = None
    created_date: Optional[datetime] = None
    _user: Optional[User] = field(default=None, init=False, repr=False, compare=False)

    @classmethod
    def create(
        cls,
        user: User,
        remember_me: bool,
        ip_address: str,
        user_agent: Optional[str] = None,
    ) -> Session:
        """Issue and persist a new session for an already-authenticated user.

        Sessions without remember_me end on the server after one day (the
        browser drops them when it closes). remember_me sessions last
        session.expirationDays, falling back to one day when that is 0.
        """
        now = utcnow()
        days = 1
        if remember_me:
            days = app_settings.session_expiration_days.get() or 1

        session = cls(
            id=random_token(TOKEN_BITS),
            username=user.username,
            csrf_token=random_token(TOKEN_BITS),
            csrf_date=now,
            valid=True,
            ip_address=ip_address,
            expires=now + timedelta(days=days),
            user_agent=user_agent,
            created_date=now,
        )
        session._user = user
        session.insert()
        return session

    @classmethod
    def bootstrap(cls, user: User) -> Session:
        """Persist an already-dead session for audit columns written before anyone can log in.

        The row is invalid and expired on creation, so get() never returns it.
        """
        now = utcnow()
        session = cls(
            id=random_token(TOKEN_BITS),
            username=user.username,
            csrf_token=random_token(TOKEN_BITS),
            csrf_date=now,
            valid=False,
            ip_address="127.0.0.1",
            expires=now,
            user_agent="queryboard-bootstrap",
            created_date=now,
        )
        session._user = user
        session.insert()
        return session

    @staticmethod
    def get(session_id: str) -> Optional[Session]:
        """Return the live session for session_id, or None if missing, invalidated, or expired."""
        if not session_id:
            return None
        rows = _sql["get"]({"session_id": session_id})
        if not rows:
            return None

        session = _row_to_session(rows[0])
        if not session.valid or session.expires < utcnow():
            return None
        return session

    @staticmethod
    def logout_all(username: str, except_session_id: str = "") -> int:
        """Invalidate every other live session of username. Returns how many were invalidated."""
        result = _sql["invalidate_all"]({"username": username, "session_id": except_session_id, "now": utcnow()})
        if result.changes:
            logger.info("Invalidated %d session(s) for %s", result.changes, username)
        return result.changes

    def insert(self) -> None:
        self.validate()
        _sql["insert"](
            {
                "session_id": self.id,
                "username": self.username,
                "valid": self.valid,
                "csrf_token": self.csrf_token,
                "csrf_date": self.csrf_date,
                "ip_address": self.ip_address,
                "user_agent": self.user_agent,
                "expires": self.expires,
                "created_date": self.created_date or utcnow(),
            }
        )

    def validate(self) -> None:
        if not self.id or not self.username or not self.csrf_token or not self.ip_address or not self.expires:
            raise Failure("Invalid session")

    def user(self) -> User:
        """The owning user, loaded on first call and reused afterwards."""
        if self._user is None:
            from auth.user import User

            self._user = User.get(self, self.username)
        return self._user

    def is_admin(self) -> bool:
        return self.user().admin

    def logout(self) -> None:
        _sql["logout"]({"session_id": self.id})
        self.valid = False

    def check_csrf(self, token: Optional[str]) -> bool:
        """Constant-time comparison of a request's CSRF header against this session's token."""
        if not token:
            return False
        return hmac.compare_digest(token.encode("utf-8"), self.csrf_token.encode("utf-8"))

    def refresh_csrf(self) -> str:
        """Replace the CSRF token once it is older than session.csrfAgeMinutes. Returns the current token."""
        age_minutes = app_settings.session_csrf_age_minutes.get()
        now = utcnow()
        if age_minutes and self.csrf_date + timedelta(minutes=age_minutes) < now:
            self.csrf_token = random_token(TOKEN_BITS)
            self.csrf_date = now
            _sql["update_csrf"]({"session_id": self.id, "csrf_token": self.csrf_token, "csrf_date": now})
        return self.csrf_token


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_session(row) -> Session:
    return Session(
        id=row.session_id,
        username=row.username,
        csrf_token=row.csrf_token,
        csrf_date=parse_datetime(row.csrf_date),
        valid=parse_bool(row.valid),
        ip_address=row.ip_address,
        expires=parse_datetime(row.expires),
        user_agent=row.user_agent,
        created_date=parse_datetime(row.created_date),
    )
