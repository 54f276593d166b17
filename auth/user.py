"""
auth/user.py -- User accounts: identity, activation window, authorization checks.

A user is never deleted. Setting end_date is how an account is deactivated;
active(at) is true while start_date <= at < end_date (no end_date = open ended).

Every mutation that callers can race on is optimistic: the caller passes the
version it read, the UPDATE matches on it, and zero affected rows means
someone else wrote first (Conflict). The core never retries on its own.

Authorization is always checked against the session passed in. Nothing here
reads a "current user" from global state.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

from auth.errors import Conflict, Failure, NotFound, Unauthorized
from auth.password import Password
from auth.session import Session
from core.config import get_settings
from db.connection import parse_bool, parse_datetime, random_token, sysdb, utcnow

logger = logging.getLogger("queryboard.auth")

ADMIN_USERNAME = "admin"
MAX_USERNAME_LENGTH = 64
_USERNAME_RE = re.compile(r"^[A-Za-z0-9._@-]+$")

# Generated bootstrap passwords: 128 bits -> 22 URL-safe characters.
_TEMP_PASSWORD_BITS = 128

_sql = {
    "insert": sysdb.prepare_update(
        """
        insert into users (
            username,
            admin,
            start_date,
            end_date,
            version,
            updated_date,
            created_date,
            created_by,
            updated_by
        ) values (
            :username,
            :admin,
            :start_date,
            :end_date,
            :version,
            :updated_date,
            :created_date,
            :created_by,
            :updated_by
        )
        """
    ),
    "get": sysdb.prepare_query(
        """
        select  username,
                admin,
                start_date,
                end_date,
                version,
                updated_date,
                created_date,
                created_by,
                updated_by
        from    users
        where   username = :username
        """
    ),
    "update": sysdb.prepare_update(
        """
        update  users
        set     admin = :admin,
                start_date = :start_date,
                end_date = :end_date,
                updated_date = :updated_date,
                updated_by = :updated_by,
                version = version + 1
        where   username = :username
        and     version = :version
        """
    ),
    "count": sysdb.prepare_query("select count(*) as count from users"),
}


@dataclass
class UserUpdates:
    """Fields a caller may change on a user, plus the version they last read.

    None leaves a field unchanged. end_date cannot be cleared with None, so
    clear_end_date=True reopens an end-dated account.
    """

    version: int
    admin: Optional[bool] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    clear_end_date: bool = False


@dataclass
class User:
    username: str
    start_date: datetime
    version: int = 0
    admin: bool = False
    end_date: Optional[datetime] = None
    created_by: Optional[str] = None
    created_date: Optional[datetime] = None
    updated_by: Optional[str] = None
    updated_date: Optional[datetime] = None

    @classmethod
    def create(cls, session: Session, username: str, temp_password: str, admin: bool = False) -> User:
        """Admin-only. Insert a user and its first password in one transaction."""
        if not session.is_admin():
            raise Unauthorized("Only admins can create new users")

        user = cls(username=username, admin=admin, start_date=utcnow())
        user.validate()
        pwd = Password.create(username, temp_password, session.username, session.id)

        with sysdb.transaction():
            if _sql["get"]({"username": username}):
                raise Failure(f"A user with the username {username} already exists")
            user.insert(session.username)
            pwd.insert()

        logger.info("User %s created by %s (admin=%s)", username, session.username, admin)
        return user

    @classmethod
    def get(cls, session: Session, username: str) -> User:
        """Return a user. The caller must be that user or an admin."""
        if session.username != username and not session.is_admin():
            raise Unauthorized()

        rows = _sql["get"]({"username": username})
        if not rows:
            raise NotFound(f"No user found with the username {username}")
        return _row_to_user(rows[0])

    @staticmethod
    def count() -> int:
        return _sql["count"]()[0].count

    @classmethod
    def ensure_admin(cls) -> None:
        """First-run bootstrap: create the admin account if there are no users at all.

        Idempotent. The audit columns on the first password reference a
        session, so a dead bootstrap session is written for them; no client
        can ever use it. The temporary password is logged once, after commit.
        Call this before the HTTP listener accepts traffic.
        """
        configured = get_settings().startup_password
        password = configured or random_token(_TEMP_PASSWORD_BITS)

        with sysdb.transaction():
            if cls.count() > 0:
                return

            now = utcnow()
            admin = cls(username=ADMIN_USERNAME, admin=True, start_date=now)
            admin.insert(ADMIN_USERNAME)
            session = Session.bootstrap(admin)
            Password.create(ADMIN_USERNAME, password, ADMIN_USERNAME, session.id).insert()

        if configured:
            logger.warning("Created user %r with the configured STARTUP_PASSWORD", ADMIN_USERNAME)
        else:
            logger.warning("Created user %r with temporary password: %s", ADMIN_USERNAME, password)

    def validate(self) -> None:
        if not self.username:
            raise Failure("A username is required")
        if len(self.username) > MAX_USERNAME_LENGTH:
            raise Failure(f"Usernames must be {MAX_USERNAME_LENGTH} characters or fewer")
        if not _USERNAME_RE.match(self.username):
            raise Failure("Usernames may only contain letters, numbers, and the characters . _ @ -")
        if self.end_date is not None and self.end_date <= self.start_date:
            raise Failure("The end date must be after the start date")

    def insert(self, created_by: str) -> None:
        self.validate()
        now = utcnow()
        self.created_by = self.updated_by = created_by
        self.created_date = self.updated_date = now
        _sql["insert"](
            {
                "username": self.username,
                "admin": self.admin,
                "start_date": self.start_date,
                "end_date": self.end_date,
                "version": self.version,
                "updated_date": now,
                "created_date": now,
                "created_by": created_by,
                "updated_by": created_by,
            }
        )

    def active(self, at: Optional[datetime] = None) -> bool:
        at = at or utcnow()
        if self.end_date is not None and self.end_date <= at:
            return False
        return self.start_date <= at

    def update(self, session: Session, updates: UserUpdates) -> None:
        """Apply updates if updates.version is still current; raise Conflict otherwise.

        Changing admin, start_date, or end_date requires an admin session.
        An admin cannot remove their own admin flag.
        """
        changed = replace(self)

        if updates.admin is not None and updates.admin != self.admin:
            if not session.is_admin():
                raise Unauthorized("Only admins can change admin access")
            if not updates.admin and session.username == self.username:
                raise Failure("You cannot remove your own admin access")
            changed.admin = updates.admin

        if updates.start_date is not None:
            if not session.is_admin():
                raise Unauthorized("Only admins can change a user's start date")
            changed.start_date = updates.start_date

        if updates.end_date is not None or updates.clear_end_date:
            if not session.is_admin():
                raise Unauthorized("Only admins can change a user's end date")
            changed.end_date = None if updates.clear_end_date else updates.end_date

        changed.validate()

        now = utcnow()
        result = _sql["update"](
            {
                "username": self.username,
                "version": updates.version,
                "admin": changed.admin,
                "start_date": changed.start_date,
                "end_date": changed.end_date,
                "updated_date": now,
                "updated_by": session.username,
            }
        )
        if result.changes != 1:
            raise Conflict()

        self.admin = changed.admin
        self.start_date = changed.start_date
        self.end_date = changed.end_date
        self.version = updates.version + 1
        self.updated_by = session.username
        self.updated_date = now

    def set_password(self, session: Session, new_password: str, old_password: Optional[str] = None) -> None:
        """Change this user's password.

        Self service needs the correct, unexpired old password. An admin
        changing someone else's password skips that check, and the new
        password expires in a day so the user must choose their own.
        """
        current = Password.get(self.username)

        if session.username == self.username:
            if not old_password:
                raise Failure("You must provide your old password to set a new password")
            if current.expired():
                raise Failure("Your password has expired")
            if not current.compare(old_password):
                raise Failure("Your old password is incorrect")
            current.update(new_password, session)
            return

        if not session.is_admin():
            raise Unauthorized("Only admins can set another user's password")
        current.update(new_password, session, must_change=True)


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        username=row.username,
        admin=parse_bool(row.admin),
        start_date=parse_datetime(row.start_date),
        end_date=parse_datetime(row.end_date),
        version=row.version,
        updated_date=parse_datetime(row.updated_date),
        created_date=parse_datetime(row.created_date),
        created_by=row.created_by,
        updated_by=row.updated_by,
    )
