"""
auth/password.py -- A user's current credential, its history, and login.

One live row per username in `passwords`. Every rotation copies the row being
replaced into `password_history` (keyed by username + version) before the
live row is overwritten, so reuse checks can compare a candidate against old
hashes with each entry's own hash_version.

Rotation is atomic: history insert, version-checked overwrite and the
invalidation of the user's other sessions share one transaction. A password
change therefore cannot be sidestepped by a session opened before it.

Login never tells an anonymous caller which half of the credential was wrong.
Unknown username and wrong password raise the same NotFound, and the unknown
username path still pays for one bcrypt comparison. Only after the password
matched does login report an inactive account or an expired password.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from auth import app_settings, hashing, policy
from auth.errors import Conflict, Failure, NotFound
from auth.session import Session
from db.connection import parse_bool, parse_datetime, sysdb, utcnow

logger = logging.getLogger("queryboard.auth")

INVALID_LOGIN = "Invalid user or password"

# Lifetime of a password an admin set on someone else's behalf.
MUST_CHANGE_DAYS = 1

_sql = {
    "login": sysdb.prepare_query(
        """
        select  u.username,
                u.admin,
                u.start_date,
                u.end_date,
                u.version as user_version,
                u.updated_date as user_updated_date,
                u.created_date as user_created_date,
                u.created_by as user_created_by,
                u.updated_by as user_updated_by,
                p.version as password_version,
                p.hash,
                p.hash_version,
                p.expiration
        from    users u
                inner join passwords p on p.username = u.username
        where   u.username = :username
        """
    ),
    "get": sysdb.prepare_query(
        """
        select  username,
                version,
                hash,
                hash_version,
                expiration,
                session_id,
                updated_date,
                updated_by,
                created_date,
                created_by
        from    passwords
        where   username = :username
        """
    ),
    "insert": sysdb.prepare_update(
        """
        insert into passwords (
            username,
            version,
            hash,
            hash_version,
            expiration,
            session_id,
            updated_date,
            updated_by,
            created_date,
            created_by
        ) values (
            :username,
            :version,
            :hash,
            :hash_version,
            :expiration,
            :session_id,
            :updated_date,
            :updated_by,
            :created_date,
            :created_by
        )
        """
    ),
    "update": sysdb.prepare_update(
        """
        update  passwords
        set     version = version + 1,
                hash = :hash,
                hash_version = :hash_version,
                expiration = :expiration,
                session_id = :session_id,
                updated_date = :updated_date,
                updated_by = :updated_by
        where   username = :username
        and     version = :version
        """
    ),
    "history_get": sysdb.prepare_query(
        """
        select  username,
                version,
                hash,
                hash_version
        from    password_history
        where   username = :username
        order by version desc
        limit   :limit
        """
    ),
    "history_insert": sysdb.prepare_update(
        """
        insert into password_history (
            username,
            version,
            hash,
            hash_version,
            session_id,
            created_date,
            created_by
        ) values (
            :username,
            :version,
            :hash,
            :hash_version,
            :session_id,
            :created_date,
            :created_by
        )
        """
    ),
}


def _expiration(now: datetime) -> Optional[datetime]:
    days = app_settings.password_expiration_days.get()
    if days == 0:
        return None
    return now + timedelta(days=days)


@dataclass
class Password:
    username: str
    version: int
    hash: str
    hash_version: int
    expiration: Optional[datetime] = None
    session_id: Optional[str] = None
    created_by: Optional[str] = None
    created_date: Optional[datetime] = None
    updated_by: Optional[str] = None
    updated_date: Optional[datetime] = None

    @classmethod
    def create(cls, username: str, password: str, created_by: str, session_id: Optional[str] = None) -> Password:
        """Validate and hash a first password. The caller inserts it, normally with the user row."""
        policy.validate(password)
        now = utcnow()
        return cls(
            username=username,
            version=0,
            hash=hashing.current().hash(password),
            hash_version=hashing.CURRENT_VERSION,
            expiration=_expiration(now),
            session_id=session_id,
            created_by=created_by,
            created_date=now,
            updated_by=created_by,
            updated_date=now,
        )

    @staticmethod
    def get(username: str) -> Password:
        rows = _sql["get"]({"username": username})
        if not rows:
            raise NotFound(f"No password found for user {username}")
        return _row_to_password(rows[0])

    @staticmethod
    def login(
        username: str,
        password: str,
        remember_me: bool,
        ip_address: str,
        user_agent: Optional[str] = None,
    ) -> Session:
        """Check a username / password pair and open a new session."""
        from auth.user import User

        with sysdb.transaction():
            rows = _sql["login"]({"username": username})
            if not rows:
                # Same bcrypt cost as a real comparison so response time does
                # not reveal whether the username exists.
                hashing.current().compare(password, hashing.dummy_hash())
                logger.info("Failed login for unknown user %r from %s", username, ip_address)
                raise NotFound(INVALID_LOGIN)

            row = rows[0]
            user = User(
                username=row.username,
                admin=parse_bool(row.admin),
                start_date=parse_datetime(row.start_date),
                end_date=parse_datetime(row.end_date),
                version=row.user_version,
                created_by=row.user_created_by,
                created_date=parse_datetime(row.user_created_date),
                updated_by=row.user_updated_by,
                updated_date=parse_datetime(row.user_updated_date),
            )
            pwd = Password(
                username=row.username,
                version=row.password_version,
                hash=row.hash,
                hash_version=row.hash_version,
                expiration=parse_datetime(row.expiration),
            )

            if not pwd.compare(password):
                logger.info("Failed login for %s from %s", username, ip_address)
                raise NotFound(INVALID_LOGIN)

            if not user.active():
                raise Failure("Your account is not currently active")

            if pwd.expired():
                raise Failure("Your password has expired")

            session = Session.create(user, remember_me, ip_address, user_agent)

        logger.info("User %s logged in from %s", username, ip_address)
        return session

    def insert(self) -> None:
        now = utcnow()
        _sql["insert"](
            {
                "username": self.username,
                "version": self.version,
                "hash": self.hash,
                "hash_version": self.hash_version,
                "expiration": self.expiration,
                "session_id": self.session_id,
                "updated_date": self.updated_date or now,
                "updated_by": self.updated_by or self.created_by,
                "created_date": self.created_date or now,
                "created_by": self.created_by,
            }
        )

    def expired(self) -> bool:
        return self.expiration is not None and self.expiration < utcnow()

    def compare(self, password: str) -> bool:
        """Check password against this hash using the strategy that produced it.

        An unknown hash_version means corrupted data or a downgraded build.
        That is raised as ValueError, never reported as a mismatch.
        """
        strategy = hashing.get(self.hash_version)
        if strategy is None:
            raise ValueError(f"User {self.username} has an invalid password hash version of {self.hash_version}")
        return strategy.compare(password, self.hash)

    def update(self, password: str, session: Session, must_change: bool = False) -> None:
        """Rotate to a new password, archiving this one and logging out the user's other sessions.

        must_change gives the new password a one day lifetime so its owner has
        to replace it; admins set it when changing someone else's password.
        """
        policy.validate(password)

        if self.compare(password):
            raise Failure("Your new password cannot match your previous password")

        now = utcnow()
        if must_change:
            expiration: Optional[datetime] = now + timedelta(days=MUST_CHANGE_DAYS)
        else:
            expiration = _expiration(now)

        with sysdb.transaction():
            reuse = app_settings.password_reuse_check.get()
            if reuse > 0:
                for row in _sql["history_get"]({"username": self.username, "limit": reuse}):
                    old = Password(
                        username=row.username,
                        version=row.version,
                        hash=row.hash,
                        hash_version=row.hash_version,
                    )
                    if old.compare(password):
                        raise Failure(f"Your new password cannot match your previous {reuse + 1} passwords")

            new_hash = hashing.current().hash(password)
            result = _sql["update"](
                {
                    "username": self.username,
                    "version": self.version,
                    "hash": new_hash,
                    "hash_version": hashing.CURRENT_VERSION,
                    "expiration": expiration,
                    "session_id": session.id,
                    "updated_date": now,
                    "updated_by": session.username,
                }
            )
            if result.changes != 1:
                raise Conflict()

            _sql["history_insert"](
                {
                    "username": self.username,
                    "version": self.version,
                    "hash": self.hash,
                    "hash_version": self.hash_version,
                    "session_id": self.session_id,
                    "created_date": self.updated_date or now,
                    "created_by": self.updated_by or session.username,
                }
            )
            Session.logout_all(self.username, session.id)

        logger.info("Password for %s changed by %s", self.username, session.username)
        self.version += 1
        self.hash = new_hash
        self.hash_version = hashing.CURRENT_VERSION
        self.expiration = expiration
        self.session_id = session.id
        self.updated_by = session.username
        self.updated_date = now


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_password(row) -> Password:
    return Password(
        username=row.username,
        version=row.version,
        hash=row.hash,
        hash_version=row.hash_version,
        expiration=parse_datetime(row.expiration),
        session_id=row.session_id,
        updated_date=parse_datetime(row.updated_date),
        updated_by=row.updated_by,
        created_date=parse_datetime(row.created_date),
        created_by=row.created_by,
    )
