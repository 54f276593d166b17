"""
auth/app_settings.py -- Admin-tunable security policy stored in the settings table.

A closed, typed registry: SettingKey enumerates every accepted id, and each
key maps to exactly one descriptor that knows its Python type, compiled-in
default, and bounds. Unknown ids are rejected before any SQL runs, so ids
from request bodies can never reach the database as free-form keys.

A missing row means "use the default". set() upserts a row, reset() deletes
it. Values are read at the moment of use (no cache), so a change takes
effect on the next login or password change.

Usage:
    min_length = password_min_length.get()
    password_reuse_check.set(admin_session, 3)
    lookup("password.reuseCheck").reset(admin_session)
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Generic, Optional, TypeVar

from auth.errors import Failure, NotFound, Unauthorized
from db.connection import sysdb, utcnow

if TYPE_CHECKING:
    from auth.session import Session

logger = logging.getLogger("queryboard.auth")

T = TypeVar("T")

_sql = {
    "get": sysdb.prepare_query("select value from settings where setting_id = :setting_id"),
    "upsert": sysdb.prepare_update(
        """
        insert into settings (setting_id, value, updated_by, updated_date)
        values (:setting_id, :value, :updated_by, :updated_date)
        on conflict (setting_id) do update
        set     value = excluded.value,
                updated_by = excluded.updated_by,
                updated_date = excluded.updated_date
        """
    ),
    "delete": sysdb.prepare_update("delete from settings where setting_id = :setting_id"),
}


class SettingKey(str, Enum):
    PASSWORD_MIN_LENGTH = "password.minLength"
    # Check new passwords against the list of known bad passwords
    PASSWORD_BAD_CHECK = "password.badCheck"
    PASSWORD_REQUIRE_SPECIAL = "password.requireSpecial"
    PASSWORD_REQUIRE_NUMBER = "password.requireNumber"
    PASSWORD_REQUIRE_MIXED_CASE = "password.requireMixedCase"
    # How many archived passwords to check for reuse, not counting the current one
    PASSWORD_REUSE_CHECK = "password.reuseCheck"
    # 0 = passwords never expire
    PASSWORD_EXPIRATION_DAYS = "password.expirationDays"
    # Lifetime of "remember me" sessions
    SESSION_EXPIRATION_DAYS = "session.expirationDays"
    # Age at which a session's CSRF token is replaced. 0 = never.
    SESSION_CSRF_AGE_MINUTES = "session.csrfAgeMinutes"


def _require_admin(session: Session) -> None:
    if not session.is_admin():
        raise Unauthorized("Only admins can update settings")


class Setting(Generic[T]):
    """Typed accessor / mutator pair for one SettingKey."""

    def __init__(self, key: SettingKey, default: T) -> None:
        self.key = key
        self.default = default

    def decode(self, raw: str) -> T:
        raise NotImplementedError

    def encode(self, value: T) -> str:
        return str(value)

    def check(self, value: Any) -> T:
        """Validate a caller-supplied value and return it typed. Raises Failure."""
        raise NotImplementedError

    def get(self) -> T:
        rows = _sql["get"]({"setting_id": self.key.value})
        if not rows:
            return self.default
        try:
            return self.decode(rows[0].value)
        except ValueError:
            logger.warning("Setting %s has unreadable value %r; using default", self.key.value, rows[0].value)
            return self.default

    def set(self, session: Session, value: Any) -> None:
        _require_admin(session)
        typed = self.check(value)
        _sql["upsert"](
            {
                "setting_id": self.key.value,
                "value": self.encode(typed),
                "updated_by": session.username,
                "updated_date": utcnow(),
            }
        )
        logger.info("Setting %s set to %r by %s", self.key.value, typed, session.username)

    def reset(self, session: Session) -> None:
        """Remove any stored value so the compiled-in default applies again."""
        _require_admin(session)
        _sql["delete"]({"setting_id": self.key.value})
        logger.info("Setting %s reset to default by %s", self.key.value, session.username)


class BooleanSetting(Setting[bool]):
    def decode(self, raw: str) -> bool:
        if raw not in ("true", "false"):
            raise ValueError(raw)
        return raw == "true"

    def encode(self, value: bool) -> str:
        return "true" if value else "false"

    def check(self, value: Any) -> bool:
        if not isinstance(value, bool):
            raise Failure(f"{self.key.value} must be true or false")
        return value


class NumberSetting(Setting[int]):
    def __init__(
        self,
        key: SettingKey,
        default: int,
        minimum: Optional[int] = None,
        maximum: Optional[int] = None,
    ) -> None:
        super().__init__(key, default)
        self.minimum = minimum
        self.maximum = maximum

    def decode(self, raw: str) -> int:
        return int(raw)

    def check(self, value: Any) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise Failure(f"{self.key.value} must be a whole number")
        if self.minimum is not None and value < self.minimum:
            raise Failure(f"{self.key.value} must be at least {self.minimum}")
        if self.maximum is not None and value > self.maximum:
            raise Failure(f"{self.key.value} must be at most {self.maximum}")
        return value


password_min_length = NumberSetting(SettingKey.PASSWORD_MIN_LENGTH, 10, minimum=8)
password_bad_check = BooleanSetting(SettingKey.PASSWORD_BAD_CHECK, True)
password_require_special = BooleanSetting(SettingKey.PASSWORD_REQUIRE_SPECIAL, False)
password_require_number = BooleanSetting(SettingKey.PASSWORD_REQUIRE_NUMBER, False)
password_require_mixed_case = BooleanSetting(SettingKey.PASSWORD_REQUIRE_MIXED_CASE, False)
password_reuse_check = NumberSetting(SettingKey.PASSWORD_REUSE_CHECK, 1, minimum=0)
password_expiration_days = NumberSetting(SettingKey.PASSWORD_EXPIRATION_DAYS, 0, minimum=0)
session_expiration_days = NumberSetting(SettingKey.SESSION_EXPIRATION_DAYS, 90, minimum=0, maximum=365)
session_csrf_age_minutes = NumberSetting(SettingKey.SESSION_CSRF_AGE_MINUTES, 15, minimum=0)

REGISTRY: dict[SettingKey, Setting] = {
    setting.key: setting
    for setting in (
        password_min_length,
        password_bad_check,
        password_require_special,
        password_require_number,
        password_require_mixed_case,
        password_reuse_check,
        password_expiration_days,
        session_expiration_days,
        session_csrf_age_minutes,
    )
}


def lookup(setting_id: str) -> Setting:
    """Resolve a dotted id from a request. Raises NotFound for anything outside SettingKey."""
    try:
        return REGISTRY[SettingKey(setting_id)]
    except ValueError:
        raise NotFound(f"No setting found with an id of {setting_id}") from None


def values() -> dict[str, Any]:
    """Return the effective value of every setting, keyed by dotted id."""
    return {key.value: setting.get() for key, setting in REGISTRY.items()}
