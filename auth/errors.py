"""
auth/errors.py -- Domain errors that are safe to show to a client.

Every Failure carries the HTTP status the route layer should answer with and
a message that may be displayed verbatim. api/main.py has one exception
handler for the whole hierarchy, so entity code raises these directly and
never imports fastapi.

Anything that is NOT a Failure (ValueError for an unknown hash version,
SQLAlchemy errors, schema errors) is a programmer or data error: it reaches
the generic 500 handler and its message is only logged.
"""

from __future__ import annotations


class Failure(Exception):
    """Malformed or rule-breaking input (400)."""

    status = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class PolicyViolation(Failure):
    """A candidate password broke one of the password policy rules (400)."""


class Unauthorized(Failure):
    """The caller lacks a valid session or the privilege for the action (401)."""

    status = 401

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class NotFound(Failure):
    """The referenced record does not exist (404)."""

    status = 404

    def __init__(self, message: str = "Not Found") -> None:
        super().__init__(message)


class Conflict(Failure):
    """The record changed since the caller read it (409). Re-fetch and retry."""

    status = 409

    def __init__(self, message: str = "You are not updating the most recent version of the record") -> None:
        super().__init__(message)
