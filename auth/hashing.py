"""
auth/hashing.py -- Versioned password hashing strategies.

Every stored credential records the index of the strategy that produced it
(hash_version). VERSIONS is append-only: the current strategy is always the
last entry, and older entries stay so existing hashes remain verifiable until
their owners rotate. Never remove or reorder an entry.

Version 0 -- bcrypt over a SHA-256 pre-hash:
  bcrypt only looks at the first 72 bytes of its input (bcrypt 5.x rejects
  longer input outright). Pre-hashing with SHA-256 and base64-encoding the
  digest gives bcrypt a fixed 44-byte input, so every character of a long
  passphrase counts and a megabyte-long password costs no more than a short
  one. Base64 keeps NUL bytes out of the bcrypt input.

Using bcrypt directly rather than a passlib wrapper: passlib's bcrypt backend
detection is broken against bcrypt 4.x and the direct API is small.
"""

from __future__ import annotations

import base64
import hashlib
from functools import lru_cache
from typing import Optional, Protocol

import bcrypt

from core.config import get_settings


class PasswordHash(Protocol):
    def hash(self, password: str) -> str: ...

    def compare(self, password: str, hashed: str) -> bool: ...


class BcryptSha256:
    """bcrypt(base64(sha256(password))) at a configurable cost factor."""

    def __init__(self, rounds: int) -> None:
        self.rounds = rounds

    @staticmethod
    def _prehash(password: str) -> bytes:
        return base64.b64encode(hashlib.sha256(password.encode("utf-8")).digest())

    def hash(self, password: str) -> str:
        return bcrypt.hashpw(self._prehash(password), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def compare(self, password: str, hashed: str) -> bool:
        # A malformed stored hash raises ValueError here. That is corrupted
        # data, not a wrong password, so it is left to propagate.
        return bcrypt.checkpw(self._prehash(password), hashed.encode("utf-8"))


VERSIONS: list[PasswordHash] = [
    BcryptSha256(rounds=get_settings().bcrypt_rounds),
]

CURRENT_VERSION = len(VERSIONS) - 1


def current() -> PasswordHash:
    return VERSIONS[CURRENT_VERSION]


def get(version: int) -> Optional[PasswordHash]:
    """Return the strategy for a stored hash_version, or None if this build does not know it."""
    if 0 <= version < len(VERSIONS):
        return VERSIONS[version]
    return None


@lru_cache(maxsize=1)
def dummy_hash() -> str:
    """A real hash of a throwaway value for timing equalization on unknown usernames.

    Cached after the first call so importing this module stays cheap.
    """
    return current().hash("queryboard_timing_dummy")
