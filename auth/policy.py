"""
auth/policy.py -- Password strength rules.

validate() reads the password.* settings at call time, scans the candidate
once to find which character classes it contains, then raises PolicyViolation
for the first enabled rule it breaks, in this fixed order:

    length -> known-bad list -> special character -> digit -> mixed case

Each rule has its own message so the user knows exactly what to fix.
validate() has no side effects.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from auth import app_settings
from auth.errors import PolicyViolation

_BAD_PASSWORDS_FILE = Path(__file__).parent / "bad_passwords.txt"

SPECIAL_CHARACTERS = frozenset(" !\"#$%&'()*+,-./:;<=>?@[\\]^_`{|}~")


@lru_cache(maxsize=1)
def _bad_passwords() -> frozenset[str]:
    lines = _BAD_PASSWORDS_FILE.read_text(encoding="utf-8").splitlines()
    return frozenset(line.strip().lower() for line in lines if line.strip() and not line.startswith("#"))


def is_known_bad(password: str) -> bool:
    return password.lower() in _bad_passwords()


def validate(password: str) -> None:
    """Raise PolicyViolation naming the first enabled rule the password breaks."""
    min_length = app_settings.password_min_length.get()
    bad_check = app_settings.password_bad_check.get()
    require_special = app_settings.password_require_special.get()
    require_number = app_settings.password_require_number.get()
    require_mixed = app_settings.password_require_mixed_case.get()

    special_found = number_found = upper_found = lower_found = False
    for c in password:
        if c.isdigit():
            number_found = True
        elif c in SPECIAL_CHARACTERS:
            special_found = True
        elif c.isupper():
            upper_found = True
        elif c.islower():
            lower_found = True

    if len(password) < min_length:
        raise PolicyViolation(f"Passwords must be at least {min_length} characters long")

    if bad_check and is_known_bad(password):
        raise PolicyViolation("This password is too common and insecure, please choose another")

    if require_special and not special_found:
        raise PolicyViolation("The password must contain at least one special character")

    if require_number and not number_found:
        raise PolicyViolation("The password must contain at least one number")

    if require_mixed and not (upper_found and lower_found):
        raise PolicyViolation("The password must contain upper and lower case characters")
