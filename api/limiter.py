"""
api/limiter.py -- The one slowapi Limiter shared by the app and the route modules.

api/main.py mounts it (app.state.limiter + SlowAPIMiddleware); routes that
check a password decorate themselves with @limiter.limit(login_limit).
A second Limiter instance would keep its own counters and never trip.

Counters live in process memory and are keyed by client IP.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_limit() -> str:
    """Limit for routes that check a password, e.g. "10/minute". Read from LOGIN_RATE_LIMIT."""
    return get_settings().login_rate_limit
