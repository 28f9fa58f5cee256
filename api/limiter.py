"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to attach to app.state) and
api/routes/v1/auth.py (to apply per-route limits with @limiter.limit()).

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

The limit string comes from settings (AUTH_RATE_LIMIT, default "5/minute" per
client IP) and is read when a request is checked, not at import time.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def auth_rate_limit() -> str:
    return get_settings().auth_rate_limit
