"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and in
api/routes/session.py (to limit POST /sessionLogin with @limiter.limit()).

A single shared instance means every route shares one in-memory counter
store. Separate instances per module would each count alone and the limits
would never trigger.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_rate_limit() -> str:
    """Current login limit string, read from settings at check time."""
    return get_settings().login_rate_limit
