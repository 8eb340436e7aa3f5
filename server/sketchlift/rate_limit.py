# ─────────────────────────────────────────────────────────────────────────────
# Rate Limiting: slowapi limiter shared by the app and its routes
# ─────────────────────────────────────────────────────────────────────────────
# Keyed by client IP. Limits are in-memory per API process; each submit
# on a cache miss is a paid provider call, so the submit route is capped.
# ─────────────────────────────────────────────────────────────────────────────


from slowapi import Limiter
from slowapi.util import get_remote_address

from sketchlift.config import get_settings

limiter = Limiter(key_func=get_remote_address)


def submit_rate_limit() -> str:
    """Limit string for POST /improve-sketch, read from settings."""
    return get_settings().submit_rate_limit
