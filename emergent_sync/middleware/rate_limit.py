"""
Rate Limiting Middleware
Prevents abuse using slowapi

RATE LIMITS:
- Global: 100 requests/minute (default)
- Manual sync triggers: 10/minute per user
- Single-event writes: 30/minute per user

Authenticated requests are keyed by bearer token so switching IPs doesn't reset the limit.
"""
import hashlib
import logging
from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request

from emergent_sync.core.config import settings

logger = logging.getLogger(__name__)

SYNC_TRIGGER_LIMIT = "10/minute"
EVENT_WRITE_LIMIT = "30/minute"


def rate_limit_key_func(request: Request) -> str:
    """
    Determine rate limit key based on authentication status.

    - Bearer token present: hash of the token (never the raw token)
    - Otherwise: client IP
    """
    authorization = request.headers.get("authorization") or ""
    if authorization.lower().startswith("bearer "):
        digest = hashlib.sha256(authorization[7:].encode("utf-8")).hexdigest()[:24]
        return f"token:{digest}"

    ip = get_remote_address(request)
    logger.debug(f"Rate limit key: ip={ip}")
    return f"ip:{ip}"


limiter = Limiter(
    key_func=rate_limit_key_func,
    default_limits=["100/minute"],
    # Shared counters across instances when Redis is configured
    storage_uri=settings.redis_url or "memory://",
    enabled=settings.environment != "test",
)
