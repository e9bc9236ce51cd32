"""
Security Headers Middleware
Adds OWASP-recommended headers to every API response
"""
import logging
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from emergent_sync.core.config import settings

logger = logging.getLogger(__name__)

# JSON API only: no scripts, no framing, no browser features
BASE_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
    "Cache-Control": "no-store",
}

HSTS_HEADER = "max-age=31536000; includeSubDomains"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Set security headers; HSTS only in production (local dev is plain HTTP)."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        for name, value in BASE_HEADERS.items():
            response.headers.setdefault(name, value)

        if settings.environment == "production":
            response.headers["Strict-Transport-Security"] = HSTS_HEADER

        if "server" in response.headers:
            del response.headers["server"]

        return response
