"""
CORS Configuration
Cross-Origin Resource Sharing settings for frontend access

SECURITY:
- Origins come from CORS_ALLOWED_ORIGINS (comma-separated)
- Development: localhost added automatically
- NO "null" origin (prevents file:// attacks), no wildcard with credentials
"""
import logging
from typing import List
from fastapi.middleware.cors import CORSMiddleware as FastAPICORSMiddleware
from emergent_sync.core.config import settings

logger = logging.getLogger(__name__)

DEV_ORIGINS = ["http://localhost:3000", "http://127.0.0.1:3000"]


def parse_origins(raw: str) -> List[str]:
    origins = []
    for origin in (raw or "").split(","):
        origin = origin.strip().rstrip("/")
        if origin and origin != "null" and origin != "*" and origin not in origins:
            origins.append(origin)
    return origins


def get_cors_middleware():
    """
    Returns configured CORS middleware with environment-based settings.
    """
    allowed_origins = parse_origins(settings.cors_allowed_origins)

    if settings.environment != "production":
        for origin in DEV_ORIGINS:
            if origin not in allowed_origins:
                allowed_origins.append(origin)

    logger.info(f"🌐 CORS allowed origins: {allowed_origins}")

    return FastAPICORSMiddleware, {
        "allow_origins": allowed_origins,
        "allow_credentials": True,
        "allow_methods": ["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        "allow_headers": [
            "Content-Type",
            "Authorization",
            "X-Request-ID",
        ],
        "expose_headers": ["X-Request-ID"],  # Headers frontend can read
        "max_age": 600,  # Cache preflight requests for 10 minutes
    }
