"""
Security and Authentication
Bearer JWT validation via Supabase Auth, and PII-safe log formatting

user_id comes only from the validated token, never from request bodies.
"""
import logging
import re

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from supabase import Client

from emergent_sync.core.dependencies import get_supabase

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

EMAIL_PATTERN = re.compile(r"([A-Za-z0-9._%+-])[A-Za-z0-9._%+-]*@([A-Za-z0-9.-]+)")


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    supabase: Client = Depends(get_supabase)
) -> str:
    """
    Supabase checks signature and expiry server-side; we only read back the user.

    Raises:
        HTTPException 401 if the token is missing or rejected
    """
    if not credentials:
        raise _unauthorized("Authorization header required")

    try:
        response = supabase.auth.get_user(credentials.credentials)
    except Exception as e:
        logger.warning(f"JWT rejected by Supabase Auth: {e}")
        raise _unauthorized("Authentication failed")

    user = getattr(response, "user", None)
    if user is None:
        raise _unauthorized("Invalid authentication token")

    return user.id


def sanitize_for_logging(text: str, max_length: int = 50) -> str:
    """
    Truncate and mask every email address in a string before it is logged.

    "dana@example.com" -> "d***@example.com"
    """
    if not text:
        return ""
    masked = EMAIL_PATTERN.sub(r"\1***@\2", text)
    if len(masked) > max_length:
        masked = masked[:max_length] + "..."
    return masked
