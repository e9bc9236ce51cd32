"""
Circuit Breakers and Retry Logic
Prevents cascading failures when external services (Nango, Nightfall) fail
"""
import logging
from functools import wraps

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception,
    before_sleep_log,
)

from emergent_sync.core.errors import ProviderUnavailableError

logger = logging.getLogger(__name__)

_exponential = wait_exponential(multiplier=1, min=1, max=30)


def _is_transient_provider_error(exc: BaseException) -> bool:
    return (
        isinstance(exc, ProviderUnavailableError)
        and exc.retryable
        and exc.category in ("rate_limit", "server", "network")
    )


def _is_rate_limited(exc: BaseException) -> bool:
    return isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code == 429


def wait_retry_after(retry_state) -> float:
    """Honor a Retry-After header when the last failure carried one, else back off exponentially."""
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    if isinstance(exc, httpx.HTTPStatusError):
        retry_after = exc.response.headers.get("Retry-After")
        if retry_after is not None:
            try:
                return float(retry_after)
            except ValueError:
                pass
    return _exponential(retry_state)


# ============================================================================
# NANGO CIRCUIT BREAKER
# ============================================================================

def with_nango_retry(func):
    """
    Decorator for Nango proxy calls with exponential backoff retry.

    Retries on:
    - Rate limit errors (429)
    - Provider 5xx errors
    - Transport errors

    Auth errors, 410 (expired sync token) and other 4xx surface immediately.
    """
    @retry(
        retry=retry_if_exception(_is_transient_provider_error),
        stop=stop_after_attempt(4),
        wait=_exponential,
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )
    @wraps(func)
    async def async_wrapper(*args, **kwargs):
        return await func(*args, **kwargs)

    return async_wrapper


# ============================================================================
# NIGHTFALL CIRCUIT BREAKER
# ============================================================================

def with_nightfall_retry(func):
    """
    Decorator for Nightfall scan calls.

    Strategy:
    - Only 429 is retried (up to 3 retries)
    - Wait = Retry-After header, else 1s, 2s, 4s ... capped at 30s
    """
    @retry(
        retry=retry_if_exception(_is_rate_limited),
        stop=stop_after_attempt(4),
        wait=wait_retry_after,
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )
    @wraps(func)
    async def async_wrapper(*args, **kwargs):
        return await func(*args, **kwargs)

    return async_wrapper
