"""
Error Taxonomy
Typed exceptions for the sync pipeline plus provider error classification

A missing connection is NOT an exception: orchestrators return a soft
"not_connected" result instead.
"""
import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)


class SyncError(Exception):
    """Base class for all sync pipeline errors."""


class ProviderUnavailableError(SyncError):
    """Network/auth fault talking to the provider proxy. Fatal to the cycle, retryable by the queue."""

    def __init__(self, message: str, status_code: Optional[int] = None, category: str = "unknown",
                 retryable: bool = True, action: str = "retry"):
        super().__init__(message)
        self.status_code = status_code
        self.category = category
        self.retryable = retryable
        self.action = action


class TokenInvalidError(SyncError):
    """The stored delta token was rejected (HTTP 410). Triggers a full-window fallback."""


class DlpConfigMissingError(SyncError):
    """Scanner key or vault key absent/malformed. Raised before any network call."""


class DlpScanFailedError(SyncError):
    """The DLP scan or vault write failed."""


class DlpBlockedError(SyncError):
    """A fail-closed write was refused because the DLP gate could not run."""


class PersistenceError(SyncError):
    """A Supabase write failed."""


class ConnectionBusyError(SyncError):
    """Another cycle already holds the lock for this connection."""


class InvalidStateTransition(SyncError):
    """A sync cycle tried to move between states the state machine does not allow."""


# ============================================================================
# PROVIDER ERROR CLASSIFICATION
# ============================================================================

@dataclass(frozen=True)
class ClassifiedError:
    retryable: bool
    category: str  # auth | rate_limit | network | server | client | unknown
    action: str    # retry | reconnect | fail | backoff


def classify_error(error: Any) -> ClassifiedError:
    """
    Classify an error to determine the appropriate action.

    Accepts httpx errors, ProviderUnavailableError, or anything else.
    """
    status = None
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
    elif isinstance(error, ProviderUnavailableError):
        status = error.status_code

    # Auth errors - need user to reconnect
    if status in (401, 403):
        return ClassifiedError(retryable=False, category="auth", action="reconnect")

    # Rate limits - retry with backoff
    if status == 429:
        return ClassifiedError(retryable=True, category="rate_limit", action="backoff")

    # Network errors - retry
    if isinstance(error, (httpx.TransportError, ConnectionError, TimeoutError)):
        return ClassifiedError(retryable=True, category="network", action="retry")

    if status is not None and 500 <= status < 600:
        return ClassifiedError(retryable=True, category="server", action="retry")

    # Client errors (except auth) - don't retry
    if status is not None and 400 <= status < 500:
        return ClassifiedError(retryable=False, category="client", action="fail")

    return ClassifiedError(retryable=True, category="unknown", action="retry")


def format_error_message(error: Any) -> str:
    """Format an error for logging/storage in sync_status.error_message."""
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    if isinstance(error, str):
        return error
    return repr(error)
