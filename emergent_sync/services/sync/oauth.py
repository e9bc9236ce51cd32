"""
Nango API client
Proxies provider API calls (Google Calendar, Gmail) through Nango
"""
import logging
from typing import Any, Dict, Optional

import httpx

from emergent_sync.core.circuit_breakers import with_nango_retry
from emergent_sync.core.config import settings
from emergent_sync.core.errors import (
    ProviderUnavailableError,
    TokenInvalidError,
    classify_error,
)
from emergent_sync.models.schemas.sync import Provider

logger = logging.getLogger(__name__)

# Google returns 410 Gone when a syncToken has expired
TOKEN_EXPIRED_STATUS = 410


def _nango_headers(provider_key: str, connection_id: str) -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {settings.nango_secret}",
        "Connection-Id": connection_id,
        "Provider-Config-Key": provider_key,
    }


# ============================================================================
# NANGO PROXY
# ============================================================================

@with_nango_retry
async def nango_proxy(
    http_client: httpx.AsyncClient,
    provider_key: str,
    connection_id: str,
    method: str,
    endpoint: str,
    params: Optional[Dict[str, Any]] = None,
    data: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Call a provider endpoint via Nango's proxy.

    Args:
        http_client: Async HTTP client instance
        provider_key: Nango provider configuration key (e.g., 'google-calendar')
        connection_id: Nango connection ID
        method: HTTP method
        endpoint: Provider path, e.g. '/calendar/v3/calendars/primary/events'
        params: Query parameters
        data: JSON body

    Returns:
        Decoded JSON body ({} for empty bodies such as DELETE responses)

    Raises:
        TokenInvalidError: provider signalled an expired sync token (410)
        ProviderUnavailableError: auth, network or server fault
    """
    url = f"{settings.nango_base_url}/proxy{endpoint}"

    try:
        response = await http_client.request(
            method,
            url,
            headers=_nango_headers(provider_key, connection_id),
            params=params,
            json=data,
        )
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        status_code = e.response.status_code
        if status_code == TOKEN_EXPIRED_STATUS:
            logger.info(f"🔄 Sync token expired for connection {connection_id[:8]}... ({endpoint})")
            raise TokenInvalidError(f"Sync token expired for {endpoint}") from e

        classified = classify_error(e)
        logger.error(f"❌ Nango proxy {method} {endpoint} failed: {status_code} - {e.response.text[:300]}")
        raise ProviderUnavailableError(
            f"Provider request failed ({status_code}) for {endpoint}",
            status_code=status_code,
            category=classified.category,
            retryable=classified.retryable,
            action=classified.action,
        ) from e
    except httpx.TransportError as e:
        classified = classify_error(e)
        logger.error(f"❌ Nango proxy {method} {endpoint} transport error: {e}")
        raise ProviderUnavailableError(
            f"Provider unreachable for {endpoint}: {e}",
            category=classified.category,
            retryable=classified.retryable,
            action=classified.action,
        ) from e

    if not response.content:
        return {}
    return response.json()


# ============================================================================
# CONNECTION MANAGEMENT
# ============================================================================

def provider_key_for(provider: Provider) -> str:
    """Nango provider config key for one of our providers."""
    if provider == Provider.CALENDAR:
        return settings.nango_provider_key_calendar
    return settings.nango_provider_key_gmail


def provider_from_config_key(provider_key: str) -> Optional[Provider]:
    for provider in Provider:
        if provider_key_for(provider) == provider_key:
            return provider
    return None


async def delete_nango_connection(
    http_client: httpx.AsyncClient,
    provider_key: str,
    connection_id: str,
) -> bool:
    """
    Revoke a connection at Nango. Failures are logged, not raised: a disconnect
    must still clear local data when Nango is unreachable.

    Returns:
        True if Nango confirmed the deletion
    """
    url = f"{settings.nango_base_url}/connection/{connection_id}"
    try:
        response = await http_client.delete(
            url,
            headers={"Authorization": f"Bearer {settings.nango_secret}"},
            params={"provider_config_key": provider_key},
        )
        response.raise_for_status()
    except httpx.HTTPError as e:
        logger.warning(f"⚠️  Nango connection delete failed for {connection_id[:8]}...: {e}")
        return False

    logger.info(f"🔌 Deleted Nango connection {connection_id[:8]}... ({provider_key})")
    return True
