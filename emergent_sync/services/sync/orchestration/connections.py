"""
Connection lifecycle
Nango auth webhooks create connections and kick off the first sync;
disconnect revokes at Nango and clears the provider's synced rows
"""
import hashlib
import hmac
import logging
from typing import Optional

import httpx
from supabase import Client

from emergent_sync.core.config import settings
from emergent_sync.models.schemas.connector import NangoWebhook
from emergent_sync.models.schemas.sync import Connection, ConnectionStatus, Provider, SyncTrigger
from emergent_sync.services.jobs.notifications import BriefingNotifier
from emergent_sync.services.jobs.tasks import enqueue_sync
from emergent_sync.services.sync.database import get_connection, mark_connection_status, save_connection
from emergent_sync.services.sync.oauth import delete_nango_connection, provider_from_config_key, provider_key_for
from emergent_sync.services.sync.persistence import delete_provider_rows

logger = logging.getLogger(__name__)


def verify_webhook_signature(body: bytes, signature: Optional[str], secret: Optional[str] = None) -> bool:
    """HMAC-SHA256 of the raw body. With no secret configured, verification is skipped."""
    secret = secret if secret is not None else settings.nango_webhook_secret
    if not secret:
        return True
    if not signature:
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


async def handle_auth_webhook(supabase: Client, payload: NangoWebhook) -> Optional[Connection]:
    """
    Record a successful OAuth handshake and queue the initial (connect) sync.

    Returns:
        The saved Connection, or None for events we ignore (non-auth, failed auth)

    Raises:
        ValueError: unknown provider config key or missing end user
    """
    if payload.type != "auth" or not payload.success:
        logger.info(f"Ignoring Nango webhook type={payload.type} success={payload.success}")
        return None

    provider = provider_from_config_key(payload.providerConfigKey or "")
    if provider is None:
        raise ValueError(f"Unknown provider config key: {payload.providerConfigKey}")

    user_id = payload.end_user_id
    if not user_id or not payload.connectionId:
        raise ValueError("Webhook is missing connectionId or endUser.id")

    connection = await save_connection(
        supabase,
        user_id,
        provider,
        payload.connectionId,
        metadata={"nango_provider_config_key": payload.providerConfigKey},
    )
    enqueue_sync(provider, user_id, SyncTrigger.CONNECT)
    return connection


async def disconnect_provider(
    http_client: httpx.AsyncClient,
    supabase: Client,
    user_id: str,
    provider: Provider,
    notifier: Optional[BriefingNotifier] = None,
) -> bool:
    """
    Disconnect a provider for a user.

    The connection row is kept (marked disconnected, token cleared) and vault
    tokens are kept; synced rows for the provider are deleted.

    Returns:
        False if there was nothing to disconnect
    """
    connection = await get_connection(supabase, user_id, provider)
    if connection is None:
        return False

    await delete_nango_connection(http_client, provider_key_for(provider), connection.connection_id)
    await mark_connection_status(
        supabase, user_id, provider, ConnectionStatus.DISCONNECTED, clear_delta_token=True
    )
    delete_provider_rows(supabase, user_id, provider)
    logger.info(f"🔌 Disconnected {provider.value} for user {user_id}")

    (notifier or BriefingNotifier()).notify(user_id)
    return True
