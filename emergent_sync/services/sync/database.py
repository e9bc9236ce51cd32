"""
Sync Token Store
Connections table access: lookup, creation from the OAuth webhook, and the
end-of-cycle commit of last_sync_at + delta token
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from supabase import Client

from emergent_sync.core.errors import PersistenceError
from emergent_sync.models.schemas.sync import Connection, ConnectionStatus, Provider

logger = logging.getLogger(__name__)

CONNECTIONS_TABLE = "connections"


# ============================================================================
# CONNECTION LOOKUP
# ============================================================================

async def get_connection(supabase: Client, user_id: str, provider: Provider) -> Optional[Connection]:
    """
    Get the user's connection for a provider.

    Returns:
        Connection, or None when the user never connected or has disconnected
    """
    result = (
        supabase.table(CONNECTIONS_TABLE)
        .select("*")
        .eq("user_id", user_id)
        .eq("provider", provider.value)
        .limit(1)
        .execute()
    )

    if not result.data:
        return None

    connection = Connection(**result.data[0])
    if connection.status == ConnectionStatus.DISCONNECTED:
        return None
    return connection


# ============================================================================
# CONNECTION MANAGEMENT
# ============================================================================

async def save_connection(
    supabase: Client,
    user_id: str,
    provider: Provider,
    connection_id: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> Connection:
    """
    Create or replace the connection row after a successful OAuth handshake.

    A fresh handshake starts with no delta token, so the next cycle is a full sync.
    """
    payload = {
        "user_id": user_id,
        "provider": provider.value,
        "connection_id": connection_id,
        "status": ConnectionStatus.CONNECTED.value,
        "last_sync_at": None,
        "metadata": metadata or {},
    }

    try:
        result = supabase.table(CONNECTIONS_TABLE).upsert(payload, on_conflict="user_id,provider").execute()
    except Exception as e:
        logger.error(f"❌ Failed to save {provider.value} connection for user {user_id}: {e}")
        raise PersistenceError(f"Failed to save connection: {e}") from e

    logger.info(f"✅ Saved {provider.value} connection for user {user_id} ({connection_id[:8]}...)")
    row = result.data[0] if result.data else payload
    return Connection(**row)


async def commit_sync(
    supabase: Client,
    connection: Connection,
    delta_token: Optional[str],
    synced_at: Optional[datetime] = None,
    extra_metadata: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Record a completed cycle: last_sync_at and the new delta token.

    Only called once every item of the cycle is durable; a failed cycle never
    reaches this, so the previous token stays in place.
    """
    synced_at = synced_at or datetime.now(timezone.utc)
    metadata = {**connection.metadata, **(extra_metadata or {})}
    if delta_token:
        metadata["delta_token"] = delta_token

    try:
        (
            supabase.table(CONNECTIONS_TABLE)
            .update({
                "last_sync_at": synced_at.isoformat(),
                "status": ConnectionStatus.CONNECTED.value,
                "metadata": metadata,
            })
            .eq("user_id", connection.user_id)
            .eq("provider", connection.provider.value)
            .execute()
        )
    except Exception as e:
        raise PersistenceError(f"Failed to commit sync token: {e}") from e

    logger.info(f"💾 Committed {connection.provider.value} sync for user {connection.user_id} at {synced_at.isoformat()}")


async def mark_connection_status(
    supabase: Client,
    user_id: str,
    provider: Provider,
    status: ConnectionStatus,
    clear_delta_token: bool = False,
) -> None:
    """Set connection status (error after an auth failure, disconnected on user request)."""
    update: Dict[str, Any] = {"status": status.value}

    if clear_delta_token:
        result = (
            supabase.table(CONNECTIONS_TABLE)
            .select("metadata")
            .eq("user_id", user_id)
            .eq("provider", provider.value)
            .limit(1)
            .execute()
        )
        metadata = dict((result.data[0].get("metadata") or {}) if result.data else {})
        metadata.pop("delta_token", None)
        metadata.pop("calendar_id", None)
        update["metadata"] = metadata

    try:
        (
            supabase.table(CONNECTIONS_TABLE)
            .update(update)
            .eq("user_id", user_id)
            .eq("provider", provider.value)
            .execute()
        )
    except Exception as e:
        raise PersistenceError(f"Failed to update connection status: {e}") from e

    logger.info(f"🔌 {provider.value} connection for user {user_id} marked {status.value}")
