"""
Dramatiq Background Tasks
One actor per provider sync cycle, plus the periodic fan-out of auto syncs

Fatal cycle errors are re-raised so Dramatiq retries the message (max 3).
"""
import asyncio
import logging
from typing import Any, Dict

import dramatiq
import httpx
from supabase import Client, create_client

from emergent_sync.core.config import settings
from emergent_sync.models.schemas.sync import ConnectionStatus, Provider, SyncTrigger
from emergent_sync.services.jobs.broker import broker  # noqa: F401  (registers the broker before actors)

logger = logging.getLogger(__name__)


def get_sync_dependencies():
    """
    Create fresh instances of dependencies for background tasks.
    Dramatiq workers run in separate processes, so we can't share global clients.
    """
    from emergent_sync.core.dependencies import build_redis

    http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(60.0),  # Longer timeout for background jobs
        limits=httpx.Limits(max_keepalive_connections=5, max_connections=10)
    )
    supabase = create_client(settings.supabase_url, settings.supabase_service_key)
    redis_client = build_redis()
    return http_client, supabase, redis_client


async def _run_provider_sync(provider: Provider, user_id: str, trigger: SyncTrigger) -> Dict[str, Any]:
    """Run one cycle, then close the HTTP and Redis clients in the same event loop."""
    from emergent_sync.services.sync.orchestration.calendar_sync import run_calendar_sync
    from emergent_sync.services.sync.orchestration.email_sync import run_gmail_sync

    runner = run_calendar_sync if provider == Provider.CALENDAR else run_gmail_sync
    http_client, supabase, redis_client = get_sync_dependencies()
    try:
        result = await runner(http_client, supabase, redis_client, user_id, trigger)
        return result.model_dump(mode="json")
    finally:
        await http_client.aclose()
        redis_client.close()


@dramatiq.actor(max_retries=3)
def sync_calendar_task(user_id: str, trigger: str = SyncTrigger.AUTO.value):
    """
    Background job for a calendar sync cycle.

    Args:
        user_id: User ID
        trigger: connect | manual | auto
    """
    logger.info(f"🚀 Starting calendar sync job for user {user_id} ({trigger})")
    result = asyncio.run(_run_provider_sync(Provider.CALENDAR, user_id, SyncTrigger(trigger)))
    logger.info(f"✅ Calendar sync job for user {user_id} finished: {result['status']}")
    return result


@dramatiq.actor(max_retries=3)
def sync_gmail_task(user_id: str, trigger: str = SyncTrigger.AUTO.value):
    """
    Background job for a Gmail sync cycle.

    Args:
        user_id: User ID
        trigger: connect | manual | auto
    """
    logger.info(f"🚀 Starting Gmail sync job for user {user_id} ({trigger})")
    result = asyncio.run(_run_provider_sync(Provider.GMAIL, user_id, SyncTrigger(trigger)))
    logger.info(f"✅ Gmail sync job for user {user_id} finished: {result['status']}")
    return result


SYNC_ACTORS = {
    Provider.CALENDAR: sync_calendar_task,
    Provider.GMAIL: sync_gmail_task,
}


def enqueue_sync(provider: Provider, user_id: str, trigger: SyncTrigger) -> None:
    SYNC_ACTORS[provider].send(user_id, trigger.value)
    logger.info(f"📤 Queued {provider.value} sync for user {user_id} ({trigger.value})")


def enqueue_auto_syncs(supabase: Client) -> int:
    """Queue an auto cycle for every connected (user, provider). Returns messages sent."""
    result = (
        supabase.table("connections")
        .select("user_id, provider")
        .eq("status", ConnectionStatus.CONNECTED.value)
        .execute()
    )
    sent = 0
    for row in result.data or []:
        enqueue_sync(Provider(row["provider"]), row["user_id"], SyncTrigger.AUTO)
        sent += 1
    logger.info(f"🕒 Queued {sent} auto sync(s)")
    return sent


@dramatiq.actor(max_retries=0)
def auto_sync_all_task():
    """Periodic fan-out (run from a scheduler); each cycle is its own message."""
    supabase = create_client(settings.supabase_url, settings.supabase_service_key)
    return enqueue_auto_syncs(supabase)
