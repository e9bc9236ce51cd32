"""
Sync cycle harness
Connection lookup, per-connection lock, state machine error handling and the
post-complete briefing notification shared by every provider orchestrator
"""
import logging
from typing import Awaitable, Callable, Optional

import redis
from supabase import Client

from emergent_sync.core.errors import (
    ConnectionBusyError,
    PersistenceError,
    ProviderUnavailableError,
    SyncError,
    format_error_message,
)
from emergent_sync.models.schemas.sync import Connection, ConnectionStatus, Provider, SyncResponse, SyncTrigger
from emergent_sync.services.jobs.notifications import BriefingNotifier, should_notify_briefing
from emergent_sync.services.sync.database import get_connection, mark_connection_status
from emergent_sync.services.sync.locks import connection_lock
from emergent_sync.services.sync.state import SyncStateMachine

logger = logging.getLogger(__name__)

Pipeline = Callable[[Connection, SyncStateMachine], Awaitable[SyncResponse]]


def is_fatal(error: BaseException) -> bool:
    """
    Fatal errors are re-raised so the job queue re-delivers the cycle.

    Retryable provider faults and anything unclassified are fatal; the typed
    sync errors (DLP, persistence, token) end the cycle with an error result.
    """
    if isinstance(error, ProviderUnavailableError):
        return error.retryable
    return not isinstance(error, SyncError)


async def run_cycle(
    supabase: Client,
    redis_client: redis.Redis,
    user_id: str,
    provider: Provider,
    trigger: SyncTrigger,
    pipeline: Pipeline,
    notifier: Optional[BriefingNotifier] = None,
) -> SyncResponse:
    """
    Run one sync cycle for (user, provider).

    Returns:
        SyncResponse: "not_connected" and "skipped" (lock held) are soft results

    Raises:
        Fatal errors (see is_fatal), after sync_status has been set to error
    """
    connection = await get_connection(supabase, user_id, provider)
    if connection is None:
        logger.info(f"ℹ️  No {provider.value} connection for user {user_id}, nothing to sync")
        return SyncResponse(status="not_connected", user_id=user_id, provider=provider)

    logger.info(f"🚀 Starting {provider.value} sync for user {user_id} (trigger={trigger.value})")

    try:
        async with connection_lock(redis_client, user_id, provider):
            machine = SyncStateMachine(supabase, user_id, provider)
            try:
                response = await pipeline(connection, machine)
            except Exception as e:
                message = format_error_message(e)
                logger.error(f"❌ {provider.value} sync failed for user {user_id}: {message}", exc_info=True)
                machine.fail(message)

                if isinstance(e, ProviderUnavailableError) and e.action == "reconnect":
                    try:
                        await mark_connection_status(supabase, user_id, provider, ConnectionStatus.ERROR)
                    except PersistenceError as status_error:
                        logger.error(f"❌ Could not mark connection as error: {status_error}")

                if is_fatal(e):
                    raise
                return SyncResponse(status="error", user_id=user_id, provider=provider, error=message)

    except ConnectionBusyError:
        return SyncResponse(status="skipped", user_id=user_id, provider=provider)

    logger.info(
        f"✅ {provider.value} sync complete for user {user_id}: "
        f"{response.items_fetched} fetched, {response.items_upserted} upserted, {response.items_deleted} deleted"
    )

    if should_notify_briefing(trigger, response.data_changed):
        (notifier or BriefingNotifier()).notify(user_id)

    return response
