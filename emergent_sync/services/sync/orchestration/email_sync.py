"""
Gmail sync orchestration
fetch -> hydrate -> redact -> persist -> commit token
"""
import logging
from datetime import datetime, timezone
from functools import partial
from typing import Optional

import httpx
import redis
from supabase import Client

from emergent_sync.core.config import settings
from emergent_sync.models.schemas.sync import Connection, Provider, SyncResponse, SyncTrigger
from emergent_sync.services.dlp.redaction import RedactionGate
from emergent_sync.services.jobs.notifications import BriefingNotifier
from emergent_sync.services.sync.database import commit_sync
from emergent_sync.services.sync.orchestration.common import run_cycle
from emergent_sync.services.sync.persistence import upsert_messages
from emergent_sync.services.sync.providers.gmail import fetch_gmail_messages
from emergent_sync.services.sync.state import SyncState, SyncStateMachine

logger = logging.getLogger(__name__)


async def _gmail_pipeline(
    http_client: httpx.AsyncClient,
    supabase: Client,
    gate: RedactionGate,
    connection: Connection,
    machine: SyncStateMachine,
) -> SyncResponse:
    user_id = connection.user_id
    started_at = datetime.now(timezone.utc)

    machine.transition(SyncState.FETCHING)
    fetched = await fetch_gmail_messages(http_client, connection)
    logger.info(f"📧 Fetched {len(fetched.items)} message(s) for user {user_id} ({fetched.sync_type})")

    machine.transition(SyncState.SECURING)
    response = SyncResponse(
        status="complete",
        user_id=user_id,
        provider=Provider.GMAIL,
        sync_type=fetched.sync_type,
        items_fetched=len(fetched.items),
    )

    if fetched.items:
        outcome = await gate.redact_messages(user_id, fetched.items, settings.dlp_bulk_sync_policy)
        response.unverified = not outcome.verified
        response.items_upserted = upsert_messages(supabase, user_id, outcome.items)
        response.data_changed = True

    # Mail has no derived analysis; the token commits as soon as rows are durable
    await commit_sync(supabase, connection, fetched.delta_token, started_at)
    machine.transition(SyncState.COMPLETE)
    return response


async def run_gmail_sync(
    http_client: httpx.AsyncClient,
    supabase: Client,
    redis_client: redis.Redis,
    user_id: str,
    trigger: SyncTrigger = SyncTrigger.AUTO,
    notifier: Optional[BriefingNotifier] = None,
    gate: Optional[RedactionGate] = None,
) -> SyncResponse:
    """
    Run one Gmail sync cycle for a user.

    Args:
        http_client: Async HTTP client (Nango + Nightfall)
        supabase: Supabase client (service role)
        redis_client: Redis client for the connection lock
        user_id: User ID
        trigger: connect | manual | auto

    Returns:
        SyncResponse
    """
    gate = gate or RedactionGate(supabase, http_client)
    pipeline = partial(_gmail_pipeline, http_client, supabase, gate)
    return await run_cycle(supabase, redis_client, user_id, Provider.GMAIL, trigger, pipeline, notifier)
