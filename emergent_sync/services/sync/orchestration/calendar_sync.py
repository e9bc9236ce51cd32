"""
Calendar sync orchestration
fetch -> redact -> persist -> detect conflicts -> commit token
"""
import logging
from datetime import datetime, timezone
from functools import partial
from typing import Optional, Tuple

import httpx
import redis
from supabase import Client

from emergent_sync.core.config import settings
from emergent_sync.models.schemas.sync import Connection, Provider, SyncResponse, SyncTrigger, TimeWindow
from emergent_sync.services.dlp.redaction import RedactionGate
from emergent_sync.services.jobs.notifications import BriefingNotifier
from emergent_sync.services.sync.conflicts import detect_conflicts
from emergent_sync.services.sync.database import commit_sync
from emergent_sync.services.sync.orchestration.common import run_cycle
from emergent_sync.services.sync.persistence import (
    delete_events,
    load_analysis_window,
    update_conflict_flags,
    upsert_events,
)
from emergent_sync.services.sync.providers.google_calendar import fetch_calendar_events
from emergent_sync.services.sync.state import SyncState, SyncStateMachine

logger = logging.getLogger(__name__)


def refresh_conflict_flags(supabase: Client, user_id: str, window: Optional[TimeWindow] = None) -> Tuple[int, int]:
    """
    Recompute conflict flags over the analysis window from what is stored.

    Returns:
        (events analyzed, events with conflicts)
    """
    stored = load_analysis_window(supabase, user_id, window)
    graph = detect_conflicts(stored)
    with_conflicts = update_conflict_flags(supabase, user_id, stored, graph)
    return len(stored), with_conflicts


async def _calendar_pipeline(
    http_client: httpx.AsyncClient,
    supabase: Client,
    gate: RedactionGate,
    connection: Connection,
    machine: SyncStateMachine,
) -> SyncResponse:
    user_id = connection.user_id
    started_at = datetime.now(timezone.utc)

    machine.transition(SyncState.FETCHING)
    fetched = await fetch_calendar_events(http_client, connection)
    logger.info(f"📅 Fetched {len(fetched.items)} calendar event(s) for user {user_id} ({fetched.sync_type})")

    machine.transition(SyncState.SECURING)
    response = SyncResponse(
        status="complete",
        user_id=user_id,
        provider=Provider.CALENDAR,
        sync_type=fetched.sync_type,
        items_fetched=len(fetched.items),
    )
    extra_metadata = {"calendar_id": fetched.calendar_id} if fetched.calendar_id else None

    if not fetched.items:
        await commit_sync(supabase, connection, fetched.delta_token, started_at, extra_metadata)
        machine.transition(SyncState.COMPLETE)
        return response

    cancelled_ids = [e.event_id for e in fetched.items if e.status == "cancelled"]
    active = [e for e in fetched.items if e.status != "cancelled"]

    outcome = await gate.redact_events(user_id, active, settings.dlp_bulk_sync_policy)
    response.unverified = not outcome.verified
    response.items_upserted = upsert_events(supabase, user_id, outcome.items)
    response.items_deleted = delete_events(supabase, user_id, cancelled_ids)
    response.data_changed = True

    # Conflicts are derived from stored rows, so this runs strictly after persistence
    machine.transition(SyncState.ANALYZING)
    _, response.events_with_conflicts = refresh_conflict_flags(supabase, user_id)

    await commit_sync(supabase, connection, fetched.delta_token, started_at, extra_metadata)
    machine.transition(SyncState.COMPLETE)
    return response


async def run_calendar_sync(
    http_client: httpx.AsyncClient,
    supabase: Client,
    redis_client: redis.Redis,
    user_id: str,
    trigger: SyncTrigger = SyncTrigger.AUTO,
    notifier: Optional[BriefingNotifier] = None,
    gate: Optional[RedactionGate] = None,
) -> SyncResponse:
    """
    Run one calendar sync cycle for a user.

    Args:
        http_client: Async HTTP client (Nango + Nightfall)
        supabase: Supabase client (service role)
        redis_client: Redis client for the connection lock
        user_id: User ID
        trigger: connect | manual | auto
        notifier: Briefing notifier (default: the configured broker)
        gate: Redaction gate (default: built from settings)

    Returns:
        SyncResponse
    """
    gate = gate or RedactionGate(supabase, http_client)
    pipeline = partial(_calendar_pipeline, http_client, supabase, gate)
    return await run_cycle(supabase, redis_client, user_id, Provider.CALENDAR, trigger, pipeline, notifier)
