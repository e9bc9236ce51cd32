"""
Sync Routes
Queue provider sync cycles, optionally wait for them, read status, disconnect
"""
import logging
from datetime import datetime, timezone

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request
from supabase import Client

from emergent_sync.core.dependencies import get_briefing_notifier, get_http_client, get_supabase
from emergent_sync.core.security import get_current_user_id
from emergent_sync.middleware.rate_limit import SYNC_TRIGGER_LIMIT, limiter
from emergent_sync.models.schemas.sync import (
    Provider,
    SyncStatusRecord,
    SyncTriggerRequest,
    SyncTriggerResponse,
)
from emergent_sync.services.jobs.notifications import BriefingNotifier
from emergent_sync.services.jobs.tasks import enqueue_sync
from emergent_sync.services.sync.database import get_connection
from emergent_sync.services.sync.orchestration.connections import disconnect_provider
from emergent_sync.services.sync.persistence import read_sync_status
from emergent_sync.services.sync.polling import wait_for_sync_completion

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])

BACKGROUND_WARNING = "Sync is still running in the background"


@router.get("/status", response_model=SyncStatusRecord)
async def get_sync_status(
    user_id: str = Depends(get_current_user_id),
    supabase: Client = Depends(get_supabase)
):
    """Latest sync_status row for the authenticated user (idle if none yet)."""
    record = read_sync_status(supabase, user_id)
    if record is None:
        return SyncStatusRecord(user_id=user_id, status="idle")
    return record


@router.post("/{provider}", response_model=SyncTriggerResponse)
@limiter.limit(SYNC_TRIGGER_LIMIT)
async def trigger_sync(
    provider: Provider,
    request: Request,
    body: SyncTriggerRequest = SyncTriggerRequest(),
    user_id: str = Depends(get_current_user_id),
    supabase: Client = Depends(get_supabase)
):
    """
    Queue a sync cycle for one provider.

    With wait=true the request polls sync_status until the cycle finishes or
    the poll timeout passes; a timeout is reported as a warning, the job keeps running.
    Without an active connection nothing is queued and status is not_connected.
    """
    requested_at = datetime.now(timezone.utc)

    if await get_connection(supabase, user_id, provider) is None:
        return SyncTriggerResponse(success=False, status="not_connected")

    try:
        enqueue_sync(provider, user_id, body.trigger)
    except Exception as e:
        logger.error(f"❌ Failed to queue {provider.value} sync for user {user_id}: {e}")
        raise HTTPException(status_code=503, detail="Sync queue unavailable")

    if not body.wait:
        return SyncTriggerResponse(success=True, queued=True)

    result = await wait_for_sync_completion(supabase, user_id, since=requested_at, provider=provider)

    if result.timed_out:
        return SyncTriggerResponse(success=True, queued=True, status=result.status, warning=BACKGROUND_WARNING)
    if result.error:
        return SyncTriggerResponse(success=False, queued=True, status=result.status, error=result.error)
    return SyncTriggerResponse(success=True, queued=True, status=result.status)


@router.post("/{provider}/disconnect")
async def disconnect(
    provider: Provider,
    user_id: str = Depends(get_current_user_id),
    http_client: httpx.AsyncClient = Depends(get_http_client),
    supabase: Client = Depends(get_supabase),
    notifier: BriefingNotifier = Depends(get_briefing_notifier)
):
    """Disconnect a provider and delete its synced rows."""
    disconnected = await disconnect_provider(http_client, supabase, user_id, provider, notifier)
    if not disconnected:
        raise HTTPException(status_code=404, detail=f"No {provider.value} connection")

    return {"status": "disconnected", "provider": provider.value}
