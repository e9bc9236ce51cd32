"""
Calendar Routes
Single-event create/update/delete and conflict recalculation
"""
import logging

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request
from supabase import Client

from emergent_sync.core.dependencies import get_briefing_notifier, get_http_client, get_supabase
from emergent_sync.core.errors import SyncError, format_error_message
from emergent_sync.core.security import get_current_user_id
from emergent_sync.middleware.error_handler import http_status_for
from emergent_sync.middleware.rate_limit import EVENT_WRITE_LIMIT, limiter
from emergent_sync.models.schemas.calendar import (
    ConflictRecalculation,
    EventCreate,
    EventUpdate,
    WriteOutcome,
)
from emergent_sync.services.jobs.notifications import BriefingNotifier
from emergent_sync.services.sync.orchestration.events import (
    create_event,
    delete_event,
    recalculate_conflicts,
    update_event,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/calendar", tags=["calendar"])


def _checked(outcome: WriteOutcome) -> WriteOutcome:
    if outcome.error == "not_connected":
        raise HTTPException(status_code=400, detail="Calendar is not connected")
    return outcome


def _to_http(error: SyncError, action: str, user_id: str) -> HTTPException:
    logger.error(f"❌ Calendar {action} failed for user {user_id}: {error}")
    return HTTPException(status_code=http_status_for(error), detail=format_error_message(error))


@router.post("/events", response_model=WriteOutcome)
@limiter.limit(EVENT_WRITE_LIMIT)
async def create_calendar_event(
    request: Request,
    body: EventCreate,
    user_id: str = Depends(get_current_user_id),
    http_client: httpx.AsyncClient = Depends(get_http_client),
    supabase: Client = Depends(get_supabase),
    notifier: BriefingNotifier = Depends(get_briefing_notifier)
):
    """Create an event. Blocked (422) if the DLP gate can't run."""
    try:
        return _checked(await create_event(http_client, supabase, user_id, body, notifier=notifier))
    except SyncError as e:
        raise _to_http(e, "create", user_id)


@router.patch("/events/{event_id}", response_model=WriteOutcome)
@limiter.limit(EVENT_WRITE_LIMIT)
async def update_calendar_event(
    event_id: str,
    request: Request,
    body: EventUpdate,
    user_id: str = Depends(get_current_user_id),
    http_client: httpx.AsyncClient = Depends(get_http_client),
    supabase: Client = Depends(get_supabase),
    notifier: BriefingNotifier = Depends(get_briefing_notifier)
):
    try:
        return _checked(await update_event(http_client, supabase, user_id, event_id, body, notifier=notifier))
    except SyncError as e:
        raise _to_http(e, "update", user_id)


@router.delete("/events/{event_id}", response_model=WriteOutcome)
@limiter.limit(EVENT_WRITE_LIMIT)
async def delete_calendar_event(
    event_id: str,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    http_client: httpx.AsyncClient = Depends(get_http_client),
    supabase: Client = Depends(get_supabase),
    notifier: BriefingNotifier = Depends(get_briefing_notifier)
):
    try:
        return _checked(await delete_event(http_client, supabase, user_id, event_id, notifier=notifier))
    except SyncError as e:
        raise _to_http(e, "delete", user_id)


@router.post("/recalculate-conflicts", response_model=ConflictRecalculation)
async def recalculate_calendar_conflicts(
    user_id: str = Depends(get_current_user_id),
    supabase: Client = Depends(get_supabase)
):
    """Re-derive conflict flags over every stored event."""
    try:
        return recalculate_conflicts(supabase, user_id)
    except SyncError as e:
        raise _to_http(e, "conflict recalculation", user_id)
