"""
Single-event operations
Create / update / delete one calendar event at the provider, mirror it locally
(redacted), re-derive conflict flags and request a fresh briefing.

The provider is the source of truth: once the provider write succeeds, a local
failure is reported as partial success and never retried.
"""
import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx
from supabase import Client

from emergent_sync.core.config import DlpFailurePolicy, settings
from emergent_sync.core.errors import PersistenceError, ProviderUnavailableError, TokenInvalidError
from emergent_sync.models.schemas.calendar import (
    ConflictRecalculation,
    EventCreate,
    EventUpdate,
    NormalizedEvent,
    WriteOutcome,
)
from emergent_sync.models.schemas.sync import Connection, Provider
from emergent_sync.services.dlp.redaction import EVENT_FIELDS, RedactionGate
from emergent_sync.services.jobs.notifications import BriefingNotifier
from emergent_sync.services.sync.conflicts import classify_conflicts, detect_conflicts
from emergent_sync.services.sync.database import get_connection
from emergent_sync.services.sync.oauth import nango_proxy
from emergent_sync.services.sync.orchestration.calendar_sync import refresh_conflict_flags
from emergent_sync.services.sync.persistence import (
    delete_events,
    load_all_events,
    update_conflict_flags,
    update_event_row,
    upsert_events,
)

logger = logging.getLogger(__name__)


def _not_connected() -> WriteOutcome:
    return WriteOutcome(success=False, error="not_connected")


def _event_endpoint(connection: Connection, event_id: Optional[str] = None) -> str:
    calendar_id = quote(connection.metadata.get("calendar_id") or "primary", safe="")
    endpoint = f"/calendar/v3/calendars/{calendar_id}/events"
    if event_id:
        endpoint += f"/{quote(event_id, safe='')}"
    return endpoint


def _refresh_after_write(supabase: Client, user_id: str) -> None:
    try:
        refresh_conflict_flags(supabase, user_id)
    except PersistenceError as e:
        logger.error(f"❌ Conflict re-detection failed for user {user_id}: {e}")


def _require_provider_id(response: Dict[str, Any], action: str) -> str:
    event_id = response.get("id")
    if not event_id:
        raise ProviderUnavailableError(
            f"Provider did not return an event id on {action}",
            category="client",
            retryable=False,
            action="fail",
        )
    return event_id


# ============================================================================
# CREATE
# ============================================================================

async def create_event(
    http_client: httpx.AsyncClient,
    supabase: Client,
    user_id: str,
    request: EventCreate,
    gate: Optional[RedactionGate] = None,
    notifier: Optional[BriefingNotifier] = None,
    policy: Optional[DlpFailurePolicy] = None,
) -> WriteOutcome:
    """
    Create an event at the provider and store a redacted copy.

    The DLP gate runs first: under the default fail-closed policy a gate
    failure blocks the whole operation before anything is written anywhere.

    Raises:
        DlpBlockedError: DLP gate unavailable under fail-closed
        ProviderUnavailableError: provider write failed
    """
    connection = await get_connection(supabase, user_id, Provider.CALENDAR)
    if connection is None:
        return _not_connected()

    gate = gate or RedactionGate(supabase, http_client)
    policy = policy or settings.dlp_single_write_policy
    text_fields = {"title": request.title, "description": request.description, "location": request.location}
    redaction = await gate.redact_fields(user_id, [text_fields], EVENT_FIELDS, policy)
    redacted = redaction.items[0]

    created = await nango_proxy(
        http_client,
        settings.nango_provider_key_calendar,
        connection.connection_id,
        "POST",
        _event_endpoint(connection),
        data={
            "summary": request.title,
            "description": request.description,
            "location": request.location,
            "start": {"dateTime": request.start_time.isoformat()},
            "end": {"dateTime": request.end_time.isoformat()},
        },
    )
    event_id = _require_provider_id(created, "create")
    logger.info(f"✅ Created calendar event {event_id} for user {user_id}")

    outcome = WriteOutcome(
        success=True, event_id=event_id, security_verified=redaction.verified, time_changed=True
    )

    event = NormalizedEvent(
        event_id=event_id,
        calendar_id=connection.metadata.get("calendar_id") or "primary",
        title=redacted["title"] or "",
        description=redacted["description"],
        location=redacted["location"],
        start_time=request.start_time,
        end_time=request.end_time,
        security_verified=redaction.verified,
    )
    try:
        upsert_events(supabase, user_id, [event])
    except PersistenceError as e:
        logger.error(f"⚠️  Event {event_id} created at provider but not stored locally: {e}")
        outcome.partial = True
        outcome.warning = "Event created in calendar but not saved locally; it will appear after the next sync"
    else:
        _refresh_after_write(supabase, user_id)

    (notifier or BriefingNotifier()).notify(user_id)
    return outcome


# ============================================================================
# UPDATE
# ============================================================================

async def update_event(
    http_client: httpx.AsyncClient,
    supabase: Client,
    user_id: str,
    event_id: str,
    request: EventUpdate,
    gate: Optional[RedactionGate] = None,
    notifier: Optional[BriefingNotifier] = None,
    policy: Optional[DlpFailurePolicy] = None,
) -> WriteOutcome:
    """
    Patch an event at the provider and mirror the change locally.

    Conflict flags are re-derived only when start or end time changed.
    """
    connection = await get_connection(supabase, user_id, Provider.CALENDAR)
    if connection is None:
        return _not_connected()

    changes = request.model_dump(exclude_unset=True)
    text_changes = {name: changes[name] for name in EVENT_FIELDS if name in changes}

    verified = True
    local_fields: Dict[str, Any] = {}
    if text_changes:
        gate = gate or RedactionGate(supabase, http_client)
        policy = policy or settings.dlp_update_policy
        record = {name: text_changes.get(name) for name in EVENT_FIELDS}
        redaction = await gate.redact_fields(user_id, [record], EVENT_FIELDS, policy)
        verified = redaction.verified
        local_fields.update({name: redaction.items[0][name] for name in text_changes})
        local_fields["security_verified"] = verified

    provider_patch: Dict[str, Any] = {}
    if "title" in changes:
        provider_patch["summary"] = changes["title"]
    if "description" in changes:
        provider_patch["description"] = changes["description"]
    if "location" in changes:
        provider_patch["location"] = changes["location"]
    if changes.get("start_time") is not None:
        provider_patch["start"] = {"dateTime": changes["start_time"].isoformat()}
        local_fields["start_time"] = changes["start_time"].isoformat()
    if changes.get("end_time") is not None:
        provider_patch["end"] = {"dateTime": changes["end_time"].isoformat()}
        local_fields["end_time"] = changes["end_time"].isoformat()

    updated = await nango_proxy(
        http_client,
        settings.nango_provider_key_calendar,
        connection.connection_id,
        "PATCH",
        _event_endpoint(connection, event_id),
        data=provider_patch,
    )
    _require_provider_id(updated, "update")
    logger.info(f"✅ Updated calendar event {event_id} for user {user_id}")

    outcome = WriteOutcome(
        success=True, event_id=event_id, security_verified=verified, time_changed=request.time_changed
    )
    try:
        update_event_row(supabase, user_id, event_id, local_fields)
    except PersistenceError as e:
        logger.error(f"⚠️  Event {event_id} updated at provider but not locally: {e}")
        outcome.partial = True
        outcome.warning = "Event updated in calendar but not saved locally; it will be corrected by the next sync"
    else:
        if request.time_changed:
            _refresh_after_write(supabase, user_id)

    (notifier or BriefingNotifier()).notify(user_id)
    return outcome


# ============================================================================
# DELETE
# ============================================================================

async def delete_event(
    http_client: httpx.AsyncClient,
    supabase: Client,
    user_id: str,
    event_id: str,
    notifier: Optional[BriefingNotifier] = None,
) -> WriteOutcome:
    """Delete an event at the provider and locally. An event already gone at the provider (410) counts as deleted."""
    connection = await get_connection(supabase, user_id, Provider.CALENDAR)
    if connection is None:
        return _not_connected()

    try:
        await nango_proxy(
            http_client,
            settings.nango_provider_key_calendar,
            connection.connection_id,
            "DELETE",
            _event_endpoint(connection, event_id),
        )
    except TokenInvalidError:
        logger.info(f"ℹ️  Event {event_id} was already deleted at the provider")

    outcome = WriteOutcome(success=True, event_id=event_id, time_changed=True)
    try:
        delete_events(supabase, user_id, [event_id])
    except PersistenceError as e:
        logger.error(f"⚠️  Event {event_id} deleted at provider but not locally: {e}")
        outcome.partial = True
        outcome.warning = "Event deleted in calendar but not removed locally; it will be removed by the next sync"
    else:
        _refresh_after_write(supabase, user_id)

    (notifier or BriefingNotifier()).notify(user_id)
    return outcome


# ============================================================================
# RECALCULATE
# ============================================================================

def recalculate_conflicts(supabase: Client, user_id: str) -> ConflictRecalculation:
    """Re-derive conflict flags over every stored event, plus a classified summary."""
    events = load_all_events(supabase, user_id)
    if not events:
        return ConflictRecalculation(events_processed=0, events_with_conflicts=0)

    graph = detect_conflicts(events)
    with_conflicts = update_conflict_flags(supabase, user_id, events, graph)
    logger.info(f"⚔️  Recalculated conflicts for user {user_id}: {with_conflicts}/{len(events)} in conflict")

    return ConflictRecalculation(
        events_processed=len(events),
        events_with_conflicts=with_conflicts,
        details=classify_conflicts(events),
    )
