"""
Persistence Layer
Idempotent upserts of synced items, conflict flag writes, and sync_status records

Upserts are keyed by (user_id, external id) and never carry the conflict
columns, so re-syncing identical data leaves every row unchanged. Conflict
flags are a separate write over the whole analysis window.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Set

from supabase import Client

from emergent_sync.core.config import settings
from emergent_sync.core.errors import PersistenceError
from emergent_sync.models.schemas.calendar import NormalizedEvent, NormalizedMessage, StoredEvent
from emergent_sync.models.schemas.sync import Provider, SyncStatusRecord, TimeWindow

logger = logging.getLogger(__name__)

EVENTS_TABLE = "calendar_events"
EMAILS_TABLE = "emails"
SYNC_STATUS_TABLE = "sync_status"

PROVIDER_TABLES = {
    Provider.CALENDAR: EVENTS_TABLE,
    Provider.GMAIL: EMAILS_TABLE,
}

STORED_EVENT_COLUMNS = "event_id, title, start_time, end_time, location, status, conflict_with"


def _batches(rows: List[dict], size: int):
    for i in range(0, len(rows), size):
        yield rows[i:i + size]


def _upsert_rows(supabase: Client, table: str, rows: List[dict], on_conflict: str, batch_size: Optional[int]) -> int:
    batch_size = batch_size or settings.persistence_batch_size
    written = 0
    for batch in _batches(rows, batch_size):
        try:
            supabase.table(table).upsert(batch, on_conflict=on_conflict).execute()
        except Exception as e:
            logger.error(f"❌ Upsert into {table} failed after {written} row(s): {e}")
            raise PersistenceError(f"Upsert into {table} failed: {e}") from e
        written += len(batch)
    return written


# ============================================================================
# SYNCED ITEMS
# ============================================================================

def upsert_events(supabase: Client, user_id: str, events: Sequence[NormalizedEvent], batch_size: int = None) -> int:
    """Upsert events on (user_id, event_id). Returns rows written."""
    rows = [event.to_row(user_id) for event in events]
    written = _upsert_rows(supabase, EVENTS_TABLE, rows, "user_id,event_id", batch_size)
    logger.info(f"📅 Upserted {written} calendar event(s) for user {user_id}")
    return written


def upsert_messages(supabase: Client, user_id: str, messages: Sequence[NormalizedMessage], batch_size: int = None) -> int:
    """Upsert messages on (user_id, message_id). Returns rows written."""
    rows = [message.to_row(user_id) for message in messages]
    written = _upsert_rows(supabase, EMAILS_TABLE, rows, "user_id,message_id", batch_size)
    logger.info(f"📧 Upserted {written} email(s) for user {user_id}")
    return written


def update_event_row(supabase: Client, user_id: str, event_id: str, fields: Dict[str, object]) -> None:
    """Partial update of one stored event (single-event edits)."""
    payload = {**fields, "updated_at": datetime.now(timezone.utc).isoformat()}
    try:
        (
            supabase.table(EVENTS_TABLE)
            .update(payload)
            .eq("user_id", user_id)
            .eq("event_id", event_id)
            .execute()
        )
    except Exception as e:
        raise PersistenceError(f"Failed to update event {event_id}: {e}") from e


def delete_events(supabase: Client, user_id: str, event_ids: Sequence[str]) -> int:
    """Delete events by id (cancellations from a delta, single-event deletes)."""
    event_ids = list(event_ids)
    if not event_ids:
        return 0
    try:
        (
            supabase.table(EVENTS_TABLE)
            .delete()
            .eq("user_id", user_id)
            .in_("event_id", event_ids)
            .execute()
        )
    except Exception as e:
        raise PersistenceError(f"Failed to delete events: {e}") from e
    logger.info(f"🗑️  Deleted {len(event_ids)} calendar event(s) for user {user_id}")
    return len(event_ids)


def delete_provider_rows(supabase: Client, user_id: str, provider: Provider) -> None:
    """Remove every synced row for a provider (disconnect). Vault tokens are kept."""
    table = PROVIDER_TABLES[provider]
    try:
        supabase.table(table).delete().eq("user_id", user_id).execute()
    except Exception as e:
        raise PersistenceError(f"Failed to clear {table}: {e}") from e
    logger.info(f"🗑️  Cleared {table} for user {user_id}")


# ============================================================================
# CONFLICT ANALYSIS
# ============================================================================

def load_analysis_window(supabase: Client, user_id: str, window: Optional[TimeWindow] = None) -> List[StoredEvent]:
    """
    Stored events overlapping the window (default: the conflict analysis window).

    Overlap, not start time: an event that began before the window but runs
    into it must be re-analyzed together with the events it overlaps.
    """
    window = window or TimeWindow.around(
        settings.calendar_analysis_past_days, settings.calendar_analysis_future_days
    )
    result = (
        supabase.table(EVENTS_TABLE)
        .select(STORED_EVENT_COLUMNS)
        .eq("user_id", user_id)
        .gt("end_time", window.start.isoformat())
        .lte("start_time", window.end.isoformat())
        .order("start_time")
        .execute()
    )
    return [StoredEvent(**row) for row in result.data or []]


def load_all_events(supabase: Client, user_id: str) -> List[StoredEvent]:
    result = (
        supabase.table(EVENTS_TABLE)
        .select(STORED_EVENT_COLUMNS)
        .eq("user_id", user_id)
        .order("start_time")
        .execute()
    )
    return [StoredEvent(**row) for row in result.data or []]


def _existing_outside_partners(supabase: Client, user_id: str, events: Sequence[StoredEvent]) -> Set[str]:
    """Ids listed in stored conflict_with that were not analyzed and are still stored."""
    analyzed = {e.event_id for e in events}
    referenced = {p for e in events for p in e.conflict_with or () if p not in analyzed}
    if not referenced:
        return set()
    try:
        result = (
            supabase.table(EVENTS_TABLE)
            .select("event_id")
            .eq("user_id", user_id)
            .in_("event_id", sorted(referenced))
            .execute()
        )
    except Exception as e:
        raise PersistenceError(f"Failed to load conflict partners: {e}") from e
    return {row["event_id"] for row in result.data or []}


def update_conflict_flags(
    supabase: Client,
    user_id: str,
    events: Sequence[StoredEvent],
    graph: Dict[str, Set[str]],
) -> int:
    """
    Overwrite has_conflict/conflict_with for every analyzed event.

    Events absent from the graph (cancelled, zero-length) are cleared, so flags
    are always recomputed, never merged with a previous cycle. The one exception
    is a partner outside the analyzed set that still exists: its row was not
    rewritten and still lists this event, so the pair is kept on both sides.

    Returns:
        Number of events with at least one conflict
    """
    outside = _existing_outside_partners(supabase, user_id, events)
    with_conflicts = 0
    for event in events:
        kept = {p for p in event.conflict_with or () if p in outside}
        conflict_with = sorted(set(graph.get(event.event_id) or ()) | kept)
        if conflict_with:
            with_conflicts += 1
        try:
            (
                supabase.table(EVENTS_TABLE)
                .update({"has_conflict": bool(conflict_with), "conflict_with": conflict_with})
                .eq("user_id", user_id)
                .eq("event_id", event.event_id)
                .execute()
            )
        except Exception as e:
            raise PersistenceError(f"Failed to update conflict flags: {e}") from e

    logger.info(f"⚔️  Conflict flags written for {len(events)} event(s), {with_conflicts} in conflict")
    return with_conflicts


# ============================================================================
# SYNC STATUS
# ============================================================================

def write_sync_status(
    supabase: Client,
    user_id: str,
    status: str,
    provider: Optional[Provider] = None,
    error_message: Optional[str] = None,
) -> None:
    """Last-write-wins upsert of the user's sync_status row."""
    payload = {
        "user_id": user_id,
        "status": status,
        "current_provider": provider.value if provider else None,
        "error_message": error_message,
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }
    try:
        supabase.table(SYNC_STATUS_TABLE).upsert(payload, on_conflict="user_id").execute()
    except Exception as e:
        raise PersistenceError(f"Failed to write sync status: {e}") from e


def read_sync_status(supabase: Client, user_id: str) -> Optional[SyncStatusRecord]:
    result = (
        supabase.table(SYNC_STATUS_TABLE)
        .select("*")
        .eq("user_id", user_id)
        .limit(1)
        .execute()
    )
    if not result.data:
        return None
    return SyncStatusRecord(**result.data[0])
