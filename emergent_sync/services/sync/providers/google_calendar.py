"""
Google Calendar fetcher
Full-window and syncToken-based fetches through the Nango proxy, plus normalization
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from emergent_sync.core.config import settings
from emergent_sync.core.errors import TokenInvalidError
from emergent_sync.models.schemas.calendar import NormalizedEvent
from emergent_sync.models.schemas.sync import Connection, FetchResult, TimeWindow
from emergent_sync.services.sync.oauth import nango_proxy

logger = logging.getLogger(__name__)

PRIMARY_CALENDAR = "primary"


# ============================================================================
# NORMALIZATION
# ============================================================================

def _parse_event_time(value: Dict[str, Any]) -> tuple[Optional[datetime], bool]:
    """Google uses dateTime for timed events and date for all-day events."""
    if not value:
        return None, False
    if value.get("dateTime"):
        parsed = datetime.fromisoformat(value["dateTime"].replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed, False
    if value.get("date"):
        parsed = datetime.fromisoformat(value["date"]).replace(tzinfo=timezone.utc)
        return parsed, True
    return None, False


def normalize_calendar_event(raw: Dict[str, Any], calendar_id: str = PRIMARY_CALENDAR) -> Optional[NormalizedEvent]:
    """
    Normalize a Google Calendar event into our schema.

    Cancelled events in a delta response only carry id + status; they are kept
    (with epoch times) so persistence can delete them.

    Returns:
        NormalizedEvent, or None if the payload has no usable id/times
    """
    event_id = raw.get("id")
    if not event_id:
        return None

    status = raw.get("status") or "confirmed"
    start, is_all_day = _parse_event_time(raw.get("start") or {})
    end, _ = _parse_event_time(raw.get("end") or {})

    if start is None or end is None:
        if status != "cancelled":
            logger.warning(f"Skipping calendar event {event_id}: missing start/end")
            return None
        start = end = datetime.fromtimestamp(0, tz=timezone.utc)

    organizer = (raw.get("organizer") or {}).get("email")
    attendees = [
        {
            "email": a.get("email"),
            "display_name": a.get("displayName"),
            "response_status": a.get("responseStatus"),
            "organizer": a.get("organizer", False),
        }
        for a in raw.get("attendees") or []
        if isinstance(a, dict)
    ]

    return NormalizedEvent(
        event_id=event_id,
        calendar_id=calendar_id,
        title=raw.get("summary") or "(No title)",
        description=raw.get("description"),
        start_time=start,
        end_time=end,
        is_all_day=is_all_day,
        location=raw.get("location"),
        attendees=attendees,
        organizer=organizer,
        status=status,
    )


def _events_endpoint(calendar_id: str) -> str:
    return f"/calendar/v3/calendars/{quote(calendar_id, safe='')}/events"


# ============================================================================
# PAGINATION
# ============================================================================

async def _paginate_events(
    http_client: httpx.AsyncClient,
    connection: Connection,
    calendar_id: str,
    base_params: Dict[str, Any],
) -> tuple[List[NormalizedEvent], Optional[str]]:
    """Follow nextPageToken until exhausted. Returns (events, nextSyncToken from the last page)."""
    events: Dict[str, NormalizedEvent] = {}
    page_token: Optional[str] = None
    sync_token: Optional[str] = None
    pages = 0

    while True:
        params = dict(base_params)
        if page_token:
            params["pageToken"] = page_token

        data = await nango_proxy(
            http_client,
            settings.nango_provider_key_calendar,
            connection.connection_id,
            "GET",
            _events_endpoint(calendar_id),
            params=params,
        )
        pages += 1

        for raw in data.get("items") or []:
            event = normalize_calendar_event(raw, calendar_id)
            if event:
                # Keyed by id: a provider repeating an item across pages yields one row
                events[event.event_id] = event

        page_token = data.get("nextPageToken")
        if not page_token:
            sync_token = data.get("nextSyncToken")
            break

    logger.info(f"📅 Calendar {calendar_id}: {len(events)} events across {pages} page(s)")
    return list(events.values()), sync_token


# ============================================================================
# FETCH STRATEGIES
# ============================================================================

async def fetch_all(
    http_client: httpx.AsyncClient,
    connection: Connection,
    window: TimeWindow,
    calendar_id: str = PRIMARY_CALENDAR,
) -> FetchResult[NormalizedEvent]:
    """Full fetch of every event in the time window."""
    params = {
        "timeMin": window.start.isoformat(),
        "timeMax": window.end.isoformat(),
        "singleEvents": "true",
        "maxResults": settings.calendar_page_size,
    }
    events, sync_token = await _paginate_events(http_client, connection, calendar_id, params)
    return FetchResult[NormalizedEvent](
        items=events, delta_token=sync_token, sync_type="initial", calendar_id=calendar_id
    )


async def fetch_delta(
    http_client: httpx.AsyncClient,
    connection: Connection,
    token: str,
    calendar_id: str = PRIMARY_CALENDAR,
) -> FetchResult[NormalizedEvent]:
    """
    Incremental fetch using a stored syncToken.

    Raises:
        TokenInvalidError: the token has expired (410)
    """
    params = {
        "syncToken": token,
        "singleEvents": "true",
        "maxResults": settings.calendar_page_size,
    }
    events, sync_token = await _paginate_events(http_client, connection, calendar_id, params)
    return FetchResult[NormalizedEvent](
        items=events, delta_token=sync_token or token, sync_type="delta", calendar_id=calendar_id
    )


async def list_secondary_calendars(
    http_client: httpx.AsyncClient,
    connection: Connection,
    limit: int,
) -> List[str]:
    """Visible non-primary calendars, capped at `limit`."""
    data = await nango_proxy(
        http_client,
        settings.nango_provider_key_calendar,
        connection.connection_id,
        "GET",
        "/calendar/v3/users/me/calendarList",
        params={"maxResults": 50},
    )
    calendar_ids = [
        c["id"] for c in data.get("items") or []
        if c.get("id") and not c.get("primary") and not c.get("hidden")
    ]
    return calendar_ids[:limit]


async def fetch_calendar_events(
    http_client: httpx.AsyncClient,
    connection: Connection,
    window: Optional[TimeWindow] = None,
    fallback_window: Optional[TimeWindow] = None,
) -> FetchResult[NormalizedEvent]:
    """
    Choose the fetch strategy for a connection.

    - Stored token: delta fetch; an expired token falls back to a full fetch
      over the shorter fallback window and yields a fresh token.
    - No token: full fetch over the initial window; an empty primary calendar
      probes up to N secondary calendars and keeps the first with events.
    """
    window = window or TimeWindow.around(settings.calendar_past_days, settings.calendar_future_days)
    fallback_window = fallback_window or TimeWindow.around(
        settings.calendar_fallback_past_days, settings.calendar_fallback_future_days
    )
    calendar_id = connection.metadata.get("calendar_id") or PRIMARY_CALENDAR

    if connection.delta_token:
        try:
            return await fetch_delta(http_client, connection, connection.delta_token, calendar_id)
        except TokenInvalidError:
            logger.warning(f"⚠️  Delta token expired for user {connection.user_id}, running full fallback fetch")
            result = await fetch_all(http_client, connection, fallback_window, calendar_id)
            result.sync_type = "fallback"
            return result

    result = await fetch_all(http_client, connection, window, calendar_id)
    if result.items or calendar_id != PRIMARY_CALENDAR:
        return result

    logger.info(f"📭 Primary calendar empty for user {connection.user_id}, probing secondary calendars")
    for candidate in await list_secondary_calendars(
        http_client, connection, settings.calendar_fallback_calendar_limit
    ):
        candidate_result = await fetch_all(http_client, connection, window, candidate)
        if candidate_result.items:
            logger.info(f"✅ Using calendar {candidate} ({len(candidate_result.items)} events)")
            return candidate_result

    return result
