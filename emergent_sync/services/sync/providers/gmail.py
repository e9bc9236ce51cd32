"""
Gmail fetcher
Lists inbox message ids through the Nango proxy, hydrates details concurrently,
and normalizes Gmail payloads into our schema
"""
import asyncio
import html
import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, List, Optional

import httpx

from emergent_sync.core.config import settings
from emergent_sync.core.errors import ProviderUnavailableError, TokenInvalidError
from emergent_sync.models.schemas.calendar import NormalizedMessage
from emergent_sync.models.schemas.sync import Connection, FetchResult, TimeWindow
from emergent_sync.services.sync.oauth import nango_proxy

logger = logging.getLogger(__name__)

MESSAGES_ENDPOINT = "/gmail/v1/users/me/messages"


# ============================================================================
# NORMALIZATION
# ============================================================================

def normalize_gmail_message(gmail_record: Dict[str, Any]) -> NormalizedMessage:
    """
    Normalize a Gmail API message (format=full) into our schema.

    Gmail message structure:
    {
        "id": "message_id",
        "threadId": "thread_id",
        "labelIds": ["INBOX", "UNREAD"],
        "snippet": "First line of the body...",
        "internalDate": "1700000000000",
        "payload": {"headers": [{"name": "From", "value": "..."}], "parts": [...]}
    }
    """
    payload = gmail_record.get("payload") or {}
    headers = payload.get("headers") or []

    def get_header(name: str) -> str:
        for header in headers:
            if header.get("name", "").lower() == name.lower():
                return header.get("value") or ""
        return ""

    # Prefer the Date header; fall back to internalDate (epoch millis)
    received_at: Optional[datetime] = None
    date_header = get_header("Date")
    if date_header:
        try:
            received_at = parsedate_to_datetime(date_header)
            if received_at.tzinfo is None:
                received_at = received_at.replace(tzinfo=timezone.utc)
        except (TypeError, ValueError):
            received_at = None
    if received_at is None:
        internal = gmail_record.get("internalDate")
        millis = int(internal) if internal and str(internal).isdigit() else 0
        received_at = datetime.fromtimestamp(millis / 1000, tz=timezone.utc)

    labels = gmail_record.get("labelIds") or []
    parts = payload.get("parts") or []
    has_attachments = any(part.get("filename") for part in parts if isinstance(part, dict))

    return NormalizedMessage(
        message_id=gmail_record["id"],
        thread_id=gmail_record.get("threadId"),
        sender=html.unescape(get_header("From")),
        subject=html.unescape(get_header("Subject")) or "(No subject)",
        snippet=html.unescape(gmail_record.get("snippet") or ""),
        received_at=received_at,
        is_read="UNREAD" not in labels,
        has_attachments=has_attachments,
        labels=labels,
    )


# ============================================================================
# LISTING + HYDRATION
# ============================================================================

async def list_message_ids(
    http_client: httpx.AsyncClient,
    connection: Connection,
    after: datetime,
) -> List[str]:
    """All inbox message ids received after `after`, following nextPageToken."""
    query = f"in:inbox after:{int(after.timestamp())}"
    message_ids: List[str] = []
    seen = set()
    page_token: Optional[str] = None

    while True:
        params: Dict[str, Any] = {"q": query, "maxResults": settings.gmail_page_size}
        if page_token:
            params["pageToken"] = page_token

        data = await nango_proxy(
            http_client,
            settings.nango_provider_key_gmail,
            connection.connection_id,
            "GET",
            MESSAGES_ENDPOINT,
            params=params,
        )

        for message in data.get("messages") or []:
            message_id = message.get("id")
            if message_id and message_id not in seen:
                seen.add(message_id)
                message_ids.append(message_id)

        page_token = data.get("nextPageToken")
        logger.info(f"📬 Fetched {len(data.get('messages') or [])} message ids, total: {len(message_ids)}")
        if not page_token:
            return message_ids


async def hydrate_messages(
    http_client: httpx.AsyncClient,
    connection: Connection,
    message_ids: List[str],
    concurrency: Optional[int] = None,
) -> Dict[str, NormalizedMessage]:
    """
    Fetch full details for each message id with bounded concurrency.

    Results are keyed by message id, not by completion order. A single failed
    detail fetch is logged and skipped; an auth failure aborts the batch.
    """
    semaphore = asyncio.Semaphore(concurrency or settings.gmail_detail_concurrency)

    async def fetch_one(message_id: str) -> tuple[str, Optional[NormalizedMessage]]:
        async with semaphore:
            try:
                data = await nango_proxy(
                    http_client,
                    settings.nango_provider_key_gmail,
                    connection.connection_id,
                    "GET",
                    f"{MESSAGES_ENDPOINT}/{message_id}",
                    params={"format": "full"},
                )
            except ProviderUnavailableError as e:
                if e.action == "reconnect":
                    raise
                logger.error(f"Failed to fetch message {message_id}: {e}")
                return message_id, None
        return message_id, normalize_gmail_message(data)

    pairs = await asyncio.gather(*(fetch_one(message_id) for message_id in message_ids))
    return {message_id: message for message_id, message in pairs if message is not None}


# ============================================================================
# FETCH STRATEGIES
# ============================================================================

def _parse_mail_token(token: str) -> datetime:
    """Gmail list has no sync token; our delta token is the previous run's ISO timestamp."""
    try:
        parsed = datetime.fromisoformat(token.replace("Z", "+00:00"))
    except ValueError as e:
        raise TokenInvalidError(f"Unparseable mail delta token: {token!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


async def _fetch_after(
    http_client: httpx.AsyncClient,
    connection: Connection,
    after: datetime,
    sync_type: str,
) -> FetchResult[NormalizedMessage]:
    started_at = datetime.now(timezone.utc)
    message_ids = await list_message_ids(http_client, connection, after)
    hydrated = await hydrate_messages(http_client, connection, message_ids)
    # Preserve listing order
    items = [hydrated[message_id] for message_id in message_ids if message_id in hydrated]
    return FetchResult[NormalizedMessage](
        items=items, delta_token=started_at.isoformat(), sync_type=sync_type
    )


async def fetch_all(
    http_client: httpx.AsyncClient,
    connection: Connection,
    window: TimeWindow,
) -> FetchResult[NormalizedMessage]:
    return await _fetch_after(http_client, connection, window.start, "initial")


async def fetch_delta(
    http_client: httpx.AsyncClient,
    connection: Connection,
    token: str,
) -> FetchResult[NormalizedMessage]:
    return await _fetch_after(http_client, connection, _parse_mail_token(token), "delta")


async def fetch_gmail_messages(
    http_client: httpx.AsyncClient,
    connection: Connection,
    window: Optional[TimeWindow] = None,
) -> FetchResult[NormalizedMessage]:
    """Delta fetch when a token is stored, else (or when the token is unusable) a full window fetch."""
    window = window or TimeWindow.since(settings.gmail_initial_days)

    if connection.delta_token:
        try:
            return await fetch_delta(http_client, connection, connection.delta_token)
        except TokenInvalidError:
            logger.warning(f"⚠️  Mail delta token invalid for user {connection.user_id}, running full fetch")
            result = await fetch_all(http_client, connection, window)
            result.sync_type = "fallback"
            return result

    return await fetch_all(http_client, connection, window)
