"""Provider payloads and seeded rows for tests."""

import base64
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from emergent_sync.models.schemas.calendar import StoredEvent
from emergent_sync.models.schemas.sync import Connection, ConnectionStatus, Provider

USER_ID = "user-1"
NIGHTFALL_KEY = "nf-test-key"
VAULT_KEY = bytes(range(32))
VAULT_KEY_B64 = base64.b64encode(VAULT_KEY).decode("ascii")

EVENTS_PATH = "/calendar/v3/calendars/primary/events"
MESSAGES_PATH = "/gmail/v1/users/me/messages"


def at(hour: int, minute: int = 0, day: int = 0) -> datetime:
    """An instant on today's UTC date, so default analysis windows include it."""
    base = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    return base + timedelta(days=day, hours=hour, minutes=minute)


def stored(event_id: str, start: datetime, end: datetime, **extra: Any) -> StoredEvent:
    return StoredEvent(event_id=event_id, title=extra.pop("title", event_id), start_time=start, end_time=end, **extra)


def google_event(event_id: str, start: datetime, end: datetime, **extra: Any) -> Dict[str, Any]:
    return {
        "id": event_id,
        "status": "confirmed",
        "summary": extra.pop("summary", f"Event {event_id}"),
        "start": {"dateTime": start.isoformat()},
        "end": {"dateTime": end.isoformat()},
        **extra,
    }


def gmail_message(message_id: str, subject: str = "Hello", sender: str = "Ann <ann@example.com>", **extra: Any) -> Dict[str, Any]:
    return {
        "id": message_id,
        "threadId": f"t-{message_id}",
        "labelIds": extra.pop("labelIds", ["INBOX"]),
        "snippet": extra.pop("snippet", "Quick note"),
        "internalDate": "1700000000000",
        "payload": {
            "headers": extra.pop("headers", [
                {"name": "From", "value": sender},
                {"name": "Subject", "value": subject},
                {"name": "Date", "value": "Tue, 14 Nov 2023 22:13:20 +0000"},
            ]),
            "parts": extra.pop("parts", []),
        },
        **extra,
    }


def seed_connection(
    supabase,
    provider: Provider = Provider.CALENDAR,
    user_id: str = USER_ID,
    status: ConnectionStatus = ConnectionStatus.CONNECTED,
    metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    row = {
        "id": f"conn-{provider.value}",
        "user_id": user_id,
        "provider": provider.value,
        "connection_id": f"nango-{provider.value}-{user_id}",
        "status": status.value,
        "last_sync_at": None,
        "metadata": metadata or {},
    }
    supabase.tables.setdefault("connections", []).append(row)
    return row


def connection(provider: Provider = Provider.CALENDAR, **metadata: Any) -> Connection:
    return Connection(
        connection_id=f"nango-{provider.value}-{USER_ID}",
        user_id=USER_ID,
        provider=provider,
        metadata=metadata,
    )
