"""
Sync Schemas
Connections, sync status records, fetch results and sync responses
"""
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field


class Provider(str, Enum):
    CALENDAR = "calendar"
    GMAIL = "gmail"


class ConnectionStatus(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class SyncTrigger(str, Enum):
    CONNECT = "connect"
    MANUAL = "manual"
    AUTO = "auto"


class Connection(BaseModel):
    """
    One row per (user, provider).
    The delta token lives in metadata so the connections schema stays provider-agnostic.
    """
    id: Optional[str] = None
    connection_id: str
    user_id: str
    provider: Provider
    status: ConnectionStatus = ConnectionStatus.CONNECTED
    last_sync_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def delta_token(self) -> Optional[str]:
        return self.metadata.get("delta_token")


class SyncStatusRecord(BaseModel):
    """Volatile per-user progress record polled by callers."""
    user_id: str
    status: str
    current_provider: Optional[str] = None
    error_message: Optional[str] = None
    updated_at: Optional[datetime] = None


class TimeWindow(BaseModel):
    """Half-open [start, end) query window in UTC."""
    start: datetime
    end: datetime

    @classmethod
    def around(cls, past_days: int, future_days: int, now: Optional[datetime] = None) -> "TimeWindow":
        """Window on UTC day boundaries: start of `past_days` ago to end of `future_days` from now."""
        now = now or datetime.now(timezone.utc)
        day = now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
        start = day - timedelta(days=past_days)
        end = day + timedelta(days=future_days + 1) - timedelta(microseconds=1000)
        return cls(start=start, end=end)

    @classmethod
    def since(cls, past_days: int, now: Optional[datetime] = None) -> "TimeWindow":
        now = now or datetime.now(timezone.utc)
        day = now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
        return cls(start=day - timedelta(days=past_days), end=now)


T = TypeVar("T")


class FetchResult(BaseModel, Generic[T]):
    """Provider items plus the delta token to commit once they are durable."""
    items: List[T] = Field(default_factory=list)
    delta_token: Optional[str] = None
    sync_type: str = "initial"  # initial | delta | fallback
    calendar_id: Optional[str] = None


class SyncResponse(BaseModel):
    """
    Outcome of one sync cycle.

    status: "complete", "not_connected", "skipped" (lock held), "error"
    """
    status: str
    user_id: str
    provider: Provider
    sync_type: Optional[str] = None
    items_fetched: int = 0
    items_upserted: int = 0
    items_deleted: int = 0
    events_with_conflicts: int = 0
    unverified: bool = False
    data_changed: bool = False
    error: Optional[str] = None


class PollResult(BaseModel):
    """
    Outcome of waiting on sync_status.
    timed_out means the cycle is still running in the background, not that it failed.
    """
    completed: bool = False
    error: Optional[str] = None
    timed_out: bool = False
    status: Optional[str] = None


class SyncTriggerRequest(BaseModel):
    trigger: SyncTrigger = SyncTrigger.MANUAL
    wait: bool = True


class SyncTriggerResponse(BaseModel):
    """Returned by the sync trigger endpoint after polling."""
    success: bool
    queued: bool = False
    status: Optional[str] = None
    warning: Optional[str] = None
    error: Optional[str] = None
