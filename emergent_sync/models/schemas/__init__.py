"""
Pydantic Schemas
All request/response models for API endpoints and the sync pipeline
"""

# Calendar / mail schemas
from .calendar import (
    ConflictDetail,
    ConflictRecalculation,
    EventCreate,
    EventUpdate,
    NormalizedEvent,
    NormalizedMessage,
    StoredEvent,
    WriteOutcome,
)

# Connector schemas (webhooks)
from .connector import NangoEndUser, NangoWebhook

# Health check schemas
from .health import HealthResponse

# Sync schemas
from .sync import (
    Connection,
    ConnectionStatus,
    FetchResult,
    PollResult,
    Provider,
    SyncResponse,
    SyncStatusRecord,
    SyncTrigger,
    SyncTriggerRequest,
    SyncTriggerResponse,
    TimeWindow,
)

__all__ = [
    # Calendar / mail
    "ConflictDetail",
    "ConflictRecalculation",
    "EventCreate",
    "EventUpdate",
    "NormalizedEvent",
    "NormalizedMessage",
    "StoredEvent",
    "WriteOutcome",
    # Connector
    "NangoEndUser",
    "NangoWebhook",
    # Health
    "HealthResponse",
    # Sync
    "Connection",
    "ConnectionStatus",
    "FetchResult",
    "PollResult",
    "Provider",
    "SyncResponse",
    "SyncStatusRecord",
    "SyncTrigger",
    "SyncTriggerRequest",
    "SyncTriggerResponse",
    "TimeWindow",
]
