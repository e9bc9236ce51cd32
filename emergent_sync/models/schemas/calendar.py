"""
Calendar & Mail Schemas
Normalized provider items, single-event requests and conflict details
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator


class NormalizedEvent(BaseModel):
    """Calendar event in our schema, independent of the provider payload."""
    event_id: str
    calendar_id: str = "primary"
    title: str = ""
    description: Optional[str] = None
    start_time: datetime
    end_time: datetime
    is_all_day: bool = False
    location: Optional[str] = None
    attendees: List[Dict[str, Any]] = Field(default_factory=list)
    organizer: Optional[str] = None
    status: str = "confirmed"  # confirmed | tentative | cancelled
    security_verified: bool = True

    def to_row(self, user_id: str) -> Dict[str, Any]:
        """
        Row for calendar_events. Conflict columns are deliberately absent:
        they are written by a separate pass over the whole analysis window.
        """
        return {
            "user_id": user_id,
            "event_id": self.event_id,
            "calendar_id": self.calendar_id,
            "title": self.title,
            "description": self.description,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "is_all_day": self.is_all_day,
            "location": self.location,
            "attendees": self.attendees,
            "organizer": self.organizer,
            "status": self.status,
            "security_verified": self.security_verified,
        }


class NormalizedMessage(BaseModel):
    """Mail message summary in our schema."""
    message_id: str
    thread_id: Optional[str] = None
    sender: str = ""
    subject: str = ""
    snippet: Optional[str] = None
    received_at: datetime
    is_read: bool = False
    has_attachments: bool = False
    labels: List[str] = Field(default_factory=list)
    security_verified: bool = True

    def to_row(self, user_id: str) -> Dict[str, Any]:
        return {
            "user_id": user_id,
            "message_id": self.message_id,
            "thread_id": self.thread_id,
            "sender": self.sender,
            "subject": self.subject,
            "snippet": self.snippet,
            "received_at": self.received_at.isoformat(),
            "is_read": self.is_read,
            "has_attachments": self.has_attachments,
            "labels": self.labels,
            "security_verified": self.security_verified,
        }


class StoredEvent(BaseModel):
    """Minimal projection of a calendar_events row used for conflict analysis."""
    event_id: str
    title: str = ""
    start_time: datetime
    end_time: datetime
    location: Optional[str] = None
    status: Optional[str] = "confirmed"
    conflict_with: Optional[List[str]] = None


class ConflictDetail(BaseModel):
    event_id: str
    overlap_ids: List[str]
    type: str      # hard_overlap | back_to_back | insufficient_buffer | travel_conflict
    severity: str  # critical | high | medium | low
    details: str


# ============================================================================
# SINGLE-EVENT REQUESTS
# ============================================================================

class EventCreate(BaseModel):
    title: str
    start_time: datetime
    end_time: datetime
    description: Optional[str] = None
    location: Optional[str] = None

    @model_validator(mode="after")
    def check_times(self):
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class EventUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @model_validator(mode="after")
    def check_not_empty(self):
        if not self.model_fields_set:
            raise ValueError("At least one field (title, description, start_time, end_time, location) is required")
        return self

    @property
    def time_changed(self) -> bool:
        return self.start_time is not None or self.end_time is not None


class WriteOutcome(BaseModel):
    """
    Result of a single-event write.

    partial=True means the provider write succeeded but the local write did not;
    callers must not retry (the provider would get a duplicate).
    """
    success: bool
    event_id: Optional[str] = None
    partial: bool = False
    security_verified: bool = True
    time_changed: bool = False
    warning: Optional[str] = None
    error: Optional[str] = None  # "not_connected" when the user has no calendar connection


class ConflictRecalculation(BaseModel):
    events_processed: int
    events_with_conflicts: int
    details: List[ConflictDetail] = Field(default_factory=list)
