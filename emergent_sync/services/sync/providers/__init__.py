"""
Data Source Providers
Fetch strategies and normalization for external APIs (Google Calendar, Gmail)
"""
from emergent_sync.services.sync.providers.gmail import fetch_gmail_messages, normalize_gmail_message
from emergent_sync.services.sync.providers.google_calendar import fetch_calendar_events, normalize_calendar_event

__all__ = [
    "fetch_gmail_messages",
    "normalize_gmail_message",
    "fetch_calendar_events",
    "normalize_calendar_event",
]
