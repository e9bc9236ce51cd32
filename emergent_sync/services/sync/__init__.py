"""
Data Sync System
Provider fetch, DLP redaction, idempotent persistence and conflict analysis
for Google Calendar and Gmail
"""
from emergent_sync.services.sync.conflicts import classify_conflicts, detect_conflicts
from emergent_sync.services.sync.database import commit_sync, get_connection, save_connection
from emergent_sync.services.sync.orchestration.calendar_sync import run_calendar_sync
from emergent_sync.services.sync.orchestration.email_sync import run_gmail_sync
from emergent_sync.services.sync.polling import wait_for_sync_completion
from emergent_sync.services.sync.state import SyncState, SyncStateMachine

__all__ = [
    "classify_conflicts",
    "detect_conflicts",
    "commit_sync",
    "get_connection",
    "save_connection",
    "run_calendar_sync",
    "run_gmail_sync",
    "wait_for_sync_completion",
    "SyncState",
    "SyncStateMachine",
]
