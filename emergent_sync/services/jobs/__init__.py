"""
Background Job Queue
Dramatiq-based sync cycles and briefing notifications
"""
from emergent_sync.services.jobs.broker import broker
from emergent_sync.services.jobs.notifications import BriefingNotifier, should_notify_briefing
from emergent_sync.services.jobs.tasks import (
    auto_sync_all_task,
    enqueue_auto_syncs,
    enqueue_sync,
    sync_calendar_task,
    sync_gmail_task,
)

__all__ = [
    "broker",
    "BriefingNotifier",
    "should_notify_briefing",
    "auto_sync_all_task",
    "enqueue_auto_syncs",
    "enqueue_sync",
    "sync_calendar_task",
    "sync_gmail_task",
]
