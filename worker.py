"""
Dramatiq Background Worker
Runs calendar and Gmail sync cycles off the request path

Usage:
    dramatiq worker -p 4 -t 4

auto_sync_all_task is sent by an external scheduler (cron, Render cron job)
and fans out one auto cycle per connected provider.
"""
import logging

from emergent_sync.core.observability import configure_logging, init_sentry

configure_logging(logging.INFO)
logger = logging.getLogger(__name__)

try:
    from sentry_sdk.integrations.dramatiq import DramatiqIntegration
    init_sentry(DramatiqIntegration())
except ImportError as e:
    logger.warning(f"⚠️  Sentry Dramatiq integration unavailable: {e}")

# Importing the actors registers them with the broker
from emergent_sync.services.jobs.broker import broker  # noqa: E402,F401
from emergent_sync.services.jobs.tasks import (  # noqa: E402,F401
    auto_sync_all_task,
    sync_calendar_task,
    sync_gmail_task,
)

logger.info("✅ Sync worker ready: sync_calendar_task, sync_gmail_task, auto_sync_all_task")
