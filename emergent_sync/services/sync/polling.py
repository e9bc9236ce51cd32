"""
Sync status polling
Waits for a user's sync_status to reach a terminal state
"""
import asyncio
import logging
import time
from datetime import datetime
from typing import Optional

from supabase import Client

from emergent_sync.core.config import settings
from emergent_sync.models.schemas.sync import PollResult, Provider
from emergent_sync.services.sync.persistence import read_sync_status
from emergent_sync.services.sync.state import SyncState

logger = logging.getLogger(__name__)


async def wait_for_sync_completion(
    supabase: Client,
    user_id: str,
    timeout: Optional[float] = None,
    interval: Optional[float] = None,
    since: Optional[datetime] = None,
    provider: Optional[Provider] = None,
) -> PollResult:
    """
    Poll sync_status until complete/error or timeout.

    Args:
        supabase: Supabase client
        user_id: User ID
        timeout: Seconds to wait (default settings.sync_poll_timeout_seconds)
        interval: Seconds between polls (default settings.sync_poll_interval_seconds)
        since: Ignore terminal states written before this instant (a previous cycle's result)
        provider: Only accept terminal states written by this provider's cycle;
            sync_status is one row per user, so another provider can finish meanwhile

    Returns:
        PollResult; timed_out=True only stops this waiter, the cycle keeps running
    """
    timeout = settings.sync_poll_timeout_seconds if timeout is None else timeout
    interval = settings.sync_poll_interval_seconds if interval is None else interval
    deadline = time.monotonic() + timeout
    last_status: Optional[str] = None

    while True:
        record = read_sync_status(supabase, user_id)
        if record is not None:
            last_status = record.status
            fresh = since is None or (record.updated_at is not None and record.updated_at >= since)
            if provider is not None and record.current_provider != provider.value:
                fresh = False
            if fresh and record.status == SyncState.COMPLETE.value:
                return PollResult(completed=True, status=record.status)
            if fresh and record.status == SyncState.ERROR.value:
                return PollResult(error=record.error_message or "Sync failed", status=record.status)

        if time.monotonic() >= deadline:
            logger.info(f"⏱️  Sync for user {user_id} still running after {timeout}s (last status: {last_status})")
            return PollResult(timed_out=True, status=last_status)

        await asyncio.sleep(interval)
