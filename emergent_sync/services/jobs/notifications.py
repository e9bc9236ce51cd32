"""
Briefing Notifications
Hands a {user_id, timestamp} message to the briefing generator's queue once a
sync cycle has completed
"""
import logging
from datetime import datetime, timezone
from typing import Optional

import dramatiq
from dramatiq import Broker

from emergent_sync.core.config import settings
from emergent_sync.models.schemas.sync import SyncTrigger
from emergent_sync.services.jobs.broker import broker as default_broker

logger = logging.getLogger(__name__)

BRIEFING_ACTOR = "generate_briefing"


def should_notify_briefing(trigger: SyncTrigger, data_changed: bool) -> bool:
    """Background (auto) cycles that changed nothing don't regenerate the briefing."""
    if trigger == SyncTrigger.AUTO:
        return data_changed
    return True


class BriefingNotifier:
    """
    Enqueues generate_briefing(user_id, timestamp) on the briefings queue.

    The consumer lives in another service, so the message is built directly
    instead of going through a local actor.
    """

    def __init__(self, broker: Optional[Broker] = None, queue_name: Optional[str] = None):
        self.broker = broker or default_broker
        self.queue_name = queue_name or settings.briefing_queue_name
        self.broker.declare_queue(self.queue_name)

    def notify(self, user_id: str, timestamp: Optional[datetime] = None) -> bool:
        """
        Returns:
            True if enqueued. Failures are logged and never propagate: the sync
            that triggered this is already complete.
        """
        timestamp = timestamp or datetime.now(timezone.utc)
        message = dramatiq.Message(
            queue_name=self.queue_name,
            actor_name=BRIEFING_ACTOR,
            args=(user_id, timestamp.isoformat()),
            kwargs={},
            options={},
        )

        try:
            self.broker.enqueue(message)
        except Exception as e:
            logger.error(f"❌ Failed to enqueue briefing for user {user_id}: {e}")
            return False

        logger.info(f"📰 Briefing requested for user {user_id}")
        return True
