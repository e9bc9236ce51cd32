"""
Dramatiq Redis Broker Configuration
Sync cycles run as Dramatiq actors (at-least-once delivery, retried on fatal errors)
"""
import logging

import dramatiq
from dramatiq.brokers.redis import RedisBroker
from dramatiq.brokers.stub import StubBroker
from dramatiq.middleware import (
    AgeLimit, Callbacks, Pipelines,
    Retries, ShutdownNotifications
)

from emergent_sync.core.config import settings

logger = logging.getLogger(__name__)

if settings.environment == "test":
    broker = StubBroker()
    broker.emit_after("process_boot")
elif not settings.redis_url:
    logger.warning("⚠️  REDIS_URL not set - background jobs will not work")
    broker = RedisBroker()
else:
    # TimeLimit is left out of the middleware list
    broker = RedisBroker(
        url=settings.redis_url,
        middleware=[
            AgeLimit(),
            Retries(max_retries=3),
            Callbacks(),
            Pipelines(),
            ShutdownNotifications(),
        ]
    )
    logger.info(f"✅ Redis broker initialized: {settings.redis_url[:20]}...")

dramatiq.set_broker(broker)
