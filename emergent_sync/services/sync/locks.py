"""
Connection Lock
One sync cycle per (user, provider), enforced with a Redis key
"""
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import redis

from emergent_sync.core.config import settings
from emergent_sync.core.errors import ConnectionBusyError
from emergent_sync.models.schemas.sync import Provider

logger = logging.getLogger(__name__)

# Delete only if we still own the key (it may have expired and been re-acquired)
RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


def lock_key(user_id: str, provider: Provider) -> str:
    return f"sync:lock:{provider.value}:{user_id}"


@asynccontextmanager
async def connection_lock(
    redis_client: redis.Redis,
    user_id: str,
    provider: Provider,
    ttl_seconds: Optional[int] = None,
) -> AsyncIterator[str]:
    """
    Hold the sync lock for a connection for the duration of the block.

    The TTL bounds how long a crashed worker can block the connection.

    Raises:
        ConnectionBusyError: another cycle holds the lock
    """
    key = lock_key(user_id, provider)
    token = uuid.uuid4().hex
    ttl = ttl_seconds or settings.sync_lock_ttl_seconds

    if not redis_client.set(key, token, nx=True, ex=ttl):
        logger.info(f"⏳ {provider.value} sync already running for user {user_id}")
        raise ConnectionBusyError(f"{provider.value} sync already in progress for user {user_id}")

    try:
        yield token
    finally:
        try:
            redis_client.eval(RELEASE_SCRIPT, 1, key, token)
        except redis.RedisError as e:
            # Key expires on its own after the TTL
            logger.warning(f"⚠️  Failed to release sync lock {key}: {e}")
