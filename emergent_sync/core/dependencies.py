"""
Dependency Injection
Process-wide clients for the API and the FastAPI dependencies that hand them to routes

- Supabase (service role): connections, synced rows, sync_status, pii_vault
- Redis: per-connection sync locks and the health probe (optional in local dev)
- BriefingNotifier: created once so the briefings queue is declared at startup
- httpx.AsyncClient: per request, for Nango proxy and Nightfall calls
"""
import logging
from typing import AsyncGenerator, Dict, Optional

import httpx
import redis
from supabase import Client, create_client

from emergent_sync.core.config import settings
from emergent_sync.services.jobs.notifications import BriefingNotifier

logger = logging.getLogger(__name__)

_supabase_client: Optional[Client] = None
_redis_client: Optional[redis.Redis] = None
_notifier: Optional[BriefingNotifier] = None


def build_redis(url: Optional[str] = None, ping: bool = False) -> redis.Redis:
    """Redis client with string responses (lock tokens are compared as str)."""
    client = redis.from_url(
        url or settings.redis_url or "redis://localhost:6379/0",
        decode_responses=True,
        socket_connect_timeout=5,
    )
    if ping:
        client.ping()
    return client


async def initialize_clients():
    """Called from the main.py lifespan before the first request."""
    global _supabase_client, _redis_client, _notifier

    try:
        _supabase_client = create_client(settings.supabase_url, settings.supabase_service_key)
        logger.info("✅ Supabase client initialized")
    except Exception as e:
        logger.error(f"❌ Failed to initialize Supabase: {e}")
        raise

    if not settings.redis_url:
        logger.warning("⚠️  REDIS_URL not set, sync locks unavailable in this process")
    else:
        try:
            _redis_client = build_redis(settings.redis_url, ping=True)
            logger.info("✅ Redis client initialized")
        except redis.RedisError as e:
            logger.warning(f"⚠️  Redis not available: {e}")
            _redis_client = None

    _notifier = BriefingNotifier()
    logger.info(f"✅ Briefing notifier ready (queue={_notifier.queue_name})")


async def shutdown_clients():
    global _supabase_client, _redis_client, _notifier

    if _redis_client is not None:
        try:
            _redis_client.close()
        except redis.RedisError as e:
            logger.error(f"Error closing Redis: {e}")
    _redis_client = None
    _supabase_client = None
    _notifier = None
    logger.info("✅ Clients released")


def client_status() -> Dict[str, str]:
    """Database/queue state for /health. Never raises."""
    database = "ok" if _supabase_client is not None else "not_initialized"

    if _redis_client is None:
        queue = "not_configured"
    else:
        try:
            _redis_client.ping()
            queue = "ok"
        except redis.RedisError as e:
            logger.warning(f"⚠️  Redis ping failed: {e}")
            queue = "unavailable"

    return {"database": database, "queue": queue}


# ============================================================================
# DEPENDENCY FUNCTIONS (injected into routes)
# ============================================================================

def get_supabase() -> Client:
    """
    Usage:
        @router.get("/example")
        async def example(supabase: Client = Depends(get_supabase)):
            ...
    """
    if _supabase_client is None:
        raise RuntimeError("Supabase client not initialized. Call initialize_clients() first.")
    return _supabase_client


def get_redis() -> redis.Redis:
    if _redis_client is None:
        raise RuntimeError("Redis client not initialized (REDIS_URL unset or unreachable)")
    return _redis_client


def get_briefing_notifier() -> BriefingNotifier:
    global _notifier
    if _notifier is None:
        _notifier = BriefingNotifier()
    return _notifier


async def get_http_client() -> AsyncGenerator[httpx.AsyncClient, None]:
    """Per-request client, closed after the response."""
    client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    try:
        yield client
    finally:
        await client.aclose()
