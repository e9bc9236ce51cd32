"""
Logging and Sentry bootstrap shared by the API process (main.py) and the
Dramatiq worker (worker.py)
"""
import logging
from typing import Optional

from emergent_sync.core.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger(__name__)


def configure_logging(level: Optional[int] = None) -> None:
    """INFO in production, DEBUG elsewhere unless a level is given."""
    if level is None:
        level = logging.INFO if settings.environment == "production" else logging.DEBUG
    logging.basicConfig(level=level, format=LOG_FORMAT)


def init_sentry(*integrations) -> bool:
    """
    Initialize Sentry when SENTRY_DSN is set.

    send_default_pii stays off: event titles, mail subjects and sender
    addresses must never leave through error reports.

    Returns:
        True if Sentry was initialized
    """
    if not settings.sentry_dsn:
        logger.info("ℹ️  Sentry not configured (SENTRY_DSN not set)")
        return False

    try:
        import sentry_sdk
        from sentry_sdk.integrations.logging import LoggingIntegration

        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.environment,
            traces_sample_rate=0.1,
            send_default_pii=False,
            integrations=[
                *integrations,
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)
            ]
        )
    except Exception as e:
        logger.warning(f"⚠️  Failed to initialize Sentry: {e}")
        return False

    logger.info("✅ Sentry error tracking initialized")
    return True
