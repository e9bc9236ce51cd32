"""
Unified Configuration
All environment variables and settings in one place

ARCHITECTURE:
- ONE Supabase for everything (connections, synced rows, sync status, PII vault)
- Nango proxies every provider API call (Google Calendar, Gmail)
- Nightfall is the DLP gate in front of every durable write of free text
- Redis backs both the Dramatiq job queue and the per-connection sync lock

SECURITY:
- All secrets loaded from environment variables
- No hardcoded credentials
- PII vault values encrypted with AES-256-GCM (PII_VAULT_KEY_BASE64)
"""
from enum import Enum
from typing import Optional
import logging
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, model_validator

logger = logging.getLogger(__name__)


class DlpFailurePolicy(str, Enum):
    """What to do with a record when the DLP gate cannot run."""

    FAIL_OPEN = "fail_open"      # store unredacted, tagged security_verified=False
    FAIL_CLOSED = "fail_closed"  # block the write entirely


class Settings(BaseSettings):
    """
    Application settings.
    Validates all environment variables at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ============================================================================
    # SERVER
    # ============================================================================

    environment: str = Field(default="production", description="Environment: development/staging/production")
    port: int = Field(default=8080, description="Server port")
    debug: bool = Field(default=False, description="Debug mode")

    # ============================================================================
    # DATABASE (Supabase PostgreSQL)
    # ============================================================================

    supabase_url: str = Field(description="Supabase project URL")
    supabase_anon_key: Optional[str] = Field(default=None, description="Supabase anonymous key")
    supabase_service_key: str = Field(description="Supabase service key (backend uses this)")

    # ============================================================================
    # PROVIDER PROXY (Nango)
    # ============================================================================

    nango_secret: Optional[str] = Field(default=None, description="Nango API secret key")
    nango_base_url: str = Field(default="https://api.nango.dev", description="Nango API base URL")
    nango_provider_key_calendar: str = Field(default="google-calendar", description="Nango provider key for Google Calendar")
    nango_provider_key_gmail: str = Field(default="google-mail", description="Nango provider key for Gmail")
    nango_webhook_secret: Optional[str] = Field(default=None, description="HMAC secret for X-Nango-Signature (unset skips verification)")

    # ============================================================================
    # DLP GATE (Nightfall) + PII VAULT
    # ============================================================================

    nightfall_api_key: Optional[str] = Field(default=None, description="Nightfall API key")
    nightfall_scan_url: str = Field(default="https://api.nightfall.ai/v3/scan", description="Nightfall scan endpoint (varies by region)")
    nightfall_chunk_size: int = Field(default=20, description="Strings per Nightfall scan call")
    nightfall_chunk_delay_seconds: float = Field(default=0.2, description="Pause between scan chunks")
    pii_vault_key_base64: Optional[str] = Field(default=None, description="Base64 AES-256 key for the PII vault")

    dlp_bulk_sync_policy: DlpFailurePolicy = Field(
        default=DlpFailurePolicy.FAIL_OPEN,
        description="DLP failure policy during bulk sync cycles"
    )
    dlp_single_write_policy: DlpFailurePolicy = Field(
        default=DlpFailurePolicy.FAIL_CLOSED,
        description="DLP failure policy when a user creates a single record"
    )
    dlp_update_policy: DlpFailurePolicy = Field(
        default=DlpFailurePolicy.FAIL_OPEN,
        description="DLP failure policy when a user edits an existing record"
    )

    # ============================================================================
    # SYNC WINDOWS (days, UTC day boundaries)
    # ============================================================================

    calendar_past_days: int = Field(default=7, description="Initial calendar sync: days back")
    calendar_future_days: int = Field(default=30, description="Initial calendar sync: days forward")
    calendar_fallback_past_days: int = Field(default=1, description="Expired-token fallback: days back")
    calendar_fallback_future_days: int = Field(default=14, description="Expired-token fallback: days forward")
    calendar_analysis_past_days: int = Field(default=7, description="Conflict analysis window: days back")
    calendar_analysis_future_days: int = Field(default=14, description="Conflict analysis window: days forward")
    calendar_page_size: int = Field(default=250, description="Calendar events per page")
    calendar_fallback_calendar_limit: int = Field(default=5, description="Max secondary calendars probed when primary is empty")

    gmail_initial_days: int = Field(default=7, description="Initial Gmail sync: days back")
    gmail_page_size: int = Field(default=100, description="Gmail message ids per page")
    gmail_detail_concurrency: int = Field(default=10, description="Concurrent Gmail detail fetches")

    persistence_batch_size: int = Field(default=100, description="Rows per upsert call")

    # ============================================================================
    # ORCHESTRATION
    # ============================================================================

    sync_poll_timeout_seconds: float = Field(default=120.0, description="How long a caller waits for a sync to finish")
    sync_poll_interval_seconds: float = Field(default=0.5, description="Poll interval for sync_status")
    sync_lock_ttl_seconds: int = Field(default=900, description="Per-connection sync lock TTL")
    http_timeout_seconds: float = Field(default=30.0, description="Timeout for request-path Nango and Nightfall calls")

    # Redis (job queue + locks)
    redis_url: Optional[str] = Field(default=None, description="Redis connection URL")
    briefing_queue_name: str = Field(default="briefings", description="Queue consumed by the briefing generator")

    # ============================================================================
    # PRODUCTION INFRASTRUCTURE
    # ============================================================================

    sentry_dsn: Optional[str] = Field(default=None, description="Sentry DSN for error tracking")
    cors_allowed_origins: str = Field(default="http://localhost:3000", description="Comma-separated list of allowed CORS origins")

    @model_validator(mode='after')
    def validate_settings(self):
        """
        Validate critical settings at startup.

        Missing DLP configuration is NOT fatal here: the redaction gate checks it
        per call and routes to the configured fail-open/fail-closed branch.
        """
        if self.environment == "production":
            if self.debug:
                logger.warning("⚠️  DEBUG MODE ENABLED IN PRODUCTION! This is insecure.")

            if not self.sentry_dsn:
                logger.warning("⚠️  Sentry not configured in production. Error tracking disabled.")

        if not self.nango_secret:
            logger.warning("⚠️  NANGO_SECRET not set. Provider fetches will fail.")

        if not self.nightfall_api_key or not self.pii_vault_key_base64:
            logger.warning("⚠️  DLP not fully configured. Bulk sync will store unverified data.")

        logger.info("=" * 80)
        logger.info("EmergentOS Sync Configuration Loaded")
        logger.info("=" * 80)
        logger.info(f"Environment: {self.environment}")
        logger.info(f"Debug: {self.debug}")
        logger.info(f"Supabase URL: {self.supabase_url}")
        logger.info(f"Redis: {'✅ Configured' if self.redis_url else '❌ Not configured'}")
        logger.info(f"Nango: {'✅ Configured' if self.nango_secret else '❌ Not configured'}")
        logger.info(f"Nightfall: {'✅ Configured' if self.nightfall_api_key else '❌ Not configured'}")
        logger.info(f"PII Vault: {'✅ Configured' if self.pii_vault_key_base64 else '❌ Not configured'}")
        logger.info(f"DLP policy (bulk/single/update): {self.dlp_bulk_sync_policy.value}/{self.dlp_single_write_policy.value}/{self.dlp_update_policy.value}")
        logger.info(f"Sentry: {'✅ Configured' if self.sentry_dsn else '❌ Not configured'}")
        logger.info("=" * 80)

        return self


# Global settings instance
settings = Settings()
