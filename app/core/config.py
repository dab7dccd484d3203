"""
Unified Configuration
All environment variables and settings in one place

ARCHITECTURE:
- ONE Supabase for everything (auth + connections + mirrors + analytics)
- Gmail and TeamLeader OAuth credentials for the token refresher
- Sync tuning (page sizes, batch ceilings, quota ratios, rate policies)

SECURITY:
- All secrets loaded from environment variables
- No hardcoded credentials
"""
from typing import Optional
import logging
from pydantic_settings import BaseSettings
from pydantic import Field, model_validator

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Unified application settings.
    Validates all environment variables at startup.
    """

    # ============================================================================
    # SERVER
    # ============================================================================

    environment: str = Field(default="production", description="Environment: development/staging/production")
    port: int = Field(default=8080, description="Server port")
    debug: bool = Field(default=False, description="Debug mode")

    # ============================================================================
    # DATABASE (Supabase)
    # ============================================================================

    supabase_url: str = Field(description="Supabase project URL")
    supabase_anon_key: str = Field(description="Supabase anonymous key")
    supabase_service_key: str = Field(description="Supabase service key (backend uses this)")

    # ============================================================================
    # OAUTH PROVIDERS
    # ============================================================================

    gmail_client_id: Optional[str] = Field(default=None, description="Google OAuth client ID")
    gmail_client_secret: Optional[str] = Field(default=None, description="Google OAuth client secret")
    gmail_redirect_uri: Optional[str] = Field(default=None, description="Google OAuth redirect URI")

    teamleader_client_id: Optional[str] = Field(default=None, description="TeamLeader OAuth client ID")
    teamleader_client_secret: Optional[str] = Field(default=None, description="TeamLeader OAuth client secret")
    teamleader_redirect_uri: Optional[str] = Field(default=None, description="TeamLeader OAuth redirect URI")

    token_refresh_buffer_minutes: int = Field(default=5, description="Refresh tokens expiring within this many minutes")
    token_sweep_window_minutes: int = Field(default=30, description="Proactive refresh sweep looks this far ahead")

    # ============================================================================
    # SYNC
    # ============================================================================

    max_batches_per_run: int = Field(default=25, description="Hard ceiling on pages fetched per sync invocation")
    max_sync_errors: int = Field(default=5, description="Consecutive failures before a connection is deactivated")
    sync_overlap_minutes: int = Field(default=60, description="Gmail incremental window overlaps the previous run by this much")
    gmail_initial_sync_days: int = Field(default=7, description="First Gmail incremental sync looks back this many days")

    teamleader_page_size: int = Field(default=100, description="TeamLeader page size (API maximum is 100)")
    gmail_page_size: int = Field(default=50, description="Gmail messages.list maxResults")

    # Quota (caller-side estimate in Gmail quota units)
    gmail_daily_quota: int = Field(default=1_000_000_000, description="Daily Gmail quota units per project")
    gmail_incremental_quota_ceiling: int = Field(default=800_000_000, description="Skip incremental Gmail sync above this usage")
    backfill_quota_start_ratio: float = Field(default=0.8, description="Refuse to start a backfill above this share of the daily quota")
    backfill_quota_stop_ratio: float = Field(default=0.9, description="Stop a running backfill above this share of the daily quota")

    # Outbound rate policies (limits library notation)
    gmail_rate_limit: str = Field(default="25000/100 seconds", description="Gmail quota units per user per window")
    teamleader_rate_limit: str = Field(default="100/minute", description="TeamLeader requests per connection per window")

    http_timeout_seconds: float = Field(default=30.0, description="Timeout for outbound provider calls")

    # ============================================================================
    # LLM (OpenAI)
    # ============================================================================

    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key")
    llm_model: str = Field(default="gpt-4o-mini", description="Model used by the analysis dispatcher")
    llm_max_tokens: int = Field(default=2000, description="Completion token ceiling per analysis")
    analysis_batch_size: int = Field(default=5, description="Pending emails classified per batch job")

    # ============================================================================
    # INFRASTRUCTURE
    # ============================================================================

    redis_url: Optional[str] = Field(default=None, description="Redis connection URL (job queue)")
    sentry_dsn: Optional[str] = Field(default=None, description="Sentry DSN for error tracking")
    scheduler_api_key: Optional[str] = Field(default=None, description="API key for cron/scheduler endpoints")

    # ============================================================================
    # CORS
    # ============================================================================

    cors_allowed_origins: str = Field(default="http://localhost:3000", description="Comma-separated list of allowed CORS origins")

    @model_validator(mode='after')
    def validate_settings(self):
        """
        Validate critical settings at startup.

        SECURITY CHECKS:
        - Warn if running in production without Sentry
        - Warn if OAuth or LLM credentials are missing
        """
        if self.environment == "production":
            if self.debug:
                logger.warning("⚠️  DEBUG MODE ENABLED IN PRODUCTION! This is insecure.")

            if not self.sentry_dsn:
                logger.warning("⚠️  Sentry not configured in production. Error tracking disabled.")

        if not (self.gmail_client_id and self.gmail_client_secret):
            logger.warning("⚠️  Gmail OAuth credentials not set. Gmail token refresh will fail.")

        if not (self.teamleader_client_id and self.teamleader_client_secret):
            logger.warning("⚠️  TeamLeader OAuth credentials not set. TeamLeader token refresh will fail.")

        if not self.openai_api_key:
            logger.warning("⚠️  OPENAI_API_KEY not set. Analysis endpoints will fail.")

        logger.info("=" * 80)
        logger.info("CRM Sync Configuration Loaded")
        logger.info("=" * 80)
        logger.info(f"Environment: {self.environment}")
        logger.info(f"Debug: {self.debug}")
        logger.info(f"Supabase URL: {self.supabase_url}")
        logger.info(f"Redis: {'✅ Configured' if self.redis_url else '❌ Not configured'}")
        logger.info(f"Gmail OAuth: {'✅ Configured' if self.gmail_client_id else '❌ Not configured'}")
        logger.info(f"TeamLeader OAuth: {'✅ Configured' if self.teamleader_client_id else '❌ Not configured'}")
        logger.info(f"LLM: {self.llm_model} {'✅' if self.openai_api_key else '❌'}")
        logger.info(f"Sentry: {'✅ Configured' if self.sentry_dsn else '❌ Not configured'}")
        logger.info(f"Rate policies: gmail={self.gmail_rate_limit}, teamleader={self.teamleader_rate_limit}")
        logger.info("=" * 80)

        return self

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Global settings instance
settings = Settings()
