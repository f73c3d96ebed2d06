"""
Unified Configuration
All environment variables and settings in one place

ARCHITECTURE:
- ONE Supabase for credentials, artifacts and sync state
- Provider OAuth clients (Google) and API keys (RapidAPI LinkedIn) from env
- Engine tunables (page size, backoff, early-stop heuristic) are settings,
  not constants, so they can be tuned per deployment

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
    Application settings.
    Validates all environment variables at startup.
    """

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
    supabase_service_key: str = Field(description="Supabase service key (backend uses this)")

    # Redis (job queue)
    redis_url: Optional[str] = Field(default=None, description="Redis connection URL for background sync jobs")

    # ============================================================================
    # PROVIDERS
    # ============================================================================

    google_client_id: Optional[str] = Field(default=None, description="Google OAuth client ID (Gmail)")
    google_client_secret: Optional[str] = Field(default=None, description="Google OAuth client secret (Gmail)")
    google_token_url: str = Field(default="https://oauth2.googleapis.com/token", description="Google OAuth token endpoint")
    gmail_api_base: str = Field(default="https://gmail.googleapis.com/gmail/v1", description="Gmail REST API base URL")

    rapidapi_key: Optional[str] = Field(default=None, description="RapidAPI key for the LinkedIn posts API")
    rapidapi_linkedin_host: str = Field(default="linkedin-api8.p.rapidapi.com", description="RapidAPI LinkedIn host")

    # ============================================================================
    # SYNC ENGINE
    # ============================================================================

    token_refresh_buffer_seconds: int = Field(default=300, description="Refresh access tokens this many seconds before expiry")

    transport_max_retries: int = Field(default=5, description="Max attempts per HTTP call when the provider throttles")
    transport_base_delay: float = Field(default=1.0, description="Base backoff delay in seconds (doubles per attempt)")
    transport_max_delay: float = Field(default=30.0, description="Cap on a single backoff delay in seconds")
    http_timeout_seconds: float = Field(default=30.0, description="Timeout applied to each provider HTTP call")

    sync_page_size: int = Field(default=50, description="Records requested per provider page")
    sync_page_delay_seconds: float = Field(default=0.5, description="Courtesy delay between pages")
    sync_page_retries: int = Field(default=1, description="Times a throttled page is retried before paging aborts")
    sync_default_max_results: int = Field(default=500, description="Result cap when the caller does not give one")
    sync_backfill_days: int = Field(default=30, description="Window length when the caller does not give a start date")

    duplicate_ratio_threshold: float = Field(default=0.8, description="Page duplicate ratio above which a page counts toward early stop")
    duplicate_streak_limit: int = Field(default=2, description="Consecutive high-duplicate pages that stop pagination")

    # ============================================================================
    # PRODUCTION INFRASTRUCTURE
    # ============================================================================

    # Error tracking (Sentry)
    sentry_dsn: Optional[str] = Field(default=None, description="Sentry DSN for error tracking")
    sentry_traces_sample_rate: float = Field(default=0.1, description="Fraction of requests/jobs traced")

    # ============================================================================
    # CORS
    # ============================================================================

    cors_allowed_origins: str = Field(default="http://localhost:3000", description="Comma-separated list of allowed CORS origins")

    # ============================================================================
    # RATE LIMITING
    # ============================================================================

    sync_rate_limit: str = Field(default="30/hour", description="Sync trigger limit per caller (slowapi syntax)")
    default_rate_limit: str = Field(default="100/minute", description="Default limit for every other endpoint")

    @model_validator(mode='after')
    def validate_settings(self):
        """
        Validate critical settings at startup.

        SECURITY CHECKS:
        - Warn if running in production without Sentry
        - Warn if debug mode enabled in production
        - Warn when provider credentials are missing
        """
        if self.environment == "production":
            if self.debug:
                logger.warning("⚠️  DEBUG MODE ENABLED IN PRODUCTION! This is insecure.")

            if not self.sentry_dsn:
                logger.warning("⚠️  Sentry not configured in production. Error tracking disabled.")

        if not (self.google_client_id and self.google_client_secret):
            logger.warning("⚠️  GOOGLE_CLIENT_ID/GOOGLE_CLIENT_SECRET not set. Gmail token refresh will fail.")

        if not self.rapidapi_key:
            logger.warning("⚠️  RAPIDAPI_KEY not set. LinkedIn post sync will fail.")

        if not 0.0 <= self.duplicate_ratio_threshold <= 1.0:
            raise ValueError("duplicate_ratio_threshold must be between 0 and 1")

        logger.info("=" * 80)
        logger.info("Artifact Sync Configuration Loaded")
        logger.info("=" * 80)
        logger.info(f"Environment: {self.environment}")
        logger.info(f"Debug: {self.debug}")
        logger.info(f"Supabase URL: {self.supabase_url}")
        logger.info(f"Redis: {'✅ Configured' if self.redis_url else '❌ Not configured'}")
        logger.info(f"Sentry: {'✅ Configured' if self.sentry_dsn else '❌ Not configured'}")
        logger.info(f"Page size: {self.sync_page_size}, page delay: {self.sync_page_delay_seconds}s")
        logger.info(f"Early stop: ratio > {self.duplicate_ratio_threshold} for {self.duplicate_streak_limit} pages")
        logger.info("=" * 80)

        return self

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Global settings instance
settings = Settings()
