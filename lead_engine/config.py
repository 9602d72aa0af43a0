from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from lead_engine.errors import ConfigurationError

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"

DEFAULT_CLASSIFICATION_CODES = [
    "541511",
    "541512",
    "541519",
    "541611",
    "518210",
    "561210",
    "541690",
]


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "postgresql://localhost:5432/lead_engine"

    # Redis (only required when RATE_LIMIT_BACKEND == "redis")
    REDIS_URL: str | None = None

    # Shared secret for job trigger endpoints; empty disables the guard
    JOB_TRIGGER_TOKEN: str | None = None

    # Public URLs used when rendering tracked links
    PUBLIC_BASE_URL: str = "http://localhost:8000"
    SITE_URL: str = "https://precisegovcon.com"

    # =================================================================
    # REGISTRY (SAM.gov-compatible entity + opportunity search)
    # =================================================================
    REGISTRY_API_KEY: str | None = None
    REGISTRY_ENTITY_URL: str = "https://api.sam.gov/entity-information/v3/entities"
    REGISTRY_OPPORTUNITY_URL: str = "https://api.sam.gov/opportunities/v2/search"
    REGISTRY_PAGE_SIZE: int = 100
    REGISTRY_TIMEOUT_SECONDS: float = 15.0
    REGISTRY_RATE_LIMIT_BACKOFF_SECONDS: float = 2.0
    REGISTRY_PAGE_DELAY_SECONDS: float = 0.3
    REGISTRY_ERROR_RETRY_DELAY_SECONDS: float = 1.0
    REGISTRY_MAX_CONSECUTIVE_ERRORS: int = 3
    REGISTRY_MAX_FAILED_CODES: int = 3
    CLASSIFICATION_CODES: list[str] = DEFAULT_CLASSIFICATION_CODES

    # Sync windows
    CONTRACTOR_SYNC_DAYS: int = 7
    CONTRACTOR_SYNC_MAX_DAYS: int = 30
    CONTRACTOR_SYNC_MAX_RECORDS: int = 500
    CONTRACTOR_SYNC_RECORD_CEILING: int = 2000
    OPPORTUNITY_LOOKBACK_DAYS: int = 90
    OPPORTUNITY_MAX_RECORDS: int = 1000
    OPPORTUNITY_MAX_CODES: int = 50
    DB_WRITE_CONCURRENCY: int = 4

    # =================================================================
    # EMAIL PROVIDER (Resend-compatible HTTP API)
    # =================================================================
    EMAIL_PROVIDER_URL: str = "https://api.resend.com/emails"
    EMAIL_PROVIDER_API_KEY: str | None = None
    EMAIL_FROM_ADDRESS: str | None = None
    EMAIL_TIMEOUT_SECONDS: float = 10.0

    # Outreach policy
    SEND_MIN_INTERVAL_SECONDS: float = 0.5
    CONTACT_COOLDOWN_DAYS: int = 7
    FOLLOWUP_DUE_DAYS: int = 3
    FOLLOWUP_ASSIGNEE: str = "Admin"
    CAMPAIGN_MAX_RECIPIENTS: int = 500

    # Pipeline
    TRACKING_DEDUPE_WINDOW_HOURS: int = 24
    TRIAL_DAYS: int = 14
    TRIAL_WARNING_MIN_DAYS: int = 3
    TRIAL_WARNING_MAX_DAYS: int = 4
    STAGE_WRITE_ATTEMPTS: int = 3

    # Scheduler intervals
    CONTRACTOR_SYNC_INTERVAL_HOURS: int = 24 * 7
    OPPORTUNITY_SYNC_INTERVAL_HOURS: int = 24
    SWEEP_INTERVAL_HOURS: int = 24

    # =================================================================
    # RATE LIMITING (public opportunity read path)
    # =================================================================
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_BACKEND: str = "memory"  # "memory" or "redis"
    RATE_LIMIT_PUBLIC_PER_WINDOW: int = 10
    RATE_LIMIT_WINDOW_SECONDS: int = 60
    RATE_LIMIT_FAIL_OPEN: bool = True
    TRUSTED_PROXIES: list[str] = ["127.0.0.1"]
    CORS_ALLOWED_ORIGINS: list[str] = ["https://precisegovcon.com", "https://www.precisegovcon.com"]

    # =================================================================
    # DATABASE POOL SETTINGS
    # =================================================================
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 10
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def require_registry_credentials(self) -> str:
        """Return the registry API key or fail before any network call is made."""
        if not self.REGISTRY_API_KEY:
            raise ConfigurationError("REGISTRY_API_KEY is not configured")
        return self.REGISTRY_API_KEY

    def require_email_credentials(self) -> tuple[str, str]:
        if not self.EMAIL_PROVIDER_API_KEY:
            raise ConfigurationError("EMAIL_PROVIDER_API_KEY is not configured")
        if not self.EMAIL_FROM_ADDRESS:
            raise ConfigurationError("EMAIL_FROM_ADDRESS is not configured")
        return self.EMAIL_PROVIDER_API_KEY, self.EMAIL_FROM_ADDRESS

    def email_configured(self) -> bool:
        return bool(self.EMAIL_PROVIDER_API_KEY and self.EMAIL_FROM_ADDRESS)

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            config.update({"min_size": 1, "max_size": 5, "timeout": 15.0})

        return config

    def get_rate_limits(self) -> dict:
        """Rate limits for the public read path."""
        if self.environment == "development":
            return {"public_per_window": self.RATE_LIMIT_PUBLIC_PER_WINDOW * 10}
        return {"public_per_window": self.RATE_LIMIT_PUBLIC_PER_WINDOW}


settings = Settings()
