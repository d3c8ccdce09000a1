"""Application configuration."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_parse_none_str="null",
    )

    # Application
    app_name: str = Field(default="Appointment Settlement API", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    api_v1_prefix: str = Field(default="/api/v1", alias="API_V1_PREFIX")

    # Server
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    reload: bool = Field(default=False, alias="RELOAD")

    # Database
    database_url: str = Field(..., alias="DATABASE_URL")

    # Redis
    redis_host: str = Field(..., alias="REDIS_HOST")
    redis_port: int = Field(..., alias="REDIS_PORT")
    redis_username: str = Field(default="default", alias="REDIS_USERNAME")
    redis_password: str = Field(default="", alias="REDIS_PASSWORD")
    redis_decode_responses: bool = Field(default=True, alias="REDIS_DECODE_RESPONSES")
    # Webhook event ids are remembered for a week (gateway retries for 3 days)
    webhook_event_ttl_seconds: int = Field(default=604800, alias="WEBHOOK_EVENT_TTL_SECONDS")
    webhook_processing_ttl_seconds: int = Field(
        default=300, alias="WEBHOOK_PROCESSING_TTL_SECONDS"
    )

    # Payment gateway (Stripe)
    stripe_secret_key: str = Field(default="", alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: str = Field(default="", alias="STRIPE_WEBHOOK_SECRET")
    stripe_webhook_tolerance_seconds: int = Field(
        default=300, alias="STRIPE_WEBHOOK_TOLERANCE_SECONDS"
    )
    payment_currency: str = Field(default="usd", alias="PAYMENT_CURRENCY")

    # Booking policy
    platform_fee_percent: int = Field(default=12, ge=0, le=100, alias="PLATFORM_FEE_PERCENT")
    booking_max_advance_days: int = Field(default=90, alias="BOOKING_MAX_ADVANCE_DAYS")
    require_payout_account: bool = Field(default=False, alias="REQUIRE_PAYOUT_ACCOUNT")

    # Video provider
    video_api_base_url: str = Field(default="https://video.twilio.com", alias="VIDEO_API_BASE_URL")
    video_api_key_sid: str = Field(default="", alias="VIDEO_API_KEY_SID")
    video_api_key_secret: str = Field(default="", alias="VIDEO_API_KEY_SECRET")
    video_status_callback_url: str | None = Field(default=None, alias="VIDEO_STATUS_CALLBACK_URL")

    # Ledger RPC relay
    ledger_rpc_url: str = Field(default="", alias="LEDGER_RPC_URL")
    ledger_package_id: str = Field(default="", alias="LEDGER_PACKAGE_ID")
    ledger_admin_cap_id: str = Field(default="", alias="LEDGER_ADMIN_CAP_ID")
    ledger_max_attempts: int = Field(default=4, ge=1, alias="LEDGER_MAX_ATTEMPTS")
    ledger_backoff_initial_seconds: float = Field(
        default=0.5, alias="LEDGER_BACKOFF_INITIAL_SECONDS"
    )
    ledger_backoff_max_seconds: float = Field(default=8.0, alias="LEDGER_BACKOFF_MAX_SECONDS")

    # Timeouts
    external_call_timeout_seconds: float = Field(
        default=15.0, alias="EXTERNAL_CALL_TIMEOUT_SECONDS"
    )
    saga_timeout_seconds: float = Field(default=120.0, alias="SAGA_TIMEOUT_SECONDS")

    # Firebase
    firebase_credentials_path: str | None = Field(
        default=None,
        alias="FIREBASE_CREDENTIALS_PATH",
        description="Path to Firebase service account JSON file",
    )

    firebase_config_json: str | None = Field(
        default=None,
        alias="FIREBASE_CONFIG_JSON",
        description="Raw JSON string of the Firebase service account",
    )

    # Reconciliation endpoints
    admin_secret: str = Field(
        default="test-admin-secret-for-development-only",
        alias="ADMIN_SECRET",
        description="Secret key for reconciliation endpoints",
    )

    # CORS
    cors_origins_str: str = Field(
        default="http://localhost:3000",
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS origins as a list."""
        if isinstance(self.cors_origins_str, str):
            return [origin.strip() for origin in self.cors_origins_str.split(",") if origin.strip()]
        return [self.cors_origins_str]

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()  # type: ignore[call-arg]


# Global settings instance
settings = get_settings()
