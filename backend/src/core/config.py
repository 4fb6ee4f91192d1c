"""
Application configuration using Pydantic Settings.
"""

from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="allow",
    )

    # Application
    ENVIRONMENT: str = Field(default="development", description="Environment name")
    DEBUG: bool = Field(default=False, description="Debug mode")
    PRODUCT_NAME: str = Field(
        default="MirrorMe",
        description="Product name used in webhook headers and User-Agent",
    )
    BASE_URL: str = Field(
        default="http://localhost:8000",
        description="Public base URL used to build iframe and download links",
    )

    # Server
    HOST: str = Field(default="0.0.0.0", description="Server host")
    PORT: int = Field(default=8000, description="Server port")

    # Database (PostgreSQL)
    DATABASE_URL: str = Field(..., description="PostgreSQL connection string")

    # CORS for the account management API
    CORS_ORIGINS: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="Allowed CORS origins for the account API (comma-separated)",
    )

    # Webhooks
    WEBHOOK_TIMEOUT: float = Field(default=10.0, description="Webhook delivery timeout (seconds)")
    WEBHOOK_MAX_ATTEMPTS: int = Field(default=3, description="Max webhook delivery attempts")
    WEBHOOK_RETRY_DELAYS: str = Field(
        default="1,5,30",
        description="Delays between webhook attempts (seconds, comma-separated)",
    )
    WEBHOOK_SIGNATURE_TOLERANCE_SECONDS: int = Field(
        default=300, description="Webhook signature timestamp tolerance (seconds)"
    )
    WEBHOOK_MAX_CONCURRENT_DELIVERIES: int = Field(
        default=20, description="Upper bound on concurrent outbound webhook deliveries"
    )

    # Rate Limiting
    RATE_LIMIT_MERCHANT_REQUESTS: int = Field(
        default=100, description="Requests per window per account"
    )
    RATE_LIMIT_MERCHANT_WINDOW_SECONDS: int = Field(
        default=60, description="Per-account rate limit window (seconds)"
    )
    RATE_LIMIT_WIDGET_IP_REQUESTS: int = Field(
        default=20, description="Widget requests per window per client IP"
    )
    RATE_LIMIT_WIDGET_IP_WINDOW_SECONDS: int = Field(
        default=60, description="Per-IP widget rate limit window (seconds)"
    )
    RATE_LIMIT_LOGIN_REQUESTS: int = Field(
        default=5, description="Login attempts per window per client IP"
    )
    RATE_LIMIT_LOGIN_WINDOW_SECONDS: int = Field(
        default=900, description="Login attempt window (seconds)"
    )
    RATE_LIMIT_CLEANUP_INTERVAL_SECONDS: float = Field(
        default=60.0, description="Interval between expired rate limit bucket sweeps"
    )

    # Widget
    WIDGET_SESSION_TTL_SECONDS: int = Field(
        default=3600, description="Lifetime of a widget try-on session (seconds)"
    )
    WIDGET_DIST_DIR: str | None = Field(
        default=None, description="Directory holding the built widget bundle"
    )
    MAX_UPLOAD_BYTES: int = Field(
        default=10 * 1024 * 1024, description="Maximum shopper photo upload size"
    )
    IMAGE_FETCH_TIMEOUT: float = Field(
        default=30.0, description="Timeout for outbound image downloads (seconds)"
    )
    MEDIA_ROOT: str = Field(default="uploads", description="Local media storage root")

    # Try-on provider
    TRYON_PROVIDER_URL: str | None = Field(
        default=None, description="HTTP endpoint of the image generation provider"
    )
    TRYON_PROVIDER_API_KEY: str | None = Field(
        default=None, description="Bearer token for the image generation provider"
    )
    TRYON_PROVIDER_TIMEOUT: float = Field(
        default=120.0, description="Image generation request timeout (seconds)"
    )

    # Account limits
    MAX_API_KEYS_PER_ACCOUNT: int = Field(default=10, description="Named API keys per account")
    MAX_BULK_DELETE: int = Field(default=50, description="Sessions deletable per request")

    # Logging
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: str = Field(default="json", description="Log format (json or text)")

    @field_validator("CORS_ORIGINS")
    @classmethod
    def parse_cors_origins(cls, v: str) -> List[str]:
        """Parse comma-separated CORS origins into list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @field_validator("WEBHOOK_RETRY_DELAYS")
    @classmethod
    def parse_retry_delays(cls, v: str) -> List[float]:
        """Parse comma-separated retry delays into a list of seconds."""
        if isinstance(v, str):
            return [float(delay.strip()) for delay in v.split(",") if delay.strip()]
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v_upper

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT.lower() == "production"


# Global settings instance
settings = Settings()
