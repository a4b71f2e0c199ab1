"""Configuration management for QR Payment Service."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RateLimitSettings(BaseSettings):
    """Per-device token bucket limits for scan and confirm actions."""

    scan_requests: int = Field(default=10, description="Scans allowed per period")
    scan_period_seconds: float = Field(default=60, description="Scan bucket refill period")
    confirm_requests: int = Field(default=5, description="Confirms allowed per period")
    confirm_period_seconds: float = Field(
        default=60, description="Confirm bucket refill period"
    )
    idle_eviction_seconds: float = Field(
        default=600, description="Drop device buckets idle for longer than this"
    )


class OrderServiceSettings(BaseSettings):
    """Order service client settings."""

    gateway: str = Field(default="http", description="Order gateway: http | mock")
    base_url: str = Field(
        default="http://localhost:8081", description="Order service base URL"
    )
    service_auth_token: str = Field(
        default="service:qr-payment", description="Service authentication token"
    )
    timeout_seconds: float = Field(default=5.0, description="Request timeout")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Database
    database_url: str = Field(
        default="sqlite:///./qr_payment.db",
        description="SQLAlchemy connection URL (PostgreSQL in production)",
    )

    # Application
    debug: bool = False
    environment: str = "development"
    service_name: str = "qr-payment"
    log_level: str = "INFO"
    log_json: bool = False

    # Token settings
    qr_token_secret: str = Field(
        default="dev-only-qr-token-secret-change-me",
        description="HS256 key used to sign QR payload JWTs (at least 32 bytes)",
    )
    qr_token_ttl_minutes: int = 5
    short_code_max_attempts: int = 10

    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    order_service: OrderServiceSettings = Field(default_factory=OrderServiceSettings)

    # Caller authorization (identity is verified upstream)
    operator_roles: list[str] = ["ADMIN", "STAFF", "CASHIER"]
    token_reader_roles: list[str] = ["ADMIN", "STAFF", "CASHIER", "CUSTOMER"]
    audit_reader_roles: list[str] = ["ADMIN"]

    # Internal API authentication
    allowed_services: list[str] = ["order-service"]

    # Maintenance sweep
    sweeper_enabled: bool = True
    sweeper_interval_seconds: float = 300
    token_retention_hours: int = 24
    audit_retention_days: int = 90


# Global settings instance
settings = Settings()
