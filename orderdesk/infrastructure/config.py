"""Application configuration.

Loads settings from environment variables with sensible defaults.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # API
    api_version: str = "0.1.0"
    debug: bool = False

    # Database
    database_url: str = "postgresql+asyncpg://orderdesk:orderdesk_dev_password@db:5432/orderdesk"
    use_database: bool = False

    # Authentication
    orderdesk_api_key: str = "dev-api-key-change-in-production"

    # Payment gateway
    gateway_base_url: str = "https://api.razorpay.com/v1"
    gateway_key_id: str = "rzp_test_key"
    gateway_key_secret: str = "dev-gateway-secret-change-in-production"
    gateway_webhook_secret: str = "dev-webhook-secret-change-in-production"
    gateway_timeout_seconds: float = 10.0

    # Retry policy for gateway calls
    gateway_max_attempts: int = 3
    gateway_backoff_base_seconds: float = 0.5
    gateway_backoff_max_seconds: float = 8.0

    # Logging
    log_level: str = "INFO"
    log_json: bool = True


settings = Settings()
