"""
Application configuration using pydantic-settings.
Loads from environment variables / .env file.
"""

from functools import lru_cache
from typing import List, Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    app_name: str = "lnpay"
    app_env: Literal["development", "staging", "production"] = "development"
    debug: bool = False

    # API Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Postgres (asyncpg). Empty disables the database.
    database_url: str = ""
    database_ssl: bool = False

    # Redis (webhook delivery cache + Celery broker)
    redis_url: str = "redis://localhost:6379/0"
    # Cache calls sit inside the webhook ack path; keep them well under a second
    redis_socket_timeout_seconds: float = 0.5
    redis_connect_timeout_seconds: float = 0.5

    # Payment gateway
    gateway_mode: Literal["btcpay", "mock"] = "mock"
    btcpay_url: str = ""
    btcpay_api_key: str = ""
    btcpay_store_id: str = ""
    btcpay_webhook_secret: str = ""
    gateway_timeout_seconds: float = 3.0
    gateway_max_retries: int = 1
    gateway_retry_backoff_seconds: float = 0.5

    # Checkout redirect target
    frontend_url: str = "http://localhost:3000"

    # Comma separated CORS origins
    allowed_origins: str = ""

    # Admin
    admin_api_key: str = ""

    # Fulfillment
    fulfillment_backend: Literal["celery", "log"] = "log"
    fulfillment_enqueue_timeout_seconds: float = 2.0

    # Logging
    log_level: str = ""

    # Workers
    reconcile_interval_seconds: int = 300
    delivery_cache_ttl_seconds: int = 86400

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def cors_origins(self) -> List[str]:
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
