"""Configuration management using Pydantic Settings"""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Service
    service_name: str = "revenue-attestor"
    log_level: str = "INFO"

    # HTTP Client
    http_timeout_seconds: float = 10.0
    max_pages: int = 50  # Upper bound on pages followed per fetch
    max_retries: int = 3
    retry_backoff_base: float = 1.0  # Exponential backoff base in seconds

    # Providers
    provider_environment: Literal["sandbox", "production"] = "sandbox"
    stripe_api_version: str = "2023-10-16"
    shopify_api_version: str = "2025-01"
    square_api_version: str = "2025-01-23"
    plaid_client_id: str = ""
    plaid_secret: str = ""
    plaid_env: str = "sandbox"

    # KPI defaults
    default_timezone: str = "America/New_York"
    default_currency: str = "USD"
    default_window_days: int = 30


settings = Settings()
