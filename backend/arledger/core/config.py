"""Application configuration using Pydantic Settings."""

from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    app_name: str = "AR Reconciliation & Analytics"
    debug: bool = False

    # Database (saved filters only)
    database_url: str = "sqlite+aiosqlite:///./arledger.db"

    # Redis (customer directory reference data)
    redis_url: str = "redis://localhost:6379/0"
    cache_enabled: bool = True
    cache_ttl: int = 300  # 5 minutes

    # CORS
    cors_origins: List[str] = ["http://localhost:5173"]

    # JWT issued by the external auth provider
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_audience: str = "authenticated"

    # Ledger source (PostgREST interface over the synced ERP tables)
    ledger_source_url: str = "http://localhost:54321/rest/v1"
    ledger_source_key: str = ""
    ledger_source_timeout: float = 30.0
    ledger_page_size: int = 1000
    lookup_batch_size: int = 100

    # Analytics
    display_cap: int = 100
    balance_epsilon: str = "0.01"  # USD cents
    high_balance_threshold: str = "10000"
    local_timezone: str = "America/New_York"


# Create settings instance
settings = Settings()
