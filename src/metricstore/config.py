"""Application configuration via environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    database_url: str = "sqlite+aiosqlite:///./metricstore.db"
    api_host: str = "0.0.0.0"
    api_port: int = 8788
    cors_origins: str = "*"
    environment: str = "development"

    # Snapshot store settings
    snapshot_conflict_max_retries: int = 3
    snapshot_conflict_backoff_seconds: float = 0.02
    store_timeout_seconds: float = 10.0
    query_max_limit: int = 1000

    # Alerting settings
    webhook_timeout_seconds: int = 10

    # Retention fallback when a definition has no retention_days of its own
    retention_default_days: int = 0

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    """Return cached settings singleton."""
    return Settings()
