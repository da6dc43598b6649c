"""Application configuration."""
from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_env: str = "development"
    database_url: str

    # Redis (cache store and Celery broker)
    redis_url: str = "redis://localhost:6379/0"

    # Uploads
    upload_dir: str = "/tmp/uploads"
    max_upload_bytes: int = 50 * 1024 * 1024
    chunk_size: int = 100

    # Job queue
    queue_retry_limit: int = 3
    queue_retry_delay: int = 60  # seconds, doubled on every retry
    queue_retry_backoff_max: int = 900
    queue_retention_seconds: int = 86400

    # Cache TTLs (seconds)
    dataset_batch_size: int = 1000
    dataset_cache_ttl: int = 1800
    record_search_ttl: int = 60
    dashboard_stats_ttl: int = 300
    country_list_ttl: int = 3600

    class Config:
        env_file = ".env"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
