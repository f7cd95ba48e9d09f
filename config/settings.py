"""Configuration management using pydantic-settings."""
from typing import Dict, Optional

from pydantic_settings import BaseSettings


def _default_cache_ttls() -> Dict[str, int]:
    """Per-kind cache TTLs in seconds."""
    return {
        "listings": 900,           # 15 minutes
        "details": 3600,           # 1 hour
        "employer_details": 7200,  # 2 hours
        "feed": 300,               # 5 minutes
        "api_health": 60,          # 1 minute
    }


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Environment name, used as the cache key namespace
    environment: str = "development"

    # Upstream catalog API
    upstream_base_url: str = "https://api.kemnaker.go.id/karirhub/catalogue/v1"
    user_agent: str = "jobfeed/1.0"
    request_timeout_ms: int = 10000

    # Retry policy
    max_retries: int = 3
    retry_base_delay_ms: int = 1000

    # Detail fan-out
    detail_concurrency: int = 5
    detail_batch_delay_ms: int = 100
    page_delay_ms: int = 200

    # Enrichment
    enrichment_batch_size: int = 5
    batch_delay_ms: int = 200
    max_records: int = 20

    # Cache settings
    cache_default_ttl_seconds: int = 1800
    cache_ttl_seconds: Dict[str, int] = _default_cache_ttls()
    cache_swr_seconds: int = 300
    cache_single_flight: bool = False
    redis_url: Optional[str] = None

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
