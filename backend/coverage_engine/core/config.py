from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import List, Literal, Optional


class Settings(BaseSettings):
    environment: str = "development"
    api_v1_prefix: str = "/api/v1"

    cors_origins: List[str] = ["http://localhost:3000"]

    # Location data source
    # "rest" talks to the dashboard backend, "memory" serves an empty in-process store
    data_source: Literal["rest", "memory"] = "rest"
    locations_api_url: str = "http://localhost:8000"
    locations_api_token: Optional[str] = None
    locations_api_timeout: int = 30  # seconds
    locations_api_max_retries: int = 3
    locations_api_retry_backoff: float = 0.5

    # Coverage-area candidate cache (shared across processes)
    redis_url: str = "redis://localhost:6379/0"
    coverage_cache_enabled: bool = True
    coverage_cache_ttl_seconds: int = 300

    # Selection sessions
    default_expand_mode: Literal["shallow", "full"] = "full"
    # Location types hidden from selection trees (e.g. ["barangay"] for coordinator creation)
    hidden_location_types: List[str] = []
    session_idle_ttl_seconds: int = 1800

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache
def get_settings() -> Settings:
    return Settings()
