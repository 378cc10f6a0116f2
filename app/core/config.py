from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from app.core.version import __version__


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="allow",
    )

    HOST: str = "0.0.0.0"
    PORT: int = 8000
    APP_NAME: str = "My10 Recommendations"
    APP_ENV: Literal["development", "production", "test"] = "production"
    # Comma separated origins allowed to call the API from a browser
    CORS_ORIGINS: str = "*"

    # Relational store (Supabase / PostgREST)
    SUPABASE_URL: str | None = None
    SUPABASE_SERVICE_ROLE_KEY: str | None = None
    STORE_TIMEOUT_SECONDS: float = 10.0
    STORE_MAX_RETRIES: int = 3
    # Max ids per `in.(...)` filter; PostgREST rejects overly long URLs
    STORE_BATCH_SIZE: int = 200

    REDIS_URL: str | None = None
    REDIS_MAX_CONNECTIONS: int = 20
    REDIS_KEY_PREFIX: str = "my10:recommendations:"

    # memory: process-local only, redis: REDIS_URL, table: recommendation_cache table
    RECOMMENDATION_CACHE_BACKEND: Literal["memory", "redis", "table"] = "table"
    RECOMMENDATION_CACHE_TTL_HOURS: int = 12
    COLD_START_CACHE_TTL_HOURS: int = 6
    MEMORY_CACHE_TTL_SECONDS: int = 900  # 15 minutes
    MEMORY_CACHE_MAX_ENTRIES: int = 100

    CANDIDATE_LIMIT: int = 1000
    DEFAULT_RECOMMENDATION_LIMIT: int = 50


settings = Settings()

APP_VERSION = __version__
