"""Configuration management for the shortlink service.

This module provides centralized configuration using Pydantic BaseSettings
with environment variable support and caching.

Flow Diagram — get_settings()
=============================
::
    ┌─────────────┐
    │  Call get_  │
    │  settings() │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Check cache  │
    │ (lru_cache)  │
    └──────┬──────┘
    HIT?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Create  │  │ Return  │
│ Settings│  │ cached  │
│ instance│  │ value   │
└─────────┘  └─────────┘

Policy Constants
================
The TTL and rate-limit values below are policy, not correctness requirements.
Every component receives them through ``Settings`` so they can be tuned per
deployment without code changes:

- ``CACHE_TTL_ANON_SECONDS`` / ``CACHE_TTL_OWNER_SECONDS``: resolution cache
  lifetime for anonymous vs. owned links (owned links are reused more).
- ``RATE_LIMIT_*``: fixed window budget for anonymous and authenticated actors.
- ``CODE_MAX_ATTEMPTS``: collision retries before giving up.
- ``LINK_RETENTION_DAYS``: default lifetime of a link.

Classes:
    Settings:  Pydantic model for all configuration values.
"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "shortlink"
    APP_ENV: str = "development"
    BASE_URL: str = "http://localhost:8080"
    LOG_LEVEL: str = "INFO"

    # Durable store
    DATABASE_URL: str = "postgresql+asyncpg://shortlink:shortlink@db:5432/shortlink"
    STORE_TIMEOUT_SECONDS: float = 5.0

    # Cache tier
    REDIS_URL: str = "redis://redis:6379/0"
    REDIS_TIMEOUT_SECONDS: float = 0.5

    # Code generation
    SHORT_CODE_LENGTH: int = 7
    CODE_MAX_ATTEMPTS: int = 5

    # Link lifecycle
    LINK_RETENTION_DAYS: int = 30
    STRIP_TRACKING_PARAMS: bool = True

    # Resolution cache TTLs
    CACHE_TTL_ANON_SECONDS: int = 86400  # 1 day
    CACHE_TTL_OWNER_SECONDS: int = 604800  # 7 days

    # Rate limiting (fixed window)
    RATE_LIMIT_WINDOW_SECONDS: int = 3600
    RATE_LIMIT_ANON_MAX: int = 100
    RATE_LIMIT_USER_MAX: int = 1000

    # Analytics side log
    ANALYTICS_MAX_EVENTS: int = 1000
    ANALYTICS_RETENTION_DAYS: int = 30

    # Expired link reclamation
    REAPER_INTERVAL_SECONDS: int = 300
    REAPER_BATCH_SIZE: int = 500

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
