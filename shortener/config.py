"""Configuration management for the URL shortener application.

This module provides centralized configuration management using Pydantic BaseSettings
with environment variable support and caching for performance.

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

How to Use
===========
**Step 1 — Import**::
    from shortener.config import get_settings

**Step 2 — Get settings**::
    settings = get_settings()
    db_url = settings.DATABASE_URL

**Step 3 — Override in tests**::
    settings = Settings(REGISTRY_BACKEND=RegistryBackend.MEMORY)

Key Behaviours
===============
- Settings are cached after first access for performance.
- Environment variables override defaults automatically.
- BASE_URL is the public base used to derive every stored short_url.
- STORAGE_RETRY_INTERVAL_SECONDS drives the fixed reconnect interval.

Classes:
    Settings:  Pydantic model for all configuration values.

"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from shortener.enums import CacheBackend, RegistryBackend


class Settings(BaseSettings):
    APP_NAME: str = "url-shortener"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Public base for derived short URLs, no trailing slash
    BASE_URL: str = "http://localhost:3002"

    # Registry
    REGISTRY_BACKEND: RegistryBackend = RegistryBackend.SQL
    DATABASE_URL: str = "postgresql+asyncpg://urlshortener:urlshortener@db:5432/urlshortener"
    DATABASE_ECHO: bool = False
    STORAGE_TIMEOUT_SECONDS: float = 5.0
    STORAGE_RETRY_INTERVAL_SECONDS: float = 5.0

    # Lookup caches
    CACHE_BACKEND: CacheBackend = CacheBackend.MEMORY
    REDIS_URL: str = "redis://redis:6379/0"
    CACHE_KEY_PREFIX: str = "urlshortener"

    # Short code issuance
    SHORT_CODE_LENGTH: int = 7
    CODE_ISSUE_MAX_ATTEMPTS: int = 10

    # Demo mapping created on first successful connection
    SEED_DEMO_URL: bool = False
    SEED_DEMO_CODE: str = "test123"
    SEED_DEMO_TARGET: str = "https://example.com"

    CORS_ALLOW_ORIGINS: list[str] = ["*"]

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )

    @property
    def public_base(self) -> str:
        return self.BASE_URL.rstrip("/")


@lru_cache()
def get_settings() -> Settings:
    return Settings()
