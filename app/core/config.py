from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    This uses pydantic-settings so that we get type validation and defaults.
    Settings are loaded from environment variables with optional .env file override.
    """

    # App basics
    ENV: Literal["development", "staging", "production"] = "development"
    """Environment mode: affects logging and table bootstrapping."""

    DEBUG: bool = True
    """Enable debug mode: verbose logging and development features."""

    # DB
    DATABASE_URL: Optional[str] = None
    """Database connection URL. If None, uses SQLite for development."""

    AUTO_CREATE_TABLES: bool = True
    """Create missing tables on startup (disabled in production)."""

    # Ledger
    REFERENCE_CURRENCY: str = "INR"
    """Currency every amount is converted into for aggregation."""

    IMPORT_DATE_FORMAT: str = "%d-%m-%Y"
    """strptime format of the date column in bulk uploads (day-month-year)."""

    CSV_DATE_HEADER: str = "Date"
    CSV_DESCRIPTION_HEADER: str = "Description"
    CSV_AMOUNT_HEADER: str = "Amount"
    CSV_CURRENCY_HEADER: str = "Currency"

    # Live exchange rates (optional, static table is always the fallback)
    RATE_API_URL: Optional[str] = None
    """Base URL of the exchange-rate provider (e.g. 'https://v6.exchangerate-api.com/v6')."""

    RATE_API_KEY: Optional[str] = None
    """API key for the exchange-rate provider."""

    RATE_CACHE_TTL_SECONDS: int = 3600
    """How long fetched rates stay fresh before the next refresh."""

    # Pagination
    DEFAULT_PAGE_SIZE: int = 10
    MAX_PAGE_SIZE: int = 100

    # Model config
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance to avoid re-parsing .env repeatedly."""
    return Settings()
