"""
Ledger configuration.

Defines the bulk import conventions (date format, CSV headers, reference
currency) and the resilience settings of the live exchange-rate source.
"""

from typing import Optional

from pydantic import BaseModel, Field

from app.core.config import Settings, get_settings


class RetryConfig(BaseModel):
    """Configuration for retry behavior with exponential backoff."""

    max_attempts: int = Field(default=3, ge=1, description="Maximum retry attempts")
    initial_delay: float = Field(
        default=0.5, gt=0, description="Initial delay in seconds"
    )
    max_delay: float = Field(default=10.0, gt=0, description="Maximum delay in seconds")
    exponential_base: float = Field(default=2.0, gt=1, description="Backoff multiplier")
    jitter: bool = Field(
        default=True, description="Add random jitter to prevent thundering herd"
    )


class CircuitBreakerConfig(BaseModel):
    """Configuration for circuit breaker pattern."""

    failure_threshold: int = Field(
        default=3, ge=1, description="Failures before opening circuit"
    )
    success_threshold: int = Field(
        default=1, ge=1, description="Successes to close circuit"
    )
    timeout: float = Field(
        default=300.0, gt=0, description="Seconds before attempting reset"
    )


class RateSourceConfig(BaseModel):
    """Live exchange-rate provider settings. Disabled unless a URL is configured."""

    base_url: Optional[str] = Field(
        default=None, description="Provider base URL, e.g. https://v6.exchangerate-api.com/v6"
    )
    api_key: Optional[str] = Field(default=None, description="Provider API key")
    timeout: float = Field(default=5.0, gt=0, description="Request timeout in seconds")
    cache_ttl_seconds: int = Field(
        default=3600, ge=0, description="Seconds fetched rates stay fresh"
    )
    retry: RetryConfig = Field(default_factory=RetryConfig)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)


class ImportConfig(BaseModel):
    """Bulk import conventions."""

    reference_currency: str = Field(
        default="INR", min_length=3, max_length=3, description="Conversion target"
    )
    date_format: str = Field(
        default="%d-%m-%Y", description="strptime format of the upload date column"
    )
    date_header: str = Field(default="Date")
    description_header: str = Field(default="Description")
    amount_header: str = Field(default="Amount")
    currency_header: str = Field(default="Currency")

    @property
    def headers(self) -> dict[str, str]:
        """Map of RawRow field name to upload column header."""
        return {
            "date": self.date_header,
            "description": self.description_header,
            "amount": self.amount_header,
            "currency": self.currency_header,
        }

    @classmethod
    def from_settings(cls, settings: Settings) -> "ImportConfig":
        return cls(
            reference_currency=settings.REFERENCE_CURRENCY.upper(),
            date_format=settings.IMPORT_DATE_FORMAT,
            date_header=settings.CSV_DATE_HEADER,
            description_header=settings.CSV_DESCRIPTION_HEADER,
            amount_header=settings.CSV_AMOUNT_HEADER,
            currency_header=settings.CSV_CURRENCY_HEADER,
        )


def get_import_config() -> ImportConfig:
    """Import conventions from application settings."""
    return ImportConfig.from_settings(get_settings())


def get_rate_source_config() -> RateSourceConfig:
    """Rate provider settings from application settings."""
    settings = get_settings()
    return RateSourceConfig(
        base_url=settings.RATE_API_URL,
        api_key=settings.RATE_API_KEY,
        cache_ttl_seconds=settings.RATE_CACHE_TTL_SECONDS,
    )
