"""
Currency conversion rates.

`StaticRateResolver` is the guaranteed source: a fixed table of multipliers
into the reference currency. `CachedRateResolver` layers rates fetched from a
live provider on top of it; the fetch happens in `refresh()` before an import
is planned, so `resolve()` itself never touches the network.
"""

from __future__ import annotations

import time
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, Mapping, Optional, Protocol

import httpx
import structlog

from app.ledger.config import RateSourceConfig, get_import_config, get_rate_source_config
from app.ledger.errors import RateSourceUnavailable, UnknownCurrency
from app.ledger.retry import CircuitBreaker, CircuitOpenError, retry_with_backoff

logger = structlog.get_logger(__name__)

STATIC_BASE_CURRENCY = "INR"

# Multiplier from each currency into INR
STATIC_RATES: Dict[str, Decimal] = {
    "INR": Decimal("1"),
    "USD": Decimal("85.772"),
    "EUR": Decimal("88.819"),
    "GBP": Decimal("107.132"),
    "AUD": Decimal("53.519"),
    "CAD": Decimal("59.783"),
    "SGD": Decimal("62.911"),
    "JPY": Decimal("0.544"),
    "CNY": Decimal("11.707"),
    "CHF": Decimal("94.401"),
    "AED": Decimal("23.454"),
    "SAR": Decimal("22.948"),
    "NZD": Decimal("50.000"),
    "SEK": Decimal("8.000"),
    "NOK": Decimal("8.500"),
    "DKK": Decimal("11.900"),
    "ZAR": Decimal("5.500"),
    "THB": Decimal("2.600"),
    "MYR": Decimal("20.000"),
    "KRW": Decimal("0.070"),
    "IDR": Decimal("0.006"),
}


class RateResolver(Protocol):
    """Maps a currency code to its multiplier into the reference currency."""

    reference_currency: str

    def supports(self, currency: str) -> bool: ...

    def resolve(self, currency: str, on_or_before: Optional[date] = None) -> Decimal: ...


class StaticRateResolver:
    """Rate lookups against a fixed table. Dates are accepted and ignored."""

    def __init__(
        self,
        rates: Optional[Mapping[str, Decimal]] = None,
        reference_currency: str = STATIC_BASE_CURRENCY,
        base_currency: str = STATIC_BASE_CURRENCY,
    ):
        """
        Args:
            rates: Multipliers into `base_currency` (defaults to STATIC_RATES)
            reference_currency: Currency amounts are converted into
            base_currency: Currency the `rates` table is expressed in
        """
        table = {code.upper(): Decimal(rate) for code, rate in (rates or STATIC_RATES).items()}
        reference_currency = reference_currency.upper()

        if reference_currency != base_currency.upper():
            if reference_currency not in table:
                raise UnknownCurrency(reference_currency)
            divisor = table[reference_currency]
            table = {code: rate / divisor for code, rate in table.items()}
            table[reference_currency] = Decimal("1")

        self.reference_currency = reference_currency
        self._rates = table

    @property
    def currencies(self) -> list[str]:
        return sorted(self._rates)

    def supports(self, currency: str) -> bool:
        return currency in self._rates

    def resolve(self, currency: str, on_or_before: Optional[date] = None) -> Decimal:
        try:
            return self._rates[currency]
        except KeyError:
            raise UnknownCurrency(currency) from None


class ExchangeRateClient:
    """
    Client for an exchangerate-api style provider.

    `GET {base_url}/{api_key}/latest/{reference}` answers with
    `conversion_rates`: units of each currency per one unit of the reference
    currency. Those are inverted into multipliers into the reference currency.
    """

    def __init__(
        self,
        config: RateSourceConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self._transport = transport

    def _url(self, reference_currency: str) -> str:
        base = (self.config.base_url or "").rstrip("/")
        if self.config.api_key:
            return f"{base}/{self.config.api_key}/latest/{reference_currency}"
        return f"{base}/latest/{reference_currency}"

    async def fetch_rates(self, reference_currency: str) -> Dict[str, Decimal]:
        """
        Fetch current multipliers into `reference_currency`.

        Raises:
            RateSourceUnavailable: On transport errors, error statuses or an
                unexpected payload
        """
        try:
            async with httpx.AsyncClient(
                timeout=self.config.timeout, transport=self._transport
            ) as client:
                response = await client.get(self._url(reference_currency))
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise RateSourceUnavailable(f"Rate provider request failed: {e}") from e

        quoted = payload.get("conversion_rates") if isinstance(payload, dict) else None
        if not isinstance(quoted, dict) or not quoted:
            raise RateSourceUnavailable("Rate provider response has no conversion_rates")

        rates: Dict[str, Decimal] = {}
        for code, value in quoted.items():
            try:
                per_reference = Decimal(str(value))
            except InvalidOperation:
                continue
            if not per_reference.is_finite() or per_reference <= 0:
                continue
            rates[str(code).upper()] = Decimal("1") / per_reference

        rates[reference_currency] = Decimal("1")
        return rates


class CachedRateResolver:
    """
    Live rates with a TTL cache in front of a static fallback.

    Call `await refresh()` before planning an import; a failed refresh is
    logged and the static table keeps answering.
    """

    def __init__(
        self,
        fallback: StaticRateResolver,
        client: Optional[ExchangeRateClient] = None,
        config: Optional[RateSourceConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.fallback = fallback
        self.client = client
        self.config = config or RateSourceConfig()
        self.reference_currency = fallback.reference_currency
        self.circuit_breaker = CircuitBreaker(self.config.circuit_breaker)
        self._clock = clock
        self._cached: Dict[str, Decimal] = {}
        self._fetched_at: Optional[float] = None

    def _is_fresh(self) -> bool:
        if self._fetched_at is None:
            return False
        return self._clock() - self._fetched_at < self.config.cache_ttl_seconds

    async def refresh(self, force: bool = False) -> bool:
        """
        Pull live rates into the cache.

        Returns:
            True if live rates are in use after the call, False if lookups
            will be served by the static table
        """
        if self.client is None:
            return False
        if self._is_fresh() and not force:
            return True

        client = self.client

        async def fetch() -> Dict[str, Decimal]:
            return await retry_with_backoff(
                lambda: client.fetch_rates(self.reference_currency),
                self.config.retry,
                operation_name="fetch_rates",
            )

        try:
            rates = await self.circuit_breaker.call(fetch)
        except (RateSourceUnavailable, CircuitOpenError) as e:
            logger.warning(
                "rate_source.refresh_failed",
                error=str(e),
                fallback="static",
                circuit=self.circuit_breaker.state.value,
            )
            return False

        self._cached = rates
        self._fetched_at = self._clock()
        logger.info("rate_source.refreshed", currencies=len(rates))
        return True

    def supports(self, currency: str) -> bool:
        if self._is_fresh() and currency in self._cached:
            return True
        return self.fallback.supports(currency)

    def resolve(self, currency: str, on_or_before: Optional[date] = None) -> Decimal:
        if self._is_fresh() and currency in self._cached:
            return self._cached[currency]
        return self.fallback.resolve(currency, on_or_before)


_resolver_instance: Optional[CachedRateResolver] = None


def get_rate_resolver() -> CachedRateResolver:
    """Get or create the process-wide rate resolver built from settings."""
    global _resolver_instance

    if _resolver_instance is None:
        import_config = get_import_config()
        source_config = get_rate_source_config()
        fallback = StaticRateResolver(reference_currency=import_config.reference_currency)
        client = ExchangeRateClient(source_config) if source_config.enabled else None
        _resolver_instance = CachedRateResolver(fallback, client, source_config)

    return _resolver_instance
