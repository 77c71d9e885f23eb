"""
Tests for currency conversion rates.

Tests the static table, the live provider client, the cached resolver with
its static fallback, and the retry/circuit breaker around the provider.
"""

import asyncio
from decimal import Decimal

import httpx
import pytest

from app.ledger.config import CircuitBreakerConfig, RateSourceConfig, RetryConfig
from app.ledger.errors import RateSourceUnavailable, UnknownCurrency
from app.ledger.rates import (
    STATIC_RATES,
    CachedRateResolver,
    ExchangeRateClient,
    StaticRateResolver,
)
from app.ledger.retry import CircuitBreaker, CircuitOpenError, retry_with_backoff


def source_config(**overrides) -> RateSourceConfig:
    values = {
        "base_url": "https://rates.test/v6",
        "api_key": "secret",
        "retry": RetryConfig(max_attempts=2, initial_delay=0.01, jitter=False),
        "circuit_breaker": CircuitBreakerConfig(failure_threshold=2, timeout=60.0),
    }
    values.update(overrides)
    return RateSourceConfig(**values)


def provider(payload=None, status_code=200, calls=None):
    """MockTransport answering every request with `payload`."""

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(str(request.url))
        return httpx.Response(status_code, json=payload or {})

    return httpx.MockTransport(handler)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestStaticRateResolver:
    """Tests for the fixed rate table."""

    def test_reference_currency_rate_is_one(self):
        resolver = StaticRateResolver()
        assert resolver.reference_currency == "INR"
        assert resolver.resolve("INR") == Decimal("1")

    def test_known_currency(self):
        resolver = StaticRateResolver()
        assert resolver.supports("USD")
        assert resolver.resolve("USD") == STATIC_RATES["USD"]

    def test_unknown_currency_raises(self):
        resolver = StaticRateResolver()
        assert not resolver.supports("XYZ")
        with pytest.raises(UnknownCurrency) as exc_info:
            resolver.resolve("XYZ")
        assert exc_info.value.currency == "XYZ"
        assert "XYZ" in str(exc_info.value)

    def test_rebased_reference_currency(self):
        resolver = StaticRateResolver(reference_currency="usd")

        assert resolver.reference_currency == "USD"
        assert resolver.resolve("USD") == Decimal("1")
        assert resolver.resolve("INR") == Decimal("1") / STATIC_RATES["USD"]
        assert resolver.resolve("EUR") == STATIC_RATES["EUR"] / STATIC_RATES["USD"]

    def test_rebase_to_unknown_reference_fails(self):
        with pytest.raises(UnknownCurrency):
            StaticRateResolver(reference_currency="XYZ")

    def test_custom_table(self):
        resolver = StaticRateResolver({"INR": "1", "ABC": "2.5"})
        assert resolver.currencies == ["ABC", "INR"]
        assert resolver.resolve("ABC") == Decimal("2.5")


class TestExchangeRateClient:
    """Tests for the live provider client."""

    @pytest.mark.asyncio
    async def test_fetch_inverts_quotes(self):
        calls = []
        transport = provider(
            {"result": "success", "conversion_rates": {"INR": 1, "USD": 0.0125, "EUR": 0.01}},
            calls=calls,
        )
        client = ExchangeRateClient(source_config(), transport=transport)

        rates = await client.fetch_rates("INR")

        assert calls == ["https://rates.test/v6/secret/latest/INR"]
        assert rates["USD"] == Decimal("80")
        assert rates["EUR"] == Decimal("100")
        assert rates["INR"] == Decimal("1")

    @pytest.mark.asyncio
    async def test_bad_quotes_are_skipped(self):
        transport = provider({"conversion_rates": {"USD": 0, "EUR": "x", "GBP": 0.01}})
        client = ExchangeRateClient(source_config(), transport=transport)

        rates = await client.fetch_rates("INR")

        assert "USD" not in rates
        assert "EUR" not in rates
        assert rates["GBP"] == Decimal("100")

    @pytest.mark.asyncio
    async def test_http_error_raises_unavailable(self):
        client = ExchangeRateClient(source_config(), transport=provider(status_code=503))
        with pytest.raises(RateSourceUnavailable):
            await client.fetch_rates("INR")

    @pytest.mark.asyncio
    async def test_missing_rates_raises_unavailable(self):
        client = ExchangeRateClient(
            source_config(), transport=provider({"result": "error"})
        )
        with pytest.raises(RateSourceUnavailable):
            await client.fetch_rates("INR")

    @pytest.mark.asyncio
    async def test_transport_error_raises_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("boom", request=request)

        client = ExchangeRateClient(source_config(), transport=httpx.MockTransport(handler))
        with pytest.raises(RateSourceUnavailable):
            await client.fetch_rates("INR")


class TestCachedRateResolver:
    """Tests for live rates with static fallback."""

    @pytest.mark.asyncio
    async def test_without_client_uses_static_table(self):
        resolver = CachedRateResolver(StaticRateResolver())

        assert await resolver.refresh() is False
        assert resolver.resolve("USD") == STATIC_RATES["USD"]

    @pytest.mark.asyncio
    async def test_refresh_uses_live_rates(self):
        transport = provider({"conversion_rates": {"USD": 0.0125}})
        config = source_config()
        resolver = CachedRateResolver(
            StaticRateResolver(), ExchangeRateClient(config, transport=transport), config
        )

        assert await resolver.refresh() is True
        assert resolver.resolve("USD") == Decimal("80")
        # Codes missing from the live payload come from the static table
        assert resolver.resolve("EUR") == STATIC_RATES["EUR"]

    @pytest.mark.asyncio
    async def test_failed_refresh_falls_back(self):
        config = source_config()
        resolver = CachedRateResolver(
            StaticRateResolver(),
            ExchangeRateClient(config, transport=provider(status_code=500)),
            config,
        )

        assert await resolver.refresh() is False
        assert resolver.resolve("USD") == STATIC_RATES["USD"]
        assert resolver.supports("USD")
        assert not resolver.supports("XYZ")

    @pytest.mark.asyncio
    async def test_cache_is_reused_until_ttl_expires(self):
        calls = []
        transport = provider({"conversion_rates": {"USD": 0.0125}}, calls=calls)
        config = source_config(cache_ttl_seconds=60)
        clock = FakeClock()
        resolver = CachedRateResolver(
            StaticRateResolver(),
            ExchangeRateClient(config, transport=transport),
            config,
            clock=clock,
        )

        await resolver.refresh()
        await resolver.refresh()
        assert len(calls) == 1

        clock.now += 61
        # Stale cache no longer answers
        assert resolver.resolve("USD") == STATIC_RATES["USD"]

        await resolver.refresh()
        assert len(calls) == 2
        assert resolver.resolve("USD") == Decimal("80")

    @pytest.mark.asyncio
    async def test_open_circuit_skips_provider(self):
        calls = []
        config = source_config(
            retry=RetryConfig(max_attempts=1, initial_delay=0.01),
            circuit_breaker=CircuitBreakerConfig(failure_threshold=1, timeout=60.0),
        )
        resolver = CachedRateResolver(
            StaticRateResolver(),
            ExchangeRateClient(config, transport=provider(status_code=500, calls=calls)),
            config,
        )

        assert await resolver.refresh() is False
        assert resolver.circuit_breaker.state.value == "open"

        assert await resolver.refresh() is False
        assert len(calls) == 1


class TestRetryLogic:
    """Tests for retry with exponential backoff."""

    @pytest.mark.asyncio
    async def test_retry_success_on_first_attempt(self):
        call_count = 0

        async def operation():
            nonlocal call_count
            call_count += 1
            return "success"

        config = RetryConfig(max_attempts=3, initial_delay=0.01)
        result = await retry_with_backoff(operation, config)

        assert result == "success"
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_retry_success_after_failures(self):
        call_count = 0

        async def operation():
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise RateSourceUnavailable("Temporary failure")
            return "success"

        config = RetryConfig(max_attempts=5, initial_delay=0.01, jitter=False)
        result = await retry_with_backoff(operation, config)

        assert result == "success"
        assert call_count == 3

    @pytest.mark.asyncio
    async def test_retry_exhausted(self):
        call_count = 0

        async def operation():
            nonlocal call_count
            call_count += 1
            raise RateSourceUnavailable("Persistent failure")

        config = RetryConfig(max_attempts=3, initial_delay=0.01)

        with pytest.raises(RateSourceUnavailable):
            await retry_with_backoff(operation, config)

        assert call_count == 3


class TestCircuitBreaker:
    """Tests for circuit breaker pattern."""

    @pytest.mark.asyncio
    async def test_circuit_opens_after_failures(self):
        breaker = CircuitBreaker(CircuitBreakerConfig(failure_threshold=3, timeout=1.0))

        async def failing_operation():
            raise RateSourceUnavailable("Failure")

        for _ in range(3):
            with pytest.raises(RateSourceUnavailable):
                await breaker.call(failing_operation)

        assert breaker.state.value == "open"
        assert breaker.get_state()["failure_count"] == 3

        with pytest.raises(CircuitOpenError):
            await breaker.call(failing_operation)

    @pytest.mark.asyncio
    async def test_circuit_half_open_recovery(self):
        config = CircuitBreakerConfig(failure_threshold=2, success_threshold=2, timeout=0.1)
        breaker = CircuitBreaker(config)
        call_count = 0

        async def operation():
            nonlocal call_count
            call_count += 1
            if call_count <= 2:
                raise RateSourceUnavailable("Failure")
            return "success"

        for _ in range(2):
            with pytest.raises(RateSourceUnavailable):
                await breaker.call(operation)
        assert breaker.state.value == "open"

        await asyncio.sleep(0.15)

        assert await breaker.call(operation) == "success"
        assert breaker.state.value == "half_open"
        assert await breaker.call(operation) == "success"
        assert breaker.state.value == "closed"
