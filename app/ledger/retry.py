"""
Retry and circuit breaker utilities for the live exchange-rate source.

A failing provider is retried with exponential backoff; after repeated
failures the circuit opens and refreshes fail fast until the timeout passes,
so imports fall back to the static table without waiting on the network.
"""

import asyncio
import random
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

import structlog

from app.ledger.config import CircuitBreakerConfig, RetryConfig

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject calls
    HALF_OPEN = "half_open"  # Probing recovery


class CircuitOpenError(Exception):
    """Raised when circuit breaker is open."""

    pass


class CircuitBreaker:
    """Opens after `failure_threshold` consecutive failures, probes again after `timeout` seconds."""

    def __init__(self, config: CircuitBreakerConfig, name: str = "rate_source"):
        self.config = config
        self.name = name
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[datetime] = None

    async def call(self, func: Callable[[], Awaitable[T]]) -> T:
        """
        Execute an async function with circuit breaker protection.

        Raises:
            CircuitOpenError: If circuit is open
            Exception: Original exception from function
        """
        if self.state == CircuitState.OPEN:
            if self._should_attempt_reset():
                self.state = CircuitState.HALF_OPEN
                self.success_count = 0
                logger.info("circuit_breaker.half_open", circuit=self.name)
            else:
                raise CircuitOpenError(
                    f"Circuit breaker '{self.name}' is OPEN. "
                    f"Last failure: {self.last_failure_time}"
                )

        try:
            result = await func()
        except Exception:
            self._on_failure()
            raise

        self._on_success()
        return result

    def _on_success(self) -> None:
        self.failure_count = 0

        if self.state == CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.config.success_threshold:
                self.state = CircuitState.CLOSED
                self.success_count = 0
                logger.info("circuit_breaker.closed", circuit=self.name)

    def _on_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = datetime.now(timezone.utc)
        self.success_count = 0

        if (
            self.state == CircuitState.HALF_OPEN
            or self.failure_count >= self.config.failure_threshold
        ):
            self.state = CircuitState.OPEN
            logger.warning(
                "circuit_breaker.opened",
                circuit=self.name,
                failure_count=self.failure_count,
                threshold=self.config.failure_threshold,
            )

    def _should_attempt_reset(self) -> bool:
        if not self.last_failure_time:
            return True

        elapsed = (datetime.now(timezone.utc) - self.last_failure_time).total_seconds()
        return elapsed >= self.config.timeout

    def get_state(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "last_failure_time": (
                self.last_failure_time.isoformat() if self.last_failure_time else None
            ),
        }


async def retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    config: RetryConfig,
    operation_name: str = "operation",
) -> T:
    """
    Execute an async function with exponential backoff retry.

    Args:
        func: Async function to execute
        config: Retry configuration
        operation_name: Name for logging

    Returns:
        Function result

    Raises:
        Exception: Last exception if all retries exhausted
    """
    for attempt in range(config.max_attempts):
        try:
            return await func()
        except Exception as e:
            attempt_num = attempt + 1

            if attempt_num >= config.max_attempts:
                logger.error(
                    "retry.exhausted",
                    operation=operation_name,
                    attempts=attempt_num,
                    error=str(e),
                )
                raise

            delay = min(
                config.initial_delay * (config.exponential_base**attempt),
                config.max_delay,
            )
            if config.jitter:
                delay = delay * (0.5 + random.random() * 0.5)

            logger.warning(
                "retry.attempt",
                operation=operation_name,
                attempt=attempt_num,
                max_attempts=config.max_attempts,
                delay_seconds=round(delay, 3),
                error=str(e),
            )
            await asyncio.sleep(delay)

    raise RuntimeError(f"{operation_name}: retry loop exited without a result")
