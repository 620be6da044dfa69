"""
Pluggable reconnection policy.

A retry strategy maps the attempt number (1-indexed) to a delay in
milliseconds, or to ``STOP`` (None) to give up. ``StrategyRetry`` plugs a
strategy into redis-py's retry machinery and reports every attempt, so the
transport can emit ``reconnecting`` signals.

Usage:
    strategy = linear_retry_strategy(step_ms=100, max_delay_ms=2000)
    strategy(3)   # 300
    strategy(50)  # 2000
"""

from __future__ import annotations

import asyncio
import copy
import inspect
import random
import socket
from typing import Any, Awaitable, Callable, Final, Iterable, Optional

from redis.asyncio.retry import Retry
from redis.backoff import NoBackoff
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

# Sentinel returned by a strategy to stop retrying
STOP: Final[None] = None

RetryStrategy = Callable[[int], Optional[float]]

# Default jitter range: ±25% of calculated delay
DEFAULT_JITTER_FACTOR: Final[float] = 0.25

# Default exponential backoff base
DEFAULT_BACKOFF_BASE: Final[float] = 2.0

DEFAULT_SUPPORTED_ERRORS: Final[tuple[type[BaseException], ...]] = (
    RedisConnectionError,
    RedisTimeoutError,
    socket.timeout,
)


# =============================================================================
# Strategies
# =============================================================================


def linear_retry_strategy(
    step_ms: float = 100,
    max_delay_ms: float = 2000,
    max_attempts: int | None = None,
) -> RetryStrategy:
    """
    Linear backoff: ``attempt * step_ms``, capped at ``max_delay_ms``.

    Args:
        step_ms: Delay added per attempt.
        max_delay_ms: Maximum delay.
        max_attempts: Give up after this many attempts (None retries forever).
    """
    if step_ms < 0:
        raise ValueError("step_ms must be >= 0")
    if max_delay_ms < step_ms:
        raise ValueError("max_delay_ms must be >= step_ms")

    def strategy(attempt: int) -> float | None:
        if max_attempts is not None and attempt > max_attempts:
            return STOP
        return min(attempt * step_ms, max_delay_ms)

    return strategy


def exponential_retry_strategy(
    initial_delay_ms: float = 100,
    max_delay_ms: float = 30_000,
    backoff_base: float = DEFAULT_BACKOFF_BASE,
    jitter_factor: float = DEFAULT_JITTER_FACTOR,
    max_attempts: int | None = 10,
) -> RetryStrategy:
    """
    Exponential backoff with jitter to avoid thundering herds.

    The delay is calculated as:
        base_delay = initial_delay_ms * (backoff_base ^ (attempt - 1))
        capped_delay = min(base_delay, max_delay_ms)
        final_delay = capped_delay * (1 ± jitter_factor)
    """
    if initial_delay_ms <= 0:
        raise ValueError("initial_delay_ms must be positive")
    if max_delay_ms < initial_delay_ms:
        raise ValueError("max_delay_ms must be >= initial_delay_ms")
    if backoff_base < 1:
        raise ValueError("backoff_base must be >= 1")
    if not 0 <= jitter_factor <= 1:
        raise ValueError("jitter_factor must be between 0 and 1")

    def strategy(attempt: int) -> float | None:
        if max_attempts is not None and attempt > max_attempts:
            return STOP
        base_delay = initial_delay_ms * (backoff_base ** (attempt - 1))
        capped_delay = min(base_delay, max_delay_ms)
        jitter_range = capped_delay * jitter_factor
        return max(0.0, capped_delay + random.uniform(-jitter_range, jitter_range))

    return strategy


# =============================================================================
# redis-py integration
# =============================================================================


class StrategyRetry(Retry):
    """
    redis-py Retry driven by a millisecond retry strategy.

    Hooks:
        on_retry(attempt, delay_ms, error): before sleeping for a retry.
        on_recovered(attempts): an operation succeeded after failures.
        on_give_up(attempts, error): the strategy returned STOP.
    """

    def __init__(
        self,
        strategy: RetryStrategy,
        on_retry: Callable[[int, float, BaseException], None] | None = None,
        on_recovered: Callable[[int], None] | None = None,
        on_give_up: Callable[[int, BaseException], None] | None = None,
        supported_errors: Iterable[type[BaseException]] = DEFAULT_SUPPORTED_ERRORS,
    ) -> None:
        super().__init__(NoBackoff(), -1, tuple(supported_errors))
        self.strategy = strategy
        self.on_retry = on_retry
        self.on_recovered = on_recovered
        self.on_give_up = on_give_up

    def __deepcopy__(self, memo: dict[int, Any]) -> "StrategyRetry":
        # Connections deep-copy their retry object; hooks must stay shared
        clone = copy.copy(self)
        clone._supported_errors = tuple(self._supported_errors)
        return clone

    def delay_for(self, attempt: int) -> float | None:
        """Delay in milliseconds for an attempt, or STOP."""
        return self.strategy(attempt)

    async def call_with_retry(
        self,
        do: Callable[[], Awaitable[Any]],
        fail: Callable[..., Any],
        is_retryable: Callable[[Exception], bool] | None = None,
        with_failure_count: bool = False,
    ) -> Any:
        """
        Run ``do`` until it succeeds or the strategy returns STOP.

        ``fail`` is the driver's cleanup hook. Newer drivers pass
        ``with_failure_count=True`` and expect ``fail(error, failures)``.
        """
        failures = 0
        while True:
            try:
                result = await do()
            except self._supported_errors as error:
                failures += 1
                if with_failure_count:
                    cleanup = fail(error, failures)
                else:
                    cleanup = fail(error)
                if inspect.isawaitable(cleanup):
                    await cleanup
                if is_retryable is not None and not is_retryable(error):
                    raise error
                delay_ms = self.delay_for(failures)
                if delay_ms is STOP:
                    if self.on_give_up is not None:
                        self.on_give_up(failures, error)
                    raise error
                if self.on_retry is not None:
                    self.on_retry(failures, delay_ms, error)
                if delay_ms > 0:
                    await asyncio.sleep(delay_ms / 1000)
            else:
                if failures and self.on_recovered is not None:
                    self.on_recovered(failures)
                return result
