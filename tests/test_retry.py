"""
Tests for the reconnection policy.

Tests verify:
- Linear and exponential strategies
- StrategyRetry reports retries, recovery and give-up
- Hooks survive the driver deep-copying the retry object
"""

import copy

import pytest
from unittest.mock import AsyncMock, MagicMock
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from redis_service.connection.retry import (
    STOP,
    StrategyRetry,
    exponential_retry_strategy,
    linear_retry_strategy,
)


class TestStrategies:
    """Tests for the built-in strategies."""

    def test_linear_grows_then_caps(self):
        strategy = linear_retry_strategy(step_ms=100, max_delay_ms=2000)

        assert [strategy(n) for n in (1, 2, 3, 20, 21, 500)] == [100, 200, 300, 2000, 2000, 2000]

    def test_linear_max_attempts(self):
        strategy = linear_retry_strategy(max_attempts=2)

        assert strategy(2) == 200
        assert strategy(3) is STOP

    def test_linear_rejects_bad_bounds(self):
        with pytest.raises(ValueError):
            linear_retry_strategy(step_ms=-1)
        with pytest.raises(ValueError):
            linear_retry_strategy(step_ms=500, max_delay_ms=100)

    def test_exponential_without_jitter(self):
        strategy = exponential_retry_strategy(
            initial_delay_ms=100, max_delay_ms=1000, jitter_factor=0, max_attempts=None
        )

        assert [strategy(n) for n in (1, 2, 3, 4, 5)] == [100, 200, 400, 800, 1000]

    def test_exponential_jitter_stays_in_range(self):
        strategy = exponential_retry_strategy(initial_delay_ms=1000, jitter_factor=0.25)

        for _ in range(50):
            assert 750 <= strategy(1) <= 1250

    def test_exponential_gives_up(self):
        strategy = exponential_retry_strategy(max_attempts=3)

        assert strategy(4) is STOP


class TestStrategyRetry:
    """Tests for StrategyRetry.call_with_retry()."""

    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        on_retry = MagicMock()
        on_recovered = MagicMock()
        retry = StrategyRetry(lambda attempt: 0, on_retry=on_retry, on_recovered=on_recovered)
        error = RedisConnectionError("down")
        do = AsyncMock(side_effect=[error, error, "PONG"])
        fail = AsyncMock()

        result = await retry.call_with_retry(do, fail)

        assert result == "PONG"
        assert do.await_count == 3
        assert fail.await_count == 2
        assert [c.args[:2] for c in on_retry.call_args_list] == [(1, 0), (2, 0)]
        on_recovered.assert_called_once_with(2)

    @pytest.mark.asyncio
    async def test_stop_gives_up_and_reraises(self):
        on_give_up = MagicMock()
        retry = StrategyRetry(lambda attempt: STOP, on_give_up=on_give_up)
        error = RedisConnectionError("down")

        with pytest.raises(RedisConnectionError):
            await retry.call_with_retry(AsyncMock(side_effect=error), AsyncMock())

        on_give_up.assert_called_once_with(1, error)

    @pytest.mark.asyncio
    async def test_unsupported_errors_are_not_retried(self):
        on_retry = MagicMock()
        retry = StrategyRetry(lambda attempt: 0, on_retry=on_retry)
        do = AsyncMock(side_effect=ResponseError("WRONGTYPE"))

        with pytest.raises(ResponseError):
            await retry.call_with_retry(do, AsyncMock())

        assert do.await_count == 1
        on_retry.assert_not_called()

    @pytest.mark.asyncio
    async def test_success_without_failures_does_not_report_recovery(self):
        on_recovered = MagicMock()
        retry = StrategyRetry(lambda attempt: 0, on_recovered=on_recovered)

        assert await retry.call_with_retry(AsyncMock(return_value=1), AsyncMock()) == 1
        on_recovered.assert_not_called()

    @pytest.mark.asyncio
    async def test_deep_copy_keeps_hooks(self):
        on_retry = MagicMock()
        retry = StrategyRetry(lambda attempt: 0, on_retry=on_retry)
        clone = copy.deepcopy(retry)

        assert clone is not retry
        assert clone.on_retry is on_retry

        do = AsyncMock(side_effect=[RedisConnectionError("x"), "ok"])
        await clone.call_with_retry(do, AsyncMock())
        on_retry.assert_called_once()

    @pytest.mark.asyncio
    async def test_failure_count_passed_to_cleanup(self):
        retry = StrategyRetry(lambda attempt: 0)
        error = RedisConnectionError("down")
        do = AsyncMock(side_effect=[error, error, "PONG"])
        fail = MagicMock(return_value=None)

        result = await retry.call_with_retry(do, fail, with_failure_count=True)

        assert result == "PONG"
        assert [c.args for c in fail.call_args_list] == [(error, 1), (error, 2)]

    @pytest.mark.asyncio
    async def test_not_retryable_error_is_raised(self):
        on_retry = MagicMock()
        retry = StrategyRetry(lambda attempt: 0, on_retry=on_retry)
        do = AsyncMock(side_effect=RedisConnectionError("down"))

        with pytest.raises(RedisConnectionError):
            await retry.call_with_retry(do, AsyncMock(), is_retryable=lambda e: False)

        assert do.await_count == 1
        on_retry.assert_not_called()
