#!/usr/bin/env python3
"""Tests for the timeout-budget retry helper."""

import asyncio
import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from airseeker.constants import INFINITE_RETRIES, PROVIDER_TIMEOUT
from airseeker.utils.retry import (
    GoFailureReason,
    GoOptions,
    RandomDelay,
    calculate_timeout,
    go,
    prepare_go_options,
)


class TestRandomDelay:
    """Test suite for RandomDelay."""

    def test_delay_within_bounds(self):
        delay = RandomDelay(0.5, 1.5)
        with patch("airseeker.utils.retry.random.random", return_value=0.0):
            assert delay.next_delay() == 0.5
        with patch("airseeker.utils.retry.random.random", return_value=0.5):
            assert delay.next_delay() == 1.0

    def test_invalid_bounds(self):
        with pytest.raises(ValueError, match="non-negative"):
            RandomDelay(-1, 1)
        with pytest.raises(ValueError, match="must not be lower"):
            RandomDelay(2, 1)


class TestGo:
    """Test suite for go()."""

    @pytest.mark.asyncio
    async def test_success_first_attempt(self):
        operation = AsyncMock(return_value=42)

        result = await go(operation, GoOptions(retries=3))

        assert result.success
        assert result.data == 42
        assert result.reason is None
        operation.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        operation = AsyncMock(side_effect=[RuntimeError("first"), RuntimeError("second"), "ok"])
        on_attempt_error = MagicMock()

        result = await go(operation, GoOptions(retries=5).with_attempt_error(on_attempt_error))

        assert result.success
        assert result.data == "ok"
        assert operation.await_count == 3
        assert on_attempt_error.call_count == 2
        first_error, first_attempt = on_attempt_error.call_args_list[0].args
        assert str(first_error) == "first"
        assert first_attempt == 0

    @pytest.mark.asyncio
    async def test_attempt_error_after_retries_exhausted(self):
        operation = AsyncMock(side_effect=RuntimeError("boom"))

        result = await go(operation, GoOptions(retries=2))

        assert not result.success
        assert result.reason is GoFailureReason.ATTEMPT_ERROR
        assert not result.deadline_exceeded
        assert str(result.error) == "boom"
        assert operation.await_count == 3

    @pytest.mark.asyncio
    async def test_attempt_timeout(self):
        async def slow():
            await asyncio.sleep(1)

        result = await go(slow, GoOptions(attempt_timeout=0.05))

        assert not result.success
        assert result.reason is GoFailureReason.ATTEMPT_ERROR
        assert isinstance(result.error, TimeoutError)

    @pytest.mark.asyncio
    async def test_total_deadline_bounds_attempts(self):
        async def slow():
            await asyncio.sleep(1)

        start = time.monotonic()
        result = await go(slow, GoOptions(attempt_timeout=5, retries=INFINITE_RETRIES, total_timeout=0.1))

        assert result.deadline_exceeded
        assert time.monotonic() - start < 0.5

    @pytest.mark.asyncio
    async def test_no_budget_left(self):
        operation = AsyncMock(return_value=1)

        result = await go(operation, GoOptions(total_timeout=0))

        assert result.deadline_exceeded
        assert isinstance(result.error, TimeoutError)
        operation.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delay_overrunning_deadline_is_deadline_exceeded(self):
        operation = AsyncMock(side_effect=RuntimeError("boom"))

        result = await go(
            operation,
            GoOptions(retries=10, total_timeout=0.2, delay=RandomDelay(1.0, 1.0)),
        )

        assert result.deadline_exceeded
        assert str(result.error) == "boom"
        operation.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_fixed_backoff_attempt_count(self):
        """0.08 of a 2.5s maximum backoff is 200ms, so a 500ms budget fits three attempts."""
        operation = AsyncMock(side_effect=RuntimeError("down"))

        with patch("airseeker.utils.retry.random.random", return_value=0.08):
            result = await go(
                operation,
                GoOptions(retries=INFINITE_RETRIES, total_timeout=0.5, delay=RandomDelay(0, 2.5)),
            )

        assert result.deadline_exceeded
        assert operation.await_count == 3

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        started = asyncio.Event()

        async def hang():
            started.set()
            await asyncio.sleep(10)

        task = asyncio.create_task(go(hang, GoOptions(retries=INFINITE_RETRIES, total_timeout=10)))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task


class TestBudget:
    """Test suite for the cycle budget helpers."""

    def test_calculate_timeout(self):
        start = time.monotonic() - 3
        remaining = calculate_timeout(start, 10)
        assert 6.5 < remaining <= 7

    def test_calculate_timeout_never_negative(self):
        assert calculate_timeout(time.monotonic() - 20, 10) == 0.0

    def test_prepare_go_options_inherits_remaining_budget(self):
        options = prepare_go_options(time.monotonic() - 4, 10)

        assert options.attempt_timeout == PROVIDER_TIMEOUT
        assert options.retries == INFINITE_RETRIES
        assert options.total_timeout <= 6
        assert options.delay is not None
