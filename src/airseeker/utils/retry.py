"""
Timeout-budget retry utilities.

Every network call made by Airseeker goes through :func:`go`, which bounds a
single operation by a per-attempt timeout, a retry ceiling and a total
deadline. Update cycles hand each call the budget that is left via
:func:`prepare_go_options` so that dependent calls never overrun the cycle.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Generic, TypeVar

from ..constants import (
    INFINITE_RETRIES,
    PROVIDER_TIMEOUT,
    RANDOM_BACKOFF_MAX,
    RANDOM_BACKOFF_MIN,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

AttemptErrorCallback = Callable[[BaseException, int], None]


class GoFailureReason(Enum):
    """Why a retried operation gave up."""

    ATTEMPT_ERROR = "attempt-error"
    DEADLINE_EXCEEDED = "deadline-exceeded"


@dataclass(frozen=True, slots=True)
class RandomDelay:
    """Uniform random backoff between two bounds (seconds)."""

    min_delay: float = RANDOM_BACKOFF_MIN
    max_delay: float = RANDOM_BACKOFF_MAX

    def __post_init__(self) -> None:
        if self.min_delay < 0:
            raise ValueError(f"Minimum delay must be non-negative, got {self.min_delay}")
        if self.max_delay < self.min_delay:
            raise ValueError(
                f"Maximum delay ({self.max_delay}) must not be lower than "
                f"minimum delay ({self.min_delay})"
            )

    def next_delay(self) -> float:
        return self.min_delay + (self.max_delay - self.min_delay) * random.random()


@dataclass(frozen=True, slots=True)
class GoOptions:
    """Retry policy for a single :func:`go` call.

    Attributes:
        attempt_timeout: Upper bound for one attempt
        retries: Number of retries after the first attempt
        total_timeout: Overall deadline measured from the start of the call
        delay: Backoff between attempts (None retries immediately)
        on_attempt_error: Called with (error, attempt_index) after each failure
    """

    attempt_timeout: float | None = None
    retries: int = 0
    total_timeout: float | None = None
    delay: RandomDelay | None = None
    on_attempt_error: AttemptErrorCallback | None = field(default=None, compare=False)

    def with_attempt_error(self, callback: AttemptErrorCallback) -> "GoOptions":
        """Return a copy of the options reporting failed attempts to ``callback``."""
        return GoOptions(
            attempt_timeout=self.attempt_timeout,
            retries=self.retries,
            total_timeout=self.total_timeout,
            delay=self.delay,
            on_attempt_error=callback,
        )


@dataclass(frozen=True, slots=True)
class GoResult(Generic[T]):
    """Outcome of :func:`go`.

    Exactly one of ``data`` (on success) or ``reason`` (on failure) is
    meaningful. ``error`` holds the last attempt's error, if any attempt ran.
    """

    success: bool
    data: T | None = None
    error: BaseException | None = None
    reason: GoFailureReason | None = None

    @property
    def deadline_exceeded(self) -> bool:
        return self.reason is GoFailureReason.DEADLINE_EXCEEDED

    def __str__(self) -> str:
        if self.success:
            return f"GoResult(success, data={self.data!r})"
        return f"GoResult({self.reason.value if self.reason else 'failure'}, error={self.error!r})"


def _failure(reason: GoFailureReason, error: BaseException | None) -> GoResult:
    if error is None and reason is GoFailureReason.DEADLINE_EXCEEDED:
        error = TimeoutError("Full timeout exceeded")
    return GoResult(success=False, error=error, reason=reason)


async def go(operation: Callable[[], Awaitable[T]], options: GoOptions | None = None) -> GoResult[T]:
    """Run ``operation`` until it succeeds or the retry budget is spent.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        options: Retry policy (a single attempt without timeout if omitted)

    Returns:
        A successful GoResult with the operation's value, or a failed one tagged
        with ATTEMPT_ERROR (retries used up) or DEADLINE_EXCEEDED.
    """
    options = options or GoOptions()
    loop = asyncio.get_running_loop()
    deadline = None if options.total_timeout is None else loop.time() + max(0.0, options.total_timeout)

    attempt = 0
    last_error: BaseException | None = None
    while True:
        attempt_timeout = options.attempt_timeout
        if deadline is not None:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return _failure(GoFailureReason.DEADLINE_EXCEEDED, last_error)
            attempt_timeout = remaining if attempt_timeout is None else min(attempt_timeout, remaining)

        try:
            data = await asyncio.wait_for(operation(), timeout=attempt_timeout)
            return GoResult(success=True, data=data)
        except asyncio.TimeoutError:
            last_error = TimeoutError(f"Operation timed out after {attempt_timeout:.3f}s")
        except Exception as e:
            last_error = e

        if options.on_attempt_error:
            options.on_attempt_error(last_error, attempt)

        if deadline is not None and loop.time() >= deadline:
            return _failure(GoFailureReason.DEADLINE_EXCEEDED, last_error)
        if attempt >= options.retries:
            return _failure(GoFailureReason.ATTEMPT_ERROR, last_error)

        delay = options.delay.next_delay() if options.delay else 0.0
        if deadline is not None and loop.time() + delay >= deadline:
            return _failure(GoFailureReason.DEADLINE_EXCEEDED, last_error)
        if delay > 0:
            await asyncio.sleep(delay)
        attempt += 1


def calculate_timeout(start_time: float, total_timeout: float) -> float:
    """Remaining budget of a cycle started at ``start_time`` (monotonic seconds)."""
    return max(0.0, total_timeout - (time.monotonic() - start_time))


def prepare_go_options(start_time: float, total_timeout: float) -> GoOptions:
    """Retry options for one call inside an update cycle.

    The call inherits whatever is left of the cycle's ``total_timeout`` rather
    than a fresh budget.
    """
    return GoOptions(
        attempt_timeout=PROVIDER_TIMEOUT,
        retries=INFINITE_RETRIES,
        total_timeout=calculate_timeout(start_time, total_timeout),
        delay=RandomDelay(RANDOM_BACKOFF_MIN, RANDOM_BACKOFF_MAX),
    )
