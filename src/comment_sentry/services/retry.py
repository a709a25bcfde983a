"""Bounded-retry combinator for outbound async calls.

Each call site builds a :class:`RetryPolicy` describing how many attempts it
gets and how long to wait between them, then wraps its coroutine factory with
:func:`retry_async`.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from comment_sentry.core.settings import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

Backoff = Callable[[int], float]


def exponential_backoff(initial: float, multiplier: float, maximum: float) -> Backoff:
    """Return a backoff of ``initial * multiplier**(attempt-1)`` capped at ``maximum``."""

    def _delay(attempt: int) -> float:
        return min(initial * (multiplier ** max(0, attempt - 1)), maximum)

    return _delay


def linear_backoff(step: float) -> Backoff:
    """Return a backoff of ``step * attempt``."""

    def _delay(attempt: int) -> float:
        return step * attempt

    return _delay


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try an operation and how long to wait in between.

    ``max_attempts`` counts the first try, so ``max_attempts=3`` means two retries.
    """

    max_attempts: int
    backoff: Backoff = field(default=linear_backoff(0.0))
    retry_on: tuple[type[BaseException], ...] = (Exception,)

    def delay_for(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        return max(0.0, self.backoff(attempt))


def platform_retry_policy(retry_on: tuple[type[BaseException], ...]) -> RetryPolicy:
    """Retry policy for platform HTTP calls built from settings."""
    return RetryPolicy(
        max_attempts=max(1, settings.platform_max_retries + 1),
        backoff=exponential_backoff(
            settings.platform_retry_initial_delay_seconds,
            settings.platform_retry_multiplier,
            settings.platform_retry_max_delay_seconds,
        ),
        retry_on=retry_on,
    )


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    description: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` until it succeeds or the policy's attempts are used up.

    Args:
        operation: Zero-argument callable returning a fresh awaitable per attempt.
        policy: Attempt budget, backoff and retryable exception types.
        description: Label used in log messages.
        sleep: Injected sleep function; tests pass a no-op.

    Returns:
        The operation's result.

    Raises:
        The last exception when every attempt failed, or any exception not
        listed in ``policy.retry_on`` immediately.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except policy.retry_on as exc:
            if attempt >= policy.max_attempts:
                logger.warning(
                    "%s failed after %d attempt(s): %s", description, attempt, exc
                )
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "%s failed (attempt %d/%d): %s; retrying in %.2fs",
                description,
                attempt,
                policy.max_attempts,
                exc,
                delay,
            )
            await sleep(delay)
