"""Bounded exponential backoff for operator-side settlement."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

from dexengine.config import RetryPolicy
from dexengine.errors import (
    DexError,
    InvariantViolation,
    LiquidityError,
    SettlementError,
    ValidationError,
    is_transient,
)

logger = structlog.get_logger()

T = TypeVar("T")

RetryCallback = Callable[[int, BaseException, float], Awaitable[None]]


def classify_error(error: BaseException) -> str:
    """Coarse error class used in logs and transaction records.

    Returns one of "validation", "liquidity", "invariant", "settlement",
    "transient" or "unknown".
    """
    if isinstance(error, ValidationError):
        return "validation"
    if isinstance(error, LiquidityError):
        return "liquidity"
    if isinstance(error, InvariantViolation):
        return "invariant"
    if isinstance(error, SettlementError):
        return "settlement"
    if is_transient(error):
        return "transient"
    if isinstance(error, DexError):
        return error.code
    return "unknown"


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    should_retry: Callable[[BaseException], bool] = is_transient,
    on_retry: RetryCallback | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run `fn`, retrying transient failures with exponential backoff.

    Makes at most `policy.max_retries + 1` attempts. Delays double from
    `initial_delay` and are capped at `max_delay`. Errors rejected by
    `should_retry` are raised immediately.

    Args:
        fn: Zero-argument coroutine factory
        policy: Retry limits (defaults: 3 retries, 1s doubling, 8s cap)
        should_retry: Decides whether an error is worth another attempt
        on_retry: Awaited with (attempt, error, delay) before each sleep
        sleep: Injected for tests

    Raises:
        The last error once retries are exhausted, or the first
        non-retryable error.
    """
    policy = policy or RetryPolicy()
    attempt = 0
    while True:
        try:
            result = await fn()
        except Exception as e:
            if attempt >= policy.max_retries:
                logger.error(
                    "retries_exhausted",
                    attempts=attempt + 1,
                    error=str(e),
                    error_class=classify_error(e),
                )
                raise
            if not should_retry(e):
                logger.warning(
                    "non_retryable_error",
                    error=str(e),
                    error_class=classify_error(e),
                )
                raise
            delay = policy.delay_for(attempt)
            logger.info(
                "retrying_after_error",
                attempt=attempt + 1,
                max_retries=policy.max_retries,
                delay=delay,
                error=str(e),
            )
            if on_retry is not None:
                await on_retry(attempt, e, delay)
            await sleep(delay)
            attempt += 1
            continue

        if attempt > 0:
            logger.info("retry_succeeded", attempts=attempt + 1)
        return result


__all__ = ["classify_error", "retry_with_backoff"]
