"""Tests for bounded exponential backoff."""

import asyncio

import pytest

from dexengine.config import RetryPolicy
from dexengine.errors import (
    Expired,
    InsufficientLiquidity,
    InvariantViolation,
    InvalidTransition,
    LedgerTimeout,
    LedgerUnavailable,
)
from dexengine.safe_int import DivisionByZero
from dexengine.settlement.retry import classify_error, retry_with_backoff


class Flaky:
    """Fails with the given errors in order, then returns "ok"."""

    def __init__(self, *errors: BaseException) -> None:
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


class TestRetryPolicy:
    def test_delays_double_up_to_cap(self):
        policy = RetryPolicy(max_retries=5, initial_delay=1.0, max_delay=8.0)
        assert [policy.delay_for(i) for i in range(5)] == [1.0, 2.0, 4.0, 8.0, 8.0]


class TestRetryWithBackoff:
    def test_success_without_retry(self, fake_sleep):
        fn = Flaky()
        assert asyncio.run(retry_with_backoff(fn, sleep=fake_sleep)) == "ok"
        assert fn.calls == 1
        assert fake_sleep.delays == []

    def test_transient_errors_are_retried(self, fake_sleep):
        fn = Flaky(LedgerUnavailable(), LedgerTimeout())
        assert asyncio.run(retry_with_backoff(fn, sleep=fake_sleep)) == "ok"
        assert fn.calls == 3
        assert fake_sleep.delays == [1.0, 2.0]

    def test_gives_up_after_max_retries(self, fake_sleep):
        fn = Flaky(*(LedgerUnavailable(f"outage {i}") for i in range(10)))
        with pytest.raises(LedgerUnavailable, match="outage 3"):
            asyncio.run(retry_with_backoff(fn, RetryPolicy(max_retries=3), sleep=fake_sleep))
        assert fn.calls == 4
        assert fake_sleep.delays == [1.0, 2.0, 4.0]

    def test_non_retryable_error_raises_immediately(self, fake_sleep):
        fn = Flaky(InsufficientLiquidity("empty"))
        with pytest.raises(InsufficientLiquidity):
            asyncio.run(retry_with_backoff(fn, sleep=fake_sleep))
        assert fn.calls == 1
        assert fake_sleep.delays == []

    def test_connection_errors_are_transient(self, fake_sleep):
        fn = Flaky(ConnectionResetError(), TimeoutError())
        assert asyncio.run(retry_with_backoff(fn, sleep=fake_sleep)) == "ok"
        assert fake_sleep.delays == [1.0, 2.0]

    def test_on_retry_callback(self, fake_sleep):
        seen = []

        async def on_retry(attempt, error, delay):
            seen.append((attempt, type(error).__name__, delay))

        fn = Flaky(LedgerUnavailable(), LedgerUnavailable())
        asyncio.run(retry_with_backoff(fn, on_retry=on_retry, sleep=fake_sleep))
        assert seen == [(0, "LedgerUnavailable", 1.0), (1, "LedgerUnavailable", 2.0)]

    def test_custom_should_retry(self, fake_sleep):
        fn = Flaky(ValueError("retry me"))
        result = asyncio.run(
            retry_with_backoff(fn, should_retry=lambda e: isinstance(e, ValueError), sleep=fake_sleep)
        )
        assert result == "ok"


class TestClassifyError:
    @pytest.mark.parametrize(
        "error,expected",
        [
            (Expired(), "validation"),
            (InsufficientLiquidity(), "liquidity"),
            (InvariantViolation(), "invariant"),
            (InvalidTransition(), "settlement"),
            (LedgerTimeout(), "transient"),
            (ConnectionError(), "transient"),
            (DivisionByZero("x"), "unknown"),
            (RuntimeError(), "unknown"),
        ],
    )
    def test_classes(self, error, expected):
        assert classify_error(error) == expected
