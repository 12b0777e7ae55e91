"""
Unit tests for the retry state machine.

Tests cover:
- Success on first attempt and after transient failures
- Exhaustion of retries and immediate fatal failures
- State history and backoff sleeps
"""

import asyncio

import pytest

from diffmigrate.exceptions import DataValidationError, RetryConfig, TransientIOError
from diffmigrate.retry import AttemptOutcome, AttemptState, RetryPolicy, run_with_retry


def make_policy(max_retries: int = 3, sleeps: list[float] | None = None) -> RetryPolicy:
    async def record_sleep(seconds: float) -> None:
        if sleeps is not None:
            sleeps.append(seconds)

    return RetryPolicy(
        max_retries=max_retries,
        backoff=RetryConfig(base_delay_ms=100, jitter_factor=0.0),
        sleep=record_sleep,
    )


class Flaky:
    """Operation failing with `exc` for the first `failures` calls."""

    def __init__(self, failures: int, exc: Exception) -> None:
        self.failures = failures
        self.exc = exc
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc
        return "done"


class TestRunWithRetry:
    """Tests for run_with_retry."""

    @pytest.mark.asyncio
    async def test_success_first_attempt(self):
        """A successful operation runs once."""
        operation = Flaky(0, TransientIOError("x"))

        outcome = await run_with_retry(operation, make_policy(), "op")

        assert outcome.succeeded
        assert outcome.value == "done"
        assert outcome.attempts == 1
        assert outcome.retries == 0
        assert outcome.history == [
            AttemptState.PENDING,
            AttemptState.RUNNING,
            AttemptState.SUCCEEDED,
        ]

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self):
        """Transient errors retry until success with backoff between attempts."""
        sleeps: list[float] = []
        operation = Flaky(2, ConnectionResetError("reset"))

        outcome = await run_with_retry(operation, make_policy(sleeps=sleeps), "op")

        assert outcome.succeeded
        assert outcome.retries == 2
        assert outcome.error is None
        assert sleeps == [0.1, 0.2]
        assert outcome.history.count(AttemptState.RETRYABLE_FAILURE) == 2

    @pytest.mark.asyncio
    async def test_exhausted_failure(self):
        """Transient errors beyond max_retries exhaust the policy."""
        operation = Flaky(10, TransientIOError("down"))

        outcome = await run_with_retry(operation, make_policy(max_retries=2), "op")

        assert outcome.state == AttemptState.EXHAUSTED_FAILURE
        assert operation.calls == 3
        assert outcome.retries == 2
        assert outcome.error is not None
        assert outcome.error.retryable is True
        assert outcome.error.attempts == 3

    @pytest.mark.asyncio
    async def test_fatal_failure_is_not_retried(self):
        """Non-transient errors end the work immediately."""
        operation = Flaky(10, DataValidationError("bad row", "1"))

        outcome = await run_with_retry(operation, make_policy(), "op")

        assert outcome.state == AttemptState.FATAL_FAILURE
        assert operation.calls == 1
        assert outcome.error is not None
        assert outcome.error.code == "DATA_VALIDATION_ERROR"
        assert isinstance(outcome.exception, DataValidationError)

    @pytest.mark.asyncio
    async def test_zero_retries(self):
        """max_retries=0 allows a single attempt."""
        operation = Flaky(1, TransientIOError("down"))

        outcome = await run_with_retry(operation, make_policy(max_retries=0), "op")

        assert outcome.state == AttemptState.EXHAUSTED_FAILURE
        assert operation.calls == 1

    @pytest.mark.asyncio
    async def test_on_retry_callback(self):
        """on_retry receives the attempt number and the exception."""
        seen: list[int] = []
        operation = Flaky(1, TransientIOError("down"))

        await run_with_retry(
            operation,
            make_policy(),
            "op",
            on_retry=lambda attempt, exc, delay: seen.append(attempt),
        )

        assert seen == [1]

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        """CancelledError is not swallowed."""

        async def cancelled() -> None:
            raise asyncio.CancelledError

        with pytest.raises(asyncio.CancelledError):
            await run_with_retry(cancelled, make_policy(), "op")


class TestAttemptState:
    """Tests for the state machine transitions."""

    def test_terminal_states(self):
        assert AttemptState.SUCCEEDED.is_terminal
        assert AttemptState.EXHAUSTED_FAILURE.is_terminal
        assert AttemptState.FATAL_FAILURE.is_terminal
        assert not AttemptState.RETRYABLE_FAILURE.is_terminal

    def test_invalid_transition_raises(self):
        """Skipping RUNNING is not allowed."""
        outcome: AttemptOutcome[int] = AttemptOutcome()

        with pytest.raises(ValueError, match="Invalid attempt transition"):
            outcome.transition(AttemptState.SUCCEEDED)

    def test_negative_retries_rejected(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_retries=-1)
