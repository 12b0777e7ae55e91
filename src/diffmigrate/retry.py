"""
Bounded retry expressed as an explicit attempt state machine.

Every retried unit of work (a migration batch, a conflict resolution)
moves through the states below; the resulting AttemptOutcome carries the
final state, the number of attempts and the state history so the retry
count can be surfaced in result objects.

State machine:
    PENDING -> RUNNING -> SUCCEEDED
                       -> RETRYABLE_FAILURE -> PENDING (next attempt)
                       -> EXHAUSTED_FAILURE (transient, no retries left)
                       -> FATAL_FAILURE (non-transient error)

Usage:
    >>> policy = RetryPolicy(max_retries=3)
    >>> outcome = await run_with_retry(lambda: process_batch(ids), policy, "process_batch")
    >>> if outcome.succeeded:
    ...     result = outcome.value
    ... else:
    ...     print(outcome.error, outcome.retries)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, TypeVar

from diffmigrate.exceptions import (
    ErrorDetail,
    RetryConfig,
    is_retryable,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AttemptState(Enum):
    """
    States of a retried unit of work.

    Terminal states are SUCCEEDED, EXHAUSTED_FAILURE and FATAL_FAILURE.
    """

    PENDING = "pending"
    """Waiting to start the next attempt."""

    RUNNING = "running"
    """An attempt is executing."""

    SUCCEEDED = "succeeded"
    """The last attempt completed without error."""

    RETRYABLE_FAILURE = "retryable_failure"
    """The last attempt failed with a transient error; another attempt follows."""

    EXHAUSTED_FAILURE = "exhausted_failure"
    """Transient failures used up every allowed retry."""

    FATAL_FAILURE = "fatal_failure"
    """A non-transient error ended the work immediately."""

    @property
    def is_terminal(self) -> bool:
        return self in (
            AttemptState.SUCCEEDED,
            AttemptState.EXHAUSTED_FAILURE,
            AttemptState.FATAL_FAILURE,
        )

    def can_transition_to(self, target: AttemptState) -> bool:
        """
        Check if a transition is allowed by the state machine.

        Args:
            target: The state to move to.

        Returns:
            True if the transition is valid.
        """
        return target in _VALID_TRANSITIONS.get(self, ())


_VALID_TRANSITIONS: dict[AttemptState, tuple[AttemptState, ...]] = {
    AttemptState.PENDING: (AttemptState.RUNNING,),
    AttemptState.RUNNING: (
        AttemptState.SUCCEEDED,
        AttemptState.RETRYABLE_FAILURE,
        AttemptState.EXHAUSTED_FAILURE,
        AttemptState.FATAL_FAILURE,
    ),
    AttemptState.RETRYABLE_FAILURE: (AttemptState.PENDING,),
}


@dataclass(frozen=True)
class RetryPolicy:
    """
    How many times and how fast to retry transient failures.

    Attributes:
        max_retries: Retries allowed after the first attempt (0 disables retry).
        backoff: Delay schedule between attempts.
        sleep: Awaitable sleep used between attempts (injectable for tests).
    """

    max_retries: int = 3
    backoff: RetryConfig = field(default_factory=RetryConfig)
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1


@dataclass
class AttemptOutcome(Generic[T]):
    """
    Final result of a retried unit of work.

    Attributes:
        state: Terminal AttemptState reached.
        value: Return value of the successful attempt.
        error: Error of the last failed attempt, if any.
        exception: The exception behind `error`, kept for in-process callers.
        attempts: Attempts made (1 + retries).
        history: Every state the machine passed through, in order.
    """

    state: AttemptState = AttemptState.PENDING
    value: T | None = None
    error: ErrorDetail | None = None
    exception: BaseException | None = None
    attempts: int = 0
    history: list[AttemptState] = field(default_factory=lambda: [AttemptState.PENDING])

    @property
    def succeeded(self) -> bool:
        return self.state == AttemptState.SUCCEEDED

    @property
    def retries(self) -> int:
        return max(0, self.attempts - 1)

    def transition(self, target: AttemptState) -> None:
        """
        Move to `target`, enforcing the state machine.

        Raises:
            ValueError: If the transition is not allowed.
        """
        if not self.state.can_transition_to(target):
            raise ValueError(f"Invalid attempt transition: {self.state.value} -> {target.value}")
        self.state = target
        self.history.append(target)


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    operation_name: str,
    *,
    on_retry: Callable[[int, BaseException, float], None] | None = None,
) -> AttemptOutcome[T]:
    """
    Run `operation` through the attempt state machine.

    Exceptions raised by the operation never escape: transient ones are
    retried until the policy is exhausted, everything else ends in
    FATAL_FAILURE straight away. Cancellation is not intercepted.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt.
        policy: Retry limits and backoff.
        operation_name: Name used in log messages.
        on_retry: Callback invoked before sleeping (attempt, exception, delay_ms).

    Returns:
        AttemptOutcome in a terminal state.
    """
    outcome: AttemptOutcome[T] = AttemptOutcome()

    while True:
        outcome.transition(AttemptState.RUNNING)
        outcome.attempts += 1
        try:
            outcome.value = await operation()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            outcome.exception = exc
            outcome.error = ErrorDetail.from_exception(exc, attempts=outcome.attempts)

            if not is_retryable(exc):
                outcome.transition(AttemptState.FATAL_FAILURE)
                logger.error(
                    "Non-retryable error in '%s' on attempt %d: %s",
                    operation_name,
                    outcome.attempts,
                    outcome.error.message,
                )
                return outcome

            if outcome.attempts >= policy.max_attempts:
                outcome.transition(AttemptState.EXHAUSTED_FAILURE)
                logger.error(
                    "Exhausted %d attempts for '%s': %s",
                    policy.max_attempts,
                    operation_name,
                    outcome.error.message,
                )
                return outcome

            outcome.transition(AttemptState.RETRYABLE_FAILURE)
            delay_ms = policy.backoff.get_delay_ms(outcome.attempts - 1)
            logger.warning(
                "Retryable error in '%s' (attempt %d/%d): %s. Retrying in %.1fs",
                operation_name,
                outcome.attempts,
                policy.max_attempts,
                outcome.error.message,
                delay_ms / 1000.0,
            )
            if on_retry:
                on_retry(outcome.attempts, exc, delay_ms)
            await policy.sleep(delay_ms / 1000.0)
            outcome.transition(AttemptState.PENDING)
            continue

        outcome.error = None
        outcome.exception = None
        outcome.transition(AttemptState.SUCCEEDED)
        if outcome.attempts > 1:
            logger.info(
                "Operation '%s' succeeded after %d retries",
                operation_name,
                outcome.retries,
            )
        return outcome


__all__ = [
    "AttemptOutcome",
    "AttemptState",
    "RetryPolicy",
    "run_with_retry",
]
