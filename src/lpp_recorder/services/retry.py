"""Retrying executor with exponential backoff.

An unreliable async operation is retried until it succeeds, fails
permanently, or runs out of elapsed-time budget. Each call site supplies a
classifier that decides, per attempt, whether the outcome is a success, a
permanent failure or a transient failure worth retrying.

Usage:
    value = await execute(lambda: client.fetch_all_routes(), classify)
"""

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T


@dataclass(frozen=True)
class Permanent:
    error: BaseException


@dataclass(frozen=True)
class Transient:
    """A retryable failure; retry_after (seconds) overrides the backoff delay."""

    error: BaseException
    retry_after: float | None = None


Verdict = Success[T] | Permanent | Transient

# The classifier receives whatever the attempt produced: the awaited value,
# or the exception the operation raised.
OutcomeClassifier = Callable[[Any], Verdict[T]]


class RetryError(Exception):
    """Base class for retry failures."""


class PermanentRetryError(RetryError):
    """The classifier marked an outcome as permanent; no further attempts were made."""

    def __init__(self, error: BaseException):
        super().__init__(f"Encountered a permanent error while retrying: {error}")
        self.error = error


class RetryExhaustedError(RetryError):
    """The elapsed-time budget ran out before the operation succeeded."""

    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(f"Timed out while retrying operation (after {attempts} attempts).")
        self.attempts = attempts
        self.last_error = last_error


class RetryPolicy(BaseModel):
    """Exponential backoff parameters (all durations in seconds)."""

    initial_interval_seconds: float = Field(default=2.0, gt=0)
    multiplier: float = Field(default=2.0, ge=1.0)
    randomization_factor: float = Field(default=0.1, ge=0.0, lt=1.0)
    max_interval_seconds: float = Field(default=20.0, gt=0)
    max_elapsed_seconds: float = Field(default=120.0, gt=0)


class ExponentialBackoff:
    """Backoff sequence bounded by total elapsed time.

    Each step's delay is the current interval randomized by
    +/- randomization_factor and capped at max_interval_seconds. The
    sequence ends (next_backoff returns None) once the time since creation,
    plus the next delay, would exceed max_elapsed_seconds.
    """

    def __init__(
        self,
        policy: RetryPolicy,
        clock: Callable[[], float] = time.monotonic,
        rng: Callable[[], float] = random.random,
    ):
        self._policy = policy
        self._clock = clock
        self._rng = rng
        self._current_interval = policy.initial_interval_seconds
        self._started_at = clock()

    @property
    def elapsed(self) -> float:
        return self._clock() - self._started_at

    def next_backoff(self) -> float | None:
        policy = self._policy
        elapsed = self.elapsed
        if elapsed > policy.max_elapsed_seconds:
            return None

        delta = policy.randomization_factor * self._current_interval
        low = self._current_interval - delta
        high = self._current_interval + delta
        delay = min(low + self._rng() * (high - low), policy.max_interval_seconds)

        self._current_interval = min(
            self._current_interval * policy.multiplier, policy.max_interval_seconds
        )

        if not self.fits_budget(delay, elapsed):
            return None
        return delay

    def fits_budget(self, delay: float, elapsed: float | None = None) -> bool:
        """Check that sleeping for delay keeps the total within max_elapsed_seconds."""
        if elapsed is None:
            elapsed = self.elapsed
        return elapsed + delay <= self._policy.max_elapsed_seconds


async def execute(
    operation: Callable[[], Awaitable[Any]],
    classify: OutcomeClassifier[T],
    policy: RetryPolicy | None = None,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
    rng: Callable[[], float] = random.random,
) -> T:
    """Run operation until the classifier accepts an outcome or the budget runs out.

    Args:
        operation: Produces a fresh awaitable for every attempt.
        classify: Maps an attempt's value or exception to a verdict.
        policy: Backoff parameters (defaults to RetryPolicy()).
        sleep: Awaitable sleep used between attempts.
        clock: Monotonic clock measuring the elapsed budget.
        rng: Random source in [0, 1) for jitter.

    Returns:
        The value carried by the first Success verdict.

    Raises:
        PermanentRetryError: The classifier returned Permanent.
        RetryExhaustedError: The backoff sequence was exhausted.
    """
    backoff = ExponentialBackoff(policy or RetryPolicy(), clock=clock, rng=rng)
    attempts = 0

    while True:
        attempts += 1
        try:
            outcome = await operation()
        except Exception as error:
            outcome = error

        verdict = classify(outcome)

        if isinstance(verdict, Success):
            return verdict.value

        if isinstance(verdict, Permanent):
            raise PermanentRetryError(verdict.error) from verdict.error

        # Advance the backoff even when the classifier dictates the delay.
        delay = backoff.next_backoff()
        if delay is not None and verdict.retry_after is not None:
            delay = verdict.retry_after if backoff.fits_budget(verdict.retry_after) else None
        if delay is None:
            logger.warning(
                f"Giving up after {attempts} attempts ({backoff.elapsed:.1f}s elapsed): "
                f"{verdict.error}"
            )
            raise RetryExhaustedError(attempts, verdict.error) from verdict.error

        logger.warning(
            f"Encountered a transient error, will retry in {delay:.2f}s "
            f"(attempt {attempts}): {verdict.error!r}"
        )
        await sleep(delay)
