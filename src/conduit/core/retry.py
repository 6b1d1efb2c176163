"""Retry policies with exponential backoff.

Two shapes of backoff are used in Conduit:

* ``ExponentialBackoff`` — attempt-indexed delays with jitter, used by the
  request execution strategy to re-run transactions on transient errors.
* ``GrowingDelay`` — a delay that grows from the previous one by a fixed
  factor up to a ceiling, used by the startup database initializer.

Example:
    >>> policy = GrowingDelay(initial_delay=40.0, multiplier=1.5, max_delay=250.0)
    >>> list(policy.delays(4))
    [40.0, 60.0, 90.0, 135.0]
"""

import random
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from dataclasses import dataclass


def next_delay(previous: float, multiplier: float, cap: float) -> float:
    """Delay that follows *previous*: ``min(previous * multiplier, cap)``."""
    return min(previous * multiplier, cap)


class RetryStrategy(ABC):
    """Abstract base for retry strategies."""

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Calculate delay before next retry attempt.

        Args:
            attempt: Zero-based attempt number (0 = first retry)

        Returns:
            Delay in seconds before next attempt
        """
        ...

    @abstractmethod
    def should_retry(self, attempt: int, error: BaseException | None = None) -> bool:
        """Determine if another retry should be attempted.

        Args:
            attempt: Number of retries already performed
            error: The exception that caused the failure

        Returns:
            True if should retry, False otherwise
        """
        ...


@dataclass
class ExponentialBackoff(RetryStrategy):
    """Exponential backoff with optional jitter.

    Delay = min(base_delay * (multiplier ** attempt), max_delay) + jitter

    Attributes:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap in seconds
        multiplier: Exponential multiplier (default: 2)
        jitter: Add randomness to prevent thundering herd
        jitter_range: Range of jitter as fraction of delay (0.0-1.0)
        retryable: Predicate deciding which errors are retryable (None = all)
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    multiplier: float = 2.0
    jitter: bool = True
    jitter_range: float = 0.25
    retryable: Callable[[BaseException], bool] | None = None

    def next_delay(self, attempt: int) -> float:
        """Calculate exponential backoff delay."""
        delay = min(
            self.base_delay * (self.multiplier ** attempt),
            self.max_delay,
        )

        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay += random.uniform(-jitter_amount, jitter_amount)
            delay = min(max(0.0, delay), self.max_delay)

        return delay

    def should_retry(self, attempt: int, error: BaseException | None = None) -> bool:
        """Check if retry should be attempted."""
        if attempt >= self.max_retries:
            return False

        if error is not None and self.retryable is not None:
            return self.retryable(error)

        return True


@dataclass(frozen=True)
class GrowingDelay:
    """Bounded number of attempts separated by a growing, capped delay.

    Attributes:
        max_attempts: Total attempts, including the first one
        initial_delay: Wait after the first failed attempt, in seconds
        multiplier: Growth factor applied to the previous delay
        max_delay: Ceiling for any single delay, in seconds
    """

    max_attempts: int = 10
    initial_delay: float = 40.0
    multiplier: float = 1.5
    max_delay: float = 250.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.initial_delay < 0:
            raise ValueError(f"initial_delay must be non-negative, got {self.initial_delay}")

    def following(self, delay: float) -> float:
        """Delay to use after *delay*."""
        return next_delay(delay, self.multiplier, self.max_delay)

    def delays(self, count: int | None = None) -> Iterator[float]:
        """Yield the sequence of waits between attempts.

        Yields ``max_attempts - 1`` values unless *count* is given.
        """
        remaining = self.max_attempts - 1 if count is None else count
        delay = min(self.initial_delay, self.max_delay)
        for _ in range(remaining):
            yield delay
            delay = self.following(delay)
