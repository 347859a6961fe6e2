"""
Retry policy for task-internal retries and queued re-runs.

RetryPolicy encapsulates a backoff strategy so that the code performing the
retry (an integration task wrapping a flaky API call, or the worker deciding
whether to re-run a failed job) does not hard-code delays.

The engine itself never retries a step.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, cast


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff configuration.

    Examples:
        # Just the attempt count (standard delays)
        policy = RetryPolicy.with_max_attempts(3)

        # Predefined
        policy = RetryPolicy.STANDARD

        # Full control
        policy = RetryPolicy(
            max_attempts=5,
            initial_delay_ms=200,
            max_delay_ms=5000,
            backoff_multiplier=2.0,
        )
    """

    max_attempts: int
    """Maximum number of attempts, including the first try."""

    initial_delay_ms: int = 1000
    """Delay before the first retry."""

    max_delay_ms: int = 30000
    """Cap applied to the exponential delay."""

    backoff_multiplier: float = 2.0
    """Each retry waits ``initial_delay * multiplier^(attempt-1)``, capped."""

    if TYPE_CHECKING:
        NONE: RetryPolicy
        STANDARD: RetryPolicy
        AGGRESSIVE: RetryPolicy
    else:
        NONE = cast("RetryPolicy", None)
        STANDARD = cast("RetryPolicy", None)
        AGGRESSIVE = cast("RetryPolicy", None)

    @classmethod
    def with_max_attempts(cls, max_attempts: int) -> RetryPolicy:
        return cls(
            max_attempts=max(1, max_attempts),
            initial_delay_ms=1000,
            max_delay_ms=30000,
            backoff_multiplier=2.0,
        )

    def delay_for_attempt(self, attempt: int) -> int | None:
        """
        Milliseconds to wait after failed attempt number ``attempt`` (1-indexed).

        Returns None once ``attempt`` has reached ``max_attempts``.

        Example:
            policy = RetryPolicy.STANDARD
            policy.delay_for_attempt(1)  # 1000
            policy.delay_for_attempt(2)  # 2000
            policy.delay_for_attempt(3)  # None
        """
        if attempt >= self.max_attempts:
            return None

        delay_ms = self.initial_delay_ms * (self.backoff_multiplier ** (attempt - 1))
        return int(min(delay_ms, self.max_delay_ms))

    def backoff(self, attempt: int) -> timedelta | None:
        """delay_for_attempt() as a timedelta."""
        delay_ms = self.delay_for_attempt(attempt)
        if delay_ms is None:
            return None
        return timedelta(milliseconds=delay_ms)

    def __repr__(self) -> str:
        return (
            f"RetryPolicy(max_attempts={self.max_attempts}, "
            f"initial_delay_ms={self.initial_delay_ms}, "
            f"max_delay_ms={self.max_delay_ms}, "
            f"backoff_multiplier={self.backoff_multiplier})"
        )


RetryPolicy.NONE = RetryPolicy(
    max_attempts=1, initial_delay_ms=0, max_delay_ms=0, backoff_multiplier=1.0
)

RetryPolicy.STANDARD = RetryPolicy(
    max_attempts=3,
    initial_delay_ms=1000,
    max_delay_ms=30000,
    backoff_multiplier=2.0,
)

RetryPolicy.AGGRESSIVE = RetryPolicy(
    max_attempts=10,
    initial_delay_ms=100,
    max_delay_ms=10000,
    backoff_multiplier=1.5,
)
