"""
Retry Policy - Exponential Backoff for Retryable Failures

Wraps a single async call and retries it while the raised error is
classified as retryable. Delays grow as base_delay * 2**attempt, capped at
max_delay, with optional multiplicative jitter.

Only the calling task sleeps; other tasks in the same batch keep running.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar

from matchmaker.errors import ErrorClassifier, MatchingError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """
    Attributes:
        max_attempts: Total attempts including the first call
        base_delay: Delay before the first retry, in seconds
        max_delay: Upper bound for any single delay
        jitter: Fractional jitter; 0.1 adds up to 10% to each delay
        sleep: Awaitable sleep function (injectable for tests)
        rng: Random source for jitter
    """
    max_attempts: int = 4
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.1
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    rng: random.Random = field(default_factory=random.Random)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0 or self.jitter < 0:
            raise ValueError("delays and jitter must be non-negative")

    def delay_for(self, attempt: int) -> float:
        """Delay after the given zero-based failed attempt."""
        delay = min(self.max_delay, self.base_delay * (2 ** attempt))
        if self.jitter:
            delay *= 1 + self.rng.uniform(0, self.jitter)
        return delay

    async def run(
        self,
        operation: Callable[..., Awaitable[T]],
        *args: Any,
        classifier: Optional[ErrorClassifier] = None,
        on_retry: Optional[Callable[[int, MatchingError], None]] = None,
        **kwargs: Any,
    ) -> T:
        """
        Call operation(*args, **kwargs), retrying retryable failures.

        Raises:
            MatchingError: the last classified failure once attempts are
                exhausted, or immediately for non-retryable failures
        """
        classifier = classifier or ErrorClassifier()

        for attempt in range(self.max_attempts):
            try:
                return await operation(*args, **kwargs)
            except Exception as exc:
                error = classifier.classify(exc)
                is_last = attempt == self.max_attempts - 1

                if not error.retryable or is_last:
                    if error is exc:
                        raise
                    raise error from exc

                delay = self.delay_for(attempt)
                logger.warning(
                    f"Attempt {attempt + 1}/{self.max_attempts} failed "
                    f"({error.kind.value}): {error.message}; retrying in {delay:.2f}s"
                )
                if on_retry is not None:
                    on_retry(attempt, error)
                await self.sleep(delay)

        # Unreachable: the loop either returns or raises
        raise RuntimeError("retry loop exited without result")
