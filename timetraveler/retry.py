"""
Bounded exponential backoff for remote API calls
"""

import random
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, TypeVar

from loguru import logger

from timetraveler.errors import NetworkError

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Retries callables that raise a retryable NetworkError."""

    max_attempts: int = 4
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.1
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)
    rng: random.Random = field(default_factory=random.Random, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0 or self.jitter < 0:
            raise ValueError("delays and jitter must be >= 0")

    def delay(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """Delay before the retry following 0-indexed `attempt`."""
        if retry_after is not None:
            return min(retry_after, self.max_delay)

        delay = min(self.base_delay * (2**attempt), self.max_delay)
        if self.jitter:
            delay += delay * self.rng.uniform(0, self.jitter)
        return delay

    def call(self, operation: Callable[[], T], description: str = "request") -> T:
        """Run `operation`, retrying transient network failures."""
        for attempt in range(self.max_attempts):
            try:
                return operation()
            except NetworkError as e:
                if not e.retryable:
                    raise
                if attempt + 1 >= self.max_attempts:
                    raise NetworkError(
                        f"{description} failed after {self.max_attempts} attempts: {e.message}",
                        retryable=False,
                        status=e.status,
                    ) from e

                wait = self.delay(attempt, e.retry_after)
                logger.warning(
                    f"{description} failed ({e.message}), retrying in {wait:.1f}s "
                    f"(attempt {attempt + 1}/{self.max_attempts})"
                )
                self.sleep(wait)

        raise AssertionError("unreachable")
