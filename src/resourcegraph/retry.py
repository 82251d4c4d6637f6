"""Exponential backoff for retryable provider errors."""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, TypeVar

from .exceptions import ProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff parameters for retryable provider errors.

    The n-th retry (0-based) waits ``min(initial_delay * multiplier**n,
    max_delay)`` seconds, so successive delays never decrease.

    Attributes:
        max_retries: Retries allowed per provider call (0 disables retrying)
        initial_delay: Delay before the first retry, in seconds
        multiplier: Growth factor between successive delays
        max_delay: Upper bound for any single delay
    """

    max_retries: int = 5
    initial_delay: float = 0.5
    multiplier: float = 2.0
    max_delay: float = 30.0

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")

    def delay(self, retry_number: int) -> float:
        """Seconds to wait before the given retry (0-based)."""
        return min(self.initial_delay * (self.multiplier ** retry_number), self.max_delay)


NO_RETRY = RetryPolicy(max_retries=0)


def call_with_retry(
    fn: Callable[[], T],
    policy: RetryPolicy,
    description: str = "provider call",
    on_retry: Optional[Callable[[int, float, ProviderError], None]] = None,
    delays: Optional[List[float]] = None,
    sleep: Callable[[float], Any] = time.sleep,
) -> T:
    """Invoke fn, retrying retryable ProviderErrors with exponential backoff.

    Args:
        fn: Zero-argument callable performing the provider call
        policy: Backoff parameters
        description: Label used in log messages
        on_retry: Called with (attempt, delay, error) before each sleep
        delays: If given, every delay slept is appended to it
        sleep: Sleep function (injectable for tests)

    Returns:
        Whatever fn returns on its first successful attempt

    Raises:
        ProviderError: If the error is not retryable or retries are exhausted
    """
    retry_number = 0
    while True:
        try:
            return fn()
        except ProviderError as e:
            if not e.retryable or retry_number >= policy.max_retries:
                if e.retryable:
                    logger.error(
                        f"{description} failed after {retry_number} retries: {e.message}"
                    )
                raise
            delay = policy.delay(retry_number)
            retry_number += 1
            logger.warning(
                f"{description} failed ({e.message}); retry {retry_number}/"
                f"{policy.max_retries} in {delay:.2f}s"
            )
            if on_retry is not None:
                on_retry(retry_number, delay, e)
            if delays is not None:
                delays.append(delay)
            sleep(delay)
