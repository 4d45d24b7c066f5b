"""Bounded retry with exponential backoff.

Shared by resource creation and teardown. Callers pass a classifier that decides
whether an error is worth retrying; anything else propagates on the first failure.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from ..errors import TransientProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry bounds.

    Attributes:
        max_attempts: Total attempts including the first call
        base_delay: Delay before the second attempt (seconds)
        multiplier: Growth factor between attempts
        max_delay: Upper bound for a single delay (seconds)
    """

    max_attempts: int = 5
    base_delay: float = 2.0
    multiplier: float = 2.0
    max_delay: float = 60.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def delay_for(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        return min(self.base_delay * self.multiplier ** (attempt - 1), self.max_delay)


def is_transient(error: BaseException) -> bool:
    """Default classifier: only transient provider errors are retried."""
    return isinstance(error, TransientProviderError)


def call_with_retry(
    operation: Callable[[], T],
    policy: RetryPolicy,
    is_retryable: Callable[[BaseException], bool] = is_transient,
    description: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call operation, retrying retryable errors with exponential backoff.

    Args:
        operation: Zero-argument callable to invoke
        policy: Retry bounds
        is_retryable: Classifier for errors raised by operation
        description: What is being attempted, for log messages
        sleep: Sleep function (injectable for tests)

    Returns:
        Result of the first successful call

    Raises:
        The last error once attempts are exhausted, or the first non-retryable error
    """
    attempt = 1
    while True:
        try:
            return operation()
        except Exception as e:
            if not is_retryable(e) or attempt >= policy.max_attempts:
                raise
            wait_time = policy.delay_for(attempt)
            logger.debug(
                f"{description} failed ({e}), retrying in {wait_time:.1f}s "
                f"(attempt {attempt}/{policy.max_attempts})"
            )
            sleep(wait_time)
            attempt += 1
