"""Bounded retry loop for eventually-consistent Stripe reads.

The loop carries an attempt count and a wall-clock deadline. Only errors
the caller classifies as retryable are retried; anything else propagates
immediately. Exhausting attempts or the deadline raises
RECONCILIATION_TIMEOUT with the last retryable error chained.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from booking_core.models.errors import BookingError, ErrorCode

from .logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class RetryableError(Exception):
    """A transient condition worth another attempt (e.g. not visible yet)."""

    def __init__(self, reason: str, message: str | None = None) -> None:
        super().__init__(message or reason)
        self.reason = reason


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 5
    delay_seconds: float = 0.5
    timeout_seconds: float = 10.0

    @classmethod
    def from_millis(cls, max_attempts: int, delay_ms: int, timeout_ms: int) -> "RetryPolicy":
        return cls(
            max_attempts=max_attempts,
            delay_seconds=delay_ms / 1000,
            timeout_seconds=timeout_ms / 1000,
        )


def retry_with_timeout(
    operation: Callable[[int], T],
    policy: RetryPolicy,
    *,
    is_retryable: Callable[[Exception], bool],
    operation_name: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
    monotonic: Callable[[], float] = time.monotonic,
) -> T:
    """Run operation(attempt) until it succeeds or the policy is exhausted.

    Args:
        operation: Called with the 1-based attempt number
        policy: Attempt, delay and deadline bounds
        is_retryable: Classifies a raised exception as transient
        operation_name: Name used in logs and error details
        sleep: Sleep function (injected in tests)
        monotonic: Monotonic clock (injected in tests)

    Returns:
        The operation's result

    Raises:
        BookingError: RECONCILIATION_TIMEOUT when retries run out
        Exception: Any non-retryable error raised by operation
    """
    deadline = monotonic() + policy.timeout_seconds
    last_error: Exception | None = None
    attempt = 0

    while attempt < policy.max_attempts:
        attempt += 1
        try:
            return operation(attempt)
        except Exception as e:
            if not is_retryable(e):
                raise
            last_error = e

        if attempt >= policy.max_attempts:
            break
        if monotonic() + policy.delay_seconds > deadline:
            logger.warning("%s: deadline reached after %d attempts", operation_name, attempt)
            break

        logger.info(
            "%s attempt %d/%d not ready (%s), retrying in %.2fs",
            operation_name,
            attempt,
            policy.max_attempts,
            last_error,
            policy.delay_seconds,
        )
        sleep(policy.delay_seconds)

    reason = last_error.reason if isinstance(last_error, RetryableError) else str(last_error)
    raise BookingError(
        ErrorCode.RECONCILIATION_TIMEOUT,
        {"operation": operation_name, "attempts": str(attempt), "last_error": reason},
    ) from last_error
