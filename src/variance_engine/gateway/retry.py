"""Exponential backoff for gateway calls.

Only errors classified as retryable (`GatewayError.is_retryable`) are retried;
anything else is re-raised on the spot without sleeping. Delays are
deterministic: there is no jitter.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from ..core.exceptions import GatewayError
from ..utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff parameters.

    ``max_retries`` is the total number of attempts, the first one included.
    """

    max_retries: int = 3
    initial_delay_ms: int = 1000
    max_delay_ms: int = 30000
    backoff_multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if self.initial_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValueError("delays must be non-negative")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")

    def delay_ms(self, retry_number: int) -> float:
        """Delay before the ``retry_number``-th retry (1-based)."""
        raw = self.initial_delay_ms * (self.backoff_multiplier ** (retry_number - 1))
        return min(raw, self.max_delay_ms)


DEFAULT_RETRY_POLICY = RetryPolicy()


def call_with_retry(
    operation: Callable[[], T],
    *,
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    sleep: Callable[[float], None] = time.sleep,
    operation_name: str = "operation",
) -> T:
    """Run ``operation`` until it succeeds, fails terminally, or attempts run out.

    Args:
        operation: Zero-argument callable raising `GatewayError` on failure.
        policy: Backoff parameters.
        sleep: Sleep primitive taking seconds; injected so tests can record delays.
        operation_name: Label used in log lines.

    Returns:
        Whatever ``operation`` returns on its first successful attempt.

    Raises:
        GatewayError: The terminal error, or the last retryable one.
    """
    for attempt in range(1, policy.max_retries + 1):
        try:
            result = operation()
        except GatewayError as exc:
            if not exc.is_retryable:
                logger.debug("%s failed with non-retryable error %s", operation_name, exc.code)
                raise
            if attempt == policy.max_retries:
                logger.error("%s failed after %d attempts", operation_name, policy.max_retries)
                raise
            delay = policy.delay_ms(attempt)
            logger.warning(
                "%s failed (attempt %d/%d), retrying in %dms",
                operation_name,
                attempt,
                policy.max_retries,
                delay,
                extra={"error_code": exc.code, "error": exc.message},
            )
            sleep(delay / 1000.0)
            continue

        if attempt > 1:
            logger.info("%s succeeded on attempt %d", operation_name, attempt)
        return result

    raise ValueError(f"max_retries must be at least 1, got {policy.max_retries}")
