"""Retry support for transfer tasks.

A task attempt that fails with a transient error (source read, shard write)
can be re-run from scratch. Retries are opt-in through ``retry.max_attempts``
in the job configuration; the default is a single attempt.

Implementation: Uses tenacity library internally for battle-tested retry logic.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Tuple, Type, TypeVar

import tenacity
from tenacity.wait import wait_base

from transfers.lib.errors import ExtractionError, PersistenceError

logger = logging.getLogger(__name__)

__all__ = ["RetryConfig", "retry_operation", "RETRYABLE_ERRORS"]

T = TypeVar("T")

# Cancellation, configuration and format errors are never retried
RETRYABLE_ERRORS: Tuple[Type[Exception], ...] = (ExtractionError, PersistenceError)


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_attempts: int = 1,
        backoff_seconds: float = 1.0,
        exponential: bool = True,
        jitter: bool = False,
        retry_on: Tuple[Type[Exception], ...] = RETRYABLE_ERRORS,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.exponential = exponential
        self.jitter = jitter
        self.retry_on = retry_on

    @classmethod
    def none(cls) -> "RetryConfig":
        """No retry - fail immediately."""
        return cls(max_attempts=1)

    def wait_strategy(self) -> wait_base:
        wait: wait_base
        if self.exponential:
            # backoff_seconds * 2^(attempt-1)
            wait = tenacity.wait_exponential(multiplier=self.backoff_seconds, min=self.backoff_seconds)
        else:
            wait = tenacity.wait_fixed(self.backoff_seconds)
        if self.jitter:
            wait = wait + tenacity.wait_random(0, self.backoff_seconds * 0.5)
        return wait

    def __repr__(self) -> str:
        return (
            f"RetryConfig(max_attempts={self.max_attempts}, "
            f"backoff_seconds={self.backoff_seconds})"
        )


def retry_operation(
    operation: Callable[[], T],
    config: Optional[RetryConfig] = None,
    operation_name: str = "operation",
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
) -> T:
    """Execute an operation, retrying it on the configured exception types.

    Args:
        operation: Zero-argument callable; each attempt calls it afresh
        config: Retry configuration (default: single attempt)
        operation_name: Name for logging
        on_retry: Called with (attempt number, error) before each retry

    Returns:
        Result of the first successful attempt

    Raises:
        The last attempt's exception when every attempt fails

    Example:
        result = retry_operation(
            lambda: run_task(partition),
            RetryConfig(max_attempts=3, backoff_seconds=0.5),
            "partition 3",
        )
    """
    config = config or RetryConfig.none()
    if config.max_attempts == 1:
        return operation()

    def before_sleep_handler(retry_state: tenacity.RetryCallState) -> None:
        """Log retry attempts."""
        exception = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "%s attempt %d/%d failed: %s. Retrying in %.1fs...",
            operation_name,
            retry_state.attempt_number,
            config.max_attempts,
            exception,
            retry_state.next_action.sleep if retry_state.next_action else 0,
        )
        if on_retry is not None and exception is not None:
            on_retry(retry_state.attempt_number, exception)

    retryer = tenacity.Retrying(
        stop=tenacity.stop_after_attempt(config.max_attempts),
        wait=config.wait_strategy(),
        retry=tenacity.retry_if_exception_type(config.retry_on),
        before_sleep=before_sleep_handler,
        reraise=True,
    )

    try:
        return retryer(operation)
    except config.retry_on:
        logger.error("%s failed after %d attempts", operation_name, config.max_attempts)
        raise
