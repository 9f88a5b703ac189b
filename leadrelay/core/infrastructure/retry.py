"""
Retry Pattern Implementation

Recovery manager that re-runs transient provider failures with exponential
backoff. Built on tenacity's ``AsyncRetrying`` so the wait/stop/retry policy
is declarative and the sleep function can be swapped in tests.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)
from tenacity.wait import wait_base

from leadrelay.core.domain.errors import CircuitOpenError, MessagingError, error_fields
from leadrelay.core.shared.logger import LogContext, get_logger

logger = get_logger(__name__, {"component": "recovery"})

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_retries: int = 3  # Additional attempts after the first
    base_delay_ms: int = 1000
    max_delay_ms: int = 60_000
    jitter: bool = False
    jitter_ratio: float = 0.1


@dataclass
class RetryStats:
    """Statistics for retry operations."""

    operations: int = 0
    total_attempts: int = 0
    retried_attempts: int = 0
    exhausted: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "operations": self.operations,
            "total_attempts": self.total_attempts,
            "retried_attempts": self.retried_attempts,
            "exhausted": self.exhausted,
        }


def is_transient(exception: BaseException) -> bool:
    """
    Check if an exception should be retried.

    Only provider-side failures flagged retryable qualify. An open circuit is
    retryable for the caller but retrying it here would just hit the breaker
    again before the cooldown ends.
    """
    if isinstance(exception, CircuitOpenError):
        return False
    return isinstance(exception, MessagingError) and exception.retryable


class RecoveryManager:
    """
    Executes an operation with retry on transient failure.

    Delay before attempt k+1 is ``base_delay_ms * 2 ** (k - 1)``; no delay
    precedes the first attempt. Non-transient errors propagate immediately.
    When the retries are exhausted the last error propagates with its
    ``attempts`` attribute set.

    Example:
        ```python
        recovery = RecoveryManager()
        result = await recovery.execute_with_retry(
            lambda: breaker.execute(client.send_text, to, body),
            "send_text",
        )
        ```
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize recovery manager.

        Args:
            config: Default retry policy
            sleep: Coroutine used to wait between attempts
        """
        self.config = config or RetryConfig()
        self._sleep = sleep
        self._stats = RetryStats()

    @property
    def stats(self) -> RetryStats:
        """Get retry statistics."""
        return self._stats

    def _build_wait(self, base_delay_ms: int) -> wait_base:
        base_s = base_delay_ms / 1000
        wait: wait_base = wait_exponential(
            multiplier=base_s,
            exp_base=2,
            min=0,
            max=self.config.max_delay_ms / 1000,
        )
        if self.config.jitter:
            wait = wait + wait_random(0, base_s * self.config.jitter_ratio)
        return wait

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str,
        max_retries: int | None = None,
        base_delay_ms: int | None = None,
        context: LogContext | None = None,
    ) -> T:
        """
        Execute ``operation`` with retry.

        Args:
            operation: Zero-argument coroutine function to run
            operation_name: Name used in logs
            max_retries: Additional attempts after the first (default from config)
            base_delay_ms: Delay before the first retry (default from config)
            context: LogContext attached to every attempt log line

        Returns:
            Result of the first successful attempt

        Raises:
            MessagingError: Non-transient error, or last transient error after exhaustion
            Exception: Any non-messaging exception raised by the operation
        """
        max_retries = self.config.max_retries if max_retries is None else max_retries
        base_delay_ms = self.config.base_delay_ms if base_delay_ms is None else base_delay_ms
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")

        max_attempts = max_retries + 1
        log = logger.bind(context).with_context(operation=operation_name)
        self._stats.operations += 1

        retrying = AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=self._build_wait(base_delay_ms),
            retry=retry_if_exception(is_transient),
            sleep=self._sleep,
            reraise=True,
        )

        attempt_number = 0
        try:
            async for attempt in retrying:
                with attempt:
                    attempt_number = attempt.retry_state.attempt_number
                    self._stats.total_attempts += 1
                    if attempt_number > 1:
                        self._stats.retried_attempts += 1
                    try:
                        result = await operation()
                    except Exception as e:
                        will_retry = is_transient(e) and attempt_number < max_attempts
                        log.warning(
                            f"{operation_name} attempt {attempt_number}/{max_attempts} failed",
                            attempt=attempt_number,
                            max_attempts=max_attempts,
                            will_retry=will_retry,
                            **error_fields(e),
                        )
                        raise
                    log.info(
                        f"{operation_name} attempt {attempt_number}/{max_attempts} succeeded",
                        attempt=attempt_number,
                        max_attempts=max_attempts,
                    )
        except MessagingError as e:
            e.attempts = attempt_number
            if e.context is None:
                e.context = context
            if is_transient(e):
                self._stats.exhausted += 1
                log.error(
                    f"{operation_name} failed after {attempt_number} attempts",
                    **error_fields(e),
                )
            raise

        return result

    def reset_stats(self) -> None:
        """Reset statistics."""
        self._stats = RetryStats()
