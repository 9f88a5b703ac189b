"""
Circuit Breaker Pattern Implementation

Stops calling the messaging provider after repeated failures and lets a
single trial call through once the cooldown has elapsed.
"""

import inspect
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, UTC
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from leadrelay.core.domain.errors import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation, requests pass through
    OPEN = "open"  # Failure threshold exceeded, requests blocked
    HALF_OPEN = "half_open"  # One trial request in flight


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""

    failure_threshold: int = 5  # Consecutive failures before opening
    recovery_timeout: float = 60.0  # Seconds in OPEN before a trial call
    excluded_exceptions: tuple = ()  # Exceptions that don't count as failures


@dataclass
class CircuitBreakerStats:
    """Statistics for circuit breaker."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    rejected_requests: int = 0
    state_changes: int = 0
    last_failure_time: datetime | None = None
    last_success_time: datetime | None = None
    consecutive_failures: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "rejected_requests": self.rejected_requests,
            "state_changes": self.state_changes,
            "last_failure_time": self.last_failure_time.isoformat() if self.last_failure_time else None,
            "last_success_time": self.last_success_time.isoformat() if self.last_success_time else None,
            "consecutive_failures": self.consecutive_failures,
        }


class CircuitBreaker:
    """
    Circuit breaker guarding calls to the messaging provider.

    States:
    - CLOSED: Normal operation, all requests pass through
    - OPEN: Failure threshold reached, all requests rejected until the
      recovery timeout elapses
    - HALF_OPEN: Exactly one trial request is in flight; every other caller
      is rejected. Trial success closes the circuit, trial failure reopens it

    The state lock is a ``threading.Lock`` held only around in-memory
    transitions, never across the awaited call.

    Example:
        ```python
        breaker = CircuitBreaker(name="whatsapp_api")
        result = await breaker.execute(client.send_text, to, body)
        ```
    """

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize circuit breaker.

        Args:
            name: Identifier for this circuit breaker
            config: Configuration options
            clock: Monotonic time source in seconds
        """
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._stats = CircuitBreakerStats()
        self._opened_at: float | None = None
        self._trial_in_flight = False
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        """Get current state."""
        return self._state

    @property
    def stats(self) -> CircuitBreakerStats:
        """Get statistics."""
        return self._stats

    @property
    def is_available(self) -> bool:
        """Check whether a call made now would be attempted."""
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return True
            if self._state == CircuitState.OPEN:
                return self._cooldown_elapsed()
            return not self._trial_in_flight

    def _cooldown_elapsed(self) -> bool:
        if self._opened_at is None:
            return True
        return self._clock() - self._opened_at >= self.config.recovery_timeout

    def _retry_after(self) -> float:
        if self._opened_at is None:
            return 0.0
        return max(0.0, self.config.recovery_timeout - (self._clock() - self._opened_at))

    def _transition_to(self, new_state: CircuitState) -> None:
        """Transition to a new state. Caller holds the lock."""
        if self._state == new_state:
            return
        old_state = self._state
        self._state = new_state
        self._stats.state_changes += 1

        if new_state == CircuitState.OPEN:
            self._opened_at = self._clock()
        elif new_state == CircuitState.CLOSED:
            self._opened_at = None
            self._stats.consecutive_failures = 0

        log = logger.warning if new_state == CircuitState.OPEN else logger.info
        log(
            f"Circuit breaker '{self.name}' state change: {old_state.value} -> {new_state.value}",
            extra={
                "extra_data": {
                    "circuit_breaker": self.name,
                    "old_state": old_state.value,
                    "new_state": new_state.value,
                    "consecutive_failures": self._stats.consecutive_failures,
                }
            },
        )

    def _before_request(self) -> bool:
        """
        Admit or reject a call.

        Returns:
            True if the admitted call is the half-open trial

        Raises:
            CircuitOpenError: If the circuit rejects the call
        """
        with self._lock:
            self._stats.total_requests += 1

            if self._state == CircuitState.CLOSED:
                return False

            if self._state == CircuitState.OPEN and self._cooldown_elapsed():
                self._transition_to(CircuitState.HALF_OPEN)
                self._trial_in_flight = True
                return True

            # OPEN within cooldown, or HALF_OPEN with the trial already taken
            self._stats.rejected_requests += 1
            raise CircuitOpenError(breaker=self.name, retry_after=self._retry_after())

    def _record_success(self, is_trial: bool) -> None:
        with self._lock:
            self._stats.successful_requests += 1
            self._stats.consecutive_failures = 0
            self._stats.last_success_time = datetime.now(UTC)
            if is_trial:
                self._trial_in_flight = False
                self._transition_to(CircuitState.CLOSED)

    def _record_failure(self, exception: BaseException, is_trial: bool) -> None:
        with self._lock:
            if is_trial:
                self._trial_in_flight = False

            if isinstance(exception, self.config.excluded_exceptions):
                # Not a provider failure; a trial that ends this way proves nothing
                if is_trial:
                    self._transition_to(CircuitState.OPEN)
                return

            self._stats.failed_requests += 1
            self._stats.consecutive_failures += 1
            self._stats.last_failure_time = datetime.now(UTC)

            if is_trial:
                self._transition_to(CircuitState.OPEN)
            elif (
                self._state == CircuitState.CLOSED
                and self._stats.consecutive_failures >= self.config.failure_threshold
            ):
                self._transition_to(CircuitState.OPEN)

    def _release_trial(self) -> None:
        """Cancelled trial: give the slot back and stay open for a new cooldown."""
        with self._lock:
            self._trial_in_flight = False
            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.OPEN)

    async def execute(self, func: Callable[..., Awaitable[T] | T], *args: Any, **kwargs: Any) -> T:
        """
        Execute a function through the circuit breaker.

        Args:
            func: Function to execute (sync or async)
            *args: Positional arguments
            **kwargs: Keyword arguments

        Returns:
            Result of the function

        Raises:
            CircuitOpenError: If circuit is open
            Exception: Original exception from function
        """
        is_trial = self._before_request()

        try:
            result = func(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            self._record_failure(e, is_trial)
            raise
        except BaseException:
            if is_trial:
                self._release_trial()
            raise

        self._record_success(is_trial)
        return result

    def reset(self) -> None:
        """Reset circuit breaker to initial state."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._opened_at = None
            self._trial_in_flight = False
            self._stats = CircuitBreakerStats()
        logger.info(f"Circuit breaker '{self.name}' reset")

    def get_status(self) -> dict[str, Any]:
        """Get current status."""
        return {
            "name": self.name,
            "state": self._state.value,
            "is_available": self.is_available,
            "stats": self._stats.to_dict(),
            "config": {
                "failure_threshold": self.config.failure_threshold,
                "recovery_timeout": self.config.recovery_timeout,
            },
        }
