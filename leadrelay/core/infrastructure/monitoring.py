"""
Monitoring and Observability Infrastructure

Process-lifetime counters for the messaging core and the health summary
derived from them.
"""

import logging
import threading
import time
from datetime import datetime, UTC
from enum import Enum
from typing import Any, Callable

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    """Health check status."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class HealthMonitor:
    """
    Counters of sent messages, received messages and errors.

    Increments are atomic; reads are lock-free and may be momentarily stale
    relative to a concurrent increment. Counters cover the process lifetime
    and are not persisted.

    Example:
        ```python
        monitor = HealthMonitor(error_rate_threshold=0.10)
        monitor.increment_messages_sent()
        monitor.get_error_rate()  # 0.0
        ```
    """

    def __init__(
        self,
        error_rate_threshold: float = 0.10,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize health monitor.

        Args:
            error_rate_threshold: Error rate above which the service is unhealthy
            clock: Monotonic time source in seconds
        """
        self.error_rate_threshold = error_rate_threshold
        self._clock = clock
        self._lock = threading.Lock()
        self._started_at = clock()
        self._last_activity: float | None = None
        self._messages_sent = 0
        self._messages_received = 0
        self._errors = 0

    @property
    def messages_sent(self) -> int:
        return self._messages_sent

    @property
    def messages_received(self) -> int:
        return self._messages_received

    @property
    def errors(self) -> int:
        return self._errors

    def increment_messages_sent(self) -> None:
        with self._lock:
            self._messages_sent += 1
            self._last_activity = self._clock()

    def increment_messages_received(self) -> None:
        with self._lock:
            self._messages_received += 1
            self._last_activity = self._clock()

    def increment_errors(self) -> None:
        with self._lock:
            self._errors += 1
            self._last_activity = self._clock()

    def get_error_rate(self) -> float:
        """
        Errors divided by processed messages (sent + received).

        Returns:
            Ratio in [0, inf); 0.0 when nothing has been processed
        """
        processed = self._messages_sent + self._messages_received
        if processed == 0:
            return 0.0
        return self._errors / processed

    def is_healthy(self) -> bool:
        return self.get_error_rate() <= self.error_rate_threshold

    def get_health_status(self) -> dict[str, Any]:
        """Get health summary."""
        now = self._clock()
        error_rate = self.get_error_rate()
        status = HealthStatus.HEALTHY if error_rate <= self.error_rate_threshold else HealthStatus.UNHEALTHY
        last_activity = self._last_activity
        return {
            "status": status.value,
            "timestamp": datetime.now(UTC).isoformat(),
            "uptime_seconds": round(now - self._started_at, 3),
            "seconds_since_last_activity": (
                round(now - last_activity, 3) if last_activity is not None else None
            ),
            "metrics": {
                "messages_sent": self._messages_sent,
                "messages_received": self._messages_received,
                "errors": self._errors,
                "error_rate": round(error_rate, 4),
                "error_rate_threshold": self.error_rate_threshold,
            },
        }

    def reset(self) -> None:
        """Reset all counters."""
        with self._lock:
            self._messages_sent = 0
            self._messages_received = 0
            self._errors = 0
            self._last_activity = None
            self._started_at = self._clock()
        logger.info("Health monitor counters reset")
