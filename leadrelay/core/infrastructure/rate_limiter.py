"""
Rate Limiter Infrastructure

Per-key sliding window admission control for inbound senders and outbound
recipients.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable

from leadrelay.core.domain.errors import RateLimitError
from leadrelay.core.shared.logger import LogContext

logger = logging.getLogger(__name__)


@dataclass
class RateLimitConfig:
    """Configuration for rate limiting."""

    max_requests: int = 10
    window_seconds: float = 60.0


@dataclass
class _KeyWindow:
    """Admission timestamps of a single key, oldest first."""

    timestamps: deque[float] = field(default_factory=deque)
    lock: threading.Lock = field(default_factory=threading.Lock)

    def prune(self, cutoff: float) -> None:
        while self.timestamps and self.timestamps[0] <= cutoff:
            self.timestamps.popleft()


class SlidingWindowRateLimiter:
    """
    Sliding window rate limiter keyed by an opaque string (usually a phone
    number).

    At most ``max_requests`` admissions are granted per key within any rolling
    ``window_seconds`` window. A refused call records nothing, so a caller
    that keeps hammering a full window does not extend its own lockout.

    Example:
        ```python
        limiter = SlidingWindowRateLimiter(name="outbound", max_requests=10, window_seconds=60.0)

        if limiter.is_allowed("+15550001"):
            # Send
            pass
        ```
    """

    def __init__(
        self,
        name: str = "default",
        config: RateLimitConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize sliding window limiter.

        Args:
            name: Identifier used in logs and stats
            config: Window configuration
            clock: Monotonic time source in seconds
        """
        self.name = name
        self.config = config or RateLimitConfig()
        if self.config.max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if self.config.window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self._clock = clock
        self._windows: dict[str, _KeyWindow] = {}
        # Guards creation and removal of windows only
        self._registry_lock = threading.Lock()
        self._last_purge = clock()
        # Refusals on different keys hold different window locks
        self._stats_lock = threading.Lock()
        self._rejected = 0

    @property
    def max_requests(self) -> int:
        return self.config.max_requests

    @property
    def window_seconds(self) -> float:
        return self.config.window_seconds

    def _get_window(self, key: str) -> _KeyWindow:
        window = self._windows.get(key)
        if window is None:
            with self._registry_lock:
                window = self._windows.setdefault(key, _KeyWindow())
        return window

    def is_allowed(self, key: str) -> bool:
        """
        Record an admission for ``key`` if the window has room.

        Returns:
            True if admitted, False if the key is at its limit
        """
        now = self._clock()
        self._maybe_purge(now)

        while True:
            window = self._get_window(key)
            with window.lock:
                # A concurrent purge may have dropped this window; retry with a fresh one
                if self._windows.get(key) is not window:
                    continue
                window.prune(now - self.window_seconds)
                if len(window.timestamps) >= self.max_requests:
                    with self._stats_lock:
                        self._rejected += 1
                    logger.debug(f"Rate limiter '{self.name}' refused key {key}")
                    return False
                window.timestamps.append(now)
                return True

    def check(self, key: str, context: LogContext | None = None) -> None:
        """
        Admit ``key`` or raise.

        Raises:
            RateLimitError: If the key is at its limit
        """
        if not self.is_allowed(key):
            raise RateLimitError(
                f"Rate limit exceeded for {key}",
                key=key,
                retry_after=self.time_until_reset(key),
                context=context,
            )

    def current_count(self, key: str) -> int:
        """Number of admissions for ``key`` inside the current window."""
        window = self._windows.get(key)
        if window is None:
            return 0
        with window.lock:
            window.prune(self._clock() - self.window_seconds)
            return len(window.timestamps)

    def remaining(self, key: str) -> int:
        """Admissions still available to ``key`` in the current window."""
        return max(0, self.max_requests - self.current_count(key))

    def time_until_reset(self, key: str) -> float:
        """Seconds until the oldest admission of ``key`` leaves the window."""
        window = self._windows.get(key)
        if window is None:
            return 0.0
        now = self._clock()
        with window.lock:
            window.prune(now - self.window_seconds)
            if not window.timestamps:
                return 0.0
            return max(0.0, window.timestamps[0] + self.window_seconds - now)

    def _maybe_purge(self, now: float) -> None:
        if now - self._last_purge >= self.window_seconds:
            self.purge_expired(now)

    def purge_expired(self, now: float | None = None) -> int:
        """
        Drop windows whose newest admission is older than the window.

        Returns:
            Number of keys removed
        """
        now = self._clock() if now is None else now
        cutoff = now - self.window_seconds
        removed = 0
        with self._registry_lock:
            self._last_purge = now
            for key, window in list(self._windows.items()):
                with window.lock:
                    if not window.timestamps or window.timestamps[-1] <= cutoff:
                        del self._windows[key]
                        removed += 1
        if removed:
            logger.debug(f"Rate limiter '{self.name}' purged {removed} idle keys")
        return removed

    @property
    def tracked_keys(self) -> int:
        """Number of keys currently holding a window."""
        return len(self._windows)

    def get_stats(self) -> dict[str, Any]:
        """Get limiter statistics."""
        return {
            "name": self.name,
            "type": "sliding_window",
            "max_requests": self.max_requests,
            "window_seconds": self.window_seconds,
            "tracked_keys": self.tracked_keys,
            "rejected_requests": self._rejected,
        }
