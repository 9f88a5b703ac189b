"""
Core Infrastructure Module

Cross-cutting reliability patterns for the messaging core.

Components:
- Circuit Breaker: Stops calling a failing provider
- Retry: Exponential backoff for transient failures
- Monitoring: Process counters and health summary
- Rate Limiter: Per-key sliding window admission control
"""

from leadrelay.core.infrastructure.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerStats,
    CircuitState,
)
from leadrelay.core.infrastructure.monitoring import HealthMonitor, HealthStatus
from leadrelay.core.infrastructure.rate_limiter import RateLimitConfig, SlidingWindowRateLimiter
from leadrelay.core.infrastructure.retry import (
    RecoveryManager,
    RetryConfig,
    RetryStats,
    is_transient,
)

__all__ = [
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerStats",
    "CircuitState",
    # Retry
    "RecoveryManager",
    "RetryConfig",
    "RetryStats",
    "is_transient",
    # Monitoring
    "HealthMonitor",
    "HealthStatus",
    # Rate Limiter
    "RateLimitConfig",
    "SlidingWindowRateLimiter",
]
