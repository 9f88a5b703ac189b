"""
Unit tests for CircuitBreaker.

Tests cover:
1. Closed state counting and the failure threshold
2. Open state rejection and cooldown
3. Half-open single trial (success, failure, concurrent callers)
4. Excluded exceptions and cancellation
"""

import asyncio

import pytest

from leadrelay.core.domain.errors import CircuitOpenError, ProviderAPIError, ValidationError
from leadrelay.core.infrastructure.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)


async def ok() -> str:
    return "ok"


async def fail() -> None:
    raise ProviderAPIError("HTTP 503", status_code=503)


@pytest.fixture
def breaker(clock) -> CircuitBreaker:
    return CircuitBreaker(
        "whatsapp_api",
        CircuitBreakerConfig(failure_threshold=3, recovery_timeout=60.0),
        clock=clock,
    )


async def trip(breaker: CircuitBreaker) -> None:
    for _ in range(breaker.config.failure_threshold):
        with pytest.raises(ProviderAPIError):
            await breaker.execute(fail)


# ============================================================================
# TEST CLASS: Closed State
# ============================================================================


class TestClosedState:
    """Tests for the closed state."""

    @pytest.mark.asyncio
    async def test_passes_result_through(self, breaker):
        assert await breaker.execute(ok) == "ok"
        assert breaker.state == CircuitState.CLOSED
        assert breaker.stats.successful_requests == 1

    @pytest.mark.asyncio
    async def test_supports_sync_callables(self, breaker):
        assert await breaker.execute(lambda x: x * 2, 21) == 42

    @pytest.mark.asyncio
    async def test_opens_at_threshold(self, breaker):
        """Consecutive failures reaching the threshold open the circuit."""
        for _ in range(2):
            with pytest.raises(ProviderAPIError):
                await breaker.execute(fail)
        assert breaker.state == CircuitState.CLOSED

        with pytest.raises(ProviderAPIError):
            await breaker.execute(fail)
        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_success_resets_consecutive_failures(self, breaker):
        for _ in range(2):
            with pytest.raises(ProviderAPIError):
                await breaker.execute(fail)
        await breaker.execute(ok)
        for _ in range(2):
            with pytest.raises(ProviderAPIError):
                await breaker.execute(fail)

        assert breaker.state == CircuitState.CLOSED
        assert breaker.stats.consecutive_failures == 2


# ============================================================================
# TEST CLASS: Open State
# ============================================================================


class TestOpenState:
    """Tests for the open state."""

    @pytest.mark.asyncio
    async def test_rejects_without_calling(self, breaker):
        await trip(breaker)
        calls = 0

        async def counted():
            nonlocal calls
            calls += 1

        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.execute(counted)

        assert calls == 0
        assert exc_info.value.message == "circuit open"
        assert exc_info.value.retry_after == pytest.approx(60.0)
        assert breaker.stats.rejected_requests == 1

    @pytest.mark.asyncio
    async def test_rejects_until_cooldown_elapses(self, breaker, clock):
        await trip(breaker)
        clock.advance(59.9)

        assert breaker.is_available is False
        with pytest.raises(CircuitOpenError):
            await breaker.execute(ok)

        clock.advance(0.1)
        assert breaker.is_available is True


# ============================================================================
# TEST CLASS: Half-Open State
# ============================================================================


class TestHalfOpenState:
    """Tests for the half-open trial."""

    @pytest.mark.asyncio
    async def test_trial_success_closes(self, breaker, clock):
        await trip(breaker)
        clock.advance(60)

        assert await breaker.execute(ok) == "ok"
        assert breaker.state == CircuitState.CLOSED
        assert breaker.stats.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_trial_failure_reopens_with_new_cooldown(self, breaker, clock):
        await trip(breaker)
        clock.advance(60)

        with pytest.raises(ProviderAPIError):
            await breaker.execute(fail)

        assert breaker.state == CircuitState.OPEN
        clock.advance(30)
        with pytest.raises(CircuitOpenError):
            await breaker.execute(ok)

    @pytest.mark.asyncio
    async def test_only_one_trial_in_flight(self, breaker, clock):
        """Concurrent callers during a trial are rejected."""
        await trip(breaker)
        clock.advance(60)

        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_trial():
            started.set()
            await release.wait()
            return "trial"

        trial = asyncio.create_task(breaker.execute(slow_trial))
        await started.wait()

        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.is_available is False
        with pytest.raises(CircuitOpenError):
            await breaker.execute(ok)

        release.set()
        assert await trial == "trial"
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_cancelled_trial_releases_slot(self, breaker, clock):
        await trip(breaker)
        clock.advance(60)

        started = asyncio.Event()

        async def hang():
            started.set()
            await asyncio.Event().wait()

        trial = asyncio.create_task(breaker.execute(hang))
        await started.wait()
        trial.cancel()
        with pytest.raises(asyncio.CancelledError):
            await trial

        assert breaker.state == CircuitState.OPEN
        clock.advance(60)
        assert await breaker.execute(ok) == "ok"


# ============================================================================
# TEST CLASS: Excluded Exceptions and Reset
# ============================================================================


class TestExcludedExceptions:
    """Tests for exceptions that do not count as failures."""

    @pytest.mark.asyncio
    async def test_excluded_exceptions_do_not_trip(self, clock):
        breaker = CircuitBreaker(
            "whatsapp_api",
            CircuitBreakerConfig(failure_threshold=1, excluded_exceptions=(ValidationError,)),
            clock=clock,
        )

        async def invalid():
            raise ValidationError("bad input")

        for _ in range(3):
            with pytest.raises(ValidationError):
                await breaker.execute(invalid)

        assert breaker.state == CircuitState.CLOSED
        assert breaker.stats.failed_requests == 0

    @pytest.mark.asyncio
    async def test_reset_closes_and_clears_stats(self, breaker):
        await trip(breaker)
        breaker.reset()

        assert breaker.state == CircuitState.CLOSED
        assert breaker.stats.failed_requests == 0
        status = breaker.get_status()
        assert status["state"] == "closed"
        assert status["is_available"] is True
        assert status["config"]["failure_threshold"] == 3
