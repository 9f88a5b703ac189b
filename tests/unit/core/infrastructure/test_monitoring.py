"""Unit tests for HealthMonitor."""

import threading

import pytest

from leadrelay.core.infrastructure.monitoring import HealthMonitor


@pytest.fixture
def monitor(clock) -> HealthMonitor:
    return HealthMonitor(error_rate_threshold=0.10, clock=clock)


class TestErrorRate:
    """Tests for error rate and health."""

    def test_zero_when_nothing_processed(self, monitor):
        monitor.increment_errors()
        assert monitor.get_error_rate() == 0.0
        assert monitor.is_healthy() is True

    def test_errors_over_sent_plus_received(self, monitor):
        for _ in range(6):
            monitor.increment_messages_sent()
        for _ in range(4):
            monitor.increment_messages_received()
        monitor.increment_errors()

        assert monitor.get_error_rate() == pytest.approx(0.1)
        # Threshold is inclusive
        assert monitor.is_healthy() is True

        monitor.increment_errors()
        assert monitor.is_healthy() is False


class TestHealthStatus:
    """Tests for the health summary."""

    def test_summary_fields(self, monitor, clock):
        monitor.increment_messages_sent()
        clock.advance(5)

        status = monitor.get_health_status()

        assert status["status"] == "healthy"
        assert status["uptime_seconds"] == 5.0
        assert status["seconds_since_last_activity"] == 5.0
        assert status["metrics"] == {
            "messages_sent": 1,
            "messages_received": 0,
            "errors": 0,
            "error_rate": 0.0,
            "error_rate_threshold": 0.10,
        }

    def test_unhealthy_status(self, monitor):
        monitor.increment_messages_received()
        monitor.increment_errors()

        assert monitor.get_health_status()["status"] == "unhealthy"

    def test_reset(self, monitor):
        monitor.increment_messages_sent()
        monitor.reset()

        status = monitor.get_health_status()
        assert status["metrics"]["messages_sent"] == 0
        assert status["seconds_since_last_activity"] is None


class TestConcurrency:
    """Tests for concurrent increments."""

    def test_increments_are_not_lost(self):
        monitor = HealthMonitor()

        def work():
            for _ in range(1000):
                monitor.increment_messages_sent()
                monitor.increment_errors()

        threads = [threading.Thread(target=work) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert monitor.messages_sent == 8000
        assert monitor.errors == 8000
