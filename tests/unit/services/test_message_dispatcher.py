"""
Unit tests for MessageDispatcher.

Tests cover:
1. Successful sends and storage
2. Input and configuration validation
3. Outbound rate limiting
4. Retry, circuit breaking and error reporting
5. Read receipts
"""

from unittest.mock import AsyncMock

import httpx
import pytest

from leadrelay.core.infrastructure.circuit_breaker import CircuitState
from leadrelay.models.message import MessageStatus
from tests.utils import provider_error


# ============================================================================
# TEST CLASS: Successful Sends
# ============================================================================


class TestSend:
    """Tests for successful sends."""

    @pytest.mark.asyncio
    async def test_send_text_success(self, container, provider):
        result = await container.dispatcher.send_text("15550002", "hi")

        assert result.success is True
        assert result.message_id == "wamid.out1"
        assert result.error is None
        assert provider.call_count == 1
        assert container.health_monitor.messages_sent == 1

    @pytest.mark.asyncio
    async def test_sent_message_is_stored(self, container):
        await container.dispatcher.send_text("15550002", "hi", reply_to_id="wamid.in1")

        record = container.store.get("wamid.out1")
        assert record.status == MessageStatus.SENT
        assert record.direction == "outbound"
        assert record.recipient == "15550002"
        assert record.content == "hi"
        assert record.reply_to_id == "wamid.in1"

    @pytest.mark.asyncio
    async def test_send_template_success(self, container, provider):
        result = await container.dispatcher.send_template("15550002", "order_update", "es")

        assert result.success is True
        assert provider.payloads[0]["template"]["name"] == "order_update"
        record = container.store.get(result.message_id)
        assert record.type == "template"
        assert record.payload == {"language": "es", "components": []}

    @pytest.mark.asyncio
    async def test_storage_failure_keeps_success(self, make_container):
        """The provider accepted the message, so a storage failure is only logged."""
        store = AsyncMock()
        store.store_sent_message.side_effect = RuntimeError("database down")
        container = make_container(store=store)

        result = await container.dispatcher.send_text("15550002", "hi")

        assert result.success is True
        assert container.health_monitor.messages_sent == 1
        store.store_sent_message.assert_awaited_once()


# ============================================================================
# TEST CLASS: Validation
# ============================================================================


class TestValidation:
    """Tests for rejected input."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("to,text", [("", "hi"), ("15550002", "   "), (None, "hi")])
    async def test_missing_fields(self, container, provider, to, text):
        result = await container.dispatcher.send_text(to, text)

        assert result.success is False
        assert result.error_kind == "validation"
        assert result.error_code == "VALIDATION_ERROR"
        assert result.retryable is False
        assert result.attempts == 0
        assert provider.call_count == 0
        assert container.health_monitor.errors == 1

    @pytest.mark.asyncio
    async def test_missing_credentials(self, make_container, provider):
        container = make_container(WHATSAPP_ACCESS_TOKEN="")

        result = await container.dispatcher.send_text("15550002", "hi")

        assert result.success is False
        assert result.error_kind == "validation"
        assert "configuration" in result.error
        assert provider.call_count == 0

    @pytest.mark.asyncio
    async def test_template_requires_name(self, container, provider):
        result = await container.dispatcher.send_template("15550002", "")

        assert result.error_kind == "validation"
        assert provider.call_count == 0


# ============================================================================
# TEST CLASS: Rate Limiting
# ============================================================================


class TestRateLimiting:
    """Tests for outbound admission control."""

    @pytest.mark.asyncio
    async def test_third_send_in_window_is_refused(self, make_container, provider):
        container = make_container(RATE_LIMIT_MAX_REQUESTS=2)

        first = await container.dispatcher.send_text("15550002", "one")
        second = await container.dispatcher.send_text("15550002", "two")
        third = await container.dispatcher.send_text("15550002", "three")

        assert first.success and second.success
        assert third.success is False
        assert third.error_kind == "rate_limit"
        assert third.retryable is True
        assert third.attempts == 0
        assert provider.call_count == 2

    @pytest.mark.asyncio
    async def test_limit_is_per_recipient(self, make_container):
        container = make_container(RATE_LIMIT_MAX_REQUESTS=1)

        await container.dispatcher.send_text("15550002", "one")
        result = await container.dispatcher.send_text("15550003", "one")

        assert result.success is True


# ============================================================================
# TEST CLASS: Provider Failures
# ============================================================================


class TestProviderFailures:
    """Tests for retry, circuit breaking and error reporting."""

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self, container, provider, recording_sleep):
        provider.queue(httpx.Response(503), httpx.Response(503))

        result = await container.dispatcher.send_text("15550002", "hi")

        assert result.success is True
        assert provider.call_count == 3
        assert recording_sleep.delays == [1.0, 2.0]
        assert container.health_monitor.errors == 0

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, container, provider, recording_sleep):
        provider.queue(*[httpx.Response(503) for _ in range(4)])

        result = await container.dispatcher.send_text("15550002", "hi")

        assert result.success is False
        assert result.error_kind == "provider_api"
        assert result.retryable is True
        assert result.attempts == 4
        assert recording_sleep.delays == [1.0, 2.0, 4.0]
        assert container.health_monitor.errors == 1
        assert container.store.get("wamid.out1") is None

    @pytest.mark.asyncio
    async def test_permanent_error_not_retried(self, container, provider, recording_sleep):
        provider.queue(provider_error(400, 131047, "Re-engagement message"))

        result = await container.dispatcher.send_text("15550002", "hi")

        assert result.success is False
        assert result.retryable is False
        assert result.attempts == 1
        assert result.error == "Re-engagement message"
        assert provider.call_count == 1
        assert recording_sleep.delays == []

    @pytest.mark.asyncio
    async def test_authentication_error(self, container, provider):
        provider.queue(provider_error(401, 190, "Invalid OAuth access token"))

        result = await container.dispatcher.send_text("15550002", "hi")

        assert result.error_kind == "authentication"
        assert result.retryable is False
        assert provider.call_count == 1

    @pytest.mark.asyncio
    async def test_open_circuit_short_circuits(self, make_container, provider):
        """With the breaker open, sends fail fast without touching the network."""
        container = make_container(CIRCUIT_BREAKER_FAILURE_THRESHOLD=1)
        provider.queue(httpx.Response(503))

        tripped = await container.dispatcher.send_text("15550002", "hi")
        assert container.circuit_breaker.state == CircuitState.OPEN
        assert tripped.error == "circuit open"
        assert provider.call_count == 1

        result = await container.dispatcher.send_text("15550002", "hi")

        assert result.success is False
        assert result.error == "circuit open"
        assert result.error_code == "CIRCUIT_OPEN"
        assert result.retryable is True
        assert provider.call_count == 1

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_reported(self, container, provider):
        def explode(request):
            raise ValueError("bad state")

        provider.queue(explode)

        result = await container.dispatcher.send_text("15550002", "hi")

        assert result.success is False
        assert result.error_code == "INTERNAL_ERROR"
        assert "bad state" in result.error
        assert container.health_monitor.errors == 1


# ============================================================================
# TEST CLASS: Read Receipts
# ============================================================================


class TestMarkAsRead:
    """Tests for mark_as_read."""

    @pytest.mark.asyncio
    async def test_success(self, container, provider):
        result = await container.dispatcher.mark_as_read("wamid.in1")

        assert result.success is True
        assert provider.payloads[0]["status"] == "read"
        # Read receipts are not counted as sent messages
        assert container.health_monitor.messages_sent == 0

    @pytest.mark.asyncio
    async def test_failure(self, container, provider):
        provider.queue(provider_error(401, 190))

        result = await container.dispatcher.mark_as_read("wamid.in1")

        assert result.success is False
        assert result.error_kind == "authentication"
        assert container.health_monitor.errors == 1

    @pytest.mark.asyncio
    async def test_requires_message_id(self, container, provider):
        result = await container.dispatcher.mark_as_read("")

        assert result.error_kind == "validation"
        assert provider.call_count == 0
