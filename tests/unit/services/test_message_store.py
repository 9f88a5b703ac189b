"""Unit tests for InMemoryMessageStore."""

import pytest

from leadrelay.models.message import MessageRecord, MessageStatus
from leadrelay.services.message_store import InMemoryMessageStore


def outbound(message_id: str = "wamid.out1") -> MessageRecord:
    return MessageRecord(
        id=message_id,
        direction="outbound",
        recipient="15550002",
        type="text",
        content="hi",
        status=MessageStatus.SENT,
    )


def inbound(message_id: str = "wamid.in1", content: str = "hello") -> MessageRecord:
    return MessageRecord(
        id=message_id,
        direction="inbound",
        sender="15550001",
        type="text",
        content=content,
        status=MessageStatus.RECEIVED,
    )


@pytest.fixture
def store() -> InMemoryMessageStore:
    return InMemoryMessageStore()


class TestInMemoryMessageStore:
    """Tests for storage semantics."""

    @pytest.mark.asyncio
    async def test_incoming_redelivery_is_ignored(self, store):
        await store.store_incoming_message(inbound(content="first"))
        await store.store_incoming_message(inbound(content="second"))

        assert len(store) == 1
        assert store.get("wamid.in1").content == "first"

    @pytest.mark.asyncio
    async def test_status_progression(self, store):
        await store.store_sent_message(outbound())

        assert await store.update_message_status("wamid.out1", MessageStatus.DELIVERED) is True
        assert await store.update_message_status("wamid.out1", MessageStatus.READ) is True
        assert store.get("wamid.out1").status == MessageStatus.READ

    @pytest.mark.asyncio
    async def test_stale_and_repeated_status_ignored(self, store):
        await store.store_sent_message(outbound())
        await store.update_message_status("wamid.out1", MessageStatus.READ)

        assert await store.update_message_status("wamid.out1", MessageStatus.DELIVERED) is False
        assert await store.update_message_status("wamid.out1", MessageStatus.READ) is False
        assert store.get("wamid.out1").status == MessageStatus.READ

    @pytest.mark.asyncio
    async def test_failed_keeps_error(self, store):
        await store.store_sent_message(outbound())

        await store.update_message_status("wamid.out1", MessageStatus.FAILED, error="131047: Re-engagement")

        record = store.get("wamid.out1")
        assert record.status == MessageStatus.FAILED
        assert record.error == "131047: Re-engagement"

    @pytest.mark.asyncio
    async def test_status_before_send_confirmation(self, store):
        """A delivered status arriving first survives the later send record."""
        assert await store.update_message_status("wamid.out1", MessageStatus.DELIVERED) is True

        await store.store_sent_message(outbound())

        record = store.get("wamid.out1")
        assert record.status == MessageStatus.DELIVERED
        assert record.content == "hi"
