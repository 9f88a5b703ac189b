"""
Storage collaborator interface.

The messaging core never owns persistence. It hands records to whatever
implements this protocol (a database repository in production, the
in-memory store in tests and local runs).
"""

from datetime import datetime
from typing import Protocol, runtime_checkable

from leadrelay.models.message import MessageRecord, MessageStatus


@runtime_checkable
class MessageStore(Protocol):
    """Persistence operations used by the webhook processor and dispatcher."""

    async def store_incoming_message(self, record: MessageRecord) -> None:
        """Persist a message received from a user."""
        ...

    async def store_sent_message(self, record: MessageRecord) -> None:
        """Persist a message accepted by the provider."""
        ...

    async def update_message_status(
        self,
        message_id: str,
        status: MessageStatus,
        timestamp: datetime | None = None,
        error: str | None = None,
    ) -> bool:
        """
        Apply a delivery status to a message.

        Implementations must be idempotent and monotonic: a status that does
        not move the message forward is ignored.

        Returns:
            True if the stored status changed
        """
        ...
