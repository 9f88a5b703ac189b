"""
Auto-response collaborator interface.
"""

from typing import Protocol, runtime_checkable

from leadrelay.core.shared.logger import LogContext
from leadrelay.models.message import InboundMessage


@runtime_checkable
class AutoResponder(Protocol):
    """Hook invoked by the webhook processor for each stored inbound message."""

    def matches(self, message: InboundMessage) -> bool:
        """Return True if the message triggers an automatic reply."""
        ...

    async def respond(self, message: InboundMessage, context: LogContext) -> None:
        """Send the automatic reply (typically through the message dispatcher)."""
        ...
