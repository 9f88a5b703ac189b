"""
In-memory message store.

Default ``MessageStore`` implementation for local runs and tests. Records
live for the process lifetime only.
"""

import logging
import threading
from datetime import datetime, UTC

from leadrelay.models.message import MessageRecord, MessageStatus, is_status_advance

logger = logging.getLogger(__name__)


class InMemoryMessageStore:
    """
    Dict-backed store keyed by provider message id.

    Status updates follow ``is_status_advance``: stale or repeated statuses
    are ignored, so provider redeliveries and out-of-order notifications are
    harmless. A status for an unknown message creates a placeholder record
    that a later ``store_sent_message`` merges into.
    """

    def __init__(self):
        self._records: dict[str, MessageRecord] = {}
        self._lock = threading.Lock()

    async def store_incoming_message(self, record: MessageRecord) -> None:
        with self._lock:
            if record.id in self._records:
                logger.debug(f"Inbound message {record.id} already stored, ignoring redelivery")
                return
            self._records[record.id] = record

    async def store_sent_message(self, record: MessageRecord) -> None:
        with self._lock:
            existing = self._records.get(record.id)
            if existing is not None and is_status_advance(record.status, existing.status):
                # A status notification overtook the send confirmation; keep the newer status
                record = record.model_copy(
                    update={
                        "status": existing.status,
                        "status_updated_at": existing.status_updated_at,
                        "error": existing.error,
                    }
                )
            self._records[record.id] = record

    async def update_message_status(
        self,
        message_id: str,
        status: MessageStatus,
        timestamp: datetime | None = None,
        error: str | None = None,
    ) -> bool:
        status = MessageStatus(status)
        updated_at = timestamp or datetime.now(UTC)

        with self._lock:
            record = self._records.get(message_id)
            if record is None:
                self._records[message_id] = MessageRecord(
                    id=message_id,
                    direction="outbound",
                    type="unknown",
                    status=status,
                    status_updated_at=updated_at,
                    error=error,
                )
                return True

            if not is_status_advance(record.status, status):
                logger.debug(
                    f"Ignoring status {status.value} for {message_id}: current is {record.status.value}"
                )
                return False

            self._records[message_id] = record.model_copy(
                update={"status": status, "status_updated_at": updated_at, "error": error or record.error}
            )
            return True

    def get(self, message_id: str) -> MessageRecord | None:
        return self._records.get(message_id)

    def all(self) -> list[MessageRecord]:
        with self._lock:
            return list(self._records.values())

    def __len__(self) -> int:
        return len(self._records)
