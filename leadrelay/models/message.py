"""
Wire and record models for the messaging core.

Webhook envelope models mirror the WhatsApp Cloud API notification format.
Messages and statuses stay as raw dicts inside the envelope and are parsed
one by one, so a single malformed item never rejects the whole delivery.
"""

from datetime import datetime, UTC
from enum import Enum
from typing import Any, ClassVar, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

WHATSAPP_BUSINESS_ACCOUNT = "whatsapp_business_account"

MessageType = Literal[
    "text",
    "image",
    "audio",
    "video",
    "document",
    "sticker",
    "location",
    "contacts",
    "interactive",
    "button",
    "reaction",
    "template",
    "order",
    "system",
    "unsupported",
]


# ============================================================================
# Inbound message content
# ============================================================================


class TextMessage(BaseModel):
    """Text content"""

    body: str


class MediaContent(BaseModel):
    """Image, audio, video, document or sticker reference"""

    id: Optional[str] = None
    mime_type: Optional[str] = None
    sha256: Optional[str] = None
    caption: Optional[str] = None
    filename: Optional[str] = None

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="ignore")


class LocationContent(BaseModel):
    """Shared location"""

    latitude: float
    longitude: float
    name: Optional[str] = None
    address: Optional[str] = None


class ButtonReply(BaseModel):
    id: str
    title: str


class ListReply(BaseModel):
    id: str
    title: str
    description: Optional[str] = None


class InteractiveContent(BaseModel):
    """Reply to an interactive (button or list) message"""

    type: str
    button_reply: Optional[ButtonReply] = None
    list_reply: Optional[ListReply] = None

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="ignore")


class QuickReplyButton(BaseModel):
    """Quick reply button pressed on a template message"""

    text: str
    payload: Optional[str] = None


class ReactionContent(BaseModel):
    message_id: str
    emoji: Optional[str] = None


class ReplyContext(BaseModel):
    """Message the inbound message replies to"""

    from_: Optional[str] = Field(default=None, alias="from")
    id: Optional[str] = None

    model_config: ClassVar[ConfigDict] = ConfigDict(populate_by_name=True, extra="ignore")


class InboundMessage(BaseModel):
    """Message received from a WhatsApp user"""

    from_: str = Field(..., alias="from")
    id: str
    timestamp: str
    type: MessageType
    text: Optional[TextMessage] = None
    image: Optional[MediaContent] = None
    audio: Optional[MediaContent] = None
    video: Optional[MediaContent] = None
    document: Optional[MediaContent] = None
    sticker: Optional[MediaContent] = None
    location: Optional[LocationContent] = None
    interactive: Optional[InteractiveContent] = None
    button: Optional[QuickReplyButton] = None
    reaction: Optional[ReactionContent] = None
    contacts: Optional[List[Dict[str, Any]]] = None
    context: Optional[ReplyContext] = None

    model_config: ClassVar[ConfigDict] = ConfigDict(populate_by_name=True, extra="ignore")

    @property
    def sender(self) -> str:
        return self.from_

    @property
    def text_body(self) -> Optional[str]:
        return self.text.body if self.text else None

    def content_summary(self) -> str:
        """Human-readable summary of the content, used for storage and logs."""
        if self.type == "text" and self.text:
            return self.text.body
        if self.type == "image":
            caption = self.image.caption if self.image else None
            return caption or "[Image received]"
        if self.type == "video":
            caption = self.video.caption if self.video else None
            return caption or "[Video received]"
        if self.type == "audio":
            return "[Audio message received]"
        if self.type == "sticker":
            return "[Sticker received]"
        if self.type == "document":
            filename = self.document.filename if self.document else None
            return f"[Document: {filename or 'Unknown'}]"
        if self.type == "location" and self.location:
            label = self.location.name or f"{self.location.latitude},{self.location.longitude}"
            return f"[Location shared: {label}]"
        if self.type == "interactive" and self.interactive:
            reply = self.interactive.button_reply or self.interactive.list_reply
            return reply.title if reply else "[Interactive reply]"
        if self.type == "button" and self.button:
            return self.button.text
        if self.type == "reaction" and self.reaction:
            return f"[Reaction: {self.reaction.emoji or ''}]"
        if self.type == "contacts":
            return "[Contact shared]"
        return f"[{self.type.capitalize()} message]"

    def content_dict(self) -> Dict[str, Any]:
        """Raw content block for the message type."""
        block = getattr(self, self.type, None)
        if isinstance(block, BaseModel):
            return block.model_dump(by_alias=True, exclude_none=True)
        if isinstance(block, list):
            return {"items": block}
        return {}


# ============================================================================
# Delivery statuses
# ============================================================================


class DeliveryStatus(str, Enum):
    """Status values reported by the provider for outbound messages."""

    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


class MessageStatus(str, Enum):
    """Status of a stored message record."""

    PENDING = "pending"
    RECEIVED = "received"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


_STATUS_RANK = {
    MessageStatus.PENDING: 0,
    MessageStatus.RECEIVED: 0,
    MessageStatus.SENT: 1,
    MessageStatus.DELIVERED: 2,
    MessageStatus.READ: 3,
}


def is_status_advance(current: Optional[MessageStatus], new: MessageStatus) -> bool:
    """
    Check whether ``new`` moves a record forward.

    Progression is pending < sent < delivered < read. ``failed`` is terminal
    and may only replace pending or sent; nothing replaces it. Repeating the
    current status is not an advance, which makes updates idempotent.
    """
    if current is None:
        return True
    if current == MessageStatus.FAILED:
        return False
    if new == MessageStatus.FAILED:
        return current in (MessageStatus.PENDING, MessageStatus.SENT)
    return _STATUS_RANK[new] > _STATUS_RANK[current]


class StatusError(BaseModel):
    code: Optional[int] = None
    title: Optional[str] = None
    message: Optional[str] = None
    error_data: Optional[Dict[str, Any]] = None

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="ignore")


class StatusUpdate(BaseModel):
    """Delivery status notification for an outbound message"""

    id: str
    status: DeliveryStatus
    timestamp: str
    recipient_id: Optional[str] = None
    errors: List[StatusError] = Field(default_factory=list)

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="ignore")


# ============================================================================
# Webhook envelope
# ============================================================================


class Contact(BaseModel):
    wa_id: str
    profile: Dict[str, str] = Field(default_factory=dict)

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="ignore")


class ChangeMetadata(BaseModel):
    display_phone_number: Optional[str] = None
    phone_number_id: Optional[str] = None


class ChangeValue(BaseModel):
    messaging_product: Optional[str] = None
    metadata: Optional[ChangeMetadata] = None
    # Items stay raw so one malformed item fails alone, not the whole delivery
    contacts: List[Any] = Field(default_factory=list)
    messages: List[Any] = Field(default_factory=list)
    statuses: List[Any] = Field(default_factory=list)

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="allow")

    def contact_name(self, wa_id: str) -> Optional[str]:
        """Profile name of the contact with ``wa_id``, if reported."""
        for raw in self.contacts:
            if isinstance(raw, dict) and raw.get("wa_id") == wa_id:
                profile = raw.get("profile") or {}
                return profile.get("name") if isinstance(profile, dict) else None
        return None


class Change(BaseModel):
    field: str
    value: ChangeValue


class Entry(BaseModel):
    id: str
    changes: List[Change]


class WebhookPayload(BaseModel):
    """Webhook notification envelope"""

    object: str
    entry: List[Entry]

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="ignore")


# ============================================================================
# Records handed to the storage collaborator
# ============================================================================


def parse_provider_timestamp(value: Optional[str]) -> datetime:
    """Convert a provider unix timestamp (seconds, as string) to an aware datetime."""
    try:
        return datetime.fromtimestamp(int(value), UTC)  # type: ignore[arg-type]
    except (TypeError, ValueError, OverflowError, OSError):
        return datetime.now(UTC)


class MessageRecord(BaseModel):
    """Message as persisted by the storage collaborator"""

    id: str
    direction: Literal["inbound", "outbound"]
    sender: Optional[str] = None
    recipient: Optional[str] = None
    type: str
    content: str = ""
    payload: Dict[str, Any] = Field(default_factory=dict)
    contact_name: Optional[str] = None
    reply_to_id: Optional[str] = None
    status: MessageStatus
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    status_updated_at: Optional[datetime] = None
    error: Optional[str] = None

    @classmethod
    def from_inbound(cls, message: InboundMessage, contact_name: Optional[str] = None) -> "MessageRecord":
        return cls(
            id=message.id,
            direction="inbound",
            sender=message.from_,
            type=message.type,
            content=message.content_summary(),
            payload=message.content_dict(),
            contact_name=contact_name,
            reply_to_id=message.context.id if message.context else None,
            status=MessageStatus.RECEIVED,
            timestamp=parse_provider_timestamp(message.timestamp),
        )


# ============================================================================
# Operation results
# ============================================================================


class SendResult(BaseModel):
    """Outcome of an outbound send"""

    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    error_code: Optional[str] = None
    retryable: Optional[bool] = None
    attempts: Optional[int] = None


class ReadResult(BaseModel):
    """Outcome of a mark-as-read call"""

    success: bool
    error: Optional[str] = None
    error_kind: Optional[str] = None
    error_code: Optional[str] = None
    retryable: Optional[bool] = None


class WebhookResult(BaseModel):
    """Outcome of processing one webhook delivery"""

    success: bool = True
    processed_messages: int = 0
    processed_statuses: int = 0
    errors: List[str] = Field(default_factory=list)
