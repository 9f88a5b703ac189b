# ============================================================================
# SCOPE: GLOBAL
# Description: Inbound path of the messaging core. Validates webhook
#              envelopes and processes messages and status updates item by item.
# ============================================================================
"""
Webhook Processor.

The provider expects a fast HTTP 200 for every delivery and redelivers on
anything else, so only a structurally invalid envelope is rejected. Failures
of individual messages or statuses are logged, counted and reported in
``WebhookResult.errors`` while their siblings are still processed.

Per message, in payload order:
    rate limit on sender -> store -> auto-response hook -> mark as read

Replies sent while the delivery waits for its acknowledgement (auto-responses,
read receipts, error apologies) make a single provider attempt, and the whole
delivery is bounded by a processing timeout. A message that fails after its
sender is known gets an apology unless the sender was rate limited.

Per status:
    idempotent status update through the storage collaborator
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError as PydanticValidationError

from leadrelay.core.domain.errors import (
    ErrorKind,
    MessagingError,
    RateLimitError,
    ValidationError,
    error_fields,
)
from leadrelay.core.infrastructure.monitoring import HealthMonitor
from leadrelay.core.infrastructure.rate_limiter import SlidingWindowRateLimiter
from leadrelay.core.shared.logger import LogContext, get_service_logger
from leadrelay.models.message import (
    WHATSAPP_BUSINESS_ACCOUNT,
    ChangeValue,
    DeliveryStatus,
    InboundMessage,
    MessageRecord,
    MessageStatus,
    StatusUpdate,
    WebhookPayload,
    WebhookResult,
    parse_provider_timestamp,
)

if TYPE_CHECKING:
    from leadrelay.core.interfaces.auto_response import AutoResponder
    from leadrelay.core.interfaces.storage import MessageStore
    from leadrelay.services.message_dispatcher import MessageDispatcher

logger = get_service_logger("webhook_processor")

ERROR_REPLIES: dict[ErrorKind, str] = {
    ErrorKind.VALIDATION: "Sorry, I didn't understand that message. Could you please try again?",
}
DEFAULT_ERROR_REPLY = "Sorry, I'm experiencing technical difficulties. Please try again later."


def error_reply_text(error: Exception) -> str:
    """Apology sent to a sender whose message failed with ``error``."""
    if isinstance(error, MessagingError):
        return ERROR_REPLIES.get(error.kind, DEFAULT_ERROR_REPLY)
    return DEFAULT_ERROR_REPLY


def _describe_validation_error(error: PydanticValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "payload"
    return f"{location}: {first.get('msg', 'invalid value')}"


class WebhookProcessor:
    """
    Processes WhatsApp webhook deliveries.

    Usage:
        processor = WebhookProcessor(store, dispatcher, limiter, monitor, auto_responder)
        result = await processor.process_incoming_webhook(raw_json)
    """

    def __init__(
        self,
        store: MessageStore,
        dispatcher: MessageDispatcher,
        rate_limiter: SlidingWindowRateLimiter,
        health_monitor: HealthMonitor,
        auto_responder: AutoResponder | None = None,
        error_replies: bool = True,
        processing_timeout: float | None = None,
    ):
        self._store = store
        self._dispatcher = dispatcher
        self._rate_limiter = rate_limiter
        self._health = health_monitor
        self._auto_responder = auto_responder
        self._error_replies = error_replies
        self._processing_timeout = processing_timeout

    def validate_payload(self, payload: Any) -> WebhookPayload:
        """
        Check the envelope structure.

        Raises:
            ValidationError: If the payload is not a WhatsApp Business webhook
        """
        if isinstance(payload, WebhookPayload):
            parsed = payload
        else:
            if not isinstance(payload, dict):
                raise ValidationError("Webhook payload must be a JSON object", field="payload")
            try:
                parsed = WebhookPayload.model_validate(payload)
            except PydanticValidationError as e:
                raise ValidationError(
                    f"Invalid webhook structure ({_describe_validation_error(e)})",
                    field="payload",
                ) from e

        if parsed.object != WHATSAPP_BUSINESS_ACCOUNT:
            raise ValidationError(
                f"Unsupported webhook object: {parsed.object!r}",
                field="object",
            )
        if not parsed.entry:
            raise ValidationError("Webhook payload has no entries", field="entry")
        return parsed

    async def process_incoming_webhook(
        self,
        payload: Any,
        context: LogContext | None = None,
    ) -> WebhookResult:
        """
        Process one webhook delivery.

        Args:
            payload: Decoded JSON body or an already validated WebhookPayload
            context: LogContext of the HTTP request

        Returns:
            WebhookResult with processed counts and per-item errors

        Raises:
            ValidationError: If the envelope is structurally invalid
        """
        context = context or LogContext.new("webhook")
        log = logger.bind(context)
        start_time = time.perf_counter()

        parsed = self.validate_payload(payload)
        result = WebhookResult()

        try:
            await asyncio.wait_for(self._process_entries(parsed, result, context), timeout=self._processing_timeout)
        except asyncio.TimeoutError:
            self._health.increment_errors()
            timeout_error = f"Webhook processing timed out after {self._processing_timeout}s"
            log.error(timeout_error)
            result.errors.append(timeout_error)

        result.success = not result.errors
        log.info(
            "Webhook processed",
            processed_messages=result.processed_messages,
            processed_statuses=result.processed_statuses,
            errors=len(result.errors),
            elapsed_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        return result

    async def _process_entries(self, parsed: WebhookPayload, result: WebhookResult, context: LogContext) -> None:
        """Process every item of the delivery in order, accumulating into ``result``."""
        for entry in parsed.entry:
            for change in entry.changes:
                if change.field != "messages":
                    logger.bind(context).debug(
                        f"Ignoring webhook change field '{change.field}'", entry_id=entry.id
                    )
                    continue

                value = change.value
                change_context = context
                if value.metadata and value.metadata.phone_number_id:
                    change_context = context.with_fields(phone_number_id=value.metadata.phone_number_id)

                for raw_message in value.messages:
                    error = await self._process_message(raw_message, value, change_context)
                    if error is None:
                        result.processed_messages += 1
                    else:
                        result.errors.append(error)

                for raw_status in value.statuses:
                    error = await self._process_status(raw_status, change_context)
                    if error is None:
                        result.processed_statuses += 1
                    else:
                        result.errors.append(error)

    async def process_in_background(self, payload: WebhookPayload, context: LogContext) -> None:
        """
        Process a validated delivery after the HTTP response has been sent.

        Designed to be called via ``BackgroundTasks.add_task()``.
        """
        try:
            result = await self.process_incoming_webhook(payload, context)
        except Exception as e:
            logger.bind(context).exception("Background webhook processing failed", **error_fields(e))
            self._health.increment_errors()
            return
        if result.errors:
            logger.bind(context).warning("Background webhook processing had errors", errors=result.errors)

    def _item_failed(self, kind: str, item_id: str, reason: str, context: LogContext, **fields: Any) -> str:
        self._health.increment_errors()
        message = f"Failed to process {kind} {item_id}: {reason}"
        logger.bind(context).error(message, **fields)
        return message

    async def _process_message(
        self,
        raw_message: Any,
        value: ChangeValue,
        context: LogContext,
    ) -> str | None:
        """Process one inbound message. Returns an error description on failure."""
        raw_id = raw_message.get("id", "<unknown>") if isinstance(raw_message, dict) else "<unknown>"

        try:
            message = InboundMessage.model_validate(raw_message)
        except PydanticValidationError as e:
            error = self._item_failed(
                "message", raw_id, f"invalid message ({_describe_validation_error(e)})", context
            )
            sender = raw_message.get("from") if isinstance(raw_message, dict) else None
            if isinstance(sender, str) and sender:
                await self._send_error_reply(sender, ValidationError(error), context)
            return error

        context = context.with_fields(message_id=message.id, recipient=message.from_)
        log = logger.bind(context)

        try:
            self._rate_limiter.check(message.from_, context)
            record = MessageRecord.from_inbound(message, contact_name=value.contact_name(message.from_))
            await self._store.store_incoming_message(record)
        except Exception as e:
            reason = getattr(e, "message", None) or str(e)
            error = self._item_failed("message", message.id, reason, context, **error_fields(e))
            await self._send_error_reply(message.from_, e, context)
            return error

        log.info(f"Inbound {message.type} message stored", content_type=message.type)
        self._health.increment_messages_received()

        if self._auto_responder is not None:
            try:
                if self._auto_responder.matches(message):
                    await self._auto_responder.respond(message, context)
            except Exception as e:
                log.exception("Auto-response hook failed", **error_fields(e))

        read_result = await self._dispatcher.mark_as_read(message.id, max_retries=0)
        if not read_result.success:
            log.warning("Could not mark message as read", error=read_result.error)

        return None

    async def _send_error_reply(self, sender: str, error: Exception, context: LogContext) -> None:
        """Tell the sender their message could not be processed. Never raises."""
        if not self._error_replies or isinstance(error, RateLimitError):
            return
        log = logger.bind(context)
        try:
            reply = await self._dispatcher.send_text(sender, error_reply_text(error), max_retries=0)
        except Exception as e:
            log.exception("Error reply failed", **error_fields(e))
            return
        if not reply.success:
            log.warning("Could not send error reply", error=reply.error, error_kind=reply.error_kind)

    async def _process_status(self, raw_status: Any, context: LogContext) -> str | None:
        """Apply one delivery status update. Returns an error description on failure."""
        raw_id = raw_status.get("id", "<unknown>") if isinstance(raw_status, dict) else "<unknown>"

        try:
            status = StatusUpdate.model_validate(raw_status)
        except PydanticValidationError as e:
            return self._item_failed(
                "status", raw_id, f"invalid status ({_describe_validation_error(e)})", context
            )

        context = context.with_fields(message_id=status.id, recipient=status.recipient_id)
        log = logger.bind(context)

        error_text = None
        if status.errors:
            error_text = "; ".join(
                f"{err.code}: {err.title or err.message or 'unknown error'}" for err in status.errors
            )
            log.warning(
                f"Provider reported errors for message status {status.status.value}",
                provider_errors=[err.model_dump(exclude_none=True) for err in status.errors],
            )
        elif status.status == DeliveryStatus.FAILED:
            log.warning("Provider reported message delivery failed")

        try:
            changed = await self._store.update_message_status(
                status.id,
                MessageStatus(status.status.value),
                parse_provider_timestamp(status.timestamp),
                error_text,
            )
        except Exception as e:
            reason = getattr(e, "message", None) or str(e)
            return self._item_failed("status", status.id, reason, context, **error_fields(e))

        log.debug(f"Status {status.status.value} {'applied' if changed else 'ignored (not newer)'}")
        return None
