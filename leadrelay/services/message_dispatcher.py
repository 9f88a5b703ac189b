"""
Message Dispatcher

Outbound path of the messaging core. Every send goes through the same
pipeline:

1. validate input and configuration
2. admit through the per-recipient rate limiter
3. call the provider through the circuit breaker, wrapped in the recovery
   manager's retry loop
4. persist the sent message and update health counters

Failures never escape as exceptions: they are logged, counted and returned
as ``SendResult`` / ``ReadResult`` values carrying the error kind and code.
"""

from functools import partial
from typing import Any, Awaitable, Callable, TypeVar

from leadrelay.core.domain.errors import (
    ErrorKind,
    MessagingError,
    ProviderAPIError,
    ValidationError,
    error_fields,
)
from leadrelay.core.infrastructure.circuit_breaker import CircuitBreaker
from leadrelay.core.infrastructure.monitoring import HealthMonitor
from leadrelay.core.infrastructure.rate_limiter import SlidingWindowRateLimiter
from leadrelay.core.infrastructure.retry import RecoveryManager
from leadrelay.core.interfaces.storage import MessageStore
from leadrelay.core.shared.logger import LogContext, get_service_logger
from leadrelay.models.message import MessageRecord, MessageStatus, ReadResult, SendResult
from leadrelay.services.whatsapp_service import WhatsAppService

logger = get_service_logger("message_dispatcher")

T = TypeVar("T")


class MessageDispatcher:
    """
    Sends text messages, template messages and read receipts.

    Example:
        ```python
        result = await dispatcher.send_text("+15550002", "hi")
        if not result.success and result.retryable:
            schedule_retry(result)
        ```
    """

    def __init__(
        self,
        client: WhatsAppService,
        rate_limiter: SlidingWindowRateLimiter,
        circuit_breaker: CircuitBreaker,
        recovery: RecoveryManager,
        health_monitor: HealthMonitor,
        store: MessageStore | None = None,
        max_retries: int | None = None,
        base_delay_ms: int | None = None,
    ):
        """
        Initialize the dispatcher.

        Args:
            client: Provider client
            rate_limiter: Per-recipient admission control
            circuit_breaker: Breaker guarding the provider
            recovery: Retry manager for transient provider failures
            health_monitor: Process counters
            store: Storage collaborator for sent messages (optional)
            max_retries: Override of the recovery manager's retry count
            base_delay_ms: Override of the recovery manager's base delay
        """
        self.client = client
        self.rate_limiter = rate_limiter
        self.circuit_breaker = circuit_breaker
        self.recovery = recovery
        self.health_monitor = health_monitor
        self.store = store
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms

    def _new_context(self, recipient: str | None = None, message_id: str | None = None) -> LogContext:
        return LogContext.new(
            "msg",
            recipient=recipient,
            message_id=message_id,
            phone_number_id=self.client.phone_number_id or None,
        )

    def _ensure_configured(self, context: LogContext) -> None:
        if not self.client.is_configured:
            raise ValidationError(
                "Missing WhatsApp configuration (phone number id or access token)",
                field="credentials",
                context=context,
            )

    @staticmethod
    def _require(value: Any, field: str, context: LogContext) -> None:
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValidationError(f"{field} is required", field=field, context=context)

    async def _call_provider(
        self,
        operation_name: str,
        call: Callable[[], Awaitable[T]],
        context: LogContext,
        max_retries: int | None = None,
    ) -> T:
        return await self.recovery.execute_with_retry(
            partial(self.circuit_breaker.execute, call),
            operation_name,
            max_retries=self.max_retries if max_retries is None else max_retries,
            base_delay_ms=self.base_delay_ms,
            context=context,
        )

    def _record_failure(self, operation_name: str, error: Exception, context: LogContext) -> MessagingError:
        """Log and count a failed operation. Returns the error as a MessagingError."""
        if not isinstance(error, MessagingError):
            logger.bind(context).exception(f"{operation_name} failed unexpectedly", **error_fields(error))
            error = ProviderAPIError(
                f"Unexpected error: {error}",
                code="INTERNAL_ERROR",
                retryable=False,
                context=context,
            )
        else:
            logger.bind(context).error(f"{operation_name} failed", **error_fields(error))

        if error.attempts is None:
            # Validation and admission failures never reach the provider
            error.attempts = 0 if error.kind in (ErrorKind.VALIDATION, ErrorKind.RATE_LIMIT) else 1
        self.health_monitor.increment_errors()
        return error

    async def _store_sent(self, record: MessageRecord, context: LogContext) -> None:
        if self.store is None:
            return
        try:
            await self.store.store_sent_message(record)
        except Exception as e:
            # The provider already accepted the message; reporting failure would invite a duplicate send
            logger.bind(context).error("Failed to store sent message", **error_fields(e))

    async def _send(
        self,
        operation_name: str,
        to: str,
        call: Callable[[], Awaitable[str]],
        record_fields: dict[str, Any],
        context: LogContext,
        max_retries: int | None = None,
    ) -> SendResult:
        try:
            self._ensure_configured(context)
            self.rate_limiter.check(to, context)
            message_id = await self._call_provider(operation_name, call, context, max_retries)
        except Exception as e:
            error = self._record_failure(operation_name, e, context)
            return SendResult(
                success=False,
                error=error.message,
                error_kind=error.kind.value,
                error_code=error.code,
                retryable=error.retryable,
                attempts=error.attempts,
            )

        context = context.with_fields(message_id=message_id)
        await self._store_sent(
            MessageRecord(
                id=message_id,
                direction="outbound",
                sender=self.client.phone_number_id or None,
                recipient=to,
                status=MessageStatus.SENT,
                **record_fields,
            ),
            context,
        )
        self.health_monitor.increment_messages_sent()
        logger.bind(context).info(f"{operation_name} succeeded")
        return SendResult(success=True, message_id=message_id)

    async def send_text(
        self,
        to: str,
        text: str,
        reply_to_id: str | None = None,
        max_retries: int | None = None,
    ) -> SendResult:
        """
        Send a text message.

        Args:
            to: Recipient phone number
            text: Message body
            reply_to_id: Provider id of the message being replied to
            max_retries: Retry count for this call; 0 sends a single attempt

        Returns:
            SendResult with the provider message id on success
        """
        context = self._new_context(recipient=to)
        try:
            self._require(to, "to", context)
            self._require(text, "text", context)
        except ValidationError as e:
            return self._validation_result(e, "send_text", context)

        return await self._send(
            "send_text",
            to,
            partial(self.client.send_text, to, text, reply_to_id, context=context),
            {"type": "text", "content": text, "reply_to_id": reply_to_id},
            context,
            max_retries,
        )

    async def send_template(
        self,
        to: str,
        template_name: str,
        language_code: str = "en_US",
        components: list[dict[str, Any]] | None = None,
    ) -> SendResult:
        """
        Send a pre-approved template message.

        Args:
            to: Recipient phone number
            template_name: Name of the approved template
            language_code: Template language
            components: Template parameter components
        """
        context = self._new_context(recipient=to)
        try:
            self._require(to, "to", context)
            self._require(template_name, "template_name", context)
            self._require(language_code, "language_code", context)
        except ValidationError as e:
            return self._validation_result(e, "send_template", context)

        return await self._send(
            "send_template",
            to,
            partial(
                self.client.send_template,
                to,
                template_name,
                language_code,
                components,
                context=context,
            ),
            {
                "type": "template",
                "content": template_name,
                "payload": {"language": language_code, "components": components or []},
            },
            context,
        )

    async def mark_as_read(self, message_id: str, max_retries: int | None = None) -> ReadResult:
        """Send a read receipt for an inbound message."""
        context = self._new_context(message_id=message_id)
        try:
            self._require(message_id, "message_id", context)
            self._ensure_configured(context)
            await self._call_provider(
                "mark_as_read",
                partial(self.client.mark_as_read, message_id, context=context),
                context,
                max_retries,
            )
        except Exception as e:
            error = self._record_failure("mark_as_read", e, context)
            return ReadResult(
                success=False,
                error=error.message,
                error_kind=error.kind.value,
                error_code=error.code,
                retryable=error.retryable,
            )

        logger.bind(context).debug("Message marked as read")
        return ReadResult(success=True)

    def _validation_result(self, error: ValidationError, operation_name: str, context: LogContext) -> SendResult:
        error = self._record_failure(operation_name, error, context)
        return SendResult(
            success=False,
            error=error.message,
            error_kind=error.kind.value,
            error_code=error.code,
            retryable=False,
            attempts=0,
        )
