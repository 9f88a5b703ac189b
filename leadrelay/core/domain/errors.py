"""
Messaging Errors

Typed error taxonomy for the delivery core. Every failure that leaves a
component is one of these, so callers can branch on ``kind`` (or on the
concrete class) instead of parsing messages.

Translation of raw provider responses into this taxonomy lives in
``map_provider_error``.
"""

from enum import Enum
from typing import Any

from leadrelay.core.shared.logger import LogContext


class ErrorKind(str, Enum):
    """Discriminator of the error taxonomy."""

    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    RATE_LIMIT = "rate_limit"
    PROVIDER_API = "provider_api"


class MessagingError(Exception):
    """
    Base exception for all messaging errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        kind: Category used by callers to branch
        retryable: True when the same request may succeed if tried later
        attempts: Number of attempts made (set by the recovery manager)
        context: LogContext of the operation that failed
    """

    kind: ErrorKind = ErrorKind.PROVIDER_API
    default_code = "MESSAGING_ERROR"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        retryable: bool = False,
        details: dict[str, Any] | None = None,
        context: LogContext | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.retryable = retryable
        self.details = details or {}
        self.context = context
        self.attempts: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses and logs."""
        data: dict[str, Any] = {
            "error": self.code,
            "kind": self.kind.value,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }
        if self.attempts is not None:
            data["attempts"] = self.attempts
        if self.context is not None:
            data["correlation_id"] = self.context.correlation_id
        return data

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


class ValidationError(MessagingError):
    """Malformed input or missing configuration. Never retried."""

    kind = ErrorKind.VALIDATION
    default_code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
        context: LogContext | None = None,
    ):
        details = dict(details or {})
        if field:
            details["field"] = field
        super().__init__(message, retryable=False, details=details, context=context)
        self.field = field


class AuthenticationError(MessagingError):
    """Credentials rejected by the provider. Never retried."""

    kind = ErrorKind.AUTHENTICATION
    default_code = "AUTHENTICATION_ERROR"

    def __init__(
        self,
        message: str = "Authentication failed",
        details: dict[str, Any] | None = None,
        context: LogContext | None = None,
    ):
        super().__init__(message, retryable=False, details=details, context=context)


class RateLimitError(MessagingError):
    """
    Local admission control refused the request.

    The caller may retry after ``retry_after`` seconds, but this layer never
    does so itself.
    """

    kind = ErrorKind.RATE_LIMIT
    default_code = "RATE_LIMIT_EXCEEDED"

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        key: str | None = None,
        retry_after: float | None = None,
        context: LogContext | None = None,
    ):
        details: dict[str, Any] = {}
        if key:
            details["key"] = key
        if retry_after is not None:
            details["retry_after"] = round(retry_after, 3)
        super().__init__(message, retryable=True, details=details, context=context)
        self.key = key
        self.retry_after = retry_after


class ProviderAPIError(MessagingError):
    """The provider answered with an error, or could not be reached."""

    kind = ErrorKind.PROVIDER_API
    default_code = "PROVIDER_API_ERROR"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        retryable: bool = True,
        status_code: int | None = None,
        provider_code: int | None = None,
        provider_subcode: int | None = None,
        rate_limited: bool = False,
        details: dict[str, Any] | None = None,
        context: LogContext | None = None,
    ):
        details = dict(details or {})
        if status_code is not None:
            details["status_code"] = status_code
        if provider_code is not None:
            details["provider_code"] = provider_code
        if provider_subcode is not None:
            details["provider_subcode"] = provider_subcode
        if rate_limited:
            details["rate_limited"] = True
        super().__init__(message, code=code, retryable=retryable, details=details, context=context)
        self.status_code = status_code
        self.provider_code = provider_code
        self.provider_subcode = provider_subcode
        self.rate_limited = rate_limited


class CircuitOpenError(ProviderAPIError):
    """
    The circuit breaker rejected the call without contacting the provider.

    Reported to callers as retryable (try again after the cooldown) but the
    recovery manager does not retry it.
    """

    default_code = "CIRCUIT_OPEN"

    def __init__(
        self,
        message: str = "circuit open",
        breaker: str | None = None,
        retry_after: float | None = None,
        context: LogContext | None = None,
    ):
        details: dict[str, Any] = {}
        if breaker:
            details["breaker"] = breaker
        if retry_after is not None:
            details["retry_after"] = round(retry_after, 3)
        super().__init__(message, retryable=True, details=details, context=context)
        self.breaker = breaker
        self.retry_after = retry_after


# Meta Graph API error codes
# https://developers.facebook.com/docs/whatsapp/cloud-api/support/error-codes
AUTH_ERROR_CODES = frozenset({102, 190})
RATE_LIMIT_ERROR_CODES = frozenset({4, 17, 613, 80007, 130429, 131048})
TRANSIENT_ERROR_CODES = frozenset({1, 2, 131000, 131016, 131026})
PERMANENT_ERROR_CODES = frozenset({368, 131009, 131047, 131051, 131056})


def map_provider_error(
    status_code: int,
    body: Any = None,
    context: LogContext | None = None,
) -> MessagingError:
    """
    Translate a non-2xx provider response into a ``MessagingError``.

    Args:
        status_code: HTTP status of the response
        body: Decoded JSON body (may be None or any shape)
        context: LogContext to attach to the error

    Returns:
        AuthenticationError for rejected credentials, ProviderAPIError otherwise
    """
    error_body = body.get("error") if isinstance(body, dict) else None
    if not isinstance(error_body, dict):
        error_body = {}

    message = error_body.get("message") or f"HTTP {status_code}"
    provider_code = error_body.get("code")
    provider_subcode = error_body.get("error_subcode")
    if not isinstance(provider_code, int):
        provider_code = None
    if not isinstance(provider_subcode, int):
        provider_subcode = None

    details = {}
    if error_body.get("fbtrace_id"):
        details["fbtrace_id"] = error_body["fbtrace_id"]
    if error_body.get("type"):
        details["type"] = error_body["type"]

    if provider_code in AUTH_ERROR_CODES or status_code == 401:
        return AuthenticationError(
            message,
            details={**details, "status_code": status_code, "provider_code": provider_code},
            context=context,
        )

    if provider_code in RATE_LIMIT_ERROR_CODES or status_code == 429:
        return ProviderAPIError(
            message,
            code="PROVIDER_RATE_LIMITED",
            retryable=True,
            status_code=status_code,
            provider_code=provider_code,
            provider_subcode=provider_subcode,
            rate_limited=True,
            details=details,
            context=context,
        )

    if provider_code in PERMANENT_ERROR_CODES:
        retryable = False
    elif provider_code in TRANSIENT_ERROR_CODES:
        retryable = True
    else:
        retryable = status_code >= 500 or status_code == 408

    return ProviderAPIError(
        message,
        retryable=retryable,
        status_code=status_code,
        provider_code=provider_code,
        provider_subcode=provider_subcode,
        details=details,
        context=context,
    )


def error_fields(error: BaseException) -> dict[str, Any]:
    """Structured log fields describing an error."""
    if isinstance(error, MessagingError):
        data: dict[str, Any] = {
            "error_kind": error.kind.value,
            "error_code": error.code,
            "error": error.message,
            "retryable": error.retryable,
        }
        if error.attempts is not None:
            data["attempts"] = error.attempts
        return data
    return {"error_type": type(error).__name__, "error": str(error)}
