# ============================================================================
# SCOPE: GLOBAL
# Description: HTTP client for the WhatsApp Cloud API (Graph API).
#              Maps provider error responses to MessagingError subclasses.
# ============================================================================
"""
WhatsApp Cloud API client.

Single Responsibility: one HTTP call per method, with errors mapped to the
messaging error taxonomy. Retry, circuit breaking and rate limiting are the
dispatcher's job, not this client's.

Uses a persistent AsyncClient (connection reuse, bounded timeout).
"""

import logging
from typing import Any

import httpx

from leadrelay.config.settings import Settings, get_settings
from leadrelay.core.domain.errors import ProviderAPIError, map_provider_error
from leadrelay.core.shared.logger import LogContext

logger = logging.getLogger(__name__)


def _mask(token: str) -> str:
    return f"***{token[-4:]}" if len(token) > 8 else "***"


class WhatsAppService:
    """
    Client for the WhatsApp Cloud API messages endpoint.

    Example:
        ```python
        async with WhatsAppService(settings) as client:
            response = await client.send_text("+15550001", "hello")
            message_id = response["messages"][0]["id"]
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the client.

        Args:
            settings: Application settings (defaults to the cached instance)
            transport: Optional httpx transport, e.g. ``httpx.MockTransport`` in tests
        """
        self.settings = settings or get_settings()
        self.base_url = self.settings.WHATSAPP_API_BASE.rstrip("/")
        self.version = self.settings.WHATSAPP_API_VERSION
        self.phone_number_id = self.settings.WHATSAPP_PHONE_NUMBER_ID
        self.access_token = self.settings.WHATSAPP_ACCESS_TOKEN
        self.timeout = self.settings.WHATSAPP_HTTP_TIMEOUT
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

        logger.info(
            f"WhatsApp client initialized: {self.base_url}/{self.version} "
            f"phone_id={self.phone_number_id or '<unset>'} token={_mask(self.access_token)}"
        )

    @property
    def is_configured(self) -> bool:
        """True when both the phone number id and the access token are set."""
        return bool(self.phone_number_id and self.access_token)

    async def initialize(self) -> None:
        """Initialize persistent HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def close(self) -> None:
        """Close HTTP client and release resources."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "WhatsAppService":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            await self.initialize()
        return self._client  # type: ignore

    def _get_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

    def _get_message_url(self) -> str:
        return f"{self.base_url}/{self.version}/{self.phone_number_id}/messages"

    async def _post(self, payload: dict[str, Any], context: LogContext | None = None) -> dict[str, Any]:
        """
        POST a payload to the messages endpoint.

        Returns:
            Decoded JSON body of a 2xx response

        Raises:
            AuthenticationError: Credentials rejected
            ProviderAPIError: Any other non-2xx response, timeout or transport failure
        """
        client = await self._ensure_client()
        url = self._get_message_url()

        try:
            response = await client.post(url, json=payload, headers=self._get_headers())
        except httpx.TimeoutException as e:
            raise ProviderAPIError(
                f"Timeout calling WhatsApp API after {self.timeout}s",
                code="TIMEOUT",
                retryable=True,
                context=context,
            ) from e
        except httpx.TransportError as e:
            raise ProviderAPIError(
                f"Network error calling WhatsApp API: {e}",
                code="NETWORK_ERROR",
                retryable=True,
                context=context,
            ) from e

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.is_success:
            logger.debug(f"WhatsApp API {response.status_code} for {payload.get('type', 'status')}")
            return body if isinstance(body, dict) else {}

        error = map_provider_error(response.status_code, body, context=context)
        logger.warning(
            f"WhatsApp API error {response.status_code}: {error.message}",
            extra={"extra_data": {"status_code": response.status_code, **error.to_dict()}},
        )
        raise error

    @staticmethod
    def _extract_message_id(body: dict[str, Any], context: LogContext | None) -> str:
        messages = body.get("messages")
        if isinstance(messages, list) and messages and isinstance(messages[0], dict) and messages[0].get("id"):
            return str(messages[0]["id"])
        raise ProviderAPIError(
            "WhatsApp API response did not include a message id",
            code="INVALID_PROVIDER_RESPONSE",
            retryable=False,
            context=context,
        )

    async def send_text(
        self,
        to: str,
        text: str,
        reply_to_id: str | None = None,
        context: LogContext | None = None,
    ) -> str:
        """
        Send a text message.

        Returns:
            Provider message id
        """
        payload: dict[str, Any] = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": "text",
            "text": {"preview_url": False, "body": text},
        }
        if reply_to_id:
            payload["context"] = {"message_id": reply_to_id}

        body = await self._post(payload, context)
        return self._extract_message_id(body, context)

    async def send_template(
        self,
        to: str,
        template_name: str,
        language_code: str = "en_US",
        components: list[dict[str, Any]] | None = None,
        context: LogContext | None = None,
    ) -> str:
        """
        Send a pre-approved template message.

        Returns:
            Provider message id
        """
        template: dict[str, Any] = {"name": template_name, "language": {"code": language_code}}
        if components:
            template["components"] = components

        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": "template",
            "template": template,
        }
        body = await self._post(payload, context)
        return self._extract_message_id(body, context)

    async def mark_as_read(self, message_id: str, context: LogContext | None = None) -> None:
        """Send a read receipt for an inbound message."""
        payload = {
            "messaging_product": "whatsapp",
            "status": "read",
            "message_id": message_id,
        }
        await self._post(payload, context)

    def verify_configuration(self) -> dict[str, Any]:
        """Report missing configuration without exposing secrets."""
        issues = []
        if not self.access_token:
            issues.append("WHATSAPP_ACCESS_TOKEN is not configured")
        if not self.phone_number_id:
            issues.append("WHATSAPP_PHONE_NUMBER_ID is not configured")
        if not self.base_url:
            issues.append("WHATSAPP_API_BASE is not configured")

        return {
            "valid": not issues,
            "issues": issues,
            "config": {
                "base_url": self.base_url,
                "version": self.version,
                "phone_number_id": self.phone_number_id,
                "token_configured": bool(self.access_token),
            },
        }
