# ============================================================================
# SCOPE: GLOBAL
# Description: Dependency injection container for the messaging core.
#              Builds one instance of every process-scoped component.
# ============================================================================
"""
Dependency Injection Container.

All shared state (rate limiter windows, circuit breaker, health counters,
HTTP connection pool) lives in the instances created here. The container is
built once per application and handed to routes through ``app.state``;
nothing reaches for module-level globals.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

import httpx

from leadrelay.config.settings import Settings
from leadrelay.core.infrastructure.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from leadrelay.core.infrastructure.monitoring import HealthMonitor
from leadrelay.core.infrastructure.rate_limiter import RateLimitConfig, SlidingWindowRateLimiter
from leadrelay.core.infrastructure.retry import RecoveryManager, RetryConfig
from leadrelay.core.interfaces.auto_response import AutoResponder
from leadrelay.core.interfaces.storage import MessageStore
from leadrelay.services.auto_responder import KeywordAutoResponder
from leadrelay.services.message_dispatcher import MessageDispatcher
from leadrelay.services.message_store import InMemoryMessageStore
from leadrelay.services.webhook.webhook_processor import WebhookProcessor
from leadrelay.services.whatsapp_service import WhatsAppService

logger = logging.getLogger(__name__)


class MessagingContainer:
    """
    Wires the messaging components together.

    Collaborators (storage, auto-responder, HTTP transport, sleep) can be
    injected; everything else is built from settings.
    """

    def __init__(
        self,
        settings: Settings,
        store: MessageStore | None = None,
        auto_responder: AutoResponder | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize container.

        Args:
            settings: Application settings
            store: Storage collaborator (defaults to InMemoryMessageStore)
            auto_responder: Auto-response hook (defaults to KeywordAutoResponder)
            transport: httpx transport for the provider client
            sleep: Coroutine used by the recovery manager between attempts
        """
        self.settings = settings

        rate_config = RateLimitConfig(
            max_requests=settings.RATE_LIMIT_MAX_REQUESTS,
            window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
        )
        self.inbound_rate_limiter = SlidingWindowRateLimiter("inbound", rate_config)
        self.outbound_rate_limiter = SlidingWindowRateLimiter("outbound", rate_config)

        self.circuit_breaker = CircuitBreaker(
            "whatsapp_api",
            CircuitBreakerConfig(
                failure_threshold=settings.CIRCUIT_BREAKER_FAILURE_THRESHOLD,
                recovery_timeout=settings.CIRCUIT_BREAKER_RECOVERY_TIMEOUT,
            ),
        )
        self.recovery = RecoveryManager(
            RetryConfig(
                max_retries=settings.RETRY_MAX_RETRIES,
                base_delay_ms=settings.RETRY_BASE_DELAY_MS,
                max_delay_ms=settings.RETRY_MAX_DELAY_MS,
                jitter=settings.RETRY_JITTER,
            ),
            sleep=sleep,
        )
        self.health_monitor = HealthMonitor(error_rate_threshold=settings.HEALTH_ERROR_RATE_THRESHOLD)
        self.store: MessageStore = store or InMemoryMessageStore()
        self.client = WhatsAppService(settings, transport=transport)

        self.dispatcher = MessageDispatcher(
            client=self.client,
            rate_limiter=self.outbound_rate_limiter,
            circuit_breaker=self.circuit_breaker,
            recovery=self.recovery,
            health_monitor=self.health_monitor,
            store=self.store,
        )

        if auto_responder is None and settings.AUTO_RESPONSE_ENABLED:
            auto_responder = KeywordAutoResponder(self.dispatcher)
        self.auto_responder = auto_responder

        self.webhook_processor = WebhookProcessor(
            store=self.store,
            dispatcher=self.dispatcher,
            rate_limiter=self.inbound_rate_limiter,
            health_monitor=self.health_monitor,
            auto_responder=self.auto_responder,
            error_replies=settings.ERROR_REPLY_ENABLED,
            processing_timeout=settings.WEBHOOK_PROCESSING_TIMEOUT_SECONDS,
        )

        logger.info("MessagingContainer initialized")

    def get_health_status(self) -> dict:
        """Health summary including configuration and reliability component status."""
        status = self.health_monitor.get_health_status()
        status.update(
            {
                "service": "whatsapp-message-service",
                "config": {
                    "has_access_token": bool(self.settings.WHATSAPP_ACCESS_TOKEN),
                    "has_phone_number_id": bool(self.settings.WHATSAPP_PHONE_NUMBER_ID),
                    "has_verify_token": bool(self.settings.WHATSAPP_VERIFY_TOKEN),
                    "has_app_secret": bool(self.settings.META_APP_SECRET),
                    "api_url": f"{self.client.base_url}/{self.client.version}",
                },
                "circuit_breaker": self.circuit_breaker.get_status(),
                "rate_limiters": {
                    "inbound": self.inbound_rate_limiter.get_stats(),
                    "outbound": self.outbound_rate_limiter.get_stats(),
                },
                "recovery": self.recovery.stats.to_dict(),
            }
        )
        return status

    async def shutdown(self) -> None:
        """Release resources held by the container."""
        await self.client.close()
        logger.info("MessagingContainer shut down")
