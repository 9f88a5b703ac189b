"""
Application lifecycle management using the FastAPI lifespan pattern.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from leadrelay.core.container import MessagingContainer

logger = logging.getLogger(__name__)


class LifecycleManager:
    """
    Manages application lifecycle events.

    Handles startup checks and graceful shutdown of the messaging container.
    """

    def __init__(self, container: MessagingContainer) -> None:
        self._container = container
        self._initialized = False

    async def startup(self) -> None:
        if self._initialized:
            logger.warning("Lifecycle already initialized, skipping startup")
            return

        logger.info("Starting application lifecycle...")
        self._verify_configurations()
        await self._container.client.initialize()
        self._initialized = True
        logger.info("Application lifecycle startup completed")

    def _verify_configurations(self) -> None:
        """Log missing configuration; the service still starts so /health can report it."""
        settings = self._container.settings
        report = self._container.client.verify_configuration()
        for issue in report["issues"]:
            logger.warning(f"Configuration issue: {issue}")
        if not settings.WHATSAPP_VERIFY_TOKEN:
            logger.warning("Configuration issue: WHATSAPP_VERIFY_TOKEN is not configured")
        if not settings.META_APP_SECRET:
            logger.warning("Configuration issue: META_APP_SECRET is not configured, webhooks will be rejected")

    async def shutdown(self) -> None:
        logger.info("Shutting down application...")
        await self._container.shutdown()
        self._initialized = False
        logger.info("Application shutdown completed")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Lifespan context manager bound to the container stored on ``app.state``."""
    manager = LifecycleManager(app.state.container)
    await manager.startup()
    try:
        yield
    finally:
        await manager.shutdown()
