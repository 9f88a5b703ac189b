"""
Application factory for FastAPI.

Builds the application around a ``MessagingContainer`` so tests can supply
their own container (fake storage, mock HTTP transport, instant sleep).
"""

import logging

from fastapi import FastAPI

from leadrelay.api.exception_handlers import register_exception_handlers
from leadrelay.api.middleware.logging_middleware import RequestLoggingMiddleware
from leadrelay.api.router import api_router
from leadrelay.config.settings import Settings, get_settings
from leadrelay.core.container import MessagingContainer
from leadrelay.core.lifecycle import lifespan

logger = logging.getLogger(__name__)


class AppFactory:
    """
    Factory for creating and configuring FastAPI applications.

    Each configuration step is handled by a dedicated method.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        container: MessagingContainer | None = None,
    ) -> None:
        """
        Initialize app factory.

        Args:
            settings: Application settings (uses default if not provided)
            container: Pre-built container (built from settings if not provided)
        """
        self._settings = container.settings if container else (settings or get_settings())
        self._container = container or MessagingContainer(self._settings)

    def create_app(self) -> FastAPI:
        """
        Create and configure the FastAPI application.

        Returns:
            Configured FastAPI application instance.
        """
        app = self._create_base_app()
        app.state.container = self._container

        self._configure_middleware(app)
        self._configure_exception_handlers(app)
        self._configure_routes(app)
        self._configure_health_endpoint(app)

        logger.info(f"Application created: {self._settings.PROJECT_NAME}")
        return app

    def _create_base_app(self) -> FastAPI:
        return FastAPI(
            title=self._settings.PROJECT_NAME,
            description=self._settings.PROJECT_DESCRIPTION,
            version=self._settings.VERSION,
            docs_url=f"{self._settings.API_V1_STR}/docs" if self._settings.DEBUG else None,
            redoc_url=f"{self._settings.API_V1_STR}/redoc" if self._settings.DEBUG else None,
            lifespan=lifespan,
        )

    def _configure_middleware(self, app: FastAPI) -> None:
        app.add_middleware(RequestLoggingMiddleware)
        logger.info("Middleware configured")

    def _configure_exception_handlers(self, app: FastAPI) -> None:
        register_exception_handlers(app)

    def _configure_routes(self, app: FastAPI) -> None:
        app.include_router(api_router, prefix=self._settings.API_V1_STR)
        logger.info("Routes configured")

    def _configure_health_endpoint(self, app: FastAPI) -> None:
        """Add liveness endpoint (messaging health lives under the webhook router)."""

        @app.get("/health", tags=["health"])
        async def health_check() -> dict[str, str]:
            return {
                "status": "ok",
                "environment": self._settings.ENVIRONMENT,
            }


def create_app(
    settings: Settings | None = None,
    container: MessagingContainer | None = None,
) -> FastAPI:
    """
    Create FastAPI application using the factory.

    Args:
        settings: Optional settings override
        container: Optional pre-built container

    Returns:
        Configured FastAPI application
    """
    factory = AppFactory(settings, container)
    return factory.create_app()
