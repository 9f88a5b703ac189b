"""
Shared pytest fixtures for all tests.

Provides settings, a controllable clock, a recording sleep and a scripted
stand-in for the WhatsApp Cloud API served through ``httpx.MockTransport``.
"""

import os
from typing import Any, Callable

import httpx
import pytest
import pytest_asyncio

from leadrelay.config.settings import Settings
from leadrelay.core.container import MessagingContainer
from tests.utils import FakeClock, ProviderStub, RecordingSleep, make_settings

# Ensure test environment
os.environ["ENVIRONMENT"] = "test"


# ============================================================================
# TIME FIXTURES
# ============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


# ============================================================================
# PROVIDER FIXTURES
# ============================================================================


@pytest.fixture
def provider() -> ProviderStub:
    return ProviderStub()


@pytest.fixture
def mock_transport(provider: ProviderStub) -> httpx.MockTransport:
    return httpx.MockTransport(provider)


# ============================================================================
# APPLICATION FIXTURES
# ============================================================================


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def container_factory(
    mock_transport: httpx.MockTransport,
    recording_sleep: RecordingSleep,
) -> Callable[..., MessagingContainer]:
    """Build a container on the mock transport with the given setting overrides."""

    def _factory(store: Any = None, auto_responder: Any = None, **overrides: Any) -> MessagingContainer:
        return MessagingContainer(
            make_settings(**overrides),
            store=store,
            auto_responder=auto_responder,
            transport=mock_transport,
            sleep=recording_sleep,
        )

    return _factory


@pytest_asyncio.fixture
async def make_container(container_factory):
    """Like ``container_factory`` but shuts every built container down afterwards."""
    built: list[MessagingContainer] = []

    def _build(**kwargs: Any) -> MessagingContainer:
        container = container_factory(**kwargs)
        built.append(container)
        return container

    yield _build
    for container in built:
        await container.shutdown()


@pytest_asyncio.fixture
async def container(make_container):
    """Container with default test settings."""
    return make_container()
