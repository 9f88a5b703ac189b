"""Test utilities and helpers."""

from tests.utils.builders import (
    ACCESS_TOKEN,
    APP_SECRET,
    PHONE_NUMBER_ID,
    VERIFY_TOKEN,
    WebhookPayloadBuilder,
    make_settings,
    sign,
    status_update,
    text_message,
)
from tests.utils.fakes import FakeClock, ProviderStub, RecordingSleep, provider_error

__all__ = [
    # Builders
    "WebhookPayloadBuilder",
    "make_settings",
    "sign",
    "status_update",
    "text_message",
    "ACCESS_TOKEN",
    "APP_SECRET",
    "PHONE_NUMBER_ID",
    "VERIFY_TOKEN",
    # Fakes
    "FakeClock",
    "ProviderStub",
    "RecordingSleep",
    "provider_error",
]
