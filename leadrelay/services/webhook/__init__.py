# ============================================================================
# SCOPE: GLOBAL
# Description: Webhook services for inbound message and status processing.
# ============================================================================
"""
Webhook Services Module.

Provides:
- WebhookProcessor: Validates deliveries and processes items one by one
"""

from leadrelay.services.webhook.webhook_processor import WebhookProcessor

__all__ = [
    "WebhookProcessor",
]
