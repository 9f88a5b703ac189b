"""
FastAPI dependencies.
"""

import hashlib
import hmac
import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request

from leadrelay.config.settings import Settings
from leadrelay.core.container import MessagingContainer

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="


def get_container(request: Request) -> MessagingContainer:
    """Container built by the app factory for this application."""
    return request.app.state.container


def get_app_settings(container: MessagingContainer = Depends(get_container)) -> Settings:  # noqa: B008
    return container.settings


def compute_signature(secret: str, body: bytes) -> str:
    """``sha256=<hex>`` HMAC of ``body`` keyed with the app secret."""
    digest = hmac.new(secret.encode("utf-8"), msg=body, digestmod=hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


async def verify_signature(
    request: Request,
    x_hub_signature_256: Optional[str] = Header(None),
    settings: Settings = Depends(get_app_settings),  # noqa: B008
) -> bool:
    """
    Verify the X-Hub-Signature-256 header of a webhook delivery.

    Runs before the body is parsed so unsigned payloads are never processed.
    """
    if not settings.META_APP_SECRET:
        logger.error("META_APP_SECRET is not configured; rejecting webhook delivery")
        raise HTTPException(status_code=403, detail="Signature verification not configured")

    if not x_hub_signature_256:
        logger.warning("Missing X-Hub-Signature-256 header")
        raise HTTPException(status_code=403, detail="Missing signature header")

    body = await request.body()
    expected_signature = compute_signature(settings.META_APP_SECRET, body)

    if not hmac.compare_digest(expected_signature.encode(), x_hub_signature_256.strip().encode()):
        logger.warning("Signature verification failed")
        raise HTTPException(status_code=403, detail="Invalid signature")

    return True
