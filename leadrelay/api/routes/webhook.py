# ============================================================================
# SCOPE: GLOBAL
# Description: WhatsApp Cloud API webhook endpoints.
#              Signature check, verification handshake and health summary.
# ============================================================================
"""
WhatsApp Webhook Endpoints.

ENDPOINTS:
  - GET  /webhook        → Subscription verification handshake
  - POST /webhook        → Message and status notifications (signed)
  - GET  /webhook/health → Messaging health summary (503 when unhealthy)
"""

import json
import logging
import time

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from leadrelay.api.dependencies import get_container, verify_signature
from leadrelay.core.container import MessagingContainer
from leadrelay.core.domain.errors import ValidationError
from leadrelay.core.shared.logger import LogContext

router = APIRouter(tags=["webhook"])
logger = logging.getLogger(__name__)


@router.get("/webhook", response_class=PlainTextResponse)
async def verify_webhook(
    hub_mode: str | None = Query(None, alias="hub.mode"),
    hub_verify_token: str | None = Query(None, alias="hub.verify_token"),
    hub_challenge: str | None = Query(None, alias="hub.challenge"),
    container: MessagingContainer = Depends(get_container),  # noqa: B008
):
    """
    Answer the provider's subscription handshake by echoing ``hub.challenge``.
    """
    if not hub_mode or not hub_verify_token or hub_challenge is None:
        logger.warning("Webhook verification missing parameters")
        raise HTTPException(status_code=400, detail="Missing verification parameters")

    expected = container.settings.WHATSAPP_VERIFY_TOKEN
    if hub_mode != "subscribe" or not expected or hub_verify_token != expected:
        logger.warning(f"Webhook verification failed (mode={hub_mode})")
        raise HTTPException(status_code=403, detail="Verification failed")

    logger.info("Webhook verified successfully")
    return PlainTextResponse(hub_challenge)


@router.post("/webhook", dependencies=[Depends(verify_signature)])
async def receive_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    container: MessagingContainer = Depends(get_container),  # noqa: B008
):
    """
    Receive message and status notifications.

    Only a structurally invalid payload is rejected; its ValidationError is
    rendered as a 400 by the messaging error handler. Per-item failures
    are reported in the body while the delivery is still acknowledged so the
    provider does not redeliver it.
    """
    start_time = time.perf_counter()
    context = LogContext.new("webhook")
    processor = container.webhook_processor

    raw_body = await request.body()
    try:
        raw_json = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning(f"Invalid JSON in webhook: {e}")
        raise ValidationError("Invalid JSON payload", field="body", context=context) from e

    try:
        payload = processor.validate_payload(raw_json)
    except ValidationError as e:
        logger.warning(f"Invalid webhook payload: {e.message}")
        raise

    if container.settings.WEBHOOK_BACKGROUND_PROCESSING:
        background_tasks.add_task(processor.process_in_background, payload, context)
        content = {"status": "accepted"}
    else:
        result = await processor.process_incoming_webhook(payload, context)
        content = {"status": "ok", **result.model_dump()}

    elapsed_ms = (time.perf_counter() - start_time) * 1000
    return JSONResponse(
        content=content,
        headers={
            "X-Request-ID": context.correlation_id,
            "X-Processing-Time": f"{elapsed_ms:.2f}ms",
        },
    )


@router.get("/webhook/health")
async def webhook_health(container: MessagingContainer = Depends(get_container)):  # noqa: B008
    """
    Messaging health summary.

    Returns 503 when the error rate is above the configured threshold.
    """
    health = container.get_health_status()
    status_code = 200 if health["status"] == "healthy" else 503
    return JSONResponse(content=health, status_code=status_code)
