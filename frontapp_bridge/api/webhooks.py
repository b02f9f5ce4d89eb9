"""Inbound webhook endpoint.

Verification happens inline so Frontapp gets the right status code;
processing is handed to a background task so the response goes out
before any outbound Frontapp calls are made.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Request
from fastapi.responses import JSONResponse

from frontapp_bridge.api.schemas import WebhookAck
from frontapp_bridge.errors import WebhookRejectedError
from frontapp_bridge.services.metrics import metrics
from frontapp_bridge.webhooks import SignatureVerifier, WebhookDispatcher, WebhookEnvelope
from frontapp_bridge.webhooks.verifier import SIGNATURE_HEADER

logger = logging.getLogger(__name__)

router = APIRouter()


async def _process_in_background(dispatcher: WebhookDispatcher, envelope: WebhookEnvelope) -> None:
    try:
        await dispatcher.handle(envelope)
    except Exception:
        # Already acknowledged; the dispatcher has logged and counted it.
        logger.exception(
            "Background webhook processing failed: type=%s id=%s", envelope.type, envelope.id,
        )


@router.post("/webhooks", response_model=WebhookAck)
async def receive_webhook(request: Request, background_tasks: BackgroundTasks):
    """Verify a Frontapp delivery and queue it for processing."""
    verifier: SignatureVerifier | None = getattr(request.app.state, "verifier", None)
    dispatcher: WebhookDispatcher | None = getattr(request.app.state, "dispatcher", None)
    if verifier is None or dispatcher is None:
        return JSONResponse(status_code=503, content={"error": "Webhooks are not configured"})

    raw_body = await request.body()
    try:
        envelope = verifier.verify(raw_body, request.headers.get(SIGNATURE_HEADER))
    except WebhookRejectedError as exc:
        event_type = exc.context.get("type") or "unknown"
        metrics.record_webhook(event_type, "rejected", reason=type(exc).__name__)
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})

    metrics.record_webhook(envelope.type, "accepted")
    logger.info("Webhook accepted: type=%s id=%s", envelope.type, envelope.id)
    background_tasks.add_task(_process_in_background, dispatcher, envelope)
    return WebhookAck()
