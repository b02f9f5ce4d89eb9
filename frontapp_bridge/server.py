"""FastAPI server for the Frontapp bridge.

Run with:
    uvicorn frontapp_bridge.server:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from frontapp_bridge.agent import create_frontapp_agent
from frontapp_bridge.api.routes import router
from frontapp_bridge.api.webhooks import router as webhook_router
from frontapp_bridge.config import (
    ANTHROPIC_API_KEY,
    CORS_ORIGINS,
    SERVER_HOST,
    SERVER_PORT,
    WEBHOOK_BASE_URL,
    WEBHOOK_SECRET,
    webhooks_enabled,
)
from frontapp_bridge.services.frontapp_client import FrontappClient, set_frontapp_client
from frontapp_bridge.webhooks import SignatureVerifier, SubscriptionManager, WebhookDispatcher

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


async def _reconcile_subscriptions(client: FrontappClient, dispatcher: WebhookDispatcher) -> None:
    manager = SubscriptionManager(client, WEBHOOK_BASE_URL)
    try:
        added = await manager.reconcile(dispatcher.event_types)
    except Exception:
        # Ingestion still works for whatever is already subscribed.
        logger.exception("Webhook subscription reconciliation failed")
        return
    if added:
        logger.info("Subscribed %d new webhook event types", len(added))


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Build the shared Frontapp client, webhook pipeline and agent once.

    Missing webhook or LLM configuration disables that part of the
    service; it does not stop the server from starting.
    """
    client = FrontappClient()
    set_frontapp_client(client)
    application.state.verifier = None
    application.state.dispatcher = None
    application.state.agent = None

    if WEBHOOK_SECRET:
        application.state.verifier = SignatureVerifier(WEBHOOK_SECRET)
        application.state.dispatcher = WebhookDispatcher(client)
    else:
        logger.warning("WEBHOOK_SECRET not set; POST /webhooks will return 503")

    if webhooks_enabled():
        await _reconcile_subscriptions(client, application.state.dispatcher)
    else:
        logger.info("WEBHOOK_BASE_URL not set; skipping subscription reconciliation")

    if ANTHROPIC_API_KEY:
        logger.info("Compiling LangGraph agent…")
        application.state.agent = create_frontapp_agent()
        logger.info("Agent ready.")
    else:
        logger.warning("ANTHROPIC_API_KEY not set; POST /api/chat will return 503")

    yield

    await client.aclose()
    set_frontapp_client(None)


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="Frontapp Bridge",
    description=(
        "Verified Frontapp webhook ingestion and rate-limit-aware "
        "Frontapp API tools for LLM agents."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request-ID middleware ────────────────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Attach a unique request ID to every request for log correlation.

    The ID is echoed back in the ``X-Request-ID`` response header.
    """
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info(
        "[%s] %s %s", request_id, request.method, request.url.path,
    )
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ── Register routes ──────────────────────────────────────────────────
app.include_router(router, prefix="/api")
app.include_router(webhook_router)


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Frontapp Bridge",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
        "webhooks": "/webhooks",
    }


# ── CLI entry point ──────────────────────────────────────────────────

if __name__ == "__main__":
    logger.info("Starting Frontapp bridge on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "frontapp_bridge.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
    )
