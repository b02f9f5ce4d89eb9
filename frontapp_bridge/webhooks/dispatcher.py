"""Routes verified webhook envelopes to their handlers.

Lifecycle of one delivery::

    Received → Verified → Deduplicated      (SignatureVerifier)
    → Routed → Processing                   (this module)
    → Succeeded | Failed-Retryable → Processing | Failed-Terminal

Only ``process`` runs inside the retry engine; a payload that fails
``validate`` is structurally broken and retrying cannot fix it.  Unknown
event types are logged and acknowledged so Frontapp does not keep
redelivering them.
"""

from __future__ import annotations

import logging
from typing import Any

from frontapp_bridge.errors import RetriesExhaustedError, WebhookValidationError
from frontapp_bridge.services.frontapp_client import FrontappClient
from frontapp_bridge.services.metrics import metrics
from frontapp_bridge.services.retry import RetryAttemptState, RetryEngine
from frontapp_bridge.webhooks.handlers import HANDLERS, WebhookHandler
from frontapp_bridge.webhooks.models import WebhookEnvelope

logger = logging.getLogger(__name__)


def _record_retry(state: RetryAttemptState, exc: BaseException) -> None:
    metrics.record_retry("webhook", type(exc).__name__, state.next_delay)


class WebhookDispatcher:
    """Dispatches one envelope at a time; safe to share between requests."""

    def __init__(
        self,
        client: FrontappClient,
        *,
        retry: RetryEngine | None = None,
        handlers: dict[str, WebhookHandler] | None = None,
    ) -> None:
        self._client = client
        self._retry = retry or RetryEngine(on_retry=_record_retry)
        self._handlers = HANDLERS if handlers is None else handlers

    @property
    def event_types(self) -> list[str]:
        return sorted(str(t) for t in self._handlers)

    async def handle(self, envelope: WebhookEnvelope) -> dict[str, Any] | None:
        """Validate and process *envelope*.

        Returns the handler's summary, or ``None`` for unhandled types.
        Terminal failures are logged with the webhook type, id and attempt
        count and then re-raised.
        """
        handler = self._handlers.get(envelope.type)
        if handler is None:
            logger.warning(
                "Unhandled webhook event type: type=%s id=%s", envelope.type, envelope.id,
            )
            metrics.record_webhook(envelope.type, "unhandled")
            return None

        try:
            handler.validate(envelope.payload)
        except WebhookValidationError as exc:
            logger.error(
                "Invalid webhook payload: type=%s id=%s error=%s",
                envelope.type, envelope.id, exc,
            )
            metrics.record_webhook(envelope.type, "failed", reason="validation")
            raise

        context = {
            "operation": "webhook",
            "webhook_type": envelope.type,
            "webhook_id": envelope.id,
        }
        try:
            result = await self._retry.execute_with_retry(
                lambda: handler.process(envelope.payload, self._client),
                context=context,
            )
        except RetriesExhaustedError as exc:
            logger.error(
                "Webhook processing failed after %d attempts: type=%s id=%s error=%s",
                exc.attempts, envelope.type, envelope.id, exc.last_error,
            )
            metrics.record_webhook(envelope.type, "failed", reason="retries_exhausted")
            raise
        except Exception as exc:
            logger.error(
                "Webhook processing failed (non-retryable): type=%s id=%s error=%s",
                envelope.type, envelope.id, exc,
            )
            metrics.record_webhook(envelope.type, "failed", reason=type(exc).__name__)
            raise

        metrics.record_webhook(envelope.type, "succeeded")
        logger.info("Webhook processed: type=%s id=%s", envelope.type, envelope.id)
        return result
