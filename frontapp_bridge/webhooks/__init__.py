"""Inbound Frontapp webhooks: verification, dispatch and subscriptions."""

from frontapp_bridge.webhooks.dispatcher import WebhookDispatcher
from frontapp_bridge.webhooks.models import WebhookEnvelope, WebhookEventType
from frontapp_bridge.webhooks.subscriptions import SubscriptionManager
from frontapp_bridge.webhooks.verifier import ProcessedWebhookStore, SignatureVerifier

__all__ = [
    "ProcessedWebhookStore",
    "SignatureVerifier",
    "SubscriptionManager",
    "WebhookDispatcher",
    "WebhookEnvelope",
    "WebhookEventType",
]
