"""Reconciles Frontapp webhook subscriptions with the events we handle.

Run once at startup: fetch the current subscriptions, subscribe to
``desired − current`` in a single call.  There is no periodic
reconciliation: drift after startup goes unnoticed until the next restart.
The local list of subscriptions is a cache rebuilt on every
:meth:`SubscriptionManager.initialize`, never a source of truth.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from frontapp_bridge.services.frontapp_client import FrontappClient
from frontapp_bridge.webhooks.models import WebhookSubscription

logger = logging.getLogger(__name__)


class SubscriptionManager:
    """Manages the subscriptions that point at ``<base_url>/webhooks``."""

    def __init__(self, client: FrontappClient, base_url: str) -> None:
        self._client = client
        self.webhook_url = f"{base_url.rstrip('/')}/webhooks"
        self.subscriptions: list[WebhookSubscription] = []
        self._initialized = False

    async def initialize(self) -> None:
        """Fetch the current subscriptions from Frontapp."""
        records = await self._client.list_webhooks()
        self.subscriptions = [WebhookSubscription.model_validate(r) for r in records]
        self._initialized = True
        logger.info(
            "Webhook subscriptions loaded: url=%s existing=%d",
            self.webhook_url, len(self.subscriptions),
        )

    def subscribed_events(self) -> list[str]:
        """Every event type covered by a known subscription (deduplicated)."""
        seen: dict[str, None] = {}
        for sub in self.subscriptions:
            for event in sub.events:
                seen.setdefault(event, None)
        return list(seen)

    async def reconcile(self, desired: Iterable[str]) -> list[str]:
        """Subscribe to every desired event not yet subscribed.

        Returns the newly subscribed events (empty if nothing was missing).
        """
        if not self._initialized:
            await self.initialize()

        current = set(self.subscribed_events())
        missing = [str(e) for e in dict.fromkeys(desired) if str(e) not in current]
        if not missing:
            logger.info("All webhook events are already subscribed")
            return []

        record = await self._client.subscribe_webhook(missing, self.webhook_url)
        self.subscriptions.append(
            WebhookSubscription(
                id=str(record.get("id", "")),
                events=record.get("events") or missing,
                url=record.get("url") or self.webhook_url,
            )
        )
        logger.info("Subscribed to webhook events: %s -> %s", missing, self.webhook_url)
        return missing

    async def unsubscribe(self, events: Iterable[str]) -> list[str]:
        """Delete every subscription that covers any of *events*.

        Returns the ids of the deleted subscriptions.
        """
        if not self._initialized:
            await self.initialize()

        wanted = {str(e) for e in events}
        removed: list[str] = []
        for sub in list(self.subscriptions):
            matching = wanted.intersection(sub.events)
            if not matching:
                continue
            await self._client.unsubscribe_webhook(sub.id)
            self.subscriptions.remove(sub)
            removed.append(sub.id)
            logger.info("Unsubscribed webhook %s (events %s)", sub.id, sorted(matching))
        return removed

    async def unsubscribe_all(self) -> list[str]:
        """Delete every known subscription.  Returns their ids."""
        if not self._initialized:
            await self.initialize()

        removed: list[str] = []
        for sub in list(self.subscriptions):
            await self._client.unsubscribe_webhook(sub.id)
            removed.append(sub.id)
            logger.info("Unsubscribed webhook %s (events %s)", sub.id, sub.events)
        self.subscriptions = []
        return removed
