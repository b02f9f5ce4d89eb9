"""Per-event-type webhook handlers.

Each handler is a pair of plain functions:

* ``validate(payload)``: structural checks only; raises
  :class:`WebhookValidationError` when a required identifier is missing.
  Never retried.
* ``process(payload, client)``: the side-effecting work.  It re-reads the
  current state from Frontapp instead of trusting the delta in the payload,
  because deliveries may be applied out of order.  Runs inside the retry
  engine, so it must be safe to run more than once.

:data:`HANDLERS` maps the event type string to its pair.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from frontapp_bridge.errors import WebhookValidationError
from frontapp_bridge.services.frontapp_client import FrontappClient
from frontapp_bridge.webhooks.models import WebhookEventType

logger = logging.getLogger(__name__)

Payload = dict[str, Any]


@dataclass(frozen=True)
class WebhookHandler:
    validate: Callable[[Payload], None]
    process: Callable[[Payload, FrontappClient], Awaitable[dict[str, Any]]]


def _require(payload: Payload, *fields: str) -> None:
    missing = [f for f in fields if not payload.get(f)]
    if missing:
        raise WebhookValidationError(
            f"Invalid webhook payload: missing {', '.join(missing)}",
        )


def _find_by_id(items: list[dict[str, Any]], item_id: str) -> dict[str, Any] | None:
    return next((item for item in items if item.get("id") == item_id), None)


def _teammate_name(teammate: dict[str, Any]) -> str:
    name = f"{teammate.get('first_name', '')} {teammate.get('last_name', '')}".strip()
    return name or teammate.get("email") or teammate.get("id", "unknown")


# ── Conversations ───────────────────────────────────────────────────


def _validate_conversation(payload: Payload) -> None:
    _require(payload, "id")


async def _process_conversation(payload: Payload, client: FrontappClient) -> dict[str, Any]:
    conversation = await client.get_conversation(payload["id"])
    summary = {
        "conversation_id": conversation.get("id", payload["id"]),
        "subject": conversation.get("subject") or "(No subject)",
        "status": conversation.get("status"),
    }
    logger.info("Conversation event processed: %s", summary)
    return summary


def _validate_assigned(payload: Payload) -> None:
    _require(payload, "id", "assignee_id")


async def _process_assigned(payload: Payload, client: FrontappClient) -> dict[str, Any]:
    conversation = await client.get_conversation(payload["id"])
    teammate = await client.get_teammate(payload["assignee_id"])
    summary = {
        "conversation_id": payload["id"],
        "subject": conversation.get("subject") or "(No subject)",
        "assignee_id": payload["assignee_id"],
        "assignee_name": _teammate_name(teammate),
    }
    logger.info("Conversation assigned: %s", summary)
    return summary


def _validate_unassigned(payload: Payload) -> None:
    _require(payload, "id", "previous_assignee_id")


async def _process_unassigned(payload: Payload, client: FrontappClient) -> dict[str, Any]:
    conversation = await client.get_conversation(payload["id"])
    teammate = await client.get_teammate(payload["previous_assignee_id"])
    summary = {
        "conversation_id": payload["id"],
        "subject": conversation.get("subject") or "(No subject)",
        "previous_assignee_id": payload["previous_assignee_id"],
        "previous_assignee_name": _teammate_name(teammate),
    }
    logger.info("Conversation unassigned: %s", summary)
    return summary


def _validate_tag_change(payload: Payload) -> None:
    _require(payload, "id", "tag_id")


async def _process_tag_change(payload: Payload, client: FrontappClient) -> dict[str, Any]:
    conversation = await client.get_conversation(payload["id"])
    tag = _find_by_id(await client.get_tags(), payload["tag_id"])
    if tag is None:
        # Deleted since, or created after the tag list was cached.
        logger.warning(
            "Tag %s not found while processing conversation %s",
            payload["tag_id"], payload["id"],
        )
    summary = {
        "conversation_id": payload["id"],
        "subject": conversation.get("subject") or "(No subject)",
        "tag_id": payload["tag_id"],
        "tag_name": tag.get("name") if tag else None,
        "current_tags": [t.get("name") for t in conversation.get("tags", [])],
    }
    logger.info("Conversation tags changed: %s", summary)
    return summary


# ── Messages ────────────────────────────────────────────────────────


def _validate_message(payload: Payload) -> None:
    _require(payload, "id", "conversation_id")


async def _process_message(payload: Payload, client: FrontappClient) -> dict[str, Any]:
    conversation_id = payload["conversation_id"]
    conversation = await client.get_conversation(conversation_id)
    # There is no endpoint for a single message; scan the conversation.
    message = _find_by_id(
        await client.list_conversation_messages(conversation_id), payload["id"],
    )
    if message is None:
        logger.warning(
            "Message %s not found in conversation %s", payload["id"], conversation_id,
        )
    author = (message or {}).get("author") or {}
    summary = {
        "conversation_id": conversation_id,
        "subject": conversation.get("subject") or "(No subject)",
        "message_id": payload["id"],
        "found": message is not None,
        "is_inbound": (message or {}).get("is_inbound"),
        "author": _teammate_name(author) if author else None,
        "blurb": (message or {}).get("blurb"),
    }
    logger.info("Message event processed: %s", summary)
    return summary


# ── Contacts ────────────────────────────────────────────────────────


def _validate_contact(payload: Payload) -> None:
    _require(payload, "id")


async def _process_contact(payload: Payload, client: FrontappClient) -> dict[str, Any]:
    contact = await client.get_contact(payload["id"])
    summary = {
        "contact_id": payload["id"],
        "name": contact.get("name") or "Unnamed Contact",
        "handles": [
            f"{h.get('handle')} ({h.get('source')})" for h in contact.get("handles", [])
        ],
    }
    logger.info("Contact event processed: %s", summary)
    return summary


# ── Routing table ───────────────────────────────────────────────────

_CONVERSATION = WebhookHandler(_validate_conversation, _process_conversation)
_TAG_CHANGE = WebhookHandler(_validate_tag_change, _process_tag_change)
_MESSAGE = WebhookHandler(_validate_message, _process_message)
_CONTACT = WebhookHandler(_validate_contact, _process_contact)

HANDLERS: dict[str, WebhookHandler] = {
    WebhookEventType.CONVERSATION_CREATED: _CONVERSATION,
    WebhookEventType.CONVERSATION_UPDATED: _CONVERSATION,
    WebhookEventType.CONVERSATION_ASSIGNED: WebhookHandler(_validate_assigned, _process_assigned),
    WebhookEventType.CONVERSATION_UNASSIGNED: WebhookHandler(
        _validate_unassigned, _process_unassigned,
    ),
    WebhookEventType.CONVERSATION_TAGGED: _TAG_CHANGE,
    WebhookEventType.CONVERSATION_UNTAGGED: _TAG_CHANGE,
    WebhookEventType.MESSAGE_RECEIVED: _MESSAGE,
    WebhookEventType.MESSAGE_CREATED: _MESSAGE,
    WebhookEventType.CONTACT_CREATED: _CONTACT,
    WebhookEventType.CONTACT_UPDATED: _CONTACT,
}
