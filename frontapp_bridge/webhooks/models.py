"""Pydantic models for inbound Frontapp webhooks and subscriptions."""

from __future__ import annotations

import time
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class WebhookEventType(StrEnum):
    """Event types Frontapp can deliver."""

    CONVERSATION_ASSIGNED = "conversation.assigned"
    CONVERSATION_CREATED = "conversation.created"
    CONVERSATION_DELETED = "conversation.deleted"
    CONVERSATION_RESTORED = "conversation.restored"
    CONVERSATION_TAGGED = "conversation.tagged"
    CONVERSATION_TRASHED = "conversation.trashed"
    CONVERSATION_UNASSIGNED = "conversation.unassigned"
    CONVERSATION_UNTAGGED = "conversation.untagged"
    CONVERSATION_UPDATED = "conversation.updated"
    INBOUND_MESSAGE = "inbound.message"
    OUTBOUND_MESSAGE = "outbound.message"
    OUTBOUND_REPLY = "outbound.reply"
    MESSAGE_SENT = "message.sent"
    MESSAGE_RECEIVED = "message.received"
    MESSAGE_CREATED = "message.created"
    COMMENT_CREATED = "comment.created"
    COMMENT_MENTION = "comment.mention"
    CONTACT_CREATED = "contact.created"
    CONTACT_UPDATED = "contact.updated"


class WebhookEnvelope(BaseModel):
    """A verified webhook delivery, immutable once received.

    ``(type, id)`` is the delivery identity used for deduplication.
    """

    model_config = ConfigDict(frozen=True)

    type: str = Field(..., description="Event type, e.g. 'conversation.created'")
    payload: dict[str, Any] = Field(default_factory=dict)
    id: str = Field(..., description="The payload's resource id")
    received_at: float = Field(default_factory=time.time, description="Epoch seconds")

    @property
    def dedup_key(self) -> tuple[str, str]:
        return (self.type, self.id)


class WebhookSubscription(BaseModel):
    """Mirror of a Frontapp webhook subscription record."""

    id: str
    events: list[str] = Field(default_factory=list)
    url: str = ""
