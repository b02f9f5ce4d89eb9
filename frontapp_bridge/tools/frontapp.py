"""LangChain tools for Frontapp helpdesk operations.

Each tool validates its arguments, calls one FrontappClient method and
returns a :class:`ToolResponse` dict.  Tools never raise: a failure of
any kind comes back as a response with ``is_error`` set.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Awaitable, Callable
from typing import Any, Literal

from langchain_core.tools import BaseTool, tool
from pydantic import BaseModel, Field

from frontapp_bridge.services.frontapp_client import get_frontapp_client

logger = logging.getLogger(__name__)

# RFC 5322-ish pattern; covers the vast majority of real-world emails
# without requiring an external dependency.
_EMAIL_RE = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)+$"
)

_HANDLE_SOURCES = {
    "email", "phone", "twitter", "facebook", "intercom", "front_chat", "custom",
}


class ToolContent(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ToolResponse(BaseModel):
    """What every tool returns to the agent."""

    content: list[ToolContent] = Field(default_factory=list)
    is_error: bool = False


def _success_response(data: Any) -> dict[str, Any]:
    text = json.dumps(data, indent=2, default=str)
    return ToolResponse(content=[ToolContent(text=text)]).model_dump()


def _error_response(message: str) -> dict[str, Any]:
    return ToolResponse(content=[ToolContent(text=f"Error: {message}")], is_error=True).model_dump()


def _missing(**required: Any) -> str | None:
    """Return an error message naming the first blank required argument."""
    for name, value in required.items():
        if value is None or (isinstance(value, str) and not value.strip()):
            return f"{name} is required"
    return None


def _validate_email(email: str) -> str | None:
    """Return an error message if *email* looks invalid, else ``None``."""
    if not email or not email.strip():
        return "No email address was provided."
    email = email.strip()
    if not _EMAIL_RE.match(email):
        return f'"{email}" does not look like a valid email address.'
    return None


def _validate_handles(handles: list[dict[str, str]] | None, *, required: bool) -> str | None:
    if not handles:
        return "handles must contain at least one handle" if required else None
    for entry in handles:
        handle = (entry.get("handle") or "").strip()
        source = (entry.get("source") or "").strip()
        if not handle or not source:
            return "each handle needs both 'handle' and 'source'"
        if source not in _HANDLE_SOURCES:
            return f"unsupported handle source {source!r}"
        if source == "email":
            error = _validate_email(handle)
            if error:
                return error
    return None


def _params(**values: Any) -> dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None and v != ""}


async def _call(action: str, operation: Callable[[], Awaitable[Any]]) -> dict[str, Any]:
    """Run *operation* and wrap its result (or failure) in a ToolResponse."""
    try:
        data = await operation()
    except Exception as exc:
        logger.error("Failed to %s: %s", action, exc)
        return _error_response(f"Failed to {action}: {exc}")
    return _success_response(data)


# ── Conversations ───────────────────────────────────────────────────


@tool
async def get_conversations(
    q: str | None = None,
    inbox_id: str | None = None,
    tag_id: str | None = None,
    status: Literal["open", "archived", "spam", "deleted"] | None = None,
    limit: int | None = None,
    page_token: str | None = None,
) -> dict:
    """List or search Frontapp conversations.

    Args:
        q: Free-text search query.
        inbox_id: Only conversations in this inbox.
        tag_id: Only conversations carrying this tag.
        status: Conversation status filter.
        limit: Page size (max 100).
        page_token: Token from a previous page's ``_pagination.next``.
    """
    if limit is not None and not 1 <= limit <= 100:
        return _error_response("limit must be between 1 and 100")
    params = _params(
        q=q, inbox_id=inbox_id, tag_id=tag_id, status=status,
        limit=limit, page_token=page_token,
    )
    return await _call("list conversations", lambda: get_frontapp_client().list_conversations(params))


@tool
async def get_conversation(conversation_id: str) -> dict:
    """Get a single conversation by ID (e.g. "cnv_123")."""
    if error := _missing(conversation_id=conversation_id):
        return _error_response(error)
    return await _call(
        "get conversation", lambda: get_frontapp_client().get_conversation(conversation_id),
    )


@tool
async def send_message(
    conversation_id: str,
    content: str,
    author_id: str | None = None,
    subject: str | None = None,
    archive: bool = False,
) -> dict:
    """Reply to a conversation.

    Args:
        conversation_id: The conversation to reply to.
        content: Message body.
        author_id: Teammate sending the reply.
        subject: Optional subject override.
        archive: Archive the conversation after sending.
    """
    if error := _missing(conversation_id=conversation_id, content=content):
        return _error_response(error)
    data: dict[str, Any] = _params(body=content, author_id=author_id, subject=subject)
    if archive:
        data["options"] = {"archive": True}
    return await _call(
        "send message", lambda: get_frontapp_client().send_message(conversation_id, data),
    )


@tool
async def add_comment(conversation_id: str, author_id: str, body: str) -> dict:
    """Add an internal comment (not visible to the customer) to a conversation."""
    if error := _missing(conversation_id=conversation_id, author_id=author_id, body=body):
        return _error_response(error)
    return await _call(
        "add comment",
        lambda: get_frontapp_client().add_comment(conversation_id, author_id, body),
    )


@tool
async def archive_conversation(conversation_id: str) -> dict:
    """Archive a conversation."""
    if error := _missing(conversation_id=conversation_id):
        return _error_response(error)
    return await _call(
        "archive conversation",
        lambda: get_frontapp_client().archive_conversation(conversation_id),
    )


@tool
async def assign_conversation(conversation_id: str, assignee_id: str) -> dict:
    """Assign a conversation to a teammate."""
    if error := _missing(conversation_id=conversation_id, assignee_id=assignee_id):
        return _error_response(error)
    return await _call(
        "assign conversation",
        lambda: get_frontapp_client().assign_conversation(conversation_id, assignee_id),
    )


# ── Contacts ────────────────────────────────────────────────────────


@tool
async def get_contact(contact_id: str) -> dict:
    """Get a contact by ID (e.g. "crd_123")."""
    if error := _missing(contact_id=contact_id):
        return _error_response(error)
    return await _call("get contact", lambda: get_frontapp_client().get_contact(contact_id))


@tool
async def create_contact(
    handles: list[dict[str, str]],
    name: str | None = None,
    description: str | None = None,
    custom_fields: dict[str, Any] | None = None,
) -> dict:
    """Create a contact.

    Args:
        handles: At least one ``{"handle": ..., "source": ...}`` pair, where
                 source is one of email, phone, twitter, facebook, intercom,
                 front_chat or custom.
        name: Display name.
        description: Free-text description.
        custom_fields: Custom field values keyed by field name.
    """
    if error := _validate_handles(handles, required=True):
        return _error_response(error)
    data = _params(
        handles=handles, name=name, description=description, custom_fields=custom_fields,
    )
    return await _call("create contact", lambda: get_frontapp_client().create_contact(data))


@tool
async def update_contact(
    contact_id: str,
    name: str | None = None,
    description: str | None = None,
    handles: list[dict[str, str]] | None = None,
    custom_fields: dict[str, Any] | None = None,
) -> dict:
    """Update fields of an existing contact.  Only the given fields change."""
    if error := _missing(contact_id=contact_id) or _validate_handles(handles, required=False):
        return _error_response(error)
    data = _params(
        name=name, description=description, handles=handles, custom_fields=custom_fields,
    )
    if not data:
        return _error_response("at least one field to update is required")
    return await _call(
        "update contact", lambda: get_frontapp_client().update_contact(contact_id, data),
    )


# ── Teammates ───────────────────────────────────────────────────────


@tool
async def get_teammates() -> dict:
    """List all teammates in the Frontapp company."""
    return await _call("list teammates", lambda: get_frontapp_client().list_teammates())


@tool
async def get_teammate(teammate_id: str) -> dict:
    """Get a teammate by ID (e.g. "tea_123")."""
    if error := _missing(teammate_id=teammate_id):
        return _error_response(error)
    return await _call("get teammate", lambda: get_frontapp_client().get_teammate(teammate_id))


# ── Accounts ────────────────────────────────────────────────────────


@tool
async def get_accounts(
    q: str | None = None, limit: int | None = None, page_token: str | None = None,
) -> dict:
    """List or search company accounts."""
    params = _params(q=q, limit=limit, page_token=page_token)
    return await _call("list accounts", lambda: get_frontapp_client().list_accounts(params))


@tool
async def get_account(account_id: str) -> dict:
    """Get an account by ID (e.g. "acc_123")."""
    if error := _missing(account_id=account_id):
        return _error_response(error)
    return await _call("get account", lambda: get_frontapp_client().get_account(account_id))


@tool
async def create_account(
    name: str,
    domains: list[str],
    description: str | None = None,
    external_id: str | None = None,
    custom_fields: dict[str, Any] | None = None,
) -> dict:
    """Create a company account.

    Args:
        name: Account name.
        domains: Email domains that belong to the account (e.g. ["example.com"]).
        description: Free-text description.
        external_id: Identifier in an external system.
        custom_fields: Custom field values keyed by field name.
    """
    if error := _missing(name=name):
        return _error_response(error)
    if not domains or any(not d.strip() for d in domains):
        return _error_response("domains must contain at least one non-empty domain")
    data = _params(
        name=name, domains=domains, description=description,
        external_id=external_id, custom_fields=custom_fields,
    )
    return await _call("create account", lambda: get_frontapp_client().create_account(data))


@tool
async def update_account(
    account_id: str,
    name: str | None = None,
    description: str | None = None,
    domains: list[str] | None = None,
    external_id: str | None = None,
    custom_fields: dict[str, Any] | None = None,
) -> dict:
    """Update fields of an existing account.  Only the given fields change."""
    if error := _missing(account_id=account_id):
        return _error_response(error)
    data = _params(
        name=name, description=description, domains=domains,
        external_id=external_id, custom_fields=custom_fields,
    )
    if not data:
        return _error_response("at least one field to update is required")
    return await _call(
        "update account", lambda: get_frontapp_client().update_account(account_id, data),
    )


# ── Tags ────────────────────────────────────────────────────────────


@tool
async def get_tags() -> dict:
    """List every tag defined in Frontapp."""
    return await _call("list tags", lambda: get_frontapp_client().get_tags())


@tool
async def apply_tag(conversation_id: str, tag_id: str) -> dict:
    """Apply a tag to a conversation."""
    if error := _missing(conversation_id=conversation_id, tag_id=tag_id):
        return _error_response(error)

    async def _apply() -> dict[str, str]:
        await get_frontapp_client().apply_tag(conversation_id, tag_id)
        return {"message": f"Tag {tag_id} applied to conversation {conversation_id}"}

    return await _call("apply tag", _apply)


@tool
async def remove_tag(conversation_id: str, tag_id: str) -> dict:
    """Remove a tag from a conversation."""
    if error := _missing(conversation_id=conversation_id, tag_id=tag_id):
        return _error_response(error)

    async def _remove() -> dict[str, str]:
        await get_frontapp_client().remove_tag(conversation_id, tag_id)
        return {"message": f"Tag {tag_id} removed from conversation {conversation_id}"}

    return await _call("remove tag", _remove)


# ── Inboxes ─────────────────────────────────────────────────────────


@tool
async def get_inboxes(limit: int | None = None, page_token: str | None = None) -> dict:
    """List the inboxes the API token can access."""
    params = _params(limit=limit, page_token=page_token)
    return await _call("list inboxes", lambda: get_frontapp_client().list_inboxes(params))


@tool
async def get_inbox(inbox_id: str) -> dict:
    """Get an inbox by ID (e.g. "inb_123")."""
    if error := _missing(inbox_id=inbox_id):
        return _error_response(error)
    return await _call("get inbox", lambda: get_frontapp_client().get_inbox(inbox_id))


# ── Registry ────────────────────────────────────────────────────────

ALL_TOOLS: list[BaseTool] = [
    get_conversations,
    get_conversation,
    send_message,
    add_comment,
    archive_conversation,
    assign_conversation,
    get_contact,
    create_contact,
    update_contact,
    get_teammates,
    get_teammate,
    get_accounts,
    get_account,
    create_account,
    update_account,
    get_tags,
    apply_tag,
    remove_tag,
    get_inboxes,
    get_inbox,
]

TOOLS_BY_NAME: dict[str, BaseTool] = {t.name: t for t in ALL_TOOLS}
