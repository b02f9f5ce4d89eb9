"""Async HTTP client for the Frontapp Core API with rate-limit pacing,
exponential-backoff retries and a TTL response cache.

Frontapp API docs: https://dev.frontapp.com/reference/introduction
All requests require an API token passed as a Bearer token.

Every request goes through the same explicit sequence::

    governor.wait_for_slot()      # advisory pre-delay
    → HTTP request (timeout)      # transport errors → TransientNetworkError
    → governor.update(headers)    # recompute pacing from x-ratelimit-*
    → status classification       # 429 / 5xx / 4xx → typed errors

and the whole sequence runs inside :class:`RetryEngine`, so a retry
re-enters the governed path.  Cacheable reads wrap all of that behind a
:class:`ResponseCache` lookup.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any

import httpx

from frontapp_bridge.config import (
    CACHE_TTL_SECONDS,
    FRONTAPP_API_TOKEN,
    FRONTAPP_BASE_URL,
    REQUEST_TIMEOUT_SECONDS,
)
from frontapp_bridge.errors import (
    FrontappAPIError,
    RateLimitError,
    ServerError,
    TransientNetworkError,
)
from frontapp_bridge.services.cache import ResponseCache
from frontapp_bridge.services.metrics import metrics
from frontapp_bridge.services.rate_limit import RateLimitGovernor, parse_retry_after
from frontapp_bridge.services.retry import RetryAttemptState, RetryEngine

logger = logging.getLogger(__name__)

MAX_PAGES = 50

# ── Cache keys ──────────────────────────────────────────────────────
_CK_TAGS = "tags"
_CK_INBOXES = "inboxes"
_CK_INBOX = "inbox:"
_CK_TEAMMATES = "teammates"
_CK_TEAMMATE = "teammate:"
_CK_ACCOUNTS = "accounts"
_CK_ACCOUNT = "account:"


def _record_retry(state: RetryAttemptState, exc: BaseException) -> None:
    metrics.record_retry("frontapp_api", type(exc).__name__, state.next_delay)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict):
        error = body.get("_error") or body.get("error") or body
        if isinstance(error, dict):
            return str(error.get("message") or error)
        return str(error)
    return str(body)


class FrontappClient:
    """Thin async wrapper around the Frontapp REST API.

    **Cache contract**

    Slow-changing reads without query parameters (tags, inboxes, teammates,
    accounts) are cached for ``cache_ttl`` seconds.  Writes never touch the
    cache, so a read right after a write may be stale for up to one TTL.
    """

    def __init__(
        self,
        token: str | None = None,
        base_url: str | None = None,
        *,
        cache: ResponseCache | None = None,
        governor: RateLimitGovernor | None = None,
        retry: RetryEngine | None = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        cache_ttl: float = CACHE_TTL_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._token = token or FRONTAPP_API_TOKEN
        self._base_url = (base_url or FRONTAPP_BASE_URL).rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={
                "Authorization": f"Bearer {self._token}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )
        self._cache = cache if cache is not None else ResponseCache(default_ttl=cache_ttl)
        self._governor = governor or RateLimitGovernor()
        self._retry = retry or RetryEngine(on_retry=_record_retry)
        self._cache_ttl = cache_ttl

    @property
    def cache(self) -> ResponseCache:
        return self._cache

    @property
    def governor(self) -> RateLimitGovernor:
        return self._governor

    async def aclose(self) -> None:
        await self._client.aclose()

    # ── Internal helpers ─────────────────────────────────────────────

    async def _send_once(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None,
        json_body: Any,
    ) -> Any:
        """One governed HTTP exchange.  Raises typed errors for failures."""
        await self._governor.wait_for_slot()

        operation = f"{method} {path}"
        logger.info("Frontapp API request: %s", operation)
        t0 = time.perf_counter()
        try:
            response = await self._client.request(
                method, path, params=params, json=json_body,
            )
        except httpx.TransportError as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_api_call(
                operation, status_code=None, latency_ms=elapsed,
                error_type=type(exc).__name__,
            )
            raise TransientNetworkError(
                f"Network error calling Frontapp {operation}: {type(exc).__name__}: {exc}"
            ) from exc

        elapsed = (time.perf_counter() - t0) * 1000
        self._governor.update(response.headers)

        status = response.status_code
        if status >= 400:
            metrics.record_api_call(
                operation, status_code=status, latency_ms=elapsed,
                error_type=f"{status // 100}xx",
            )
            message = f"Frontapp API error {status} on {operation}: {_error_message(response)}"
            if status == 429:
                raise RateLimitError(
                    message, body=response.text,
                    retry_after=parse_retry_after(response.headers),
                )
            if status >= 500:
                raise ServerError(message, status_code=status, body=response.text)
            raise FrontappAPIError(message, status_code=status, body=response.text)

        metrics.record_api_call(operation, status_code=status, latency_ms=elapsed)
        if not response.content:
            return {}
        return response.json()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
    ) -> Any:
        """Execute a request through the governor with retries."""
        return await self._retry.execute_with_retry(
            lambda: self._send_once(method, path, params, json_body),
            context={"operation": f"{method} {path}"},
        )

    async def _get_all_pages(self, path: str) -> list[dict[str, Any]]:
        """Follow ``_pagination.next`` and concatenate every ``_results`` page."""
        results: list[dict[str, Any]] = []
        url: str | None = path
        pages = 0
        while url and pages < MAX_PAGES:
            page = await self._request("GET", url)
            results.extend(page.get("_results", []))
            url = (page.get("_pagination") or {}).get("next")
            pages += 1
        if url:
            logger.warning("Stopped paginating %s after %d pages", path, MAX_PAGES)
        return results

    async def _cached(self, key: str, loader) -> Any:
        return await self._cache.get_or_set(key, loader, self._cache_ttl)

    # ── Conversations ────────────────────────────────────────────────

    async def list_conversations(self, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """One page of conversations (``_results`` + ``_pagination``).  Not cached."""
        return await self._request("GET", "/conversations", params=params or None)

    async def get_conversation(self, conversation_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/conversations/{conversation_id}")

    async def list_conversation_messages(self, conversation_id: str) -> list[dict[str, Any]]:
        return await self._get_all_pages(f"/conversations/{conversation_id}/messages")

    async def send_message(self, conversation_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """Reply to a conversation."""
        return await self._request(
            "POST", f"/conversations/{conversation_id}/messages", json_body=data,
        )

    async def add_comment(self, conversation_id: str, author_id: str, body: str) -> dict[str, Any]:
        return await self._request(
            "POST",
            f"/conversations/{conversation_id}/comments",
            json_body={"author_id": author_id, "body": body},
        )

    async def archive_conversation(self, conversation_id: str) -> dict[str, Any]:
        return await self._request(
            "PATCH", f"/conversations/{conversation_id}", json_body={"archived": True},
        )

    async def unarchive_conversation(self, conversation_id: str) -> dict[str, Any]:
        return await self._request(
            "PATCH", f"/conversations/{conversation_id}", json_body={"archived": False},
        )

    async def assign_conversation(self, conversation_id: str, assignee_id: str) -> dict[str, Any]:
        return await self._request(
            "PATCH",
            f"/conversations/{conversation_id}",
            json_body={"assignee_id": assignee_id},
        )

    # ── Contacts ─────────────────────────────────────────────────────

    async def list_contacts(self, params: dict[str, Any] | None = None) -> dict[str, Any]:
        return await self._request("GET", "/contacts", params=params or None)

    async def get_contact(self, contact_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/contacts/{contact_id}")

    async def create_contact(self, data: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", "/contacts", json_body=data)

    async def update_contact(self, contact_id: str, data: dict[str, Any]) -> dict[str, Any]:
        return await self._request("PATCH", f"/contacts/{contact_id}", json_body=data)

    # ── Tags ─────────────────────────────────────────────────────────

    async def get_tags(self) -> list[dict[str, Any]]:
        """All tags (cached)."""
        return await self._cached(_CK_TAGS, lambda: self._get_all_pages("/tags"))

    async def apply_tag(self, conversation_id: str, tag_id: str) -> dict[str, Any]:
        return await self._request(
            "POST", f"/conversations/{conversation_id}/tags", json_body={"tag_ids": [tag_id]},
        )

    async def remove_tag(self, conversation_id: str, tag_id: str) -> dict[str, Any]:
        # httpx only accepts a body on DELETE through the generic request().
        return await self._request(
            "DELETE", f"/conversations/{conversation_id}/tags", json_body={"tag_ids": [tag_id]},
        )

    # ── Inboxes ──────────────────────────────────────────────────────

    async def list_inboxes(self, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """All inboxes (cached).  Parameterised queries bypass the cache."""
        if params:
            page = await self._request("GET", "/inboxes", params=params)
            return page.get("_results", [])
        return await self._cached(_CK_INBOXES, lambda: self._get_all_pages("/inboxes"))

    async def get_inbox(self, inbox_id: str) -> dict[str, Any]:
        return await self._cached(
            f"{_CK_INBOX}{inbox_id}", lambda: self._request("GET", f"/inboxes/{inbox_id}"),
        )

    # ── Teammates ────────────────────────────────────────────────────

    async def list_teammates(self) -> list[dict[str, Any]]:
        return await self._cached(_CK_TEAMMATES, lambda: self._get_all_pages("/teammates"))

    async def get_teammate(self, teammate_id: str) -> dict[str, Any]:
        return await self._cached(
            f"{_CK_TEAMMATE}{teammate_id}",
            lambda: self._request("GET", f"/teammates/{teammate_id}"),
        )

    # ── Accounts ─────────────────────────────────────────────────────

    async def list_accounts(self, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """All accounts (cached).  Parameterised queries bypass the cache."""
        if params:
            page = await self._request("GET", "/accounts", params=params)
            return page.get("_results", [])
        return await self._cached(_CK_ACCOUNTS, lambda: self._get_all_pages("/accounts"))

    async def get_account(self, account_id: str) -> dict[str, Any]:
        return await self._cached(
            f"{_CK_ACCOUNT}{account_id}",
            lambda: self._request("GET", f"/accounts/{account_id}"),
        )

    async def create_account(self, data: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", "/accounts", json_body=data)

    async def update_account(self, account_id: str, data: dict[str, Any]) -> dict[str, Any]:
        return await self._request("PATCH", f"/accounts/{account_id}", json_body=data)

    # ── Webhook subscriptions ────────────────────────────────────────

    async def list_webhooks(self) -> list[dict[str, Any]]:
        """Current subscriptions.  Never cached."""
        return await self._get_all_pages("/webhooks")

    async def subscribe_webhook(self, events: list[str], url: str) -> dict[str, Any]:
        return await self._request(
            "POST", "/webhooks", json_body={"url": url, "events": list(events)},
        )

    async def unsubscribe_webhook(self, webhook_id: str) -> dict[str, Any]:
        return await self._request("DELETE", f"/webhooks/{webhook_id}")


# ── Module-level instance ───────────────────────────────────────────
_client: FrontappClient | None = None
_client_lock = threading.Lock()


def get_frontapp_client() -> FrontappClient:
    """Return the process-wide FrontappClient.

    The server lifespan installs its own instance via
    :func:`set_frontapp_client`; otherwise one is built lazily with
    double-checked locking.
    """
    global _client
    if _client is None:
        with _client_lock:
            if _client is None:
                _client = FrontappClient()
    return _client


def set_frontapp_client(client: FrontappClient | None) -> None:
    """Install (or clear, with ``None``) the process-wide client."""
    global _client
    with _client_lock:
        _client = client
