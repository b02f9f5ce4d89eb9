"""Frontapp bridge: verified webhook ingestion and resilient Frontapp API tools.

Architecture Overview
=====================

Two paths share one :class:`~frontapp_bridge.services.frontapp_client.FrontappClient`:

1. **Inbound** (Frontapp → us). ``POST /webhooks`` runs the
   ``SignatureVerifier`` (HMAC-SHA256 over the raw body, freshness window,
   ``(type, id)`` replay claim), acknowledges with 200, and hands the
   envelope to the ``WebhookDispatcher`` in a background task.  Handlers
   re-read current state from Frontapp inside the retry engine.

2. **Outbound** (agent → Frontapp). Twenty LangChain tools wrap the client
   and return ``{content, is_error}`` responses.  The LangGraph agent and
   ``POST /api/tools/{name}`` both call them.

Every outbound request goes through the same three layers:

- **RateLimitGovernor**: spaces requests out when ``x-ratelimit-remaining``
  runs low, so the process stays under Frontapp's quota.
- **RetryEngine**: exponential backoff with jitter for network errors,
  429 and 5xx; honours ``Retry-After``.
- **ResponseCache**: TTL cache for slow-changing reads (tags, inboxes,
  teammates, accounts).

Package Structure
-----------------
- ``frontapp_bridge/config.py``: configuration from .env / SSM
- ``frontapp_bridge/errors.py``: error hierarchy and HTTP status mapping
- ``frontapp_bridge/services/``: client, retry, rate limit, cache, metrics
- ``frontapp_bridge/webhooks/``: verifier, handlers, dispatcher, subscriptions
- ``frontapp_bridge/tools/``: LangChain tools for the agent
- ``frontapp_bridge/agent.py``: LangGraph StateGraph definition
- ``frontapp_bridge/api/``: FastAPI routes and Pydantic schemas
- ``frontapp_bridge/server.py``: FastAPI application and lifespan
- ``frontapp_bridge/main.py``: CLI (webhook management, terminal chat)
"""
