"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from frontapp_bridge.tools.frontapp import ToolContent, ToolResponse

__all__ = [
    "ChatRequest",
    "ChatResponse",
    "HealthResponse",
    "ToolContent",
    "ToolInfo",
    "ToolResponse",
    "WebhookAck",
]


class ChatRequest(BaseModel):
    """Incoming chat message."""

    message: str = Field(..., min_length=1, max_length=4000, description="The user's message")
    session_id: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Unique session identifier for conversation continuity",
    )


class ChatResponse(BaseModel):
    """Response from the agent."""

    reply: str = Field(..., description="The agent's response message")
    session_id: str = Field(..., description="The session ID for this conversation")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "frontapp-bridge"
    webhooks_enabled: bool = False
    agent_ready: bool = False
    rate_limit: dict[str, float] = Field(default_factory=dict)
    cached_entries: int = 0


class ToolInfo(BaseModel):
    """One entry of the tool catalogue."""

    name: str
    description: str
    args_schema: dict[str, Any] = Field(default_factory=dict)


class WebhookAck(BaseModel):
    """Returned to Frontapp once a delivery is verified and queued."""

    status: str = "accepted"
