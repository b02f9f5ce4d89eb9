"""FastAPI route definitions for the agent and tool API."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request
from langchain_core.messages import HumanMessage
from pydantic import ValidationError

from frontapp_bridge.api.schemas import (
    ChatRequest,
    ChatResponse,
    HealthResponse,
    ToolInfo,
    ToolResponse,
)
from frontapp_bridge.services.frontapp_client import get_frontapp_client
from frontapp_bridge.tools.frontapp import TOOLS_BY_NAME

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_agent(request: Request):
    """Retrieve the compiled LangGraph agent from app state."""
    agent = getattr(request.app.state, "agent", None)
    if agent is None:
        raise HTTPException(
            status_code=503,
            detail="The agent is not available. Check ANTHROPIC_API_KEY and try again.",
        )
    return agent


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """Health check with a snapshot of the outbound resilience state."""
    client = get_frontapp_client()
    return HealthResponse(
        webhooks_enabled=getattr(request.app.state, "verifier", None) is not None,
        agent_ready=getattr(request.app.state, "agent", None) is not None,
        rate_limit=client.governor.snapshot(),
        cached_entries=client.cache.entry_count,
    )


@router.get("/tools", response_model=list[ToolInfo])
async def list_tools():
    """List the Frontapp tools with their argument schemas."""
    return [
        ToolInfo(
            name=t.name,
            description=t.description,
            args_schema=t.tool_call_schema.model_json_schema(),
        )
        for t in TOOLS_BY_NAME.values()
    ]


@router.post("/tools/{name}", response_model=ToolResponse)
async def call_tool(name: str, arguments: dict | None = None):
    """Invoke one tool directly.

    Tool failures come back as a 200 with ``is_error`` set; only an unknown
    tool (404) or arguments that don't fit its schema (422) are HTTP errors.
    """
    tool = TOOLS_BY_NAME.get(name)
    if tool is None:
        raise HTTPException(status_code=404, detail=f"Unknown tool: {name}")
    try:
        return await tool.ainvoke(arguments or {})
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False)) from e


@router.post("/chat", response_model=ChatResponse)
async def chat(request: ChatRequest, http_request: Request):
    """Send a message to the helpdesk agent and get a response.

    The session_id is used to maintain conversation context across
    multiple requests from the same user.
    """
    agent = _get_agent(http_request)
    request_id = getattr(http_request.state, "request_id", "?")

    try:
        result = await agent.ainvoke(
            {"messages": [HumanMessage(content=request.message)]},
            config={"configurable": {"thread_id": request.session_id}},
        )

        messages = result.get("messages", [])
        if not messages:
            logger.error("[%s] Agent returned no messages", request_id)
            raise HTTPException(status_code=500, detail="Agent produced no response.")

        last_message = messages[-1]
        reply = last_message.content if hasattr(last_message, "content") else str(last_message)
        if isinstance(reply, list):
            reply = "".join(
                block.get("text", "") for block in reply if isinstance(block, dict)
            )

        return ChatResponse(reply=reply, session_id=request.session_id)

    except HTTPException:
        raise
    except Exception as e:
        # Full traceback stays server-side.
        logger.exception("[%s] Error processing chat request", request_id)
        raise HTTPException(
            status_code=500,
            detail="An internal error occurred. Please try again.",
        ) from e
