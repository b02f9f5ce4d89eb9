"""LangGraph-based helpdesk agent that drives the Frontapp tools.

Architecture:
  A two-node StateGraph:

    1. **chatbot**: Claude with the Frontapp tool bindings
    2. **tools**: executes any tool calls the LLM requests

  Routing:
    chatbot → (has tool calls?) → tools → chatbot (loop)
            → (no tool calls?)  → END

  The tools are coroutines, so the graph must be run with ``ainvoke``.
  Every tool call goes through the shared FrontappClient and therefore
  through its rate-limit governor, retry engine and response cache.

  Memory:
    Conversation state is kept per session via LangGraph's MemorySaver
    checkpoint, enabling multi-turn conversations across API calls.
"""

from __future__ import annotations

import logging
import time
from typing import Annotated

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import AnyMessage, SystemMessage
from langgraph.checkpoint.memory import MemorySaver
from langgraph.graph import END, StateGraph
from langgraph.graph.message import add_messages
from langgraph.prebuilt import ToolNode
from typing_extensions import TypedDict

from frontapp_bridge.config import ANTHROPIC_API_KEY, MODEL_NAME
from frontapp_bridge.prompts import get_system_prompt
from frontapp_bridge.services.metrics import metrics
from frontapp_bridge.tools.frontapp import ALL_TOOLS

logger = logging.getLogger(__name__)


# ── State schema ─────────────────────────────────────────────────────


class AgentState(TypedDict):
    """``messages`` uses the ``add_messages`` reducer so each node appends."""

    messages: Annotated[list[AnyMessage], add_messages]


# ── LLM builder ─────────────────────────────────────────────────────


def _build_llm():
    if not ANTHROPIC_API_KEY:
        raise OSError("Missing required configuration: ANTHROPIC_API_KEY.")
    llm = ChatAnthropic(
        model=MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=0.1,
        max_tokens=2048,
    )
    return llm.bind_tools(ALL_TOOLS)


# ── Node: chatbot ───────────────────────────────────────────────────


def _make_chatbot_node():
    """Create the chatbot node.  The bound LLM is built once per graph."""
    llm_with_tools = _build_llm()

    async def chatbot_node(state: AgentState) -> dict:
        system = SystemMessage(content=get_system_prompt())
        t0 = time.perf_counter()
        try:
            response = await llm_with_tools.ainvoke([system] + state["messages"])
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_llm_call(
                "llm_invoke", latency_ms=elapsed, error_type=type(exc).__name__,
            )
            raise
        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_llm_call("llm_invoke", latency_ms=elapsed)
        logger.debug("chatbot responded in %.0fms", elapsed)
        return {"messages": [response]}

    return chatbot_node


# ── Conditional edge ────────────────────────────────────────────────


def should_use_tools(state: AgentState) -> str:
    """Check if the last message has tool calls; if so, route to tools node."""
    last_message = state["messages"][-1]
    if hasattr(last_message, "tool_calls") and last_message.tool_calls:
        return "tools"
    return END


# ── Graph assembly ───────────────────────────────────────────────────


def create_frontapp_agent():
    """Build and compile the helpdesk agent graph.

    Returns a compiled graph that can be invoked with:
        await graph.ainvoke(
            {"messages": [HumanMessage(content="...")]},
            config={"configurable": {"thread_id": "session-123"}},
        )
    """
    graph = StateGraph(AgentState)
    graph.add_node("chatbot", _make_chatbot_node())
    graph.add_node("tools", ToolNode(ALL_TOOLS))

    graph.set_entry_point("chatbot")
    graph.add_conditional_edges(
        "chatbot", should_use_tools, {"tools": "tools", END: END},
    )
    graph.add_edge("tools", "chatbot")

    compiled = graph.compile(checkpointer=MemorySaver())
    logger.debug("Frontapp agent compiled: model: %s, tools: %d", MODEL_NAME, len(ALL_TOOLS))
    return compiled
