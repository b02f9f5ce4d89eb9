"""Tests for the helpdesk agent graph.

Covers:
  - Chatbot node behaviour with a mocked LLM
  - The tool-routing edge
  - A full chatbot → tools → chatbot loop with a mocked Frontapp client
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage

from frontapp_bridge.agent import (
    AgentState,
    _make_chatbot_node,
    create_frontapp_agent,
    should_use_tools,
)

# ── Helpers ──────────────────────────────────────────────────────────


def _make_mock_llm(*responses: AIMessage) -> MagicMock:
    """Create a mock LLM whose ``ainvoke`` returns ``responses`` in order."""
    mock_llm = MagicMock()
    mock_llm.ainvoke = AsyncMock(side_effect=list(responses))
    return mock_llm


# ── TestChatbotNode ──────────────────────────────────────────────────


class TestChatbotNode:
    @pytest.mark.asyncio
    @patch("frontapp_bridge.agent._build_llm")
    async def test_returns_ai_message(self, mock_build):
        mock_build.return_value = _make_mock_llm(AIMessage(content="You have 2 inboxes."))
        node = _make_chatbot_node()

        state: AgentState = {"messages": [HumanMessage(content="How many inboxes?")]}
        result = await node(state)

        assert len(result["messages"]) == 1
        assert result["messages"][0].content == "You have 2 inboxes."

    @pytest.mark.asyncio
    @patch("frontapp_bridge.agent._build_llm")
    async def test_system_prompt_is_prepended(self, mock_build):
        llm = _make_mock_llm(AIMessage(content="ok"))
        mock_build.return_value = llm
        node = _make_chatbot_node()

        await node({"messages": [HumanMessage(content="Hi")]})

        sent = llm.ainvoke.await_args.args[0]
        assert isinstance(sent[0], SystemMessage)
        assert "Frontapp" in sent[0].content
        assert sent[1].content == "Hi"

    @pytest.mark.asyncio
    @patch("frontapp_bridge.agent.metrics")
    @patch("frontapp_bridge.agent._build_llm")
    async def test_llm_error_propagates_and_is_counted(self, mock_build, mock_metrics):
        llm = MagicMock()
        llm.ainvoke = AsyncMock(side_effect=RuntimeError("LLM down"))
        mock_build.return_value = llm
        node = _make_chatbot_node()

        with pytest.raises(RuntimeError, match="LLM down"):
            await node({"messages": [HumanMessage(content="Hello")]})

        kwargs = mock_metrics.record_llm_call.call_args.kwargs
        assert kwargs["error_type"] == "RuntimeError"


# ── TestShouldUseTools ───────────────────────────────────────────────


class TestShouldUseTools:
    def test_message_with_tool_calls_routes_to_tools(self):
        ai_msg = AIMessage(
            content="", tool_calls=[{"name": "get_tags", "args": {}, "id": "call_1"}],
        )
        assert should_use_tools({"messages": [ai_msg]}) == "tools"

    def test_message_without_tool_calls_routes_to_end(self):
        ai_msg = AIMessage(content="Here are your tags.")
        assert should_use_tools({"messages": [ai_msg]}) == "__end__"


# ── Full graph ──────────────────────────────────────────────────────


class TestAgentGraph:
    @pytest.mark.asyncio
    @patch("frontapp_bridge.agent._build_llm")
    async def test_tool_loop_reaches_frontapp_and_answers(self, mock_build):
        mock_build.return_value = _make_mock_llm(
            AIMessage(content="", tool_calls=[{"name": "get_tags", "args": {}, "id": "call_1"}]),
            AIMessage(content="You have one tag: billing."),
        )
        frontapp = MagicMock()
        frontapp.get_tags = AsyncMock(return_value=[{"id": "tag_1", "name": "billing"}])

        with patch("frontapp_bridge.tools.frontapp.get_frontapp_client", return_value=frontapp):
            graph = create_frontapp_agent()
            result = await graph.ainvoke(
                {"messages": [HumanMessage(content="Which tags exist?")]},
                config={"configurable": {"thread_id": "test-thread"}},
            )

        frontapp.get_tags.assert_awaited_once()
        tool_messages = [m for m in result["messages"] if isinstance(m, ToolMessage)]
        assert len(tool_messages) == 1
        assert "billing" in str(tool_messages[0].content)
        assert result["messages"][-1].content == "You have one tag: billing."

    @pytest.mark.asyncio
    @patch("frontapp_bridge.agent._build_llm")
    async def test_memory_is_kept_per_thread(self, mock_build):
        llm = _make_mock_llm(AIMessage(content="first"), AIMessage(content="second"))
        mock_build.return_value = llm
        graph = create_frontapp_agent()
        config = {"configurable": {"thread_id": "memory-thread"}}

        await graph.ainvoke({"messages": [HumanMessage(content="one")]}, config=config)
        await graph.ainvoke({"messages": [HumanMessage(content="two")]}, config=config)

        # Second call sees system prompt + both turns + first reply.
        sent = llm.ainvoke.await_args.args[0]
        assert [m.content for m in sent[1:]] == ["one", "first", "two"]
