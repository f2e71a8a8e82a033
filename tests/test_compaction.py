"""
Tests for conversation compaction module.
"""

import pytest

from admiral.agent.cancellation import CancelToken
from admiral.agent.compaction import (
    LOST_CONTEXT,
    LOSSY_SUFFIX,
    CompactionState,
    compact_context,
    estimate_tokens,
    find_turn_boundary,
    format_messages_for_summary,
    total_tokens,
)
from admiral.agent.context import ConversationContext
from admiral.errors import AgentCancelledError
from admiral.llm.base import LLMMessage, LLMResponse, ToolCall

from conftest import ScriptedLLM


def _game_session(turns: int, result_chars: int) -> ConversationContext:
    """Anchor plus `turns` x (user, assistant tool call, tool result)."""
    context = ConversationContext(system_prompt="sys")
    context.add_user_message("Begin your mission: mine")
    for i in range(turns):
        context.add_user_message(f"Continue your mission. ({i})")
        context.messages.append(LLMMessage(
            role="assistant",
            content="",
            tool_calls=[ToolCall(id=f"c{i}", name="game", arguments={"command": "mine"})],
        ))
        context.add_tool_result(f"c{i}", "game", "x" * result_chars)
    return context


def test_estimate_tokens():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2


def test_find_turn_boundary_moves_forward_to_user():
    messages = [
        LLMMessage(role="user", content="anchor"),
        LLMMessage(role="assistant", content="a"),
        LLMMessage(role="tool", content="t"),
        LLMMessage(role="user", content="u"),
        LLMMessage(role="assistant", content="a"),
    ]
    assert find_turn_boundary(messages, 1, min_recent=2) == 3


def test_find_turn_boundary_moves_back_when_tail_would_shrink():
    messages = [
        LLMMessage(role="user", content="anchor"),
        LLMMessage(role="user", content="u1"),
        LLMMessage(role="assistant", content="a"),
        LLMMessage(role="tool", content="t"),
        LLMMessage(role="assistant", content="a"),
    ]
    # Moving forward from 2 finds no user message, so it snaps back to 1
    assert find_turn_boundary(messages, 2, min_recent=3) == 1


def test_format_messages_for_summary():
    messages = [
        LLMMessage(role="user", content="Go mine"),
        LLMMessage(
            role="assistant",
            content="Heading out",
            tool_calls=[ToolCall(id="1", name="game", arguments={"command": "travel", "args": {"to": "belt"}})],
        ),
        LLMMessage(role="tool", content="y" * 600, name="game", is_error=True),
    ]
    text = format_messages_for_summary(messages)

    assert "[USER] Go mine" in text
    assert "[AGENT] Heading out" in text
    assert '[TOOL CALL] game(command=travel, args={"to": "belt"})' in text
    assert "[RESULT [ERROR]] game: " + "y" * 500 + "..." in text


@pytest.mark.asyncio
async def test_no_compaction_under_budget():
    llm = ScriptedLLM()
    context = _game_session(turns=2, result_chars=100)

    compacted = await compact_context(llm, context, CompactionState())

    assert compacted is False
    assert llm.calls == []


@pytest.mark.asyncio
async def test_compaction_keeps_anchor_summary_and_tail():
    """100k window at 0.55: a session well over 55k tokens gets summarized."""
    llm = ScriptedLLM([LLMResponse.from_text("Mined 40 ore at the belt.")], context_window=100_000)
    context = _game_session(turns=40, result_chars=8000)
    anchor = context.messages[0]
    state = CompactionState()

    assert total_tokens(context.messages) > 55_000
    compacted = await compact_context(llm, context, state, budget_ratio=0.55, min_recent=10)

    assert compacted is True
    assert context.messages[0] is anchor
    assert "Mined 40 ore at the belt." in context.messages[1].content
    assert context.messages[2].role == "user"
    assert len(context.messages) - 2 >= 10
    assert total_tokens(context.messages) < 55_000
    assert state.summary == "Mined 40 ore at the belt."
    assert state.compaction_count == 1


@pytest.mark.asyncio
async def test_tool_calls_stay_with_results():
    llm = ScriptedLLM([LLMResponse.from_text("summary")], context_window=20_000)
    context = _game_session(turns=20, result_chars=4000)

    await compact_context(llm, context, CompactionState(), min_recent=4)

    call_ids = {
        call.id
        for m in context.messages if m.tool_calls
        for call in m.tool_calls
    }
    result_ids = {m.tool_call_id for m in context.messages if m.role == "tool"}
    assert call_ids == result_ids


@pytest.mark.asyncio
async def test_previous_summary_is_fed_forward():
    llm = ScriptedLLM([LLMResponse.from_text("second")], context_window=20_000)
    context = _game_session(turns=20, result_chars=4000)
    state = CompactionState(summary="first", compaction_count=1)

    await compact_context(llm, context, state, min_recent=4)

    prompt = llm.calls[0]["messages"][0].content
    assert "Previous summary:\nfirst" in prompt
    assert state.summary == "second"
    assert state.compaction_count == 2


@pytest.mark.asyncio
async def test_failed_summary_degrades_previous():
    llm = ScriptedLLM([RuntimeError("provider down")], context_window=20_000)
    context = _game_session(turns=20, result_chars=4000)
    state = CompactionState(summary="Docked at Sol.")

    compacted = await compact_context(llm, context, state, min_recent=4)

    assert compacted is True
    assert state.summary == "Docked at Sol." + LOSSY_SUFFIX
    assert "Docked at Sol." in context.messages[1].content


@pytest.mark.asyncio
async def test_failed_first_summary_marks_context_lost():
    llm = ScriptedLLM([LLMResponse.from_text("   ")], context_window=20_000)
    context = _game_session(turns=20, result_chars=4000)
    state = CompactionState()

    await compact_context(llm, context, state, min_recent=4)

    assert state.summary == LOST_CONTEXT


@pytest.mark.asyncio
async def test_cancellation_is_not_swallowed():
    llm = ScriptedLLM([LLMResponse.from_text("unused")], context_window=20_000)
    context = _game_session(turns=20, result_chars=4000)
    cancel = CancelToken()
    cancel.cancel()

    with pytest.raises(AgentCancelledError):
        await compact_context(llm, context, CompactionState(), min_recent=4, cancel=cancel)
