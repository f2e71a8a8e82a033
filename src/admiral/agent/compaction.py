"""
Conversation compaction for long-running game sessions.

Token usage is estimated at four characters per token. Once the estimate
crosses `context_window * budget_ratio`, everything between the anchor and
a preserved tail is rendered to a flat transcript and summarized by the
model. The context then becomes `[anchor, summary, *tail]`.

Rules:
- The anchor (message 0) is never removed.
- The tail keeps at least `min_recent` messages verbatim and starts on a
  user message, so a tool call is never separated from its result.
- Summaries compound: the previous summary is fed into the next one.
- If summarization fails the previous summary is kept and marked lossy.
"""

import json
import math
from dataclasses import dataclass

import structlog

from ..errors import AgentCancelledError
from ..llm.base import BaseLLM, LLMMessage
from .cancellation import CancelToken
from .context import ConversationContext

logger = structlog.get_logger()

CHARS_PER_TOKEN = 4
DEFAULT_BUDGET_RATIO = 0.55
TAIL_BUDGET_SHARE = 0.6
MIN_RECENT_MESSAGES = 10
SUMMARY_MAX_TOKENS = 1024
SUMMARY_TIMEOUT = 30.0
MAX_RESULT_CHARS_IN_TRANSCRIPT = 500

SUMMARY_SYSTEM_PROMPT = "You are a concise summarizer. Output only the summary, no preamble."
SUMMARY_INSTRUCTIONS = (
    "Summarize this game session transcript. "
    "Focus on: (1) what the agent was CURRENTLY DOING and what it planned to do next, "
    "(2) current location, credits, ship status, cargo, "
    "(3) active goals, key events, relationships. Be concise.\n\n"
)
LOSSY_SUFFIX = "\n\n(Additional context was lost due to summarization failure.)"
LOST_CONTEXT = "(Earlier session context was lost.)"


@dataclass
class CompactionState:
    """Running summary carried across turns."""

    summary: str = ""
    compaction_count: int = 0


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_message_tokens(message: LLMMessage) -> int:
    total = estimate_tokens(message.content)
    if message.thinking:
        total += estimate_tokens(message.thinking)
    for call in message.tool_calls or []:
        total += estimate_tokens(call.name + json.dumps(call.arguments, default=str))
    return total


def total_tokens(messages: list[LLMMessage]) -> int:
    return sum(estimate_message_tokens(m) for m in messages)


def find_split_index(messages: list[LLMMessage], tail_budget: int, min_recent: int) -> int:
    """Walk back from the end collecting a tail that fits *tail_budget*.

    The tail always grows to at least *min_recent* messages (or everything
    after the anchor, if there are fewer).
    """
    split = len(messages)
    tail_tokens = 0
    for i in range(len(messages) - 1, 0, -1):
        cost = estimate_message_tokens(messages[i])
        if tail_tokens + cost > tail_budget and len(messages) - split >= min_recent:
            break
        tail_tokens += cost
        split = i
    return split


def find_turn_boundary(messages: list[LLMMessage], index: int, min_recent: int) -> int:
    """Snap *index* onto a user message.

    Moving forward shrinks the tail, so it is only allowed while the tail
    keeps *min_recent* messages; otherwise search backward towards the anchor.
    Returns 1 (nothing to compact) when no user message qualifies.
    """
    last_forward = len(messages) - min_recent
    for i in range(index, max(last_forward, index - 1) + 1):
        if i < len(messages) and messages[i].role == "user":
            return i
    for i in range(index - 1, 0, -1):
        if messages[i].role == "user":
            return i
    return 1


def format_messages_for_summary(messages: list[LLMMessage]) -> str:
    lines = []
    for msg in messages:
        if msg.role == "user":
            lines.append(f"[USER] {msg.content}")
        elif msg.role == "assistant":
            if msg.content.strip():
                lines.append(f"[AGENT] {msg.content.strip()}")
            for call in msg.tool_calls or []:
                args = ", ".join(
                    f"{k}={v if isinstance(v, str) else json.dumps(v, default=str)}"
                    for k, v in call.arguments.items()
                )
                lines.append(f"[TOOL CALL] {call.name}({args})")
        elif msg.role == "tool":
            text = msg.content
            if len(text) > MAX_RESULT_CHARS_IN_TRANSCRIPT:
                text = text[:MAX_RESULT_CHARS_IN_TRANSCRIPT] + "..."
            error_tag = " [ERROR]" if msg.is_error else ""
            lines.append(f"[RESULT{error_tag}] {msg.name or 'tool'}: {text}")
    return "\n".join(lines)


def build_summary_prompt(transcript: str, previous_summary: str = "") -> str:
    prompt = SUMMARY_INSTRUCTIONS
    if previous_summary:
        prompt += f"Previous summary:\n{previous_summary}\n\n"
    return prompt + f"Transcript:\n{transcript}"


def summary_message(summary: str) -> LLMMessage:
    return LLMMessage(
        role="user",
        content=f"## Session History Summary\n\n{summary}\n\n---\nNow continue your mission. Recent events follow.",
    )


async def summarize(
    llm: BaseLLM,
    messages: list[LLMMessage],
    previous_summary: str = "",
    *,
    cancel: CancelToken | None = None,
    timeout: float = SUMMARY_TIMEOUT,
    max_tokens: int = SUMMARY_MAX_TOKENS,
) -> str:
    """Ask the model for a summary of *messages*. Raises on any failure."""
    prompt = build_summary_prompt(format_messages_for_summary(messages), previous_summary)
    cancel = cancel or CancelToken()
    response = await cancel.run(
        llm.generate(
            messages=[LLMMessage(role="user", content=prompt)],
            system_prompt=SUMMARY_SYSTEM_PROMPT,
            max_tokens=max_tokens,
        ),
        timeout=timeout,
    )
    text = response.content.strip()
    if not text:
        raise ValueError("Empty summary")
    return text


async def compact_context(
    llm: BaseLLM,
    context: ConversationContext,
    state: CompactionState,
    *,
    budget_ratio: float = DEFAULT_BUDGET_RATIO,
    min_recent: int = MIN_RECENT_MESSAGES,
    cancel: CancelToken | None = None,
    summary_timeout: float = SUMMARY_TIMEOUT,
    summary_max_tokens: int = SUMMARY_MAX_TOKENS,
) -> bool:
    """Compact *context* in place if it is over budget. Returns True if it did."""
    budget = int(llm.context_window * budget_ratio)
    current = total_tokens(context.messages)
    if current < budget:
        return False

    split = find_split_index(context.messages, int(budget * TAIL_BUDGET_SHARE), min_recent)
    split = find_turn_boundary(context.messages, split, min_recent)
    if split <= 1:
        logger.debug("Over budget but nothing to compact", tokens=current, budget=budget)
        return False

    old_messages = context.messages[1:split]
    tail = context.messages[split:]

    logger.info(
        "Compacting context",
        tokens=current,
        budget=budget,
        summarized=len(old_messages),
        kept=len(tail),
    )

    try:
        summary = await summarize(
            llm,
            old_messages,
            state.summary,
            cancel=cancel,
            timeout=summary_timeout,
            max_tokens=summary_max_tokens,
        )
    except AgentCancelledError:
        raise
    except Exception as e:
        logger.warning("Summarization failed, degrading summary", error=str(e))
        summary = state.summary + LOSSY_SUFFIX if state.summary else LOST_CONTEXT

    state.summary = summary
    state.compaction_count += 1
    context.messages = [context.messages[0], summary_message(summary), *tail]

    logger.info("Compaction complete", tokens=total_tokens(context.messages), messages=len(context.messages))
    return True
