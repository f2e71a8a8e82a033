"""
The agent turn loop.

One turn: compact if needed, ask the model, run the tool calls it asked for,
append the results and ask again, until the model stops calling tools or the
round limit is hit. Model calls are retried with exponential backoff and run
under the agent's cancel token with a per-call timeout.
"""

import re
from dataclasses import dataclass
from typing import Callable

import structlog

from ..config import Settings
from ..errors import AgentCancelledError, LLMCallError
from ..llm.base import BaseLLM, LLMResponse, TextBlock, ThinkingBlock
from ..tools.dispatcher import ToolDispatcher, is_error_result
from ..tools.formatting import truncate
from .cancellation import CancelToken
from .compaction import CompactionState, compact_context, total_tokens
from .context import ConversationContext

logger = structlog.get_logger()

LogFn = Callable[..., None]

MAX_REASON_CHARS = 180


@dataclass
class LoopConfig:
    """Tuning for model calls, tool rounds and compaction."""

    max_tool_rounds: int = 30
    max_retries: int = 3
    retry_base_delay: float = 5.0
    llm_timeout: float = 300.0
    max_tokens: int = 4096
    budget_ratio: float = 0.55
    min_recent: int = 10
    summary_timeout: float = 30.0
    summary_max_tokens: int = 1024

    @classmethod
    def from_settings(cls, settings: Settings, budget_ratio: float | None = None) -> "LoopConfig":
        return cls(
            max_tool_rounds=settings.max_tool_rounds,
            max_retries=settings.llm_max_retries,
            retry_base_delay=settings.llm_retry_base_delay,
            llm_timeout=settings.llm_timeout_seconds,
            max_tokens=settings.max_tokens,
            budget_ratio=budget_ratio if budget_ratio is not None else settings.context_budget_ratio,
            min_recent=settings.min_recent_messages,
            summary_timeout=settings.summary_timeout_seconds,
            summary_max_tokens=settings.summary_max_tokens,
        )


def is_failed_response(response: LLMResponse) -> str | None:
    """Return why *response* counts as a failed call, or None if usable."""
    if response.stop_reason == "error":
        return response.error_message or "LLM returned an error response"
    if not response.blocks:
        return "LLM returned empty response"
    return None


async def complete_with_retry(
    llm: BaseLLM,
    context: ConversationContext,
    log: LogFn,
    cancel: CancelToken,
    config: LoopConfig,
) -> LLMResponse:
    """Call the model, retrying failures with doubling delays.

    Raises LLMCallError once retries are exhausted and AgentCancelledError
    as soon as the cancel token fires.
    """
    last_error: Exception | None = None

    for attempt in range(config.max_retries):
        cancel.raise_if_cancelled()
        try:
            response = await cancel.run(
                llm.generate(
                    messages=context.messages,
                    tools=context.tools or None,
                    system_prompt=context.system_prompt,
                    max_tokens=config.max_tokens,
                ),
                timeout=config.llm_timeout,
            )
            failure = is_failed_response(response)
            if failure:
                raise LLMCallError(failure)
            return response
        except AgentCancelledError:
            raise
        except Exception as e:
            last_error = e
            log("error", f"LLM error (attempt {attempt + 1}/{config.max_retries}): {e}")
            logger.warning("LLM call failed", attempt=attempt + 1, error=str(e))
            if attempt < config.max_retries - 1:
                await cancel.sleep(config.retry_base_delay * (2 ** attempt))

    raise LLMCallError(str(last_error) if last_error else "LLM call failed after retries") from last_error


def extract_reasoning(response: LLMResponse) -> str:
    """The model's visible text, else the tail of its thinking."""
    texts = []
    thoughts = []
    for block in response.blocks:
        match block:
            case TextBlock(text=text) if text.strip():
                texts.append(text.strip())
            case ThinkingBlock(thinking=thinking) if thinking.strip():
                thoughts.append(thinking.strip())
            case _:
                pass

    if texts:
        return " ".join(texts)
    if thoughts:
        sentences = [s.strip() for s in re.split(r"[.!?\n]", " ".join(thoughts)) if len(s.strip()) > 10]
        return ". ".join(sentences[-3:])
    return ""


async def run_agent_turn(
    llm: BaseLLM,
    context: ConversationContext,
    dispatcher: ToolDispatcher,
    log: LogFn,
    cancel: CancelToken,
    config: LoopConfig | None = None,
    compaction: CompactionState | None = None,
) -> int:
    """Run one turn. Returns the number of tool rounds executed."""
    config = config or LoopConfig()
    compaction = compaction if compaction is not None else CompactionState()
    rounds = 0

    while rounds < config.max_tool_rounds:
        if cancel.cancelled:
            return rounds

        await compact_context(
            llm,
            context,
            compaction,
            budget_ratio=config.budget_ratio,
            min_recent=config.min_recent,
            cancel=cancel,
            summary_timeout=config.summary_timeout,
            summary_max_tokens=config.summary_max_tokens,
        )

        try:
            response = await complete_with_retry(llm, context, log, cancel, config)
        except LLMCallError as e:
            log("error", f"LLM call failed: {e}")
            return rounds

        log(
            "llm_call",
            f"{llm.model}: {response.input_tokens} in / {response.output_tokens} out",
            f"~{total_tokens(context.messages)} context tokens, {len(context.messages)} messages",
        )
        context.add_response(response)

        tool_calls = response.tool_calls
        reasoning = extract_reasoning(response)
        if reasoning:
            log("llm_thought", reasoning)
        if not tool_calls:
            return rounds

        reason = truncate(reasoning, MAX_REASON_CHARS) if reasoning else None
        for index, call in enumerate(tool_calls):
            if cancel.cancelled:
                return rounds
            result = await dispatcher.execute(call.name, call.arguments, reason if index == 0 else None)
            context.add_tool_result(call.id, call.name, result, is_error=is_error_result(result))

        rounds += 1

    log("system", f"Reached max tool rounds ({config.max_tool_rounds}), ending turn")
    return rounds
