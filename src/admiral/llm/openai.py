"""
OpenAI GPT LLM provider (also works with OpenRouter, Groq and local
OpenAI-compatible servers such as Ollama, LM Studio and vLLM).
"""

import json
from typing import Any

import openai
import structlog

from .base import (
    BaseLLM,
    ContentBlock,
    LLMMessage,
    LLMResponse,
    TextBlock,
    ThinkingBlock,
    ToolCall,
    ToolDefinition,
)

logger = structlog.get_logger()


class OpenAILLM(BaseLLM):
    """OpenAI GPT LLM provider."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        base_url: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        context_window: int = 128_000,
        provider: str = "openai",
    ):
        super().__init__(api_key, model, base_url, max_tokens, temperature, context_window)
        self._provider = provider
        self.client = openai.AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
        )

    @property
    def provider_name(self) -> str:
        return self._provider

    def _convert_messages(self, messages: list[LLMMessage], system_prompt: str | None) -> list[dict[str, Any]]:
        """Convert LLMMessages to chat-completions format.

        Thinking is not replayed.
        """
        converted: list[dict[str, Any]] = []
        if system_prompt:
            converted.append({"role": "system", "content": system_prompt})

        for msg in messages:
            if msg.role == "tool":
                converted.append({
                    "role": "tool",
                    "tool_call_id": msg.tool_call_id,
                    "content": msg.content,
                })
            elif msg.role == "assistant" and msg.tool_calls:
                converted.append({
                    "role": "assistant",
                    "content": msg.content or None,
                    "tool_calls": [
                        {
                            "id": tc.id,
                            "type": "function",
                            "function": {"name": tc.name, "arguments": json.dumps(tc.arguments)},
                        }
                        for tc in msg.tool_calls
                    ],
                })
            else:
                converted.append({"role": msg.role, "content": msg.content})

        return converted

    def _convert_tools(self, tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        """Convert ToolDefinitions to OpenAI format."""
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                },
            }
            for tool in tools
        ]

    @staticmethod
    def _parse_arguments(raw: str | None) -> dict[str, Any]:
        if not raw:
            return {}
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Model sent malformed tool arguments", arguments=raw[:200])
            return {}
        return parsed if isinstance(parsed, dict) else {}

    async def generate(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Generate a response from GPT."""
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens or self.max_tokens,
            "temperature": self.temperature,
            "messages": self._convert_messages(messages, system_prompt),
        }

        if tools:
            kwargs["tools"] = self._convert_tools(tools)

        try:
            response = await self.client.chat.completions.create(**kwargs)
        except openai.APIError as e:
            logger.error("OpenAI API error", provider=self._provider, error=str(e))
            raise

        if not response.choices:
            return LLMResponse(model=response.model, stop_reason="error", error_message="No choices returned")

        choice = response.choices[0]
        message = choice.message

        blocks: list[ContentBlock] = []
        # Reasoning models served through OpenRouter/vLLM expose this extra field
        reasoning = getattr(message, "reasoning_content", None) or getattr(message, "reasoning", None)
        if isinstance(reasoning, str) and reasoning.strip():
            blocks.append(ThinkingBlock(thinking=reasoning))
        if message.content:
            blocks.append(TextBlock(text=message.content))
        for tc in message.tool_calls or []:
            blocks.append(ToolCall(
                id=tc.id,
                name=tc.function.name,
                arguments=self._parse_arguments(tc.function.arguments),
            ))

        return LLMResponse(
            blocks=blocks,
            input_tokens=response.usage.prompt_tokens if response.usage else 0,
            output_tokens=response.usage.completion_tokens if response.usage else 0,
            model=response.model,
            stop_reason=choice.finish_reason,
            raw_response=response,
        )
