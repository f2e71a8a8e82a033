"""
Base classes for LLM providers.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Literal, Union


@dataclass
class ToolDefinition:
    """Definition of a tool that the LLM can use."""

    name: str
    description: str
    parameters: dict[str, Any]


@dataclass
class TextBlock:
    """Plain text produced by the model."""

    text: str
    type: Literal["text"] = "text"


@dataclass
class ThinkingBlock:
    """Reasoning the provider exposed separately from the answer."""

    thinking: str
    type: Literal["thinking"] = "thinking"


@dataclass
class ToolCall:
    """A tool call made by the LLM."""

    id: str
    name: str
    arguments: dict[str, Any]
    type: Literal["tool_call"] = "tool_call"


ContentBlock = Union[TextBlock, ThinkingBlock, ToolCall]


@dataclass
class LLMMessage:
    """A message in the conversation."""

    role: Literal["user", "assistant", "system", "tool"]
    content: str
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None
    name: str | None = None
    thinking: str | None = None
    is_error: bool = False


@dataclass
class LLMResponse:
    """Response from an LLM."""

    blocks: list[ContentBlock] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0
    model: str = ""
    stop_reason: str | None = None
    error_message: str | None = None
    raw_response: Any = None

    @classmethod
    def from_text(cls, text: str, **kwargs: Any) -> "LLMResponse":
        return cls(blocks=[TextBlock(text=text)], **kwargs)

    @property
    def content(self) -> str:
        """Concatenated text blocks."""
        return "".join(b.text for b in self.blocks if isinstance(b, TextBlock))

    @property
    def thinking(self) -> str:
        return "\n".join(b.thinking for b in self.blocks if isinstance(b, ThinkingBlock))

    @property
    def tool_calls(self) -> list[ToolCall]:
        return [b for b in self.blocks if isinstance(b, ToolCall)]

    def to_message(self) -> LLMMessage:
        """Convert to the assistant message appended to a conversation."""
        return LLMMessage(
            role="assistant",
            content=self.content,
            tool_calls=self.tool_calls or None,
            thinking=self.thinking or None,
        )


class BaseLLM(ABC):
    """Base class for LLM providers."""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        context_window: int = 128_000,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.context_window = context_window

    @abstractmethod
    async def generate(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Generate a response from the LLM."""
        pass

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get the provider name."""
        pass
