"""
Conversation state owned by one running agent.
"""

from dataclasses import dataclass, field

from ..llm.base import LLMMessage, LLMResponse, ToolDefinition


@dataclass
class ConversationContext:
    """Messages, system prompt and tool definitions for the model.

    `messages[0]` is the anchor (the mission brief) and is never compacted away.
    """

    system_prompt: str
    messages: list[LLMMessage] = field(default_factory=list)
    tools: list[ToolDefinition] = field(default_factory=list)

    @property
    def anchor(self) -> LLMMessage | None:
        return self.messages[0] if self.messages else None

    def add_user_message(self, content: str) -> None:
        """Add a user message."""
        self.messages.append(LLMMessage(role="user", content=content))

    def add_response(self, response: LLMResponse) -> None:
        """Add the model's reply as an assistant message."""
        self.messages.append(response.to_message())

    def add_tool_result(self, tool_call_id: str, tool_name: str, result: str, is_error: bool = False) -> None:
        """Add a tool result."""
        self.messages.append(LLMMessage(
            role="tool",
            content=result,
            tool_call_id=tool_call_id,
            name=tool_name,
            is_error=is_error,
        ))

    @property
    def message_count(self) -> int:
        """Get the number of messages."""
        return len(self.messages)
