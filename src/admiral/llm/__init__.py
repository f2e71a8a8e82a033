"""
LLM module for multi-provider AI model support.

Providers:
- Anthropic Claude (native SDK)
- OpenAI GPT (native SDK)
- OpenRouter, Groq, Ollama, LM Studio, vLLM (OpenAI-compatible endpoints)
"""

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
from .anthropic import AnthropicLLM
from .openai import OpenAILLM
from .factory import create_llm, parse_model_string, resolve_model

__all__ = [
    "BaseLLM",
    "ContentBlock",
    "LLMMessage",
    "LLMResponse",
    "TextBlock",
    "ThinkingBlock",
    "ToolCall",
    "ToolDefinition",
    "AnthropicLLM",
    "OpenAILLM",
    "create_llm",
    "parse_model_string",
    "resolve_model",
]
