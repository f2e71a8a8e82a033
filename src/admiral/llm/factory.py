"""
LLM factory for creating provider instances.

Supports: Anthropic Claude (native SDK) and every OpenAI-compatible endpoint
(OpenAI, OpenRouter, Groq, Ollama, LM Studio, vLLM).
"""

from ..config import LLMConfig, Settings, get_settings
from .anthropic import AnthropicLLM
from .base import BaseLLM
from .openai import OpenAILLM


def parse_model_string(model_str: str) -> tuple[str, str]:
    """Split "provider/model-id" on the first slash."""
    provider, sep, model_id = model_str.partition("/")
    if not sep or not provider or not model_id:
        raise ValueError(f'Invalid model string "{model_str}". Expected: provider/model-id')
    return provider, model_id


def create_llm(config: LLMConfig) -> BaseLLM:
    """Create an LLM instance based on configuration.

    Provider routing:
    - anthropic -> AnthropicLLM (native Anthropic SDK)
    - everything else -> OpenAILLM against the provider's base URL
    """
    if config.provider == "anthropic":
        return AnthropicLLM(
            api_key=config.api_key,
            model=config.model,
            base_url=config.base_url,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
            context_window=config.context_window,
        )

    return OpenAILLM(
        api_key=config.api_key,
        model=config.model,
        base_url=config.base_url,
        max_tokens=config.max_tokens,
        temperature=config.temperature,
        context_window=config.context_window,
        provider=config.provider,
    )


def resolve_model(model_str: str, settings: Settings | None = None) -> BaseLLM:
    """Resolve "anthropic/claude-sonnet-4-20250514" style strings to an LLM."""
    settings = settings or get_settings()
    provider, model_id = parse_model_string(model_str)
    return create_llm(settings.get_llm_config(provider, model_id))
