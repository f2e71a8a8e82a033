"""
Configuration management for Admiral

Uses pydantic-settings for environment variable parsing and validation.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ProviderName = Literal[
    "anthropic", "openai", "openrouter", "groq", "ollama", "lmstudio", "vllm"
]


class LLMConfig(BaseSettings):
    """Configuration for a single LLM provider."""

    model_config = SettingsConfigDict(extra="ignore")

    provider: ProviderName = "anthropic"
    model: str = "claude-sonnet-4-20250514"
    api_key: str = ""
    base_url: str | None = None
    max_tokens: int = 4096
    temperature: float = 0.7
    context_window: int = 200_000


# Context windows for providers whose models we don't know individually
DEFAULT_CONTEXT_WINDOWS: dict[str, int] = {
    "anthropic": 200_000,
    "openai": 128_000,
    "openrouter": 128_000,
    "groq": 128_000,
    "ollama": 128_000,
    "lmstudio": 128_000,
    "vllm": 128_000,
}


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # Application
    app_name: str = "Admiral"
    debug: bool = False
    log_level: str = "INFO"

    # Server
    host: str = "127.0.0.1"
    port: int = 3030

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/admiral.db",
        description="Database connection URL"
    )

    # Game server
    default_server_url: str = Field(
        default="https://game.spacemolt.com",
        description="Game server base URL used for new profiles",
    )
    prompt_path: str = Field(default="prompt.md", description="Game knowledge appended to the system prompt")

    # LLM Providers (API Keys)
    anthropic_api_key: str = Field(default="", description="Anthropic API key for Claude")
    openai_api_key: str = Field(default="", description="OpenAI API key")
    openrouter_api_key: str = Field(default="", description="OpenRouter API key")
    groq_api_key: str = Field(default="", description="Groq API key")

    # Local providers (OpenAI-compatible endpoints)
    ollama_base_url: str = "http://localhost:11434/v1"
    lmstudio_base_url: str = "http://localhost:1234/v1"
    vllm_base_url: str = "http://localhost:8000/v1"

    # Default model settings
    max_tokens: int = 4096
    temperature: float = 0.7
    llm_timeout_seconds: float = Field(default=300.0, description="Per-call model timeout")
    llm_max_retries: int = 3
    llm_retry_base_delay: float = 5.0

    # Agent loop
    max_tool_rounds: int = Field(default=30, description="Tool rounds per turn before the turn is ended")
    turn_interval_seconds: float = 2.0
    context_budget_ratio: float = Field(default=0.55, description="Share of the context window before compaction")
    min_recent_messages: int = 10
    summary_max_tokens: int = 1024
    summary_timeout_seconds: float = 30.0

    # Connections
    session_max_attempts: int = 6
    session_retry_base_delay: float = 5.0
    ws_reconnect_base_delay: float = 1.0
    ws_reconnect_max_delay: float = 30.0
    ws_command_timeout: float = 30.0
    ws_correlation: Literal["fifo", "id"] = "fifo"
    spec_cache_ttl_seconds: int = 3600
    spec_fetch_timeout: float = 10.0

    @field_validator("context_budget_ratio")
    @classmethod
    def check_budget_ratio(cls, v: float) -> float:
        if not 0.05 <= v <= 0.95:
            raise ValueError("context_budget_ratio must be between 0.05 and 0.95")
        return v

    def get_llm_config(self, provider: str, model: str) -> LLMConfig:
        """Get LLM configuration for a provider/model pair."""
        api_key_map = {
            "anthropic": self.anthropic_api_key,
            "openai": self.openai_api_key,
            "openrouter": self.openrouter_api_key,
            "groq": self.groq_api_key,
            # Local servers accept any key
            "ollama": "local",
            "lmstudio": "local",
            "vllm": "local",
        }

        base_url_map = {
            "anthropic": None,
            "openai": None,
            "openrouter": "https://openrouter.ai/api/v1",
            "groq": "https://api.groq.com/openai/v1",
            "ollama": self.ollama_base_url,
            "lmstudio": self.lmstudio_base_url,
            "vllm": self.vllm_base_url,
        }

        if provider not in api_key_map:
            raise ValueError(f"Unknown LLM provider: {provider}")

        return LLMConfig(
            provider=provider,  # type: ignore
            model=model,
            api_key=api_key_map[provider],
            base_url=base_url_map[provider],
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            context_window=DEFAULT_CONTEXT_WINDOWS[provider],
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
