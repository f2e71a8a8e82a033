"""
Shared fixtures and fakes.
"""

from typing import Any

import pytest
import pytest_asyncio

from admiral.config import Settings
from admiral.connections.base import CommandResult, GameConnection, LoginResult, RegisterResult
from admiral.events import LogBus
from admiral.llm.base import BaseLLM, LLMMessage, LLMResponse, ToolDefinition
from admiral.models import init_database
from admiral.storage import LogStore, PreferenceStore, ProfileStore


class ScriptedLLM(BaseLLM):
    """Returns queued responses in order; exceptions in the queue are raised."""

    def __init__(self, responses: list[Any] | None = None, context_window: int = 100_000):
        super().__init__(api_key="test", model="scripted", context_window=context_window)
        self.responses = list(responses or [])
        self.calls: list[dict[str, Any]] = []

    @property
    def provider_name(self) -> str:
        return "scripted"

    async def generate(
        self,
        messages: list[LLMMessage],
        tools: list[ToolDefinition] | None = None,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        self.calls.append({
            "messages": list(messages),
            "tools": tools,
            "system_prompt": system_prompt,
        })
        if not self.responses:
            return LLMResponse.from_text("done")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class FakeConnection(GameConnection):
    """In-memory connection that answers from a dict of canned results."""

    mode = "http"
    commands = "Action commands (costs 1 tick): mine\nQuery commands (free, no tick cost): get_status"

    def __init__(self, results: dict[str, CommandResult] | None = None, server_url: str = "http://game.test"):
        super().__init__(server_url)
        self.results = results or {}
        self.executed: list[tuple[str, dict[str, Any] | None]] = []
        self.logins: list[tuple[str, str]] = []
        self.connect_calls = 0
        self.disconnect_calls = 0

    async def connect(self) -> None:
        self.connect_calls += 1
        self._connected = True

    async def login(self, username: str, password: str) -> LoginResult:
        self.logins.append((username, password))
        return LoginResult(success=True, player_id="p-1")

    async def register(self, username: str, empire: str, code: str | None = None) -> RegisterResult:
        return RegisterResult(success=True, username=username, password="pw", empire=empire)

    async def execute(self, command: str, args: dict[str, Any] | None = None) -> CommandResult:
        self.executed.append((command, args))
        return self.results.get(command, CommandResult(result={"ok": True}))

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self._connected = False

    async def command_list(self) -> str:
        return self.commands

    def push(self, notification: Any) -> None:
        self._emit(notification)


class MemoryPreferences:
    """Dict-backed preference store."""

    def __init__(self, data: dict[str, str] | None = None):
        self.data = dict(data or {})

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self.data[key] = value


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'admiral.db'}",
        prompt_path=str(tmp_path / "prompt.md"),
        turn_interval_seconds=0.0,
        llm_retry_base_delay=0.0,
    )


@pytest_asyncio.fixture
async def session_maker(settings):
    maker = await init_database(settings.database_url)
    yield maker
    await maker.kw["bind"].dispose()


@pytest.fixture
def profiles(session_maker):
    return ProfileStore(session_maker)


@pytest.fixture
def preferences(session_maker):
    return PreferenceStore(session_maker)


@pytest.fixture
def log_store(session_maker):
    return LogStore(session_maker)


@pytest.fixture
def log_bus():
    return LogBus()
