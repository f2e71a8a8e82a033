"""
Tests for tools module.
"""

import pytest

from admiral.connections.base import CommandResult
from admiral.tools.base import Tool, ToolResult
from admiral.tools.dispatcher import ToolContext, ToolDispatcher, is_error_result
from admiral.tools.formatting import (
    MAX_RESULT_CHARS,
    TRUNCATION_MARKER,
    format_args,
    format_notification_summary,
    format_tool_result,
    parse_notification,
    redact,
)
from admiral.tools.game import create_game_registry, create_game_tools
from admiral.tools.registry import ToolRegistry

from conftest import FakeConnection


class LogRecorder:
    def __init__(self):
        self.entries = []

    def __call__(self, type, summary, detail=None):
        self.entries.append((type, summary, detail))


def _dispatcher(results=None, raises=None):
    log = LogRecorder()
    connection = FakeConnection(results)
    if raises is not None:
        async def boom(command, args=None):
            raise raises
        connection.execute = boom
    ctx = ToolContext(connection=connection, profile_id="p1", log=log)
    return ToolDispatcher(ctx, create_game_registry()), connection, log


def test_tool_result_success():
    """Test successful tool result."""
    result = ToolResult(success=True, output="Test output")

    assert result.success is True
    assert result.to_text() == "Test output"
    assert result.error is None


def test_tool_result_failure():
    """Test failed tool result."""
    result = ToolResult(success=False, error="Something went wrong")

    assert result.to_text() == "Error: Something went wrong"


def test_game_tool_definitions():
    registry = create_game_registry()

    assert set(registry.list_tools()) == {"game", "save_credentials", "update_todo", "read_todo", "status_log"}
    assert registry.is_local("update_todo")
    assert not registry.is_local("game")
    assert registry.local_tools() == ["save_credentials", "update_todo", "read_todo", "status_log"]

    game = registry.get("game").get_parameters_schema()
    assert game["required"] == ["command"]
    assert "args" in game["properties"]


def test_duplicate_tool_names_keep_first():
    first, *_ = create_game_tools()
    clone = Tool(name=first.name, description="imposter", parameters=[])
    registry = ToolRegistry([first, clone])

    assert registry.get(first.name) is first
    assert registry.register(clone) is False
    assert len(registry.get_definitions()) == 1


def test_redact_nested_secrets():
    args = {
        "username": "pilot",
        "password": "hunter2-zx81",
        "profile": {"api_key": "sk-live-4471", "servers": [{"token": "tok-99ab"}, {"secret": "s3cr3t-q"}]},
    }

    redacted = redact(args)
    summary = format_args(args)

    for secret in ("hunter2-zx81", "sk-live-4471", "tok-99ab", "s3cr3t-q"):
        assert secret not in summary
        assert secret not in str(redacted)
    assert redacted["profile"]["servers"][0]["token"] == "XXX"
    assert "username=pilot" in summary
    assert args["password"] == "hunter2-zx81"


def test_format_args_truncates_long_values():
    summary = format_args({"text": "a" * 200})
    assert summary == "text=" + "a" * 57 + "..."


def test_parse_notification_chat():
    dm = {"msg_type": "chat_message", "data": {"channel": "private", "sender": "Vex", "content": "hi"}}
    broadcast = {"msg_type": "chat_message", "data": {"channel": "system", "sender": "[ADMIN]", "content": "restart"}}
    local = {"msg_type": "chat_message", "data": '{"channel": "local", "sender": "Ro", "content": "o7"}'}

    assert parse_notification(dm) == ("DM from Vex", "hi")
    assert parse_notification(broadcast) == ("BROADCAST", "restart")
    assert parse_notification(local) == ("CHAT LOCAL", "Ro: o7")


def test_format_notification_summary():
    assert format_notification_summary({"type": "combat", "data": {"message": "Pirates!"}}) == "[COMBAT] Pirates!"
    assert format_notification_summary("plain") == "plain"


def test_format_tool_result_yaml_with_notifications():
    text = format_tool_result({"credits": 120, "cargo": ["ore"]}, [{"type": "tick", "data": {"message": "tick 5"}}])

    assert text.startswith("Notifications:\n  > [TICK] tick 5\n")
    assert "credits: 120" in text
    assert "- ore" in text


def test_is_error_result():
    assert is_error_result("Error: [x] y")
    assert not is_error_result("credits: 5")


@pytest.mark.asyncio
async def test_game_tool_forwards_to_connection():
    dispatcher, connection, log = _dispatcher({"get_status": CommandResult(result={"credits": 10})})

    result = await dispatcher.execute("game", {"command": "get_status", "args": {"verbose": True}}, "checking")

    assert connection.executed == [("get_status", {"verbose": True})]
    assert result == "credits: 10"
    assert log.entries[0] == ("tool_call", "game(get_status, verbose=true)", "checking")
    assert log.entries[1][0] == "tool_result"


@pytest.mark.asyncio
async def test_game_tool_accepts_json_string_args():
    dispatcher, connection, _ = _dispatcher()

    await dispatcher.execute("game", {"command": "travel", "args": '{"poi": "belt"}'})

    assert connection.executed == [("travel", {"poi": "belt"})]


@pytest.mark.asyncio
async def test_game_tool_missing_command():
    dispatcher, connection, _ = _dispatcher()

    result = await dispatcher.execute("game", {})

    assert result == "Error: missing 'command' argument"
    assert connection.executed == []


@pytest.mark.asyncio
async def test_unknown_tool_name_is_sent_as_command():
    dispatcher, connection, _ = _dispatcher()

    await dispatcher.execute("mine", {"times": 2})

    assert connection.executed == [("mine", {"times": 2})]


@pytest.mark.asyncio
async def test_connection_error_becomes_error_string():
    dispatcher, _, _ = _dispatcher({"sell": CommandResult.failure("not_docked", "Dock first")})

    assert await dispatcher.execute("game", {"command": "sell"}) == "Error: [not_docked] Dock first"


@pytest.mark.asyncio
async def test_raised_exception_becomes_error_string():
    dispatcher, _, log = _dispatcher(raises=RuntimeError("socket gone"))

    result = await dispatcher.execute("game", {"command": "mine"})

    assert result == "Error executing mine: socket gone"
    assert log.entries[-1] == ("error", "Error executing mine: socket gone", None)


@pytest.mark.asyncio
async def test_large_result_truncated_for_model_but_logged_in_full():
    big = "z" * 10_000
    dispatcher, _, log = _dispatcher({"read_log": CommandResult(result=big)})

    result = await dispatcher.execute("game", {"command": "read_log"})

    assert result == big[:MAX_RESULT_CHARS] + TRUNCATION_MARKER
    _, summary, detail = log.entries[-1]
    assert len(summary) == 200
    assert detail == big


@pytest.mark.asyncio
async def test_local_todo_tools_touch_no_network():
    dispatcher, connection, _ = _dispatcher()

    assert await dispatcher.execute("read_todo", {}) == "(empty TODO list)"
    assert await dispatcher.execute("update_todo", {"content": "- mine 50 ore"}) == "TODO list updated."
    assert await dispatcher.execute("read_todo", {}) == "- mine 50 ore"
    assert dispatcher.todo == "- mine 50 ore"
    assert connection.executed == []


@pytest.mark.asyncio
async def test_save_credentials_redacted_in_log(profiles):
    profile = await profiles.create(name="miner")
    log = LogRecorder()
    ctx = ToolContext(connection=FakeConnection(), profile_id=profile.id, log=log, profiles=profiles)
    dispatcher = ToolDispatcher(ctx, create_game_registry())

    result = await dispatcher.execute(
        "save_credentials",
        {"username": "nova", "password": "f00dbabe-secret", "empire": "solarian", "player_id": "p-7"},
    )

    assert result == "Credentials saved successfully for nova."
    assert "f00dbabe-secret" not in log.entries[0][1]
    stored = await profiles.get(profile.id)
    assert stored.username == "nova"
    assert stored.password == "f00dbabe-secret"


@pytest.mark.asyncio
async def test_status_log():
    dispatcher, _, log = _dispatcher()

    assert await dispatcher.execute("status_log", {"category": "mining", "message": "Belt is empty"}) == "Logged."
    assert ("system", "[mining] Belt is empty", None) in log.entries
