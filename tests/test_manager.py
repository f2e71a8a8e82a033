"""
Tests for the Agent and AgentManager lifecycle.
"""

import asyncio

import pytest

from admiral.agent import AgentManager
from admiral.connections.base import CommandResult
from admiral.errors import ConnectionFailedError, ModelNotConfiguredError, NotConnectedError
from admiral.llm.base import LLMResponse, ToolCall

from conftest import FakeConnection, MemoryPreferences, ScriptedLLM


class ConnectionFactory:
    def __init__(self, results=None, fail=False):
        self.results = results
        self.fail = fail
        self.created: list[FakeConnection] = []

    def __call__(self, profile, settings, preferences):
        conn = FakeConnection(self.results, server_url=profile.server_url)
        if self.fail:
            async def refuse():
                raise ConnectionFailedError("server unreachable")
            conn.connect = refuse
        self.created.append(conn)
        return conn


async def _settle(predicate, attempts=200):
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("condition not reached")


def _manager(profiles, log_bus, settings, llm=None, connections=None, preferences=None):
    llm = llm or ScriptedLLM()
    return AgentManager(
        profiles,
        preferences or MemoryPreferences(),
        log_bus,
        settings,
        llm_factory=lambda model_str, _settings: llm,
        connection_factory=connections or ConnectionFactory(),
    )


@pytest.mark.asyncio
async def test_concurrent_connects_share_one_agent(profiles, log_bus, settings):
    profile = await profiles.create(name="scout", provider="anthropic", model="claude")
    connections = ConnectionFactory()
    manager = _manager(profiles, log_bus, settings, connections=connections)

    first, second = await asyncio.gather(manager.connect(profile.id), manager.connect(profile.id))

    assert first is second
    assert len(connections.created) == 1
    assert manager.list_active() == [profile.id]
    await manager.shutdown()


@pytest.mark.asyncio
async def test_connect_logs_in_with_stored_credentials(profiles, log_bus, settings):
    profile = await profiles.create(name="veteran", username="nova", password="pw", provider="anthropic", model="m")
    connections = ConnectionFactory()
    manager = _manager(profiles, log_bus, settings, connections=connections)
    events = []
    log_bus.subscribe(profile.id, events.append)

    await manager.connect(profile.id)

    assert connections.created[0].logins == [("nova", "pw")]
    assert [e.summary for e in events] == [
        "Connecting via http...",
        "Connected via http",
        "Logging in as nova...",
        "Logged in as nova",
    ]
    await manager.shutdown()


@pytest.mark.asyncio
async def test_failed_connect_leaves_no_agent(profiles, log_bus, settings):
    profile = await profiles.create(name="doomed")
    manager = _manager(profiles, log_bus, settings, connections=ConnectionFactory(fail=True))
    events = []
    log_bus.subscribe(profile.id, events.append)

    with pytest.raises(ConnectionFailedError):
        await manager.connect(profile.id)

    assert manager.get_agent(profile.id) is None
    assert events[-1].type == "error"
    assert events[-1].summary == "Connection failed: server unreachable"


@pytest.mark.asyncio
async def test_notifications_become_log_events(profiles, log_bus, settings):
    profile = await profiles.create(name="listener")
    connections = ConnectionFactory()
    manager = _manager(profiles, log_bus, settings, connections=connections)
    await manager.connect(profile.id)
    events = []
    log_bus.subscribe(profile.id, events.append)

    connections.created[0].push({"type": "tick", "data": {"message": "Tick 42"}})

    assert events[0].type == "notification"
    assert events[0].summary == "[TICK] Tick 42"
    await manager.shutdown()


@pytest.mark.asyncio
async def test_execute_command_logs_manual_call(profiles, log_bus, settings):
    profile = await profiles.create(name="hands-on", provider="manual")
    manager = _manager(profiles, log_bus, settings)
    await manager.connect(profile.id)
    events = []
    log_bus.subscribe(profile.id, events.append)

    result = await manager.execute_command(profile.id, "mine", {"belt": "alpha"})

    assert result.ok
    assert [(e.type, e.summary) for e in events] == [
        ("tool_call", 'manual: mine({"belt": "alpha"})'),
        ("tool_result", '{"ok": true}'),
    ]
    await manager.shutdown()


@pytest.mark.asyncio
async def test_start_llm_requires_connection_and_model(profiles, log_bus, settings):
    manual = await profiles.create(name="manual", provider="manual")
    auto = await profiles.create(name="auto", provider="anthropic", model="claude")
    manager = _manager(profiles, log_bus, settings)

    with pytest.raises(NotConnectedError):
        await manager.start_llm(auto.id)

    await manager.connect(manual.id)
    with pytest.raises(ModelNotConfiguredError):
        await manager.start_llm(manual.id)
    assert manager.get_status(manual.id)["running"] is False
    await manager.shutdown()


@pytest.mark.asyncio
async def test_loop_runs_turns_with_events_and_nudges(profiles, log_bus, settings):
    profile = await profiles.create(name="miner", provider="anthropic", model="claude", directive="Mine everything.")
    status = CommandResult(result={}, notifications=[{"type": "combat", "data": {"message": "Pirates!"}}])
    llm = ScriptedLLM()
    manager = _manager(profiles, log_bus, settings, llm=llm, connections=ConnectionFactory({"get_status": status}))
    events = []
    log_bus.subscribe(profile.id, events.append)

    await manager.connect(profile.id)
    await manager.start_llm(profile.id)
    manager.nudge(profile.id, "Sell before docking fees rise.")
    await _settle(lambda: len(llm.calls) >= 2)
    await manager.stop_llm(profile.id)

    first, second = llm.calls[0], llm.calls[1]
    assert "Mine everything." in first["system_prompt"]
    assert "Action commands (costs 1 tick): mine" in first["system_prompt"]
    assert first["messages"][0].content == "Begin your mission: Mine everything."

    between = second["messages"][-1].content
    assert between.startswith("## Events Since Last Action\n  > [COMBAT] Pirates!")
    assert "## Message From Your Operator\nSell before docking fees rise." in between
    assert between.endswith("Continue your mission.")

    summaries = [e.summary for e in events]
    assert "Starting LLM loop with anthropic/claude" in summaries
    assert "Nudge queued: Sell before docking fees rise." in summaries
    assert summaries[-1] == "Agent loop stopped"
    assert manager.get_status(profile.id) == {
        "connected": True,
        "running": False,
        "mode": "http",
        "messages": manager.get_agent(profile.id).context.message_count,
        "compactions": 0,
    }
    await manager.shutdown()


@pytest.mark.asyncio
async def test_start_llm_twice_is_noop(profiles, log_bus, settings):
    profile = await profiles.create(name="steady", provider="anthropic", model="claude")
    llm = ScriptedLLM()
    manager = _manager(profiles, log_bus, settings, llm=llm)
    await manager.connect(profile.id)

    await manager.start_llm(profile.id)
    await manager.start_llm(profile.id)
    await _settle(lambda: manager.get_agent(profile.id).is_running)

    assert len(manager._tasks) == 1
    await manager.shutdown()


@pytest.mark.asyncio
async def test_loop_failure_is_reported(profiles, log_bus, settings):
    profile = await profiles.create(name="broken", provider="nowhere", model="nothing")

    def bad_factory(model_str, _settings):
        raise ValueError(f"Unknown provider in {model_str}")

    manager = AgentManager(
        profiles, MemoryPreferences(), log_bus, settings,
        llm_factory=bad_factory, connection_factory=ConnectionFactory(),
    )
    events = []
    log_bus.subscribe(profile.id, events.append)
    await manager.connect(profile.id)

    await manager.start_llm(profile.id)
    await _settle(lambda: any(e.type == "error" for e in events))

    assert events[-1].summary == "Agent loop failed: Unknown provider in nowhere/nothing"
    assert manager.get_status(profile.id)["running"] is False
    await manager.shutdown()


@pytest.mark.asyncio
async def test_disconnect_and_shutdown(profiles, log_bus, settings):
    one = await profiles.create(name="one", provider="anthropic", model="claude")
    two = await profiles.create(name="two")
    connections = ConnectionFactory()
    manager = _manager(profiles, log_bus, settings, connections=connections)
    await manager.connect(one.id)
    await manager.connect(two.id)
    await manager.start_llm(one.id)

    await manager.disconnect(one.id)

    assert manager.get_status(one.id) == {"connected": False, "running": False}
    assert connections.created[0].disconnect_calls == 1
    with pytest.raises(NotConnectedError):
        manager.nudge(one.id, "hello?")

    await manager.shutdown()
    assert manager.list_active() == []
    assert connections.created[1].disconnect_calls == 1


@pytest.mark.asyncio
async def test_stop_right_after_start_never_runs_loop(profiles, log_bus, settings):
    profile = await profiles.create(name="hasty", provider="anthropic", model="claude")
    llm = ScriptedLLM()
    manager = _manager(profiles, log_bus, settings, llm=llm)
    events = []
    log_bus.subscribe(profile.id, events.append)
    await manager.connect(profile.id)

    await manager.start_llm(profile.id)
    await manager.stop_llm(profile.id)

    assert llm.calls == []
    assert manager.get_status(profile.id)["running"] is False
    assert not any(e.type == "error" for e in events)
    await manager.shutdown()


class HeldConnection(FakeConnection):
    """Keeps `mine` in flight until released and records teardown order."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.order: list[str] = []
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def execute(self, command, args=None):
        if command == "mine":
            self.order.append("mine started")
            self.started.set()
            await self.release.wait()
            self.order.append("mine finished")
        return await super().execute(command, args)

    async def disconnect(self):
        self.order.append("disconnect")
        await super().disconnect()


@pytest.mark.asyncio
async def test_disconnect_waits_for_in_flight_command(profiles, log_bus, settings):
    profile = await profiles.create(name="busy", provider="anthropic", model="claude")
    conn = HeldConnection()
    mine = LLMResponse(blocks=[ToolCall(id="t1", name="game", arguments={"command": "mine"})], stop_reason="tool_use")
    manager = AgentManager(
        profiles, MemoryPreferences(), log_bus, settings,
        llm_factory=lambda model_str, _settings: ScriptedLLM([mine]),
        connection_factory=lambda profile, _settings, _preferences: conn,
    )
    await manager.connect(profile.id)
    await manager.start_llm(profile.id)
    await asyncio.wait_for(conn.started.wait(), timeout=2)

    closing = asyncio.create_task(manager.disconnect(profile.id))
    await asyncio.sleep(0.05)
    assert conn.order == ["mine started"]
    assert not closing.done()

    conn.release.set()
    await asyncio.wait_for(closing, timeout=2)

    assert conn.order == ["mine started", "mine finished", "disconnect"]
    assert conn.disconnect_calls == 1
    assert manager._tasks == {}


@pytest.mark.asyncio
async def test_profile_locks_are_released(profiles, log_bus, settings):
    profile = await profiles.create(name="fleeting")
    manager = _manager(profiles, log_bus, settings)

    await manager.stop_llm("missing")
    await manager.disconnect("missing")
    with pytest.raises(NotConnectedError):
        await manager.start_llm("missing")
    assert manager._locks == {}

    await manager.connect(profile.id)
    assert list(manager._locks) == [profile.id]

    await manager.disconnect(profile.id)
    assert manager._locks == {}
    assert manager._lock_users == {}
