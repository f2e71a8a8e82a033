"""
Registry of live agents, keyed by profile id.

Lifecycle operations on one profile are serialized by a per-profile lock,
so two concurrent connects never create two agents for the same profile.
Different profiles never block each other.
"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Any

import structlog

from ..config import Settings, get_settings
from ..connections import CommandResult, PreferenceBackend, create_connection
from ..errors import ModelNotConfiguredError, NotConnectedError, ProfileNotFoundError
from ..events import LogBus
from ..llm import resolve_model
from ..storage import ProfileStore
from .core import Agent, ConnectionFactory, LLMFactory

logger = structlog.get_logger()


class AgentManager:
    """Creates, tracks and tears down agents."""

    def __init__(
        self,
        profiles: ProfileStore,
        preferences: PreferenceBackend | None,
        log_bus: LogBus,
        settings: Settings | None = None,
        llm_factory: LLMFactory = resolve_model,
        connection_factory: ConnectionFactory = create_connection,
    ):
        self.profiles = profiles
        self.preferences = preferences
        self.log_bus = log_bus
        self.settings = settings or get_settings()
        self.llm_factory = llm_factory
        self.connection_factory = connection_factory

        self._agents: dict[str, Agent] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: defaultdict[str, int] = defaultdict(int)

    def get_agent(self, profile_id: str) -> Agent | None:
        return self._agents.get(profile_id)

    def _require(self, profile_id: str) -> Agent:
        agent = self._agents.get(profile_id)
        if agent is None:
            raise NotConnectedError(profile_id)
        return agent

    @asynccontextmanager
    async def _profile_lock(self, profile_id: str):
        """Hold the profile's lock; drop it once unused and no agent remains."""
        lock = self._locks.setdefault(profile_id, asyncio.Lock())
        self._lock_users[profile_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[profile_id] -= 1
            if not self._lock_users[profile_id]:
                del self._lock_users[profile_id]
                if profile_id not in self._agents:
                    del self._locks[profile_id]

    async def connect(self, profile_id: str) -> Agent:
        """Return the connected agent for *profile_id*, connecting it if needed."""
        async with self._profile_lock(profile_id):
            agent = self._agents.get(profile_id)
            if agent is not None and agent.is_connected:
                return agent
            if agent is not None:
                await self._teardown(profile_id, agent)

            agent = Agent(
                profile_id,
                self.profiles,
                self.preferences,
                self.log_bus,
                self.settings,
                llm_factory=self.llm_factory,
                connection_factory=self.connection_factory,
            )
            try:
                await agent.connect()
            except Exception:
                self._agents.pop(profile_id, None)
                raise

            self._agents[profile_id] = agent
            logger.info("Agent connected", profile_id=profile_id)
            return agent

    async def start_llm(self, profile_id: str) -> None:
        """Start the agent's loop in the background. No-op if already running."""
        async with self._profile_lock(profile_id):
            agent = self._require(profile_id)
            task = self._tasks.get(profile_id)
            if agent.is_running or (task is not None and not task.done()):
                return

            profile = await self.profiles.get(profile_id)
            if profile is None:
                raise ProfileNotFoundError(profile_id)
            if profile.is_manual:
                raise ModelNotConfiguredError("No LLM provider/model configured")
            if not agent.is_connected:
                raise NotConnectedError(profile_id)

            task = asyncio.create_task(agent.start_loop(), name=f"agent-loop-{profile_id}")
            self._tasks[profile_id] = task
            task.add_done_callback(lambda t: self._on_loop_done(profile_id, t))

    @staticmethod
    def _cancel_if_pending(agent: Agent, task: asyncio.Task | None) -> None:
        # A loop that has not reached its run phase cannot see stop_loop()
        if task is not None and not task.done() and not agent.is_running:
            task.cancel()

    def _on_loop_done(self, profile_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(profile_id) is task:
            del self._tasks[profile_id]
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Agent loop ended with error", profile_id=profile_id, error=str(error))
            self.log_bus.emit(profile_id, "error", f"Agent loop failed: {error}")

    async def stop_llm(self, profile_id: str) -> None:
        """Stop the loop but keep the connection open."""
        async with self._profile_lock(profile_id):
            agent = self._agents.get(profile_id)
            if agent is None:
                return
            agent.stop_loop()
            task = self._tasks.get(profile_id)
            self._cancel_if_pending(agent, task)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def _teardown(self, profile_id: str, agent: Agent) -> None:
        """Stop the loop, wait for it to finish, then close the connection."""
        agent.stop_loop()
        task = self._tasks.get(profile_id)
        self._cancel_if_pending(agent, task)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        await agent.close()

    async def disconnect(self, profile_id: str) -> None:
        async with self._profile_lock(profile_id):
            agent = self._agents.pop(profile_id, None)
            if agent is None:
                return
            await self._teardown(profile_id, agent)
        logger.info("Agent disconnected", profile_id=profile_id)

    def nudge(self, profile_id: str, message: str) -> None:
        self._require(profile_id).nudge(message)

    async def execute_command(
        self, profile_id: str, command: str, args: dict[str, Any] | None = None
    ) -> CommandResult:
        return await self._require(profile_id).execute_command(command, args)

    def get_status(self, profile_id: str) -> dict[str, Any]:
        agent = self._agents.get(profile_id)
        if agent is None:
            return {"connected": False, "running": False}
        return agent.status()

    def list_active(self) -> list[str]:
        return [pid for pid, agent in self._agents.items() if agent.is_connected]

    async def shutdown(self) -> None:
        """Disconnect every agent."""
        profile_ids = list(self._agents)
        if profile_ids:
            logger.info("Shutting down agents", count=len(profile_ids))
        await asyncio.gather(*(self.disconnect(pid) for pid in profile_ids), return_exceptions=True)
