"""
The per-profile agent.

An Agent owns one game connection and, while its loop runs, one conversation.
It:
1. Connects the adapter and logs in with the profile's stored credentials
2. Builds the system prompt from the profile, prompt.md and the command list
3. Runs turns until stopped, polling for events and injecting nudges between them
4. Serves manual commands from the operator
"""

import json
from typing import Any, Callable

import httpx
import structlog

from ..config import Settings, get_settings
from ..connections import GameConnection, CommandResult, PreferenceBackend, create_connection
from ..connections.schema import fetch_game_commands, format_command_list
from ..errors import AgentCancelledError, ModelNotConfiguredError, NotConnectedError, ProfileNotFoundError
from ..events import LogBus
from ..llm import BaseLLM, resolve_model
from ..models import Profile
from ..storage import ProfileStore
from ..tools import ToolContext, ToolDispatcher, create_game_registry, format_notification_summary
from .cancellation import CancelToken
from .compaction import CompactionState
from .context import ConversationContext
from .loop import LoopConfig, run_agent_turn
from .prompt import build_system_prompt, directive_for, load_prompt_md

logger = structlog.get_logger()

LLMFactory = Callable[[str, Settings], BaseLLM]
ConnectionFactory = Callable[[Profile, Settings, PreferenceBackend | None], GameConnection]

MANUAL_SUMMARY_CHARS = 200
REGISTRATION_CODE_KEY = "registration_code"


class Agent:
    """Connection, conversation and loop for a single profile."""

    def __init__(
        self,
        profile_id: str,
        profiles: ProfileStore,
        preferences: PreferenceBackend | None,
        log_bus: LogBus,
        settings: Settings | None = None,
        llm_factory: LLMFactory = resolve_model,
        connection_factory: ConnectionFactory = create_connection,
    ):
        self.profile_id = profile_id
        self.profiles = profiles
        self.preferences = preferences
        self.log_bus = log_bus
        self.settings = settings or get_settings()
        self.llm_factory = llm_factory
        self.connection_factory = connection_factory

        self.connection: GameConnection | None = None
        self.context: ConversationContext | None = None
        self.compaction = CompactionState()
        self._running = False
        self._cancel: CancelToken | None = None
        self._nudges: list[str] = []
        self._unsubscribe_notifications: Callable[[], None] | None = None

    @property
    def is_connected(self) -> bool:
        return self.connection is not None and self.connection.is_connected()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def pending_nudges(self) -> int:
        return len(self._nudges)

    def log(self, type: str, summary: str, detail: str | None = None) -> None:
        self.log_bus.emit(self.profile_id, type, summary, detail)

    async def _load_profile(self) -> Profile:
        profile = await self.profiles.get(self.profile_id)
        if profile is None:
            raise ProfileNotFoundError(self.profile_id)
        return profile

    async def connect(self) -> None:
        """Open the game connection and log in if the profile has credentials."""
        profile = await self._load_profile()
        mode = profile.connection_mode

        self.log("connection", f"Connecting via {mode}...")
        connection = self.connection_factory(profile, self.settings, self.preferences)

        try:
            await connection.connect()
        except Exception as e:
            self.log("error", f"Connection failed: {e}")
            logger.error("Connection failed", profile_id=self.profile_id, mode=mode, error=str(e))
            raise

        self.connection = connection
        self._unsubscribe_notifications = connection.on_notification(self._on_notification)
        self.log("connection", f"Connected via {mode}")

        if profile.has_credentials:
            self.log("connection", f"Logging in as {profile.username}...")
            result = await connection.login(profile.username, profile.password)
            if result.success:
                self.log("connection", f"Logged in as {profile.username}")
            else:
                self.log("error", f"Login failed: {result.error}")

    def _on_notification(self, notification: Any) -> None:
        self.log(
            "notification",
            format_notification_summary(notification),
            json.dumps(notification, indent=2, default=str),
        )

    async def _command_list(self, profile: Profile) -> str:
        text = await self.connection.command_list()
        if text:
            return text

        server_url = (profile.server_url or self.settings.default_server_url).rstrip("/")
        async with httpx.AsyncClient() as client:
            commands = await fetch_game_commands(
                client,
                f"{server_url}/api/v1",
                self.preferences,
                ttl=self.settings.spec_cache_ttl_seconds,
                timeout=self.settings.spec_fetch_timeout,
            )
        self.log("system", f"Loaded {len(commands)} game commands")
        return format_command_list(commands)

    async def _system_prompt(self, profile: Profile, command_list: str, prompt_md: str) -> str:
        registration_code = None
        if not profile.has_credentials and self.preferences is not None:
            registration_code = await self.preferences.get(REGISTRATION_CODE_KEY)
        return build_system_prompt(profile, command_list, prompt_md, registration_code)

    async def start_loop(self) -> None:
        """Run turns until `stop_loop()` is called.

        Raises:
            ProfileNotFoundError: the profile was deleted.
            ModelNotConfiguredError: the profile is manual or has no model.
            NotConnectedError: `connect()` has not succeeded.
        """
        profile = await self._load_profile()
        if profile.is_manual:
            raise ModelNotConfiguredError("No LLM provider/model configured")
        if not self.is_connected:
            raise NotConnectedError(self.profile_id)
        if self._running:
            return

        self._running = True
        self._cancel = cancel = CancelToken()
        model_str = f"{profile.provider}/{profile.model}"
        self.log("system", f"Starting LLM loop with {model_str}")

        try:
            llm = self.llm_factory(model_str, self.settings)
            config = LoopConfig.from_settings(self.settings, profile.context_budget_ratio)
            prompt_md = load_prompt_md(self.settings.prompt_path)
            command_list = await self._command_list(profile)

            tool_ctx = ToolContext(
                connection=self.connection,
                profile_id=self.profile_id,
                log=self.log,
                todo=profile.todo or "",
                profiles=self.profiles,
            )
            registry = create_game_registry()
            dispatcher = ToolDispatcher(tool_ctx, registry)

            self.compaction = CompactionState()
            self.context = ConversationContext(
                system_prompt=await self._system_prompt(profile, command_list, prompt_md),
                tools=registry.get_definitions(),
            )
            self.context.add_user_message(f"Begin your mission: {directive_for(profile)}")

            while not cancel.cancelled:
                try:
                    await run_agent_turn(llm, self.context, dispatcher, self.log, cancel, config, self.compaction)
                except AgentCancelledError:
                    break
                except Exception as e:
                    if cancel.cancelled:
                        break
                    self.log("error", f"Turn error: {e}")
                    logger.exception("Turn failed", profile_id=self.profile_id)

                await self._persist_todo(tool_ctx.todo)
                await cancel.sleep(self.settings.turn_interval_seconds)

                self.context.add_user_message(await self._between_turns_message())

                fresh = await self.profiles.get(self.profile_id)
                if fresh is not None:
                    self.context.system_prompt = await self._system_prompt(fresh, command_list, prompt_md)
        except AgentCancelledError:
            pass
        finally:
            self._running = False
            self._cancel = None
            self.log("system", "Agent loop stopped")

    async def _between_turns_message(self) -> str:
        parts = []
        events = await self._poll_events()
        if events:
            parts.append("## Events Since Last Action\n" + events + "\n")
        while self._nudges:
            parts.append(f"## Message From Your Operator\n{self._nudges.pop(0)}\n")
        parts.append("Continue your mission.")
        return "\n".join(parts)

    async def _poll_events(self) -> str:
        if self.connection is None:
            return ""
        try:
            resp = await self.connection.execute("get_status")
        except Exception as e:
            logger.debug("Event poll failed", profile_id=self.profile_id, error=str(e))
            return ""
        return "\n".join(f"  > {format_notification_summary(n)}" for n in resp.notifications)

    async def _persist_todo(self, todo: str) -> None:
        profile = await self.profiles.get(self.profile_id)
        if profile is not None and (profile.todo or "") != todo:
            await self.profiles.update(self.profile_id, todo=todo)

    def nudge(self, message: str) -> None:
        """Queue an operator message for the start of the next turn."""
        self._nudges.append(message)
        self.log("system", f"Nudge queued: {message}")

    async def execute_command(self, command: str, args: dict[str, Any] | None = None) -> CommandResult:
        """Run a single command on behalf of the operator."""
        if self.connection is None:
            return CommandResult.failure("not_connected", "Not connected")

        self.log("tool_call", f"manual: {command}({json.dumps(args) if args else ''})")
        result = await self.connection.execute(command, args)
        detail = json.dumps(result.to_dict(), indent=2, default=str)

        if result.error:
            self.log("tool_result", f"Error: {result.error.message}", detail)
        else:
            text = result.result if isinstance(result.result, str) else json.dumps(result.result, default=str)
            self.log("tool_result", text[:MANUAL_SUMMARY_CHARS], detail)
        return result

    def stop_loop(self) -> None:
        """Signal the loop to stop; the connection stays open."""
        if self._cancel is not None:
            self._cancel.cancel()

    async def close(self) -> None:
        """Close the connection. The loop must already have finished."""
        if self._unsubscribe_notifications is not None:
            self._unsubscribe_notifications()
            self._unsubscribe_notifications = None

        if self.connection is not None:
            self.log("connection", "Disconnecting...")
            connection, self.connection = self.connection, None
            await connection.disconnect()
            self.log("connection", "Disconnected")

    def status(self) -> dict[str, Any]:
        return {
            "connected": self.is_connected,
            "running": self.is_running,
            "mode": self.connection.mode if self.connection else None,
            "messages": self.context.message_count if self.context else 0,
            "compactions": self.compaction.compaction_count,
        }
