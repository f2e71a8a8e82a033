"""
Tool dispatch for the agent loop.

Local tools run against the agent's own state. Everything else is a game
command forwarded to the connection. Each dispatch logs a redacted call
summary before and the result after; the model only ever sees a truncated
copy of the result.
"""

import json
from dataclasses import dataclass
from typing import Any, Callable

import structlog

from ..connections.base import GameConnection
from ..storage import ProfileStore
from .formatting import format_args, format_tool_result, truncate, truncate_result
from .registry import ToolRegistry

logger = structlog.get_logger()

LogFn = Callable[..., None]

ERROR_PREFIX = "Error"


@dataclass
class ToolContext:
    """Mutable per-agent state that tools read and write."""

    connection: GameConnection
    profile_id: str
    log: LogFn
    todo: str = ""
    profiles: ProfileStore | None = None


def is_error_result(text: str) -> bool:
    return text.startswith(ERROR_PREFIX)


class ToolDispatcher:
    """Routes tool calls from the model to local handlers or the game."""

    def __init__(self, ctx: ToolContext, registry: ToolRegistry):
        self.ctx = ctx
        self.registry = registry

    @property
    def todo(self) -> str:
        return self.ctx.todo

    async def execute(self, name: str, args: dict[str, Any] | None = None, reason: str | None = None) -> str:
        args = args or {}
        if self.registry.is_local(name):
            return await self._execute_local(name, args, reason)

        if name == "game":
            command = str(args.get("command") or "")
            command_args = self._coerce_args(args.get("args"))
            if not command:
                return "Error: missing 'command' argument"
        else:
            command = name
            command_args = args or None

        suffix = f", {format_args(command_args)}" if command_args else ""
        self.ctx.log("tool_call", f"game({command}{suffix})", reason)

        try:
            resp = await self.ctx.connection.execute(command, command_args or None)
        except Exception as e:
            logger.error("Game command raised", command=command, error=str(e))
            message = f"Error executing {command}: {e}"
            self.ctx.log("error", message)
            return message

        if resp.error:
            message = f"Error: [{resp.error.code}] {resp.error.message}"
            self.ctx.log("tool_result", message)
            return message

        text = format_tool_result(resp.result, resp.notifications)
        self.ctx.log("tool_result", truncate(text, 200), text)
        return truncate_result(text)

    async def _execute_local(self, name: str, args: dict[str, Any], reason: str | None) -> str:
        self.ctx.log("tool_call", f"{name}({format_args(args)})", reason)
        tool = self.registry.get(name)
        try:
            result = await tool.execute(self.ctx, **args)
        except Exception as e:
            logger.error("Local tool failed", tool_name=name, error=str(e))
            message = f"Error executing {name}: {e}"
            self.ctx.log("error", message)
            return message
        return result.to_text()

    @staticmethod
    def _coerce_args(raw: Any) -> dict[str, Any] | None:
        # Some models send the args object as a JSON string
        if isinstance(raw, str) and raw.strip():
            try:
                raw = json.loads(raw)
            except json.JSONDecodeError:
                return None
        return raw if isinstance(raw, dict) and raw else None
