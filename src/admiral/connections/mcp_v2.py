"""
MCP v2 connection.

v2 folds the game's commands into a handful of grouped tools (`spacemolt`,
`spacemolt_auth`, `spacemolt_ship`, ...) that each take an `action`
argument. Tools are discovered at connect time and every command is routed
through `ToolRouter`, which yields an explicit mapped, direct or
pass-through route.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Literal

import httpx
import structlog

from ..errors import ConnectionFailedError
from .base import CommandResult, LoginResult, RegisterResult, as_dict
from .mcp import JsonRpcConnection, rpc_error

logger = structlog.get_logger()

DEFAULT_TOOL = "spacemolt"
AUTH_TOOL = "spacemolt_auth"

_ACTION_LINE = re.compile(r"^\s{2}(\w+)(?:\(| \u2014)")
_QUERY_ACTION = re.compile(
    r"^(get_|view_|list_|search_|find_|browse_|read_|query_|estimate_|analyze_"
    r"|forum_list|forum_get|captains_log_list|captains_log_get)"
)


def parse_actions_from_description(description: str) -> list[str]:
    """Pull action names out of indented `  mine(...)` style description lines."""
    actions = []
    for line in description.split("\n"):
        match = _ACTION_LINE.match(line)
        if match:
            actions.append(match.group(1))
    return actions


def is_query_action(action: str) -> bool:
    return action == "help" or bool(_QUERY_ACTION.match(action))


@dataclass
class V2Tool:
    name: str
    description: str = ""
    actions: list[str] = field(default_factory=list)
    has_action_param: bool = False


@dataclass(frozen=True)
class ToolRoute:
    tool: str
    arguments: dict[str, Any]
    kind: Literal["mapped", "direct", "passthrough"]


class ToolRouter:
    """Discovered tools plus the action -> tool map built from them."""

    def __init__(self, tools: list[V2Tool] | None = None):
        self.tools: list[V2Tool] = []
        self._by_name: dict[str, V2Tool] = {}
        self._action_to_tool: dict[str, str] = {}
        for tool in tools or []:
            self.add_tool(tool)

    def __len__(self) -> int:
        return len(self._action_to_tool)

    @classmethod
    def from_tools_list(cls, tools: list[Any]) -> "ToolRouter":
        router = cls()
        for raw in tools:
            raw = as_dict(raw)
            name = raw.get("name")
            if not name:
                continue
            description = raw.get("description") or ""
            props = as_dict(as_dict(raw.get("inputSchema")).get("properties"))
            action_schema = props.get("action")
            has_action = action_schema is not None
            enum = as_dict(action_schema).get("enum")
            if isinstance(enum, list):
                actions = [str(a) for a in enum]
            elif has_action:
                actions = parse_actions_from_description(description)
            else:
                actions = []
            router.add_tool(V2Tool(name=name, description=description, actions=actions, has_action_param=has_action))
        return router

    def add_tool(self, tool: V2Tool) -> None:
        self.tools.append(tool)
        self._by_name.setdefault(tool.name, tool)
        for action in tool.actions:
            self._register(action, tool.name)
        if not tool.has_action_param:
            self._register(tool.name, tool.name)

    def _register(self, action: str, tool_name: str) -> None:
        existing = self._action_to_tool.get(action)
        if existing is None:
            self._action_to_tool[action] = tool_name
        elif existing != tool_name:
            logger.warning("Action claimed by more than one tool", action=action, kept=existing, ignored=tool_name)

    def tool_for(self, action: str) -> str | None:
        return self._action_to_tool.get(action)

    def route(self, command: str, args: dict[str, Any] | None = None) -> ToolRoute:
        args = dict(args or {})
        tool_name = self._action_to_tool.get(command)
        if tool_name is not None:
            tool = self._by_name.get(tool_name)
            if tool is not None and tool.actions:
                return ToolRoute(tool=tool_name, arguments={"action": command, **args}, kind="mapped")
            return ToolRoute(tool=tool_name, arguments=args, kind="mapped")

        if command in self._by_name:
            return ToolRoute(tool=command, arguments=args, kind="direct")

        # Let the server reject unknown actions with its own suggestions
        fallback = self._action_to_tool.get("get_state") or DEFAULT_TOOL
        return ToolRoute(tool=fallback, arguments={"action": command, **args}, kind="passthrough")

    def command_list(self) -> str:
        if not self.tools:
            return ""
        lines = []
        for tool in self.tools:
            if not tool.actions:
                lines.append(f"{tool.name}: (use directly with type, id, search, category params)")
                continue
            queries = [a for a in tool.actions if is_query_action(a)]
            mutations = [a for a in tool.actions if not is_query_action(a)]
            parts = []
            if mutations:
                parts.append(", ".join(mutations))
            if queries:
                parts.append(f"[free queries: {', '.join(queries)}]")
            lines.append(f"{tool.name}: {' | '.join(parts)}")
        lines.append("")
        lines.append('Tip: Use action="help" on any tool to see detailed parameter docs.')
        return "\n".join(lines)


class McpV2Connection(JsonRpcConnection):
    """MCP v2: grouped tools with an `action` parameter."""

    mode = "mcp_v2"
    endpoint = "/mcp/v2"

    def __init__(self, server_url: str, client: httpx.AsyncClient | None = None, **kwargs: Any):
        super().__init__(server_url, client, **kwargs)
        self.router = ToolRouter()

    @property
    def tool_count(self) -> int:
        return len(self.router)

    async def connect(self) -> None:
        await self._initialize()
        await self.discover_tools()
        self._connected = True
        logger.info("Connected", mode=self.mode, url=self.url, actions=len(self.router))

    async def discover_tools(self) -> None:
        try:
            resp = await self.send_request("tools/list", {})
        except httpx.HTTPError as e:
            raise ConnectionFailedError(f"MCP v2 tool discovery failed: {e}") from e
        tools = as_dict(resp.get("result")).get("tools")
        if not isinstance(tools, list):
            logger.warning("MCP v2 server listed no tools", url=self.url)
            self.router = ToolRouter()
            return
        self.router = ToolRouter.from_tools_list(tools)

    async def command_list(self) -> str:
        return self.router.command_list()

    @staticmethod
    def parse_tool_result(result: Any) -> tuple[Any, Any]:
        structured = as_dict(result).get("structuredContent")
        if isinstance(structured, dict):
            return structured, structured
        return JsonRpcConnection.parse_tool_result(result)

    async def _call(self, tool: str, arguments: dict[str, Any]) -> CommandResult:
        resp = await self._safe_call(tool, arguments)
        error = rpc_error(resp)
        if error is not None:
            return error
        parsed, structured = self.parse_tool_result(resp.get("result"))
        return CommandResult(result=parsed, structured_content=structured)

    async def login(self, username: str, password: str) -> LoginResult:
        tool = self.router.tool_for("login") or AUTH_TOOL
        resp = await self._call(tool, {"action": "login", "username": username, "password": password})
        return self._login_result(resp)

    async def register(self, username: str, empire: str, code: str | None = None) -> RegisterResult:
        tool = self.router.tool_for("register") or AUTH_TOOL
        args = {"action": "register", **self._register_args(username, empire, code)}
        return self._register_result(await self._call(tool, args), username, empire)

    async def execute(self, command: str, args: dict[str, Any] | None = None) -> CommandResult:
        route = self.router.route(command, args)
        if route.kind == "passthrough":
            logger.debug("Unmapped v2 command", command=command, tool=route.tool)

        result = await self._call(route.tool, route.arguments)
        if result.error:
            return result

        notif_tool = self.router.tool_for("get_notifications")
        if notif_tool:
            result.notifications = await self._poll_notifications(notif_tool, {"action": "get_notifications"})
        return result
