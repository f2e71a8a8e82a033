"""
The tool set offered to game-playing agents.

`game` is the single remote tool: it forwards a named command to the
connection. The rest are local bookkeeping tools that touch only the
agent's own state and profile.
"""

from typing import Any

from .base import Tool, ToolParameter, ToolResult
from .dispatcher import ToolContext
from .registry import ToolRegistry

STATUS_CATEGORIES = [
    "mining", "travel", "combat", "trade", "chat",
    "info", "craft", "faction", "mission", "setup",
]


async def save_credentials(
    ctx: ToolContext,
    username: str = "",
    password: str = "",
    empire: str = "",
    player_id: str = "",
    **_: Any,
) -> ToolResult:
    creds = {
        "username": str(username),
        "password": str(password),
        "empire": str(empire),
        "player_id": str(player_id),
    }
    if ctx.profiles is not None:
        await ctx.profiles.update(ctx.profile_id, **creds)
    ctx.log("system", f"Credentials saved for {creds['username']}")
    return ToolResult(success=True, output=f"Credentials saved successfully for {creds['username']}.")


async def update_todo(ctx: ToolContext, content: str = "", **_: Any) -> ToolResult:
    ctx.todo = str(content)
    ctx.log("system", "TODO list updated")
    return ToolResult(success=True, output="TODO list updated.")


async def read_todo(ctx: ToolContext, **_: Any) -> ToolResult:
    return ToolResult(success=True, output=ctx.todo or "(empty TODO list)")


async def status_log(ctx: ToolContext, category: str = "info", message: str = "", **_: Any) -> ToolResult:
    ctx.log("system", f"[{category}] {message}")
    return ToolResult(success=True, output="Logged.")


def create_game_tools() -> list[Tool]:
    """Create the remote `game` tool plus the local bookkeeping tools."""
    return [
        Tool(
            name="game",
            description="Execute a SpaceMolt game command. See the system prompt for available commands.",
            parameters=[
                ToolParameter(
                    name="command",
                    param_type="string",
                    description="The game command name (e.g. mine, travel, get_status)",
                ),
                ToolParameter(
                    name="args",
                    param_type="object",
                    description="Command arguments as key-value pairs",
                    required=False,
                ),
            ],
        ),
        Tool(
            name="save_credentials",
            description="Save your login credentials locally. Do this IMMEDIATELY after registering!",
            parameters=[
                ToolParameter(name="username", param_type="string", description="Your username"),
                ToolParameter(name="password", param_type="string", description="Your password (256-bit hex)"),
                ToolParameter(name="empire", param_type="string", description="Your empire"),
                ToolParameter(name="player_id", param_type="string", description="Your player ID"),
            ],
            handler=save_credentials,
        ),
        Tool(
            name="update_todo",
            description="Update your local TODO list to track goals and progress.",
            parameters=[
                ToolParameter(
                    name="content",
                    param_type="string",
                    description="Full TODO list content (replaces existing)",
                ),
            ],
            handler=update_todo,
        ),
        Tool(
            name="read_todo",
            description="Read your current TODO list.",
            parameters=[],
            handler=read_todo,
        ),
        Tool(
            name="status_log",
            description="Log a status message visible to the human watching.",
            parameters=[
                ToolParameter(
                    name="category",
                    param_type="string",
                    description="Message category",
                    enum=STATUS_CATEGORIES,
                ),
                ToolParameter(name="message", param_type="string", description="Status message"),
            ],
            handler=status_log,
        ),
    ]


def create_game_registry() -> ToolRegistry:
    return ToolRegistry(create_game_tools())
