"""
Game server connections, one per wire protocol.
"""

from .base import (
    USER_AGENT,
    CommandError,
    CommandResult,
    GameConnection,
    LoginResult,
    NotificationHandler,
    PreferenceBackend,
    RegisterResult,
)
from .http import HttpConnection
from .http_v2 import HttpV2Connection, Route, RouteTable
from .websocket import WebSocketConnection
from .mcp import McpConnection
from .mcp_v2 import McpV2Connection, ToolRoute, ToolRouter
from .schema import (
    GameCommandInfo,
    fetch_game_commands,
    fetch_openapi_spec,
    format_command_list,
)
from .factory import create_connection

__all__ = [
    "USER_AGENT",
    "CommandError",
    "CommandResult",
    "GameConnection",
    "LoginResult",
    "NotificationHandler",
    "PreferenceBackend",
    "RegisterResult",
    "HttpConnection",
    "HttpV2Connection",
    "Route",
    "RouteTable",
    "WebSocketConnection",
    "McpConnection",
    "McpV2Connection",
    "ToolRoute",
    "ToolRouter",
    "GameCommandInfo",
    "fetch_game_commands",
    "fetch_openapi_spec",
    "format_command_list",
    "create_connection",
]
