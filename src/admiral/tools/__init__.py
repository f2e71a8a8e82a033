"""
Tools module for game-playing agents.
"""

from .base import Tool, ToolParameter, ToolResult
from .registry import ToolRegistry
from .dispatcher import ToolContext, ToolDispatcher, is_error_result
from .game import create_game_registry, create_game_tools
from .formatting import (
    format_args,
    format_notification_summary,
    format_tool_result,
    parse_notification,
    redact,
)

__all__ = [
    "Tool",
    "ToolParameter",
    "ToolResult",
    "ToolRegistry",
    "ToolContext",
    "ToolDispatcher",
    "is_error_result",
    "create_game_registry",
    "create_game_tools",
    "format_args",
    "format_notification_summary",
    "format_tool_result",
    "parse_notification",
    "redact",
]
