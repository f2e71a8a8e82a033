"""
Registry of the tools offered to the model.
"""

import structlog

from ..llm.base import ToolDefinition
from .base import Tool

logger = structlog.get_logger()


class ToolRegistry:
    """Name -> tool map; the first tool registered under a name is kept."""

    def __init__(self, tools: list[Tool] | None = None):
        self._tools: dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def register(self, tool: Tool) -> bool:
        if tool.name in self._tools:
            logger.warning("Duplicate tool name ignored", tool_name=tool.name)
            return False
        self._tools[tool.name] = tool
        logger.debug("Tool registered", tool_name=tool.name, local=tool.is_local)
        return True

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def is_local(self, name: str) -> bool:
        tool = self._tools.get(name)
        return tool is not None and tool.is_local

    def list_tools(self) -> list[str]:
        return list(self._tools)

    def local_tools(self) -> list[str]:
        """Names of tools that run without touching the game server."""
        return [name for name, tool in self._tools.items() if tool.is_local]

    def get_definitions(self) -> list[ToolDefinition]:
        """Definitions in registration order, as sent to the model."""
        return [tool.to_definition() for tool in self._tools.values()]
