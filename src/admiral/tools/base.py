"""
Base classes for tools.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Coroutine

from ..llm.base import ToolDefinition

if TYPE_CHECKING:
    from .dispatcher import ToolContext


@dataclass
class ToolResult:
    """Result from a local tool execution."""

    success: bool
    output: str = ""
    error: str | None = None

    def to_text(self) -> str:
        if self.success:
            return self.output
        return f"Error: {self.error or 'unknown error'}"


@dataclass
class ToolParameter:
    """Definition of a tool parameter."""

    name: str
    param_type: str  # JSON Schema type
    description: str
    required: bool = True
    enum: list[str] | None = None

    def to_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {"type": self.param_type, "description": self.description}
        if self.enum:
            schema["enum"] = list(self.enum)
        if self.param_type == "object":
            # free-form command arguments
            schema["additionalProperties"] = True
        return schema


LocalHandler = Callable[..., Coroutine[Any, Any, ToolResult]]


@dataclass
class Tool:
    """
    A tool offered to the model.

    Local tools carry a handler that runs against the agent's own state;
    remote tools have none and are forwarded to the game connection.
    """

    name: str
    description: str
    parameters: list[ToolParameter]
    handler: LocalHandler | None = None

    @property
    def is_local(self) -> bool:
        return self.handler is not None

    def get_parameters_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {p.name: p.to_schema() for p in self.parameters},
            "required": [p.name for p in self.parameters if p.required],
        }

    def to_definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.get_parameters_schema(),
        )

    async def execute(self, ctx: "ToolContext", **kwargs: Any) -> ToolResult:
        """Execute the tool handler."""
        if self.handler is None:
            raise RuntimeError(f"Tool '{self.name}' is remote and has no local handler")
        return await self.handler(ctx, **kwargs)
