"""
Session-based REST connection (API v2).

v2 groups commands under `/api/v2/{tool}/{action}`. The route table is built
from the server's OpenAPI document at connect time; commands it does not
know are sent unchanged as `/api/v2/{command}`.
"""

from dataclasses import dataclass
from typing import Any, Literal

import httpx
import structlog

from .base import CommandResult, PreferenceBackend, as_dict
from .http import SessionRestConnection
from .schema import fetch_openapi_spec, format_command_list, parse_game_commands

logger = structlog.get_logger()

RESERVED_SEGMENTS = frozenset({"session", "notifications", "openapi.json"})


@dataclass(frozen=True)
class Route:
    """Where a command is sent, relative to the v2 base URL."""

    path: str
    kind: Literal["mapped", "passthrough"]


class RouteTable:
    """Command name -> v2 path, with first registration winning."""

    def __init__(self) -> None:
        self._routes: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._routes)

    def __contains__(self, command: str) -> bool:
        return command in self._routes

    def add(self, name: str, path: str) -> None:
        existing = self._routes.get(name)
        if existing is None:
            self._routes[name] = path
        elif existing != path:
            logger.warning("Conflicting route for command", command=name, kept=existing, ignored=path)

    def resolve(self, command: str) -> Route:
        path = self._routes.get(command)
        if path is None:
            return Route(path=command, kind="passthrough")
        return Route(path=path, kind="mapped")

    @classmethod
    def from_openapi(cls, spec: dict[str, Any], prefix: str = "/api/v2/") -> "RouteTable":
        table = cls()
        paths = as_dict(spec.get("paths"))
        tool_prefixes: set[str] = set()
        single: list[str] = []

        for path, methods in paths.items():
            segment = path[len(prefix):] if path.startswith(prefix) else path.lstrip("/")
            parts = segment.split("/")
            operation_id = as_dict(as_dict(methods).get("post")).get("operationId")

            if len(parts) == 2:
                tool, action = parts
                tool_prefixes.add(tool)
                table.add(action, segment)
                if operation_id:
                    table.add(operation_id, segment)
            elif len(parts) == 1 and segment and segment not in RESERVED_SEGMENTS:
                single.append(segment)
                table.add(segment, segment)
                if operation_id and operation_id != segment:
                    table.add(operation_id, segment)

        # Standalone tools such as "spacemolt_catalog" also answer to the
        # short name left after stripping the longest known tool prefix.
        ordered = sorted(tool_prefixes, key=len, reverse=True)
        for segment in single:
            for tool in ordered:
                if segment.startswith(tool + "_") and len(segment) > len(tool) + 1:
                    table.add(segment[len(tool) + 1:], segment)
                    break

        return table


class HttpV2Connection(SessionRestConnection):
    """REST API v2: grouped tool/action endpoints."""

    mode = "http_v2"
    api_prefix = "/api/v2"

    def __init__(
        self,
        server_url: str,
        client: httpx.AsyncClient | None = None,
        *,
        preferences: PreferenceBackend | None = None,
        spec_cache_ttl: float = 3600,
        spec_fetch_timeout: float = 10.0,
        **kwargs: Any,
    ):
        super().__init__(server_url, client, preferences=preferences, **kwargs)
        self.spec_cache_ttl = spec_cache_ttl
        self.spec_fetch_timeout = spec_fetch_timeout
        self.routes = RouteTable()
        self._spec: dict[str, Any] | None = None

    async def connect(self) -> None:
        self._closed = False
        await self.load_routes()
        await super().connect()

    async def load_routes(self) -> None:
        self._spec = await fetch_openapi_spec(
            self.client,
            f"{self.base_url}/openapi.json",
            self.preferences,
            ttl=self.spec_cache_ttl,
            timeout=self.spec_fetch_timeout,
        )
        if self._spec is None:
            logger.warning("No v2 route table, commands will be sent unmapped", url=self.base_url)
            self.routes = RouteTable()
            return
        self.routes = RouteTable.from_openapi(self._spec)
        logger.info("Loaded v2 routes", count=len(self.routes))

    async def command_list(self) -> str:
        if self._spec is None:
            return ""
        return format_command_list(parse_game_commands(self._spec))

    def _command_url(self, command: str) -> str:
        route = self.routes.resolve(command)
        if route.kind == "passthrough":
            logger.debug("Unmapped v2 command", command=command)
        return f"{self.base_url}/{route.path}"

    def _normalize(self, data: dict[str, Any]) -> CommandResult:
        result = CommandResult.from_dict(data)
        if result.structured_content is not None:
            result.result = result.structured_content
        return result
