"""
MCP (Model Context Protocol) connection over streamable HTTP.

Each game command becomes a `tools/call` JSON-RPC request. Responses arrive
either as plain JSON or as a Server-Sent Events body whose `data:` lines
carry JSON-RPC messages; the one with our request id is the answer. MCP has
no push channel, so notifications are polled after every command.
"""

import json
from typing import Any

import httpx
import structlog

from ..errors import ConnectionFailedError
from .base import USER_AGENT, CommandResult, GameConnection, LoginResult, RegisterResult, as_dict

logger = structlog.get_logger()

PROTOCOL_VERSION = "2025-03-26"
CLIENT_INFO = {"name": "admiral", "version": "0.2.0"}


def parse_sse_response(text: str, request_id: int) -> dict[str, Any] | None:
    """Return the JSON-RPC message with *request_id* from an SSE body."""
    for line in text.splitlines():
        if not line.startswith("data: "):
            continue
        try:
            data = json.loads(line[len("data: "):])
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict) and data.get("id") == request_id:
            return data
    return None


def rpc_error(resp: dict[str, Any]) -> CommandResult | None:
    """Map a JSON-RPC error member to a CommandResult, or None if absent."""
    error = resp.get("error")
    if not isinstance(error, dict):
        return None
    code = error.get("code")
    return CommandResult.failure(
        str(code) if code is not None else "mcp_error",
        error.get("message") or "Unknown error",
    )


class JsonRpcConnection(GameConnection):
    """JSON-RPC over HTTP with the MCP session header."""

    endpoint = "/mcp"

    def __init__(
        self,
        server_url: str,
        client: httpx.AsyncClient | None = None,
        *,
        request_timeout: float = 30.0,
    ):
        super().__init__(server_url)
        self.url = self.server_url + self.endpoint
        self.request_timeout = request_timeout
        self._client = client
        self._owns_client = client is None
        self._session_id: str | None = None
        self._rpc_id = 0

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.request_timeout)
        return self._client

    @property
    def session_id(self) -> str | None:
        return self._session_id

    def _headers(self, streaming: bool = True) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
        if streaming:
            headers["Accept"] = "application/json, text/event-stream"
        if self._session_id:
            headers["Mcp-Session-Id"] = self._session_id
        return headers

    async def send_request(self, method: str, params: Any) -> dict[str, Any]:
        """Send a JSON-RPC request and return the matching response envelope.

        Raises httpx.HTTPError on transport failure.
        """
        self._rpc_id += 1
        request_id = self._rpc_id
        body = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params}

        resp = await self.client.post(self.url, json=body, headers=self._headers())

        session_id = resp.headers.get("mcp-session-id")
        if session_id:
            self._session_id = session_id

        content_type = resp.headers.get("content-type", "")
        if "text/event-stream" in content_type:
            message = parse_sse_response(resp.text, request_id)
            if message is None:
                return {"error": {"message": "No matching response in SSE stream"}}
            return message

        try:
            data = resp.json()
        except ValueError:
            return {"error": {"code": "http_error", "message": f"HTTP {resp.status_code}"}}
        return data if isinstance(data, dict) else {"error": {"message": "Malformed JSON-RPC response"}}

    async def send_notification(self, method: str, params: Any) -> None:
        body = {"jsonrpc": "2.0", "method": method, "params": params}
        await self.client.post(self.url, json=body, headers=self._headers(streaming=False))

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        return await self.send_request("tools/call", {"name": name, "arguments": arguments})

    async def _initialize(self) -> None:
        try:
            resp = await self.send_request("initialize", {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": CLIENT_INFO,
            })
            if not resp.get("result"):
                raise ConnectionFailedError(f"MCP initialize failed: {json.dumps(resp.get('error'))}")
            await self.send_notification("notifications/initialized", {})
        except httpx.HTTPError as e:
            raise ConnectionFailedError(f"MCP initialize failed: {e}") from e

    async def disconnect(self) -> None:
        self._session_id = None
        self._connected = False
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _safe_call(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        if not self._connected:
            return {"error": {"code": "not_connected", "message": "MCP session not initialized"}}
        try:
            return await self.call_tool(name, arguments)
        except httpx.HTTPError as e:
            logger.warning("MCP request failed", tool=name, error=str(e))
            return {"error": {"code": "connection_failed", "message": str(e) or "Request failed"}}

    async def _poll_notifications(self, tool: str, arguments: dict[str, Any]) -> list[Any]:
        resp = await self._safe_call(tool, arguments)
        if "error" in resp and not resp.get("result"):
            return []
        parsed =self.parse_tool_result(resp.get("result"))[0]
        notifications = as_dict(parsed).get("notifications")
        if not isinstance(notifications, list):
            return []
        self._emit_all(notifications)
        return notifications

    @staticmethod
    def parse_tool_result(result: Any) -> tuple[Any, Any]:
        """Return (parsed, structured) from an MCP tool result.

        Tool results look like `{"content": [{"type": "text", "text": "..."}]}`;
        JSON text is decoded, anything else is wrapped as `{"text": ...}`.
        """
        if not result:
            return None, None
        r = as_dict(result)
        for block in r.get("content") or []:
            block = as_dict(block)
            if block.get("type") == "text" and isinstance(block.get("text"), str):
                try:
                    decoded = json.loads(block["text"])
                except json.JSONDecodeError:
                    return {"text": block["text"]}, None
                return decoded, decoded
        return r, r


class McpConnection(JsonRpcConnection):
    """MCP v1: one tool per game command."""

    mode = "mcp"
    endpoint = "/mcp"

    async def connect(self) -> None:
        await self._initialize()
        self._connected = True
        logger.info("Connected", mode=self.mode, url=self.url)

    async def login(self, username: str, password: str) -> LoginResult:
        return self._login_result(await self._tool_command("login", {"username": username, "password": password}))

    async def register(self, username: str, empire: str, code: str | None = None) -> RegisterResult:
        resp = await self._tool_command("register", self._register_args(username, empire, code))
        return self._register_result(resp, username, empire)

    async def _tool_command(self, name: str, arguments: dict[str, Any]) -> CommandResult:
        resp = await self._safe_call(name, arguments)
        error = rpc_error(resp)
        if error is not None:
            return error
        parsed, _ = self.parse_tool_result(resp.get("result"))
        return CommandResult(result=parsed)

    async def execute(self, command: str, args: dict[str, Any] | None = None) -> CommandResult:
        result = await self._tool_command(command, dict(args or {}))
        if result.error:
            return result
        result.notifications = await self._poll_notifications("get_notifications", {})
        return result
