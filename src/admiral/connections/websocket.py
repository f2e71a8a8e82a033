"""
Persistent websocket connection.

Commands are sent as `{"type": command, "payload": args}`. Older servers
answer strictly in order and carry no request id, so pending requests are a
FIFO queue; newer servers echo an `id` we generate, selected with
`correlation="id"`. Anything that is not a response goes to the notification
handlers.
"""

import asyncio
import contextlib
import json
import re
from collections import deque
from typing import Any, Callable, Literal
from uuid import uuid4

import structlog
import websockets

from ..errors import ConnectionFailedError
from .base import USER_AGENT, CommandResult, GameConnection, LoginResult, RegisterResult, as_dict

logger = structlog.get_logger()

# Message types that answer a client command; everything else is a push.
RESPONSE_TYPES = frozenset({"ok", "error", "logged_in", "registered", "version_info"})

Correlation = Literal["fifo", "id"]


class WebSocketConnection(GameConnection):
    """Long-lived duplex connection with automatic reconnection."""

    mode = "websocket"

    def __init__(
        self,
        server_url: str,
        *,
        correlation: Correlation = "fifo",
        command_timeout: float = 30.0,
        reconnect_base_delay: float = 1.0,
        reconnect_max_delay: float = 30.0,
        auto_reconnect: bool = True,
        connect_factory: Callable[..., Any] | None = None,
    ):
        super().__init__(server_url)
        self.ws_url = re.sub(r"^http", "ws", self.server_url) + "/ws"
        self.correlation = correlation
        self.command_timeout = command_timeout
        self.reconnect_base_delay = reconnect_base_delay
        self.reconnect_max_delay = reconnect_max_delay
        self.auto_reconnect = auto_reconnect
        self._connect_factory = connect_factory or websockets.connect

        self._ws: Any = None
        self._reader_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._reconnect_attempt = 0
        self._closing = False
        self._credentials: tuple[str, str] | None = None

        self._pending_fifo: deque[asyncio.Future] = deque()
        self._pending_by_id: dict[str, asyncio.Future] = {}

    @property
    def reconnect_attempt(self) -> int:
        return self._reconnect_attempt

    @property
    def pending_count(self) -> int:
        return len(self._pending_fifo) + len(self._pending_by_id)

    async def connect(self) -> None:
        self._closing = False
        try:
            ws = await self._connect_factory(self.ws_url, user_agent_header=USER_AGENT)
        except (OSError, asyncio.TimeoutError, websockets.WebSocketException) as e:
            raise ConnectionFailedError(f"WebSocket connection failed: {e}") from e

        self._ws = ws
        self._connected = True
        self._reconnect_attempt = 0
        self._reader_task = asyncio.create_task(self._read_loop(ws))
        logger.info("Connected", mode=self.mode, url=self.ws_url, correlation=self.correlation)

    async def disconnect(self) -> None:
        self._closing = True

        if self._reconnect_task is not None and self._reconnect_task is not asyncio.current_task():
            self._reconnect_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reconnect_task
        self._reconnect_task = None

        self._fail_pending("Disconnecting")

        ws, self._ws = self._ws, None
        self._connected = False
        if ws is not None:
            with contextlib.suppress(websockets.WebSocketException, OSError):
                await ws.close()

        if self._reader_task is not None:
            self._reader_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader_task
            self._reader_task = None

    async def login(self, username: str, password: str) -> LoginResult:
        self._credentials = (username, password)
        return self._login_result(await self._send_command("login", {"username": username, "password": password}))

    async def register(self, username: str, empire: str, code: str | None = None) -> RegisterResult:
        resp = await self._send_command("register", self._register_args(username, empire, code))
        result = self._register_result(resp, username, empire)
        if result.success and result.password:
            self._credentials = (result.username or username, result.password)
        return result

    async def execute(self, command: str, args: dict[str, Any] | None = None) -> CommandResult:
        return await self._send_command(command, args)

    async def _send_command(self, command: str, args: dict[str, Any] | None = None) -> CommandResult:
        if self._ws is None or not self._connected:
            return CommandResult.failure("not_connected", "WebSocket not connected")

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        message: dict[str, Any] = {"type": command, "payload": args or {}}
        request_id: str | None = None
        if self.correlation == "id":
            request_id = uuid4().hex
            message["id"] = request_id
            self._pending_by_id[request_id] = future
        else:
            self._pending_fifo.append(future)

        try:
            await self._ws.send(json.dumps(message))
        except (websockets.WebSocketException, OSError) as e:
            self._discard(future, request_id)
            logger.warning("Send failed", command=command, error=str(e))
            return CommandResult.failure("disconnected", "Connection closed")

        try:
            return await asyncio.wait_for(future, self.command_timeout)
        except asyncio.TimeoutError:
            self._discard(future, request_id)
            return CommandResult.failure("timeout", f"Command {command} timed out")

    async def _read_loop(self, ws: Any) -> None:
        try:
            async for raw in ws:
                self._handle_raw(raw)
        except websockets.ConnectionClosed as e:
            logger.info("WebSocket closed", reason=str(e))
        finally:
            if ws is self._ws:
                self._on_closed()

    def _handle_raw(self, raw: str | bytes) -> None:
        text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
        # Servers may batch several JSON messages into one frame
        for line in text.split("\n"):
            if not line.strip():
                continue
            try:
                message = json.loads(line)
            except json.JSONDecodeError:
                logger.debug("Ignoring unparseable frame", frame=line[:200])
                continue
            if isinstance(message, dict):
                self._handle_message(message)

    def _handle_message(self, message: dict[str, Any]) -> None:
        future = self._match(message)
        if future is None:
            self._emit(message)
            return

        payload = as_dict(message.get("payload"))
        if message.get("type") == "error":
            wait = payload.get("wait_seconds")
            future.set_result(CommandResult.failure(
                payload.get("code") or "server_error",
                payload.get("message") or "Unknown error",
                float(wait) if isinstance(wait, (int, float)) else None,
            ))
        else:
            future.set_result(CommandResult(result=payload))

    def _match(self, message: dict[str, Any]) -> asyncio.Future | None:
        if self.correlation == "id":
            request_id = message.get("id")
            if isinstance(request_id, str):
                future = self._pending_by_id.pop(request_id, None)
                if future is not None and not future.done():
                    return future
            return None

        if message.get("type") not in RESPONSE_TYPES:
            return None
        while self._pending_fifo:
            future = self._pending_fifo.popleft()
            if not future.done():
                return future
        return None

    def _discard(self, future: asyncio.Future, request_id: str | None) -> None:
        if request_id is not None:
            self._pending_by_id.pop(request_id, None)
        else:
            with contextlib.suppress(ValueError):
                self._pending_fifo.remove(future)

    def _fail_pending(self, reason: str) -> None:
        pending = list(self._pending_fifo) + list(self._pending_by_id.values())
        self._pending_fifo.clear()
        self._pending_by_id.clear()
        for future in pending:
            if not future.done():
                future.set_result(CommandResult.failure("disconnected", reason))

    def _on_closed(self) -> None:
        self._connected = False
        self._ws = None
        self._fail_pending("Connection closed")
        if self._closing or not self.auto_reconnect:
            return
        if self._reconnect_task is None or self._reconnect_task.done():
            self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    def _next_reconnect_delay(self) -> float:
        delay = min(self.reconnect_base_delay * (2 ** self._reconnect_attempt), self.reconnect_max_delay)
        self._reconnect_attempt += 1
        return delay

    async def _reconnect_loop(self) -> None:
        while not self._closing:
            delay = self._next_reconnect_delay()
            logger.info("Reconnecting", url=self.ws_url, delay=delay, attempt=self._reconnect_attempt)
            await asyncio.sleep(delay)
            if self._closing:
                return
            try:
                await self.connect()
            except ConnectionFailedError as e:
                logger.warning("Reconnect failed", error=str(e))
                continue

            if self._credentials is not None:
                username, password = self._credentials
                resp = await self._send_command("login", {"username": username, "password": password})
                if resp.error:
                    logger.warning("Re-login after reconnect failed", error=resp.error.message)
            if self._connected:
                return
