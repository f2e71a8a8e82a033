"""
Common contract for game server connections.

Every protocol variant (REST v1/v2, websocket, MCP v1/v2) implements
`GameConnection`. `execute()` never raises: transport and protocol failures
are folded into `CommandResult.error` so callers need no protocol-specific
branching.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Protocol

import structlog

logger = structlog.get_logger()

USER_AGENT = "SpaceMolt-Admiral"

NotificationHandler = Callable[[Any], None]


class PreferenceBackend(Protocol):
    """The slice of the preference store that connections use for caching."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...


@dataclass
class CommandError:
    """Normalized error returned by every adapter."""

    code: str
    message: str
    wait_seconds: float | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CommandError":
        wait = data.get("wait_seconds")
        return cls(
            code=str(data.get("code") or "unknown"),
            message=str(data.get("message") or "Unknown error"),
            wait_seconds=float(wait) if isinstance(wait, (int, float)) else None,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.wait_seconds is not None:
            data["wait_seconds"] = self.wait_seconds
        return data


@dataclass
class CommandResult:
    """Outcome of a single game command."""

    result: Any = None
    structured_content: Any = None
    notifications: list[Any] = field(default_factory=list)
    error: CommandError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, code: str, message: str, wait_seconds: float | None = None) -> "CommandResult":
        return cls(error=CommandError(code=code, message=message, wait_seconds=wait_seconds))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CommandResult":
        """Build from a server JSON body shaped like {result, notifications, error}."""
        error = data.get("error")
        notifications = data.get("notifications")
        return cls(
            result=data.get("result"),
            structured_content=data.get("structuredContent"),
            notifications=list(notifications) if isinstance(notifications, list) else [],
            error=CommandError.from_dict(error) if isinstance(error, dict) else None,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.result is not None:
            data["result"] = self.result
        if self.structured_content is not None:
            data["structuredContent"] = self.structured_content
        if self.notifications:
            data["notifications"] = self.notifications
        if self.error is not None:
            data["error"] = self.error.to_dict()
        return data


@dataclass
class LoginResult:
    success: bool
    error: str | None = None
    player_id: str | None = None
    session: dict[str, Any] | None = None


@dataclass
class RegisterResult:
    success: bool
    error: str | None = None
    username: str | None = None
    password: str | None = None
    player_id: str | None = None
    empire: str | None = None


def as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


class GameConnection(ABC):
    """Base class for game server connections."""

    mode: ClassVar[str]

    def __init__(self, server_url: str):
        self.server_url = server_url.rstrip("/")
        self._handlers: list[NotificationHandler] = []
        self._connected = False

    @abstractmethod
    async def connect(self) -> None:
        """Open the connection. Raises ConnectionFailedError on failure."""
        pass

    @abstractmethod
    async def login(self, username: str, password: str) -> LoginResult:
        pass

    @abstractmethod
    async def register(self, username: str, empire: str, code: str | None = None) -> RegisterResult:
        pass

    @abstractmethod
    async def execute(self, command: str, args: dict[str, Any] | None = None) -> CommandResult:
        """Run a game command. Never raises."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        pass

    def is_connected(self) -> bool:
        return self._connected

    async def command_list(self) -> str:
        """Command summary for the system prompt, if the protocol can discover one."""
        return ""

    def on_notification(self, handler: NotificationHandler) -> Callable[[], None]:
        """Register *handler* and return a callable that removes it."""
        self._handlers.append(handler)

        def _unsubscribe() -> None:
            try:
                self._handlers.remove(handler)
            except ValueError:
                pass

        return _unsubscribe

    def _emit(self, notification: Any) -> None:
        for handler in list(self._handlers):
            try:
                handler(notification)
            except Exception as e:
                logger.warning("Notification handler failed", mode=self.mode, error=str(e))

    def _emit_all(self, notifications: list[Any]) -> None:
        for notification in notifications:
            self._emit(notification)

    @staticmethod
    def _login_result(resp: CommandResult) -> LoginResult:
        if resp.error:
            return LoginResult(success=False, error=resp.error.message)
        result = as_dict(resp.result)
        player = as_dict(result.get("player"))
        return LoginResult(
            success=True,
            player_id=player.get("id") or result.get("player_id"),
            session=result or None,
        )

    @staticmethod
    def _register_result(resp: CommandResult, username: str, empire: str) -> RegisterResult:
        if resp.error:
            return RegisterResult(success=False, error=resp.error.message)
        result = as_dict(resp.result)
        return RegisterResult(
            success=True,
            username=result.get("username") or username,
            password=result.get("password"),
            player_id=result.get("player_id"),
            empire=result.get("empire") or empire,
        )

    @staticmethod
    def _register_args(username: str, empire: str, code: str | None) -> dict[str, Any]:
        args: dict[str, Any] = {"username": username, "empire": empire}
        if code:
            args["registration_code"] = code
        return args
