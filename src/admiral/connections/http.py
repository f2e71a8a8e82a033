"""
Session-based REST connection (API v1).

A session is created with `POST {base}/session` and sent as `X-Session-Id`
on every command (`POST {base}/{command}`). Session expiry, invalid-session
errors and rate limiting are recovered here without the caller noticing.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx
import structlog

from ..errors import ConnectionFailedError
from .base import (
    USER_AGENT,
    CommandResult,
    GameConnection,
    LoginResult,
    PreferenceBackend,
    RegisterResult,
    as_dict,
)

logger = structlog.get_logger()

SESSION_ERRORS = frozenset({"session_invalid", "session_expired", "not_authenticated"})
SESSION_REFRESH_MARGIN = 60.0
DEFAULT_RATE_LIMIT_WAIT = 10.0


@dataclass
class ApiSession:
    id: str
    player_id: str | None = None
    created_at: str | None = None
    expires_at: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ApiSession":
        return cls(
            id=str(data["id"]),
            player_id=data.get("playerId"),
            created_at=data.get("createdAt"),
            expires_at=data.get("expiresAt"),
        )

    def seconds_left(self) -> float | None:
        if not self.expires_at:
            return None
        try:
            expires = datetime.fromisoformat(self.expires_at)
        except ValueError:
            return None
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return (expires - datetime.now(timezone.utc)).total_seconds()

    def is_expiring(self, margin: float = SESSION_REFRESH_MARGIN) -> bool:
        left = self.seconds_left()
        return left is not None and left < margin


class SessionRestConnection(GameConnection):
    """Session management shared by both REST API versions."""

    api_prefix = "/api/v1"

    def __init__(
        self,
        server_url: str,
        client: httpx.AsyncClient | None = None,
        *,
        preferences: PreferenceBackend | None = None,
        max_attempts: int = 6,
        retry_base_delay: float = 5.0,
        max_rate_limit_retries: int = 20,
        request_timeout: float = 30.0,
    ):
        super().__init__(server_url)
        self.base_url = self.server_url + self.api_prefix
        self.preferences = preferences
        self.max_attempts = max_attempts
        self.retry_base_delay = retry_base_delay
        self.max_rate_limit_retries = max_rate_limit_retries
        self.request_timeout = request_timeout
        self._client = client
        self._owns_client = client is None
        self._closed = False
        self._session: ApiSession | None = None
        self._credentials: tuple[str, str] | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._closed:
            raise ConnectionFailedError("Connection is closed")
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.request_timeout,
                headers={"User-Agent": USER_AGENT},
            )
        return self._client

    @property
    def session(self) -> ApiSession | None:
        return self._session

    async def connect(self) -> None:
        self._closed = False
        await self._ensure_session()
        self._connected = True
        logger.info("Connected", mode=self.mode, url=self.base_url)

    async def disconnect(self) -> None:
        self._session = None
        self._connected = False
        self._closed = True
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def login(self, username: str, password: str) -> LoginResult:
        self._credentials = (username, password)
        return self._login_result(await self.execute("login", {"username": username, "password": password}))

    async def register(self, username: str, empire: str, code: str | None = None) -> RegisterResult:
        resp = await self.execute("register", self._register_args(username, empire, code))
        result = self._register_result(resp, username, empire)
        if result.success and result.password:
            self._credentials = (result.username or username, result.password)
        return result

    async def execute(self, command: str, args: dict[str, Any] | None = None) -> CommandResult:
        if not self._connected:
            return CommandResult.failure("not_connected", "Not connected")
        resp = CommandResult()
        for _ in range(self.max_rate_limit_retries + 1):
            try:
                await self._ensure_session()
            except ConnectionFailedError:
                return CommandResult.failure("connection_failed", "Could not connect to server")

            try:
                resp = await self._request(command, args)
            except httpx.HTTPError as e:
                logger.warning("Request failed, re-establishing session", command=command, error=str(e))
                self._session = None
                try:
                    await self._ensure_session()
                    resp = await self._request(command, args)
                except (httpx.HTTPError, ConnectionFailedError):
                    return CommandResult.failure("connection_failed", "Could not reconnect to server")

            if resp.error and resp.error.code == "rate_limited":
                wait = resp.error.wait_seconds or DEFAULT_RATE_LIMIT_WAIT
                logger.info("Rate limited, retrying", command=command, wait_seconds=wait)
                await asyncio.sleep(wait)
                continue

            if resp.error and resp.error.code in SESSION_ERRORS:
                logger.info("Session rejected, re-authenticating", command=command, code=resp.error.code)
                self._session = None
                try:
                    await self._ensure_session()
                    resp = await self._request(command, args)
                except (httpx.HTTPError, ConnectionFailedError):
                    return CommandResult.failure("connection_failed", "Could not reconnect to server")

            self._emit_all(resp.notifications)
            return resp

        logger.warning("Giving up after repeated rate limiting", command=command)
        return resp

    async def _ensure_session(self) -> None:
        if self._session is not None and not self._session.is_expiring():
            return

        last_error: Exception | None = None
        for attempt in range(self.max_attempts):
            try:
                resp = await self.client.post(f"{self.base_url}/session", headers={"User-Agent": USER_AGENT})
                if resp.status_code >= 400:
                    raise ConnectionFailedError(f"Failed to create session: {resp.status_code}")
                session = as_dict(resp.json()).get("session")
                if not isinstance(session, dict) or "id" not in session:
                    raise ConnectionFailedError("No session in response")
                self._session = ApiSession.from_dict(session)
                logger.debug("Session created", mode=self.mode, session_id=self._session.id)

                if self._credentials is not None:
                    username, password = self._credentials
                    await self._request("login", {"username": username, "password": password})
                return
            except (httpx.HTTPError, ValueError, ConnectionFailedError) as e:
                last_error = e
                delay = self.retry_base_delay * (2 ** attempt)
                logger.warning(
                    "Session request failed",
                    mode=self.mode,
                    attempt=attempt + 1,
                    retry_in=delay,
                    error=str(e),
                )
                if attempt < self.max_attempts - 1:
                    await asyncio.sleep(delay)

        raise ConnectionFailedError(str(last_error) if last_error else "Failed to connect to server")

    def _command_url(self, command: str) -> str:
        return f"{self.base_url}/{command}"

    def _normalize(self, data: dict[str, Any]) -> CommandResult:
        return CommandResult.from_dict(data)

    async def _request(self, command: str, payload: dict[str, Any] | None = None) -> CommandResult:
        headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
        if self._session is not None:
            headers["X-Session-Id"] = self._session.id

        resp = await self.client.post(
            self._command_url(command),
            headers=headers,
            json=payload,
        )

        if resp.status_code == 401:
            return CommandResult.failure("session_invalid", "Unauthorized")

        try:
            data = resp.json()
        except ValueError:
            return CommandResult.failure("http_error", f"HTTP {resp.status_code}")
        if not isinstance(data, dict):
            return CommandResult.failure("http_error", f"HTTP {resp.status_code}")

        if isinstance(data.get("session"), dict) and "id" in data["session"]:
            self._session = ApiSession.from_dict(data["session"])
        return self._normalize(data)


class HttpConnection(SessionRestConnection):
    """REST API v1: one endpoint per command."""

    mode = "http"
    api_prefix = "/api/v1"
