"""
Connection factory: picks the protocol variant for a profile.
"""

import structlog

from ..config import Settings, get_settings
from ..models import ConnectionMode, Profile
from .base import GameConnection, PreferenceBackend
from .http import HttpConnection
from .http_v2 import HttpV2Connection
from .mcp import McpConnection
from .mcp_v2 import McpV2Connection
from .websocket import WebSocketConnection

logger = structlog.get_logger()


def create_connection(
    profile: Profile,
    settings: Settings | None = None,
    preferences: PreferenceBackend | None = None,
) -> GameConnection:
    """Create a connection instance for *profile*'s connection mode."""
    settings = settings or get_settings()
    server_url = profile.server_url or settings.default_server_url

    try:
        mode = ConnectionMode(profile.connection_mode)
    except ValueError:
        logger.warning("Unknown connection mode, using http", mode=profile.connection_mode)
        mode = ConnectionMode.HTTP

    rest_options = {
        "preferences": preferences,
        "max_attempts": settings.session_max_attempts,
        "retry_base_delay": settings.session_retry_base_delay,
    }

    if mode == ConnectionMode.WEBSOCKET:
        return WebSocketConnection(
            server_url,
            correlation=settings.ws_correlation,
            command_timeout=settings.ws_command_timeout,
            reconnect_base_delay=settings.ws_reconnect_base_delay,
            reconnect_max_delay=settings.ws_reconnect_max_delay,
        )
    if mode == ConnectionMode.HTTP_V2:
        return HttpV2Connection(
            server_url,
            spec_cache_ttl=settings.spec_cache_ttl_seconds,
            spec_fetch_timeout=settings.spec_fetch_timeout,
            **rest_options,
        )
    if mode == ConnectionMode.MCP:
        return McpConnection(server_url)
    if mode == ConnectionMode.MCP_V2:
        return McpV2Connection(server_url)
    return HttpConnection(server_url, **rest_options)
