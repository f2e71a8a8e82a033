"""
Best-effort OpenAPI discovery for the game server.

Specs are cached in the preference store so a transient fetch failure falls
back to the last good copy (stale or not) instead of leaving the agent without
a command list.
"""

import json
import re
import time
from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog

from .base import USER_AGENT, PreferenceBackend, as_dict

logger = structlog.get_logger()

SPEC_CACHE_TTL_SECONDS = 3600
SPEC_FETCH_TIMEOUT = 10.0


@dataclass
class GameCommandParam:
    name: str
    type: str = "string"
    required: bool = False
    description: str = ""


@dataclass
class GameCommandInfo:
    name: str
    description: str
    is_mutation: bool
    params: list[GameCommandParam] = field(default_factory=list)


def _cache_keys(spec_url: str) -> tuple[str, str]:
    return f"openapi_cache:{spec_url}", f"openapi_cache_time:{spec_url}"


async def fetch_openapi_spec(
    client: httpx.AsyncClient,
    spec_url: str,
    preferences: PreferenceBackend | None = None,
    *,
    ttl: float = SPEC_CACHE_TTL_SECONDS,
    timeout: float = SPEC_FETCH_TIMEOUT,
) -> dict[str, Any] | None:
    """Fetch an OpenAPI spec, caching on success and falling back to the cache.

    Returns None only when both the fetch and the cache miss.
    """
    cache_key, cache_time_key = _cache_keys(spec_url)

    try:
        resp = await client.get(spec_url, timeout=timeout, headers={"User-Agent": USER_AGENT})
        if resp.status_code == 429:
            logger.warning("OpenAPI spec rate-limited", url=spec_url, body=resp.text[:200])
        elif resp.status_code >= 400:
            logger.warning("OpenAPI spec fetch failed", url=spec_url, status=resp.status_code, body=resp.text[:200])
        else:
            spec = resp.json()
            if isinstance(spec, dict):
                if preferences is not None:
                    try:
                        await preferences.set(cache_key, json.dumps(spec))
                        await preferences.set(cache_time_key, str(time.time()))
                    except Exception as e:
                        logger.warning("Failed to cache OpenAPI spec", url=spec_url, error=str(e))
                logger.info("Fetched OpenAPI spec", url=spec_url)
                return spec
            logger.warning("OpenAPI spec is not an object", url=spec_url)
    except (httpx.HTTPError, ValueError) as e:
        logger.warning("OpenAPI spec fetch failed", url=spec_url, error=str(e))

    if preferences is None:
        return None

    cached = await preferences.get(cache_key)
    if cached:
        cached_time = await preferences.get(cache_time_key)
        try:
            age = time.time() - float(cached_time) if cached_time else float("inf")
        except ValueError:
            age = float("inf")
        try:
            spec = json.loads(cached)
        except json.JSONDecodeError:
            logger.warning("Cached OpenAPI spec is corrupt", url=spec_url)
            spec = None
        if isinstance(spec, dict):
            age_minutes = round(age / 60) if age != float("inf") else None
            if age < ttl:
                logger.info("Using cached OpenAPI spec", url=spec_url, age_minutes=age_minutes)
            else:
                logger.warning("Using stale cached OpenAPI spec", url=spec_url, age_minutes=age_minutes)
            return spec

    logger.error("No OpenAPI spec available", url=spec_url)
    return None


def parse_game_commands(spec: dict[str, Any]) -> list[GameCommandInfo]:
    """Extract POST operations as game commands."""
    commands: list[GameCommandInfo] = []

    for path, methods in as_dict(spec.get("paths")).items():
        op = as_dict(as_dict(methods).get("post"))
        name = op.get("operationId")
        if not name or name == "createSession" or path.endswith("/session"):
            continue

        params: list[GameCommandParam] = []
        content = as_dict(as_dict(op.get("requestBody")).get("content"))
        schema = as_dict(as_dict(content.get("application/json")).get("schema"))
        required = set(schema.get("required") or [])
        for pname, pinfo in as_dict(schema.get("properties")).items():
            pinfo = as_dict(pinfo)
            params.append(GameCommandParam(
                name=pname,
                type=pinfo.get("type") or "string",
                required=pname in required,
                description=pinfo.get("description") or "",
            ))

        commands.append(GameCommandInfo(
            name=name,
            description=op.get("summary") or name,
            is_mutation=bool(op.get("x-is-mutation")),
            params=params,
        ))

    return commands


async def fetch_game_commands(
    client: httpx.AsyncClient,
    api_base_url: str,
    preferences: PreferenceBackend | None = None,
    *,
    ttl: float = SPEC_CACHE_TTL_SECONDS,
    timeout: float = SPEC_FETCH_TIMEOUT,
) -> list[GameCommandInfo]:
    """Fetch the command catalog for an `/api/vN` base URL."""
    spec_url = re.sub(r"/v\d+/?$", "/openapi.json", api_base_url)
    spec = await fetch_openapi_spec(client, spec_url, preferences, ttl=ttl, timeout=timeout)
    if spec is None:
        fallback_url = re.sub(r"/api/v\d+/?$", "/api/openapi.json", api_base_url)
        if fallback_url not in (spec_url, api_base_url):
            spec = await fetch_openapi_spec(client, fallback_url, preferences, ttl=ttl, timeout=timeout)
    if spec is None:
        return []
    return parse_game_commands(spec)


def format_command_list(commands: list[GameCommandInfo]) -> str:
    """Render commands as two pipe-separated lines for the system prompt."""
    queries = [c.name for c in commands if not c.is_mutation]
    mutations = [c.name for c in commands if c.is_mutation]

    lines = []
    if queries:
        lines.append(f"Query commands (free, no tick cost): {'|'.join(queries)}")
    if mutations:
        lines.append(f"Action commands (costs 1 tick): {'|'.join(mutations)}")
    return "\n".join(lines)
