"""
Tests for REST v2 routing and OpenAPI discovery.
"""

import json
import time

import httpx
import pytest

from admiral.connections.http_v2 import HttpV2Connection, RouteTable
from admiral.connections.schema import fetch_game_commands, fetch_openapi_spec, format_command_list

from conftest import MemoryPreferences

SPEC = {
    "paths": {
        "/api/v2/session": {"post": {"operationId": "createSession"}},
        "/api/v2/spacemolt/mine": {"post": {"operationId": "mine", "summary": "Mine ore", "x-is-mutation": True}},
        "/api/v2/spacemolt/get_status": {"post": {"operationId": "get_status", "summary": "Status"}},
        "/api/v2/spacemolt_ship/mine": {"post": {"operationId": "ship_mine"}},
        "/api/v2/spacemolt_ship/refuel": {"post": {"operationId": "refuel", "x-is-mutation": True}},
        "/api/v2/spacemolt_catalog": {"post": {"operationId": "catalog_lookup"}},
    },
}


def test_route_table_from_openapi():
    table = RouteTable.from_openapi(SPEC)

    assert table.resolve("mine").path == "spacemolt/mine"
    assert table.resolve("refuel").path == "spacemolt_ship/refuel"
    assert table.resolve("ship_mine").path == "spacemolt_ship/mine"
    assert table.resolve("catalog").path == "spacemolt_catalog"
    assert table.resolve("catalog_lookup").path == "spacemolt_catalog"
    assert "session" not in table


def test_route_table_first_registration_wins():
    table = RouteTable()
    table.add("mine", "spacemolt/mine")
    table.add("mine", "spacemolt_ship/mine")

    assert table.resolve("mine").path == "spacemolt/mine"
    assert table.resolve("mine").kind == "mapped"


def test_unknown_command_passes_through():
    route = RouteTable.from_openapi(SPEC).resolve("warp_to_andromeda")
    assert route.kind == "passthrough"
    assert route.path == "warp_to_andromeda"


def _v2_server(requests):
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        path = request.url.path
        if path == "/api/v2/openapi.json":
            return httpx.Response(200, json=SPEC)
        if path == "/api/v2/session":
            return httpx.Response(200, json={"session": {"id": "s1"}})
        return httpx.Response(200, json={
            "result": "text form",
            "structuredContent": {"path": path},
        })
    return handler


@pytest.mark.asyncio
async def test_v2_connection_routes_commands():
    requests = []
    client = httpx.AsyncClient(transport=httpx.MockTransport(_v2_server(requests)))
    conn = HttpV2Connection("http://game.test", client, preferences=MemoryPreferences())

    await conn.connect()
    mapped = await conn.execute("refuel")
    unmapped = await conn.execute("warp_to_andromeda")

    assert mapped.result == {"path": "/api/v2/spacemolt_ship/refuel"}
    assert unmapped.result == {"path": "/api/v2/warp_to_andromeda"}
    assert "Action commands (costs 1 tick): mine|refuel" in await conn.command_list()


@pytest.mark.asyncio
async def test_spec_fetch_caches_then_falls_back():
    prefs = MemoryPreferences()
    url = "http://game.test/api/v2/openapi.json"

    ok_client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, json=SPEC)))
    assert await fetch_openapi_spec(ok_client, url, prefs) == SPEC
    assert json.loads(prefs.data[f"openapi_cache:{url}"]) == SPEC

    down_client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(429, text="slow")))
    assert await fetch_openapi_spec(down_client, url, prefs) == SPEC

    prefs.data[f"openapi_cache_time:{url}"] = str(time.time() - 10 * 3600)
    assert await fetch_openapi_spec(down_client, url, prefs) == SPEC


@pytest.mark.asyncio
async def test_spec_fetch_without_cache_returns_none():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500, text="oops")))
    assert await fetch_openapi_spec(client, "http://game.test/api/openapi.json", MemoryPreferences()) is None


@pytest.mark.asyncio
async def test_fetch_game_commands_derives_spec_url():
    seen = []

    def handler(request):
        seen.append(request.url.path)
        if request.url.path == "/api/openapi.json":
            return httpx.Response(200, json=SPEC)
        return httpx.Response(404, text="missing")

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    commands = await fetch_game_commands(client, "http://game.test/api/v1")

    assert seen == ["/api/openapi.json"]
    names = [c.name for c in commands]
    assert "createSession" not in names
    assert "mine" in names
    assert format_command_list(commands).startswith("Query commands (free, no tick cost): get_status|ship_mine")
