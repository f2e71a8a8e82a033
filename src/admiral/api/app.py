"""
FastAPI application factory.

Manages the lifecycle of:
- Database connection and the profile/preference/log stores
- The log bus and its persistence sink
- The agent manager (every agent is disconnected on shutdown)
"""

import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Literal

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError

from ..agent import AgentManager
from ..config import Settings, get_settings
from ..errors import AgentError, ConnectionFailedError, NotConnectedError, ProfileNotFoundError
from ..events import LogBus, LogEvent
from ..models import ConnectionMode, init_database
from ..storage import LogStore, PreferenceStore, ProfileStore

logger = structlog.get_logger()

VERSION = "0.2.0"
SSE_HISTORY = 50
SSE_HEARTBEAT_SECONDS = 15.0


class ProfileCreate(BaseModel):
    name: str = Field(min_length=1)
    username: str | None = None
    password: str | None = None
    empire: str = ""
    provider: str | None = None
    model: str | None = None
    directive: str = ""
    connection_mode: ConnectionMode = ConnectionMode.HTTP
    server_url: str | None = None
    context_budget_ratio: float | None = Field(default=None, ge=0.05, le=0.95)


class ProfileUpdate(BaseModel):
    name: str | None = None
    username: str | None = None
    password: str | None = None
    empire: str | None = None
    player_id: str | None = None
    provider: str | None = None
    model: str | None = None
    directive: str | None = None
    todo: str | None = None
    connection_mode: ConnectionMode | None = None
    server_url: str | None = None
    context_budget_ratio: float | None = Field(default=None, ge=0.05, le=0.95)
    autoconnect: bool | None = None
    enabled: bool | None = None


class ConnectRequest(BaseModel):
    action: Literal["connect", "connect_llm", "disconnect"] = "connect"


class NudgeRequest(BaseModel):
    message: str


class CommandRequest(BaseModel):
    command: str = Field(min_length=1)
    args: dict[str, Any] | None = None


class PreferenceUpdate(BaseModel):
    key: str = Field(min_length=1)
    value: str


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        session_maker = await init_database(settings.database_url)
        logger.info("Database initialized")

        profiles = ProfileStore(session_maker)
        preferences = PreferenceStore(session_maker)
        log_store = LogStore(session_maker)
        log_bus = LogBus()
        unsubscribe_sink = log_bus.subscribe_all(log_store.sink)

        app.state.profiles = profiles
        app.state.preferences = preferences
        app.state.log_store = log_store
        app.state.log_bus = log_bus
        app.state.manager = AgentManager(profiles, preferences, log_bus, settings)

        yield

        await app.state.manager.shutdown()
        unsubscribe_sink()
        await log_store.flush()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Admiral",
        description="Supervisor for LLM-driven SpaceMolt agents",
        version=VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    async def require_profile(request: Request, profile_id: str):
        profile = await request.app.state.profiles.get(profile_id)
        if profile is None:
            raise HTTPException(status_code=404, detail="Profile not found")
        return profile

    # ------------------------------------------------------------------ #
    # Health
    # ------------------------------------------------------------------ #
    @app.get("/api/health")
    async def health_check(request: Request):
        return {
            "status": "healthy",
            "version": VERSION,
            "active_agents": len(request.app.state.manager.list_active()),
            "llm_configured": bool(
                settings.anthropic_api_key
                or settings.openai_api_key
                or settings.openrouter_api_key
                or settings.groq_api_key
            ),
            "database": "connected",
        }

    # ------------------------------------------------------------------ #
    # Profiles
    # ------------------------------------------------------------------ #
    @app.get("/api/profiles")
    async def list_profiles(request: Request):
        manager: AgentManager = request.app.state.manager
        profiles = await request.app.state.profiles.list_all()
        return [{**p.to_dict(), **manager.get_status(p.id)} for p in profiles]

    @app.post("/api/profiles", status_code=201)
    async def create_profile(request: Request, body: ProfileCreate):
        fields = body.model_dump()
        fields["connection_mode"] = body.connection_mode.value
        fields["server_url"] = body.server_url or settings.default_server_url
        try:
            profile = await request.app.state.profiles.create(**fields)
        except IntegrityError:
            raise HTTPException(status_code=409, detail="A profile with that name already exists")
        return profile.to_dict()

    @app.get("/api/profiles/{profile_id}")
    async def get_profile(request: Request, profile_id: str):
        profile = await require_profile(request, profile_id)
        return {**profile.to_dict(), **request.app.state.manager.get_status(profile_id)}

    @app.put("/api/profiles/{profile_id}")
    async def update_profile(request: Request, profile_id: str, body: ProfileUpdate):
        updates = body.model_dump(exclude_unset=True)
        if body.connection_mode is not None:
            updates["connection_mode"] = body.connection_mode.value
        profile = await request.app.state.profiles.update(profile_id, **updates)
        if profile is None:
            raise HTTPException(status_code=404, detail="Profile not found")
        return profile.to_dict()

    @app.delete("/api/profiles/{profile_id}")
    async def delete_profile(request: Request, profile_id: str):
        await request.app.state.manager.disconnect(profile_id)
        if not await request.app.state.profiles.delete(profile_id):
            raise HTTPException(status_code=404, detail="Profile not found")
        request.app.state.log_bus.clear(profile_id)
        return {"ok": True}

    # ------------------------------------------------------------------ #
    # Agent lifecycle
    # ------------------------------------------------------------------ #
    @app.post("/api/profiles/{profile_id}/connect")
    async def connect_profile(request: Request, profile_id: str, body: ConnectRequest | None = None):
        profile = await require_profile(request, profile_id)
        manager: AgentManager = request.app.state.manager
        action = body.action if body else "connect"

        if action == "disconnect":
            await manager.disconnect(profile_id)
            return manager.get_status(profile_id)

        try:
            await manager.connect(profile_id)
            if action == "connect_llm" and not profile.is_manual:
                await manager.start_llm(profile_id)
        except ConnectionFailedError as e:
            raise HTTPException(status_code=502, detail=str(e))
        except AgentError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return manager.get_status(profile_id)

    @app.post("/api/profiles/{profile_id}/start")
    async def start_profile(request: Request, profile_id: str):
        await require_profile(request, profile_id)
        manager: AgentManager = request.app.state.manager
        try:
            await manager.start_llm(profile_id)
        except AgentError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return manager.get_status(profile_id)

    @app.post("/api/profiles/{profile_id}/stop")
    async def stop_profile(request: Request, profile_id: str):
        manager: AgentManager = request.app.state.manager
        await manager.stop_llm(profile_id)
        return manager.get_status(profile_id)

    @app.get("/api/profiles/{profile_id}/status")
    async def profile_status(request: Request, profile_id: str):
        return request.app.state.manager.get_status(profile_id)

    @app.post("/api/profiles/{profile_id}/nudge")
    async def nudge_profile(request: Request, profile_id: str, body: NudgeRequest):
        message = body.message.strip()
        if not message:
            raise HTTPException(status_code=400, detail="message is required")

        manager: AgentManager = request.app.state.manager
        if not manager.get_status(profile_id)["running"]:
            raise HTTPException(status_code=400, detail="Agent is not running")
        manager.nudge(profile_id, message)
        return {"ok": True}

    @app.post("/api/profiles/{profile_id}/command")
    async def run_command(request: Request, profile_id: str, body: CommandRequest):
        manager: AgentManager = request.app.state.manager
        if not manager.get_status(profile_id)["connected"]:
            raise HTTPException(status_code=400, detail="Agent not connected")
        try:
            result = await manager.execute_command(profile_id, body.command, body.args)
        except NotConnectedError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return result.to_dict()

    # ------------------------------------------------------------------ #
    # Logs
    # ------------------------------------------------------------------ #
    @app.get("/api/profiles/{profile_id}/logs")
    async def get_logs(request: Request, profile_id: str, limit: int = 200, after: int | None = None):
        log_store: LogStore = request.app.state.log_store
        if after is not None:
            entries = await log_store.after(profile_id, after, limit)
        else:
            entries = await log_store.recent(profile_id, limit)
        return [e.to_dict() for e in entries]

    @app.delete("/api/profiles/{profile_id}/logs")
    async def clear_logs(request: Request, profile_id: str):
        await request.app.state.log_store.clear(profile_id)
        return {"ok": True}

    @app.get("/api/profiles/{profile_id}/logs/stream")
    async def stream_logs(request: Request, profile_id: str):
        log_store: LogStore = request.app.state.log_store
        log_bus: LogBus = request.app.state.log_bus
        history = await log_store.recent(profile_id, SSE_HISTORY)

        queue: asyncio.Queue[LogEvent] = asyncio.Queue()
        unsubscribe = log_bus.subscribe(profile_id, queue.put_nowait)

        async def events() -> AsyncGenerator[str, None]:
            try:
                for entry in history:
                    yield f"data: {json.dumps(entry.to_dict())}\n\n"
                while not await request.is_disconnected():
                    try:
                        event = await asyncio.wait_for(queue.get(), timeout=SSE_HEARTBEAT_SECONDS)
                    except asyncio.TimeoutError:
                        yield ": heartbeat\n\n"
                        continue
                    yield f"data: {json.dumps(event.to_dict())}\n\n"
            finally:
                unsubscribe()

        return StreamingResponse(
            events(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    # ------------------------------------------------------------------ #
    # Preferences
    # ------------------------------------------------------------------ #
    @app.get("/api/preferences")
    async def list_preferences(request: Request):
        return await request.app.state.preferences.all()

    @app.put("/api/preferences")
    async def set_preference(request: Request, body: PreferenceUpdate):
        await request.app.state.preferences.set(body.key, body.value)
        return {"key": body.key, "value": body.value}

    @app.exception_handler(ProfileNotFoundError)
    async def profile_not_found(request: Request, exc: ProfileNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    return app
