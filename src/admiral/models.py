"""
Database models for Admiral

Uses SQLAlchemy 2.0 async ORM for database operations.
"""

from datetime import datetime
from enum import Enum
from pathlib import Path
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text, event, func
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncAttrs, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all models."""
    pass


class ConnectionMode(str, Enum):
    """Wire protocol used to talk to the game server."""
    HTTP = "http"
    HTTP_V2 = "http_v2"
    WEBSOCKET = "websocket"
    MCP = "mcp"
    MCP_V2 = "mcp_v2"


class LogType(str, Enum):
    """Operator-facing log event types."""
    CONNECTION = "connection"
    ERROR = "error"
    LLM_CALL = "llm_call"
    LLM_THOUGHT = "llm_thought"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    SERVER_MESSAGE = "server_message"
    NOTIFICATION = "notification"
    SYSTEM = "system"


MANUAL_PROVIDER = "manual"


class Profile(Base):
    """One game account plus the settings of the agent that plays it."""

    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    name: Mapped[str] = mapped_column(String(255), unique=True)

    # Game credentials
    username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    password: Mapped[str | None] = mapped_column(String(255), nullable=True)
    empire: Mapped[str] = mapped_column(String(100), default="")
    player_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Agent settings
    provider: Mapped[str | None] = mapped_column(String(50), nullable=True)
    model: Mapped[str | None] = mapped_column(String(200), nullable=True)
    directive: Mapped[str] = mapped_column(Text, default="")
    todo: Mapped[str] = mapped_column(Text, default="")
    connection_mode: Mapped[str] = mapped_column(String(20), default=ConnectionMode.HTTP.value)
    server_url: Mapped[str] = mapped_column(String(500), default="https://game.spacemolt.com")
    context_budget_ratio: Mapped[float | None] = mapped_column(Float, nullable=True)
    autoconnect: Mapped[bool] = mapped_column(Boolean, default=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    logs: Mapped[list["LogEntry"]] = relationship(
        "LogEntry", back_populates="profile", cascade="all, delete-orphan", passive_deletes=True
    )

    @property
    def is_manual(self) -> bool:
        """Check if this profile is driven by hand rather than an LLM."""
        return not self.provider or self.provider == MANUAL_PROVIDER or not self.model

    @property
    def has_credentials(self) -> bool:
        return bool(self.username and self.password)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "username": self.username,
            "password": self.password,
            "empire": self.empire,
            "player_id": self.player_id,
            "provider": self.provider,
            "model": self.model,
            "directive": self.directive,
            "todo": self.todo,
            "connection_mode": self.connection_mode,
            "server_url": self.server_url,
            "context_budget_ratio": self.context_budget_ratio,
            "autoconnect": self.autoconnect,
            "enabled": self.enabled,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class LogEntry(Base):
    """Persisted copy of an operator log event."""

    __tablename__ = "log_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    profile_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("profiles.id", ondelete="CASCADE"), index=True
    )
    timestamp: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    type: Mapped[str] = mapped_column(String(30))
    summary: Mapped[str] = mapped_column(Text, default="")
    detail: Mapped[str | None] = mapped_column(Text, nullable=True)

    profile: Mapped["Profile"] = relationship("Profile", back_populates="logs")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "profile_id": self.profile_id,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "type": self.type,
            "summary": self.summary,
            "detail": self.detail,
        }


class Preference(Base):
    """Key/value preference (registration code, cached OpenAPI specs)."""

    __tablename__ = "preferences"

    key: Mapped[str] = mapped_column(String(500), primary_key=True)
    value: Mapped[str] = mapped_column(Text)
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


async def init_database(database_url: str) -> async_sessionmaker:
    """Initialize the database and return session maker."""
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    engine = create_async_engine(database_url, echo=False)
    if url.get_backend_name() == "sqlite":
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    return async_sessionmaker(engine, expire_on_commit=False)
