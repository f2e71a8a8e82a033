"""
Thin async stores over the SQLAlchemy models.

The agent runtime only needs three things from persistence: read/update a
profile, read/write a preference, and record log events. Each gets a small
class here so tests and the API can share one session maker.
"""

import asyncio
from typing import Any

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from .events import LogEvent
from .models import LogEntry, Preference, Profile

logger = structlog.get_logger()

PROFILE_FIELDS = frozenset({
    "name", "username", "password", "empire", "player_id",
    "provider", "model", "directive", "todo", "connection_mode",
    "server_url", "context_budget_ratio", "autoconnect", "enabled",
})


class ProfileStore:
    """CRUD for agent profiles."""

    def __init__(self, session_maker: async_sessionmaker):
        self._session_maker = session_maker

    async def get(self, profile_id: str) -> Profile | None:
        async with self._session_maker() as db:
            return await db.get(Profile, profile_id)

    async def list_all(self) -> list[Profile]:
        async with self._session_maker() as db:
            result = await db.execute(select(Profile).order_by(Profile.created_at))
            return list(result.scalars().all())

    async def create(self, **fields: Any) -> Profile:
        unknown = set(fields) - PROFILE_FIELDS - {"id"}
        if unknown:
            raise ValueError(f"Unknown profile fields: {', '.join(sorted(unknown))}")

        async with self._session_maker() as db:
            profile = Profile(**fields)
            db.add(profile)
            await db.commit()
            await db.refresh(profile)
            logger.info("Created profile", profile_id=profile.id, name=profile.name)
            return profile

    async def update(self, profile_id: str, **updates: Any) -> Profile | None:
        """Apply the allowed subset of *updates*; unknown keys are ignored."""
        async with self._session_maker() as db:
            profile = await db.get(Profile, profile_id)
            if profile is None:
                return None

            for key, value in updates.items():
                if key in PROFILE_FIELDS:
                    setattr(profile, key, value)

            await db.commit()
            await db.refresh(profile)
            return profile

    async def delete(self, profile_id: str) -> bool:
        async with self._session_maker() as db:
            profile = await db.get(Profile, profile_id)
            if profile is None:
                return False
            await db.delete(profile)
            await db.commit()
            logger.info("Deleted profile", profile_id=profile_id)
            return True


class PreferenceStore:
    """Key/value preferences."""

    def __init__(self, session_maker: async_sessionmaker):
        self._session_maker = session_maker

    async def get(self, key: str) -> str | None:
        async with self._session_maker() as db:
            pref = await db.get(Preference, key)
            return pref.value if pref else None

    async def set(self, key: str, value: str) -> None:
        async with self._session_maker() as db:
            pref = await db.get(Preference, key)
            if pref is None:
                db.add(Preference(key=key, value=value))
            else:
                pref.value = value
            await db.commit()

    async def all(self) -> dict[str, str]:
        async with self._session_maker() as db:
            result = await db.execute(select(Preference).order_by(Preference.key))
            return {pref.key: pref.value for pref in result.scalars().all()}


class LogStore:
    """Persists log events; `sink` plugs straight into a LogBus."""

    def __init__(self, session_maker: async_sessionmaker):
        self._session_maker = session_maker
        self._pending: set[asyncio.Task] = set()

    async def add(self, profile_id: str, type: str, summary: str, detail: str | None = None) -> int:
        async with self._session_maker() as db:
            entry = LogEntry(profile_id=profile_id, type=type, summary=summary, detail=detail)
            db.add(entry)
            await db.commit()
            return entry.id

    def sink(self, event: LogEvent) -> None:
        """Schedule a write for *event* without blocking the publisher."""
        task = asyncio.get_running_loop().create_task(
            self.add(event.profile_id, event.type, event.summary, event.detail)
        )
        self._pending.add(task)
        task.add_done_callback(self._on_written)

    def _on_written(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Failed to persist log entry", error=str(task.exception()))

    async def flush(self) -> None:
        """Wait for all scheduled writes to finish."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def recent(self, profile_id: str, limit: int = 100) -> list[LogEntry]:
        """Most recent entries, oldest first."""
        async with self._session_maker() as db:
            result = await db.execute(
                select(LogEntry)
                .where(LogEntry.profile_id == profile_id)
                .order_by(LogEntry.id.desc())
                .limit(limit)
            )
            return list(reversed(result.scalars().all()))

    async def after(self, profile_id: str, after_id: int, limit: int = 100) -> list[LogEntry]:
        async with self._session_maker() as db:
            result = await db.execute(
                select(LogEntry)
                .where(LogEntry.profile_id == profile_id, LogEntry.id > after_id)
                .order_by(LogEntry.id)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def clear(self, profile_id: str) -> None:
        async with self._session_maker() as db:
            await db.execute(delete(LogEntry).where(LogEntry.profile_id == profile_id))
            await db.commit()
