"""
Operator log events and their per-profile fan-out.

Agents publish `LogEvent`s synchronously; anything that wants them (the
database sink, an SSE stream) subscribes for one profile and gets back an
unsubscribe callable.
"""

import itertools
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Callable

import structlog

logger = structlog.get_logger()


@dataclass
class LogEvent:
    """A structured log event produced by an agent."""

    id: int
    profile_id: str
    type: str
    summary: str
    detail: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


LogSubscriber = Callable[[LogEvent], None]


class LogBus:
    """Synchronous publish/subscribe keyed by profile id."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[LogSubscriber]] = {}
        self._global: list[LogSubscriber] = []
        self._seq = itertools.count(1)

    def subscribe(self, profile_id: str, handler: LogSubscriber) -> Callable[[], None]:
        self._subscribers.setdefault(profile_id, []).append(handler)

        def _unsubscribe() -> None:
            self._remove(profile_id, handler)

        return _unsubscribe

    def subscribe_all(self, handler: LogSubscriber) -> Callable[[], None]:
        """Receive events for every profile (used by the persistence sink)."""
        self._global.append(handler)

        def _unsubscribe() -> None:
            try:
                self._global.remove(handler)
            except ValueError:
                pass

        return _unsubscribe

    def emit(self, profile_id: str, type: str, summary: str, detail: str | None = None) -> LogEvent:
        """Build an event with the next sequence id and publish it."""
        event = LogEvent(
            id=next(self._seq),
            profile_id=profile_id,
            type=type,
            summary=summary,
            detail=detail,
        )
        self.publish(event)
        return event

    def publish(self, event: LogEvent) -> None:
        for handler in list(self._global):
            try:
                handler(event)
            except Exception as e:
                logger.warning("Dropping failing log subscriber", error=str(e))
                try:
                    self._global.remove(handler)
                except ValueError:
                    pass

        for handler in list(self._subscribers.get(event.profile_id, ())):
            try:
                handler(event)
            except Exception as e:
                logger.warning(
                    "Dropping failing log subscriber",
                    profile_id=event.profile_id,
                    error=str(e),
                )
                self._remove(event.profile_id, handler)

    def subscriber_count(self, profile_id: str) -> int:
        return len(self._subscribers.get(profile_id, ()))

    def clear(self, profile_id: str) -> None:
        self._subscribers.pop(profile_id, None)

    def _remove(self, profile_id: str, handler: LogSubscriber) -> None:
        handlers = self._subscribers.get(profile_id)
        if not handlers:
            return
        try:
            handlers.remove(handler)
        except ValueError:
            return
        if not handlers:
            del self._subscribers[profile_id]
