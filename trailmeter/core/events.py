"""
Trailmeter Event Bus - Async Pub/Sub Event System
=================================================

Decouples the tracking core from whatever presents it (CLI, map view,
logger). The core emits; observers subscribe.

Features:
- Async event processing on a single consumer task
- Event history for debugging
- Handler errors are logged, never propagated

Usage:
    bus = EventBus()

    @bus.on(EventType.DISTANCE_UPDATED)
    async def show(event: Event):
        print(f"{event.data['total_meters']:.1f} m")

    await bus.start()
    bus.emit_nowait(EventType.DISTANCE_UPDATED, data={...})
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Coroutine, TypeAlias

logger = logging.getLogger(__name__)

AsyncHandler: TypeAlias = Callable[["Event"], Coroutine[Any, Any, None]]


class EventType(Enum):
    """All event types in the system."""

    # Session lifecycle
    SESSION_STATE_CHANGED = auto()
    PERMISSION_CHANGED = auto()

    # Fix stream
    FIX_RECEIVED = auto()
    FIX_DISCARDED = auto()
    DISTANCE_UPDATED = auto()

    # Persistence
    POSITION_LOADED = auto()
    POSITION_SAVED = auto()
    POSITION_CLEARED = auto()
    PERSISTENCE_FAILED = auto()

    # Motion
    MOTION_SAMPLE = auto()

    # User-facing
    NOTIFICATION = auto()


class NotificationLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class Notification:
    """User-visible message. `blocking` asks the UI for a modal alert."""

    title: str
    message: str
    level: NotificationLevel = NotificationLevel.INFO
    blocking: bool = False


@dataclass
class Event:
    """Event with metadata."""

    type: EventType
    data: Any = None
    timestamp: float = field(default_factory=time.time)
    source: str = "system"


class EventBus:
    """
    Async event bus with pub/sub pattern.

    Events are queued and dispatched in order by one task, so handlers
    never run concurrently with each other.
    """

    def __init__(self, max_history: int = 1000) -> None:
        self._handlers: dict[EventType, list[AsyncHandler]] = {}
        self._queue: asyncio.Queue[Event] = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self._history: list[Event] = []
        self._max_history = max_history

    def subscribe(self, event_type: EventType, handler: AsyncHandler) -> None:
        """Call ``handler`` for every event of ``event_type``, in subscription order."""
        self._handlers.setdefault(event_type, []).append(handler)
        logger.debug(
            "Subscribed to %s: %s",
            event_type.name,
            getattr(handler, "__name__", repr(handler)),
        )

    def on(self, event_type: EventType) -> Callable[[AsyncHandler], AsyncHandler]:
        """Decorator for subscribing to events."""
        def decorator(handler: AsyncHandler) -> AsyncHandler:
            self.subscribe(event_type, handler)
            return handler
        return decorator

    def emit_nowait(
        self,
        event_type: EventType,
        data: Any = None,
        source: str = "system",
    ) -> Event:
        """Queue an event from a plain (non-async) callback on the loop thread."""
        event = Event(type=event_type, data=data, source=source)
        self._queue.put_nowait(event)
        return event

    async def start(self) -> None:
        """Start the event processing loop."""
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._process_loop(), name="trailmeter-event-bus")
        logger.info("Event bus started")

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait until every queued event has been dispatched."""
        await asyncio.wait_for(self._queue.join(), timeout=timeout)

    async def stop(self, timeout: float = 5.0) -> None:
        """Dispatch what is queued, then stop the loop."""
        if self._task is None:
            return
        try:
            await self.drain(timeout)
        except asyncio.TimeoutError:
            logger.warning("Event queue drain timeout, forcing stop")

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Event bus stopped")

    async def _process_loop(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._dispatch(event)
            finally:
                self._queue.task_done()

    async def _dispatch(self, event: Event) -> None:
        self._history.append(event)
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]

        for handler in list(self._handlers.get(event.type, [])):
            try:
                await handler(event)
            except Exception as e:
                logger.error(
                    "Handler error for %s: %s - %s",
                    event.type.name,
                    getattr(handler, "__name__", repr(handler)),
                    e,
                )

    def get_history(
        self,
        event_type: EventType | None = None,
        limit: int = 100,
    ) -> list[Event]:
        """Get recent events, optionally filtered by type."""
        events = self._history
        if event_type is not None:
            events = [e for e in events if e.type == event_type]
        return events[-limit:]
