"""
Persistence Recovery Manager
============================

Mirrors the last accepted position to a durable key-value store and reads it
back when a session starts.

- ``load_last_position``: read-through; missing or malformed data is absence.
- ``save_last_position``: fire-and-forget write-through on a detached task.
  Failures are logged and published as events, never raised.
- ``clear_last_position``: explicit user-triggered delete.

Writes are not ordered relative to each other. Each write carries the full
position, so the last one to complete wins.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional

from pydantic import ValidationError

from ..domain.models import Coordinate, PersistedPosition
from .errors import PersistenceError, StorageParseError
from .events import EventBus, EventType, Notification, NotificationLevel
from .providers import KeyValueStore

logger = logging.getLogger(__name__)

LAST_LOCATION_KEY = "lastLocation"


def encode_position(position: PersistedPosition) -> str:
    return json.dumps({"latitude": position.latitude, "longitude": position.longitude})


def decode_position(raw: str) -> PersistedPosition:
    """Decode stored JSON. Unknown keys are ignored."""
    try:
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise StorageParseError(f"expected JSON object, got {type(data).__name__}")
        return PersistedPosition.model_validate(
            {"latitude": data.get("latitude"), "longitude": data.get("longitude")}
        )
    except (json.JSONDecodeError, ValidationError) as e:
        raise StorageParseError(str(e)) from e


class PersistenceRecoveryManager:
    """Durable last-position cache for a tracking session."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        key: str = LAST_LOCATION_KEY,
        bus: EventBus | None = None,
    ) -> None:
        self._store = store
        self._key = key
        self._bus = bus
        self._pending: set[asyncio.Task[None]] = set()
        self.last_saved_location: Optional[PersistedPosition] = None
        self.loaded_from_storage = False
        self._stats = {"writes_ok": 0, "writes_failed": 0}

    @property
    def key(self) -> str:
        return self._key

    @property
    def pending_writes(self) -> int:
        return len(self._pending)

    def get_stats(self) -> dict:
        return {**self._stats, "pending_writes": self.pending_writes}

    def _publish(self, event_type: EventType, data: object = None) -> None:
        if self._bus is not None:
            self._bus.emit_nowait(event_type, data=data, source="recovery")

    async def load_last_position(self) -> Optional[PersistedPosition]:
        """
        Read the persisted position once.

        Returns:
            The stored position, or None when absent or unreadable.
        """
        try:
            raw = await self._store.get(self._key)
        except Exception as e:
            logger.warning("Failed to read %r from store: %s", self._key, e)
            raw = None

        position: Optional[PersistedPosition] = None
        if raw:
            try:
                position = decode_position(raw)
            except StorageParseError as e:
                logger.warning("Ignoring malformed saved position: %s", e)

        self.last_saved_location = position
        self.loaded_from_storage = position is not None
        if position is not None:
            logger.info(
                "Loaded last position %.6f, %.6f", position.latitude, position.longitude
            )
            self._publish(EventType.POSITION_LOADED, position)
        return position

    def save_last_position(self, coord: Coordinate) -> None:
        """Schedule a write of ``coord`` and return immediately."""
        position = PersistedPosition.from_coordinate(coord)
        task = asyncio.create_task(self._write(position), name="trailmeter-persist")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(self, position: PersistedPosition) -> None:
        try:
            ok = await self._store.set(self._key, encode_position(position))
            if not ok:
                raise PersistenceError(f"store rejected write of {self._key!r}")
        except Exception as e:
            self._stats["writes_failed"] += 1
            logger.warning("Error saving position: %s", e)
            self._publish(EventType.PERSISTENCE_FAILED, str(e))
            return

        self._stats["writes_ok"] += 1
        self._publish(EventType.POSITION_SAVED, position)

    async def flush(self) -> None:
        """Wait for in-flight writes to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def clear_last_position(self) -> bool:
        """
        Delete the persisted position.

        Returns:
            True on success. On success the read cache is cleared too.
        """
        await self.flush()
        try:
            ok = await self._store.remove(self._key)
            if not ok:
                raise PersistenceError(f"store rejected delete of {self._key!r}")
        except Exception as e:
            logger.error("Failed to clear saved position: %s", e)
            self._publish(
                EventType.NOTIFICATION,
                Notification(
                    title="Error",
                    message="Could not delete the saved position.",
                    level=NotificationLevel.ERROR,
                ),
            )
            return False

        self.last_saved_location = None
        self.loaded_from_storage = False
        logger.info("Saved position cleared")
        self._publish(EventType.POSITION_CLEARED)
        self._publish(
            EventType.NOTIFICATION,
            Notification(title="Deleted", message="Last saved position deleted."),
        )
        return True
