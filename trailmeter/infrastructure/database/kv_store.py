"""
Key-Value Stores
================

Durable string stores backing the persistence recovery manager.

Usage:
    store = SQLiteKeyValueStore("data/trailmeter.db")
    await store.init_schema()

    await store.set("lastLocation", '{"latitude": 41.0, "longitude": 29.0}')
    raw = await store.get("lastLocation")
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from pathlib import Path

import aiosqlite

logger = logging.getLogger(__name__)

KV_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


class MemoryKeyValueStore:
    """In-process store. Contents are lost when the process exits."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> bool:
        self._data[key] = value
        return True

    async def remove(self, key: str) -> bool:
        self._data.pop(key, None)
        return True

    def __contains__(self, key: str) -> bool:
        return key in self._data


class SQLiteKeyValueStore:
    """
    Async key-value store on SQLite.

    Each operation opens its own connection and commits before returning,
    so get/set/remove each complete or fail as a unit.
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self._initialized = False

    async def init_schema(self) -> None:
        """Create the table. Safe to call more than once."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        async with self._get_connection() as conn:
            await conn.executescript(KV_SCHEMA)
            await conn.commit()
        self._initialized = True
        logger.info("Key-value store initialized: %s", self.db_path)

    @asynccontextmanager
    async def _get_connection(self) -> AsyncIterator[aiosqlite.Connection]:
        conn = await aiosqlite.connect(str(self.db_path), timeout=30.0)
        await conn.execute("PRAGMA journal_mode=WAL")
        try:
            yield conn
        finally:
            await conn.close()

    async def _ensure_schema(self) -> None:
        if not self._initialized:
            await self.init_schema()

    async def get(self, key: str) -> str | None:
        await self._ensure_schema()
        async with self._get_connection() as conn:
            cursor = await conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,))
            row = await cursor.fetchone()
        return row[0] if row else None

    async def set(self, key: str, value: str) -> bool:
        await self._ensure_schema()
        async with self._get_connection() as conn:
            await conn.execute(
                """
                INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, value, datetime.now(UTC).isoformat()),
            )
            await conn.commit()
        return True

    async def remove(self, key: str) -> bool:
        await self._ensure_schema()
        async with self._get_connection() as conn:
            await conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            await conn.commit()
        return True
