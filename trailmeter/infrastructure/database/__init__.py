"""Durable key-value stores."""

from .kv_store import KV_SCHEMA, MemoryKeyValueStore, SQLiteKeyValueStore

__all__ = ["KV_SCHEMA", "MemoryKeyValueStore", "SQLiteKeyValueStore"]
