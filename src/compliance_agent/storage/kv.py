"""Durable key-value stores backing run records and retrieval caches."""

from __future__ import annotations

import asyncio
import copy
import json
import sqlite3
from pathlib import Path
from typing import Any, Protocol


class KeyValueStore(Protocol):
    """Minimal async store contract; values must be JSON-compatible."""

    async def get(self, key: str) -> Any | None:
        """Return the stored value or `None` when absent."""

    async def put(self, key: str, value: Any) -> None:
        """Insert or replace the value for `key`."""


class InMemoryKeyValueStore:
    """Process-local store used for tests and single-process deployments.

    Values are deep-copied on the way in and out so callers never share
    mutable state with the stored snapshot.
    """

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}

    async def get(self, key: str) -> Any | None:
        value = self._data.get(key)
        return copy.deepcopy(value)

    async def put(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)


class SqliteKeyValueStore:
    """SQLite-backed store; blocking calls run in a worker thread."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        _ensure_kv_table(self._path)

    async def get(self, key: str) -> Any | None:
        return await asyncio.to_thread(self._get, key)

    async def put(self, key: str, value: Any) -> None:
        await asyncio.to_thread(self._put, key, json.dumps(value, ensure_ascii=False))

    def _get(self, key: str) -> Any | None:
        with sqlite3.connect(self._path) as conn:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return json.loads(row[0]) if row else None

    def _put(self, key: str, raw: str) -> None:
        with sqlite3.connect(self._path) as conn:
            conn.execute(
                "INSERT INTO kv(key, value) VALUES(?, ?) ON CONFLICT(key) DO UPDATE SET value=excluded.value",
                (key, raw),
            )
            conn.commit()


def _ensure_kv_table(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            "CREATE TABLE IF NOT EXISTS kv (key TEXT PRIMARY KEY, value TEXT NOT NULL)"
        )
        conn.commit()


class KeyLocks:
    """One `asyncio.Lock` per cache key, created on first use.

    Holders re-read the cached entry after acquiring the lock, so concurrent
    callers for the same key rebuild it at most once.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def __call__(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock
