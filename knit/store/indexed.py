"""
Local indexed store (tier 2).

The host-provided persistent store behind tier-2 datastores. Each named
store holds datasets by their ``key`` property (keyPath "key"). The
default implementation keeps one SQLite table per named store; other
hosts can plug in anything that satisfies the IndexedStore protocol.

SQLite calls are blocking, so every operation runs in a worker thread
via ``asyncio.to_thread`` and a lock serializes access to the shared
connection.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import sqlite3
import threading
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)

STORE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")


class IndexedStore(Protocol):
    """Protocol for the tier-2 backing store."""

    async def ensure_store(self, store_name: str) -> None:
        """Create the named store if it does not exist yet."""
        ...

    async def get(self, store_name: str, key: Any) -> dict[str, Any] | None:
        ...

    async def get_all(self, store_name: str) -> list[dict[str, Any]]:
        ...

    async def put(self, store_name: str, dataset: dict[str, Any]) -> None:
        ...

    async def delete(self, store_name: str, key: Any) -> None:
        ...

    async def close(self) -> None:
        ...


class SQLiteIndexedStore:
    """
    SQLite-backed indexed store.

    Example:
        indexed = SQLiteIndexedStore("runtime/knit.db")
        await indexed.ensure_store("chat")
        await indexed.put("chat", {"key": "greeting", "text": "hi"})
        await indexed.get("chat", "greeting")
    """

    def __init__(self, path: str | Path = ":memory:"):
        self._path = str(path)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()
        self._known: set[str] = set()

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            if self._path != ":memory:":
                Path(self._path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self._path, check_same_thread=False)
            logger.info(f"[indexed] Opened indexed store: {self._path}")
        return self._conn

    @staticmethod
    def _table(store_name: str) -> str:
        if not STORE_NAME_PATTERN.match(store_name):
            raise ValueError(f"Invalid store name: {store_name!r}")
        return f'"store_{store_name}"'

    @staticmethod
    def _encode_key(key: Any) -> str:
        return json.dumps(key, separators=(",", ":"))

    # =========================================================================
    # Blocking operations (run in worker thread)
    # =========================================================================

    def _ensure_store(self, store_name: str) -> None:
        with self._lock:
            conn = self._connection()
            conn.execute(
                f"CREATE TABLE IF NOT EXISTS {self._table(store_name)} "
                "(key TEXT PRIMARY KEY, value TEXT NOT NULL)"
            )
            conn.commit()
        self._known.add(store_name)

    def _get(self, store_name: str, key: Any) -> dict[str, Any] | None:
        with self._lock:
            row = self._connection().execute(
                f"SELECT value FROM {self._table(store_name)} WHERE key = ?",
                (self._encode_key(key),),
            ).fetchone()
        return json.loads(row[0]) if row else None

    def _get_all(self, store_name: str) -> list[dict[str, Any]]:
        with self._lock:
            rows = self._connection().execute(
                f"SELECT value FROM {self._table(store_name)}"
            ).fetchall()
        return [json.loads(row[0]) for row in rows]

    def _put(self, store_name: str, dataset: dict[str, Any]) -> None:
        with self._lock:
            conn = self._connection()
            conn.execute(
                f"INSERT OR REPLACE INTO {self._table(store_name)} (key, value) VALUES (?, ?)",
                (self._encode_key(dataset["key"]), json.dumps(dataset)),
            )
            conn.commit()

    def _delete(self, store_name: str, key: Any) -> None:
        with self._lock:
            conn = self._connection()
            conn.execute(
                f"DELETE FROM {self._table(store_name)} WHERE key = ?",
                (self._encode_key(key),),
            )
            conn.commit()

    # =========================================================================
    # Async API
    # =========================================================================

    async def ensure_store(self, store_name: str) -> None:
        if store_name in self._known:
            return
        await asyncio.to_thread(self._ensure_store, store_name)

    async def get(self, store_name: str, key: Any) -> dict[str, Any] | None:
        await self.ensure_store(store_name)
        return await asyncio.to_thread(self._get, store_name, key)

    async def get_all(self, store_name: str) -> list[dict[str, Any]]:
        await self.ensure_store(store_name)
        return await asyncio.to_thread(self._get_all, store_name)

    async def put(self, store_name: str, dataset: dict[str, Any]) -> None:
        await self.ensure_store(store_name)
        await asyncio.to_thread(self._put, store_name, dataset)

    async def delete(self, store_name: str, key: Any) -> None:
        await self.ensure_store(store_name)
        await asyncio.to_thread(self._delete, store_name, key)

    async def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
        self._known.clear()
