"""SQLite-backed cache backend for deployments that share results across processes."""
from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from pathlib import Path
from typing import Callable, Optional

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

MIGRATIONS: dict[int, str] = {
    1: """
    CREATE TABLE IF NOT EXISTS cache_entries (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        expires_at REAL NOT NULL,
        created_at REAL NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_cache_entries_expires_at ON cache_entries(expires_at);
    """,
}


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SqliteCacheBackend:
    """Async wrapper over a single ``cache_entries`` table."""

    def __init__(
        self,
        db_path: Path,
        *,
        busy_timeout_ms: int = 2000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._path = db_path
        self._busy_timeout_ms = busy_timeout_ms
        self._clock = clock
        self._connection: Optional[sqlite3.Connection] = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        if self._connection is not None:
            return
        async with self._lock:
            if self._connection is None:
                self._connection = await asyncio.to_thread(self._open_connection)

    async def close(self) -> None:
        if self._connection is None:
            return
        conn = self._connection
        self._connection = None
        await asyncio.to_thread(conn.close)

    def _open_connection(self) -> sqlite3.Connection:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self._path, check_same_thread=False)
        conn.execute(f"PRAGMA busy_timeout = {int(max(self._busy_timeout_ms, 0))};")
        conn.execute("PRAGMA journal_mode = WAL;")
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS meta (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            );
            """
        )
        row = conn.execute("SELECT value FROM meta WHERE key='schema_version'").fetchone()
        current = int(row[0]) if row else 0
        for version in range(current + 1, SCHEMA_VERSION + 1):
            conn.executescript(MIGRATIONS[version])
            conn.execute(
                "INSERT INTO meta(key, value) VALUES('schema_version', ?)\n"
                "ON CONFLICT(key) DO UPDATE SET value=excluded.value",
                (str(version),),
            )
        conn.commit()
        return conn

    def _require_connection(self) -> sqlite3.Connection:
        if not self._connection:
            raise RuntimeError("SQLite cache has not been initialised")
        return self._connection

    async def get_raw(self, key: str) -> Optional[str]:
        def _op() -> Optional[str]:
            conn = self._require_connection()
            row = conn.execute(
                "SELECT value, expires_at FROM cache_entries WHERE key=?",
                (key,),
            ).fetchone()
            if row is None:
                return None
            value, expires_at = row
            if self._clock() >= float(expires_at):
                with conn:
                    conn.execute("DELETE FROM cache_entries WHERE key=?", (key,))
                return None
            return value

        async with self._lock:
            return await asyncio.to_thread(_op)

    async def set_raw(self, key: str, value: str, ttl: float) -> None:
        def _op() -> None:
            conn = self._require_connection()
            now = self._clock()
            with conn:
                conn.execute(
                    """
                    INSERT INTO cache_entries(key, value, expires_at, created_at)
                    VALUES(?, ?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value=excluded.value,
                        expires_at=excluded.expires_at,
                        created_at=excluded.created_at
                    """,
                    (key, value, now + ttl, now),
                )

        async with self._lock:
            await asyncio.to_thread(_op)

    async def delete(self, key: str) -> bool:
        def _op() -> bool:
            conn = self._require_connection()
            with conn:
                cursor = conn.execute("DELETE FROM cache_entries WHERE key=?", (key,))
            return cursor.rowcount > 0

        async with self._lock:
            return await asyncio.to_thread(_op)

    async def delete_prefix(self, prefix: str) -> int:
        def _op() -> int:
            conn = self._require_connection()
            with conn:
                cursor = conn.execute(
                    "DELETE FROM cache_entries WHERE key LIKE ? ESCAPE '\\'",
                    (f"{_escape_like(prefix)}%",),
                )
            return cursor.rowcount

        async with self._lock:
            return await asyncio.to_thread(_op)

    async def purge_expired(self) -> int:
        def _op() -> int:
            conn = self._require_connection()
            with conn:
                cursor = conn.execute("DELETE FROM cache_entries WHERE expires_at <= ?", (self._clock(),))
            return cursor.rowcount

        async with self._lock:
            removed = await asyncio.to_thread(_op)
        if removed:
            logger.debug("Purged %s expired cache entries", removed)
        return removed
