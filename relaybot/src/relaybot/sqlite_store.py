from __future__ import annotations

from typing import Callable

from .sqlite_backend import SQLiteBackend
from .store import _now_s


class SQLiteStateStore:
    """Durable key-value store with per-key TTL backed by SQLite.

    Expired rows are hidden from reads immediately and physically removed by
    :meth:`expire`, which the app runs periodically.
    """

    def __init__(self, backend: SQLiteBackend, *, now_func: Callable[[], int] = _now_s) -> None:
        self._backend = backend
        self._now = now_func

    async def get(self, key: str) -> str | None:
        now = self._now()
        with self._backend.lock:
            row = self._backend.connection.execute(
                "SELECT value, expires_at FROM state WHERE key=?",
                (key,),
            ).fetchone()
            if row is None:
                return None
            if row["expires_at"] is not None and row["expires_at"] <= now:
                self._backend.connection.execute(
                    "DELETE FROM state WHERE key=? AND expires_at <= ?",
                    (key, now),
                )
                return None
        return str(row["value"])

    async def put(self, key: str, value: str, ttl_s: int | None = None) -> None:
        expires_at = None if ttl_s is None else self._now() + ttl_s
        with self._backend.lock:
            self._backend.connection.execute(
                """
                INSERT INTO state (key, value, expires_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, expires_at = excluded.expires_at
                """,
                (key, str(value), expires_at),
            )

    async def delete(self, key: str) -> None:
        with self._backend.lock:
            self._backend.connection.execute("DELETE FROM state WHERE key=?", (key,))

    def expire(self) -> int:
        with self._backend.lock:
            cursor = self._backend.connection.execute(
                "DELETE FROM state WHERE expires_at IS NOT NULL AND expires_at <= ?",
                (self._now(),),
            )
        return cursor.rowcount

    def ttl(self, key: str) -> int | None:
        with self._backend.lock:
            row = self._backend.connection.execute(
                "SELECT expires_at FROM state WHERE key=?",
                (key,),
            ).fetchone()
        if row is None or row["expires_at"] is None:
            return None
        return int(row["expires_at"]) - self._now()
