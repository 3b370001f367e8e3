from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict

logger = logging.getLogger(__name__)


def _now_s() -> int:
    return int(time.time())


@dataclass
class _Row:
    value: str
    expires_at: int | None

    def expired(self, now: int) -> bool:
        return self.expires_at is not None and self.expires_at <= now


class InMemoryStateStore:
    """Key-value store with per-key TTL, expired lazily on read."""

    def __init__(self, *, now_func: Callable[[], int] = _now_s) -> None:
        self._now = now_func
        self._rows: Dict[str, _Row] = {}

    async def get(self, key: str) -> str | None:
        row = self._rows.get(key)
        if row is None:
            return None
        if row.expired(self._now()):
            self._rows.pop(key, None)
            return None
        return row.value

    async def put(self, key: str, value: str, ttl_s: int | None = None) -> None:
        expires_at = None if ttl_s is None else self._now() + ttl_s
        self._rows[key] = _Row(value=str(value), expires_at=expires_at)

    async def delete(self, key: str) -> None:
        self._rows.pop(key, None)

    def expire(self) -> int:
        now = self._now()
        expired = [key for key, row in self._rows.items() if row.expired(now)]
        for key in expired:
            self._rows.pop(key, None)
        return len(expired)

    def ttl(self, key: str) -> int | None:
        """Seconds left before ``key`` expires, ``None`` when it never does."""

        row = self._rows.get(key)
        if row is None or row.expires_at is None:
            return None
        return row.expires_at - self._now()

    def keys(self) -> list[str]:
        now = self._now()
        return sorted(key for key, row in self._rows.items() if not row.expired(now))


class ExpirySweeper:
    """Periodically purges expired rows from a store exposing ``expire()``."""

    def __init__(self, store, interval_s: float) -> None:
        self._store = store
        self._interval_s = interval_s
        self._task: asyncio.Task | None = None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._sweep())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _sweep(self) -> None:
        try:
            while True:
                await asyncio.sleep(self._interval_s)
                try:
                    removed = self._store.expire()
                except Exception:
                    logger.exception("state sweep failed")
                    continue
                if removed:
                    logger.debug("expired %d state rows", removed)
        except asyncio.CancelledError:
            return
