from __future__ import annotations

from asyncio import Lock
import time
from typing import Any

from .config import AUTO_LIVE_THROTTLE_SECONDS


class TTLCache:
    """A simple in-memory TTL cache with async-safe access.

    Per process only; nothing here is shared between API instances.
    """

    def __init__(self, ttl_seconds: float = 300.0) -> None:
        self._ttl = ttl_seconds
        self._lock = Lock()
        self._store: dict[Any, tuple[Any, float]] = {}

    def _live_entry(self, key: Any, now: float) -> tuple[Any, float] | None:
        entry = self._store.get(key)
        if entry and entry[1] <= now:
            self._store.pop(key, None)
            return None
        return entry

    async def get(self, key: Any) -> Any | None:
        now = time.monotonic()
        async with self._lock:
            entry = self._live_entry(key, now)
            return entry[0] if entry else None

    async def set(self, key: Any, value: Any, ttl_seconds: float | None = None) -> None:
        ttl = self._ttl if ttl_seconds is None else ttl_seconds
        expires_at = time.monotonic() + max(ttl, 0.0)
        async with self._lock:
            if ttl <= 0:
                self._store.pop(key, None)
            else:
                self._store[key] = (value, expires_at)

    async def claim(self, key: Any) -> bool:
        """Mark ``key`` as used for one TTL window.

        Returns ``False`` when the key was already claimed within the window.
        """

        now = time.monotonic()
        async with self._lock:
            if self._live_entry(key, now) is not None:
                return False
            if self._ttl > 0:
                self._store[key] = (True, now + self._ttl)
            return True

    async def invalidate(self, key: Any) -> None:
        async with self._lock:
            self._store.pop(key, None)

    async def clear(self) -> None:
        async with self._lock:
            self._store.clear()


auto_live_throttle = TTLCache(ttl_seconds=AUTO_LIVE_THROTTLE_SECONDS)
