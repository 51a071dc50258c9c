"""Short-lived memoisation of supplier results keyed by namespace."""
from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)

SEARCH_PREFIX = "flight:search:"
PRICING_PREFIX = "pricing:"
SEAT_LAYOUT_PREFIX = "seat-layout:"
SSR_PREFIX = "ssr:"


class CacheBackend(Protocol):
    """Key/value store with per-entry TTL and prefix deletes."""

    async def get_raw(self, key: str) -> Optional[str]: ...

    async def set_raw(self, key: str, value: str, ttl: float) -> None: ...

    async def delete(self, key: str) -> bool: ...

    async def delete_prefix(self, prefix: str) -> int: ...

    async def close(self) -> None: ...


class MemoryCacheBackend:
    """In-process backend; expiry is checked lazily on read."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: Dict[str, Tuple[float, str]] = {}
        self._lock = asyncio.Lock()

    async def get_raw(self, key: str) -> Optional[str]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    async def set_raw(self, key: str, value: str, ttl: float) -> None:
        async with self._lock:
            self._entries[key] = (self._clock() + ttl, value)

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._entries.pop(key, None) is not None

    async def delete_prefix(self, prefix: str) -> int:
        async with self._lock:
            doomed = [key for key in self._entries if key.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    async def close(self) -> None:
        async with self._lock:
            self._entries.clear()


class ResultCache:
    """JSON-serialising cache facade.

    Backend failures never reach callers: reads degrade to a miss and writes to a
    no-op. Concurrent misses for the same key are not coalesced, so a producer
    may run once per caller; cached values are idempotent supplier derivations.
    """

    def __init__(self, backend: CacheBackend, *, default_ttl: float = 3600) -> None:
        self._backend = backend
        self.default_ttl = default_ttl

    @property
    def backend(self) -> CacheBackend:
        return self._backend

    @staticmethod
    def search_key(fingerprint: str) -> str:
        return f"{SEARCH_PREFIX}{fingerprint}"

    @staticmethod
    def pricing_key(tui: str) -> str:
        return f"{PRICING_PREFIX}{tui}"

    @staticmethod
    def seat_layout_key(tui: str) -> str:
        return f"{SEAT_LAYOUT_PREFIX}{tui}"

    @staticmethod
    def ssr_key(tui: str, flight_number: str) -> str:
        return f"{SSR_PREFIX}{tui}:{flight_number}"

    async def get(self, key: str) -> Any:
        try:
            raw = await self._backend.get_raw(key)
        except Exception:
            logger.warning("Cache read failed for %s", key, exc_info=True)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.debug("Discarding undecodable cache entry %s", key)
            return None

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        try:
            encoded = json.dumps(value, separators=(",", ":"))
        except (TypeError, ValueError):
            logger.warning("Value for cache key %s is not JSON serialisable", key)
            return False
        try:
            await self._backend.set_raw(key, encoded, ttl if ttl is not None else self.default_ttl)
        except Exception:
            logger.warning("Cache write failed for %s", key, exc_info=True)
            return False
        return True

    async def get_or_set(
        self,
        key: str,
        producer: Callable[[], Awaitable[Any]],
        ttl: Optional[float] = None,
    ) -> Any:
        cached = await self.get(key)
        if cached is not None:
            return cached
        value = await producer()
        if value is not None:
            await self.set(key, value, ttl)
        return value

    async def delete(self, key: str) -> bool:
        try:
            return await self._backend.delete(key)
        except Exception:
            logger.warning("Cache delete failed for %s", key, exc_info=True)
            return False

    async def clear_prefix(self, prefix: str) -> int:
        try:
            removed = await self._backend.delete_prefix(prefix)
        except Exception:
            logger.warning("Cache prefix clear failed for %s", prefix, exc_info=True)
            return 0
        logger.debug("Cleared %s cache entries under %s", removed, prefix)
        return removed

    async def close(self) -> None:
        await self._backend.close()
