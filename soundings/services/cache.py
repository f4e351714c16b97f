"""
TTL cache with read-through coalescing.

One instance is created per service container and injected wherever cached
upstream data is needed. Concurrent `get_or_load` calls for the same unresolved
key await a single in-flight load; failed loads are not cached.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, Tuple

log = logging.getLogger("soundings.cache")


@dataclass
class CacheEntry:
    value: Any
    expires_at: float


class TTLCache:
    def __init__(self, max_entries: int = 2048, clock: Callable[[], float] = time.monotonic):
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[Hashable, CacheEntry]" = OrderedDict()
        self._inflight: Dict[Hashable, asyncio.Future] = {}
        self.hits = 0
        self.misses = 0
        self.loads = 0

    def get(self, key: Hashable) -> Tuple[bool, Any]:
        entry = self._entries.get(key)
        if entry is None:
            return False, None
        if entry.expires_at <= self._clock():
            self._entries.pop(key, None)
            return False, None
        self._entries.move_to_end(key)
        return True, entry.value

    def set(self, key: Hashable, value: Any, ttl_seconds: float) -> None:
        self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl_seconds)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def invalidate(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    async def get_or_load(
        self,
        key: Hashable,
        loader: Callable[[], Awaitable[Any]],
        ttl_seconds: float,
        should_cache: Optional[Callable[[Any], bool]] = None,
    ) -> Any:
        found, value = self.get(key)
        if found:
            self.hits += 1
            return value

        pending = self._inflight.get(key)
        if pending is not None:
            self.hits += 1
            return await asyncio.shield(pending)

        self.misses += 1
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        self._inflight[key] = future
        try:
            self.loads += 1
            value = await loader()
        except BaseException as exc:
            if not future.done():
                future.set_exception(exc)
                # Mark retrieved so an un-awaited failure is not reported.
                future.exception()
            raise
        else:
            if should_cache is None or should_cache(value):
                self.set(key, value, ttl_seconds)
            future.set_result(value)
            return value
        finally:
            self._inflight.pop(key, None)

    def cleanup(self) -> int:
        now = self._clock()
        stale = [k for k, e in self._entries.items() if e.expires_at <= now]
        for k in stale:
            del self._entries[k]
        return len(stale)

    def stats(self) -> Dict[str, int]:
        return {
            "size": len(self._entries),
            "inflight": len(self._inflight),
            "hits": self.hits,
            "misses": self.misses,
            "loads": self.loads,
        }
