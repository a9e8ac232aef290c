# ===============================================================
# utils/cache.py
# ===============================================================
"""Per-process TTL cache for read-only API views."""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Hashable, Tuple

from cachetools import TTLCache


class ResponseCache:
    """
    Caches the result of an async loader under a request-identity key
    (e.g. ``("current_quiz",)`` or ``("stats",)``) for `ttl` seconds.

    Each replica holds its own copy; nothing here is shared between
    processes, so a value may lag writes made on another replica by up
    to one TTL. Local writes call `invalidate`.
    """

    def __init__(self, ttl: int, maxsize: int = 256) -> None:
        self.ttl = ttl
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl)
        self._locks: Dict[Tuple, asyncio.Lock] = {}

    async def get_or_load(self, key: Tuple[Hashable, ...], loader: Callable[[], Awaitable[Any]]) -> Any:
        if self.ttl <= 0:
            return await loader()
        if key in self._cache:
            return self._cache[key]

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            # Another coroutine may have filled it while we waited
            if key in self._cache:
                return self._cache[key]
            value = await loader()
            self._cache[key] = value
            return value

    def invalidate(self, *prefixes: Hashable) -> None:
        """Drop entries whose key starts with any prefix; no prefix clears all."""
        if not prefixes:
            self._cache.clear()
            return
        for key in list(self._cache.keys()):
            if key and key[0] in prefixes:
                self._cache.pop(key, None)

    def __len__(self) -> int:
        return len(self._cache)
