import asyncio
from typing import Hashable

from cachetools import TTLCache


class KeyedLocks:
    """
    Hands out one asyncio.Lock per key.

    setdefault() makes lock creation atomic on the event loop: every
    concurrent caller for the same key receives the SAME lock object.
    The TTL must exceed the longest critical section, otherwise a lock
    could expire while held and a second caller would get a fresh one.
    """

    def __init__(self, maxsize: int = 10_000, ttl: float = 300):
        self._locks: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl)

    def for_key(self, key: Hashable) -> asyncio.Lock:
        return self._locks.setdefault(key, asyncio.Lock())

    def __len__(self) -> int:
        return len(self._locks)
