"""Short-lived metadata cache shared by every venue adapter.

Keys are namespaced "{source}:{resourceKind}[:{qualifier}]" so one venue's
entries can be dropped with deleteByPrefix() without touching anyone else.

Only slow-changing market metadata (tick sizes, lot sizes, margin fractions)
belongs in here. Account positions and balances are always fetched fresh."""

import asyncio
import time

from dataclasses import dataclass

from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from cachetools import TLRUCache
from loguru import logger

T = TypeVar("T")

# tick sizes and margin tables rarely move; 30 minutes keeps requests low
DEFAULT_TTL = 30 * 60


@dataclass(slots=True, frozen=True)
class CacheEntry(Generic[T]):
    value: T

    # absolute deadline on the cache timer (not wall clock)
    expiresAt: float


class MetadataCache:
    def __init__(
        self,
        ttl: float = DEFAULT_TTL,
        maxsize: int = 4096,
        timer: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self.timer = timer

        # each entry carries its own deadline so per-call TTLs can differ
        self.entries: TLRUCache = TLRUCache(
            maxsize=maxsize,
            ttu=lambda _key, entry, _now: entry.expiresAt,
            timer=timer,
        )

        # key -> pending fetch, so concurrent misses share one request
        self.inflight: dict[str, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self.entries)

    def has(self, key: str) -> bool:
        return key in self.entries

    def get(self, key: str, default: Any = None) -> Any:
        entry = self.entries.get(key)
        return default if entry is None else entry.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        ttl = self.ttl if ttl is None else ttl
        if ttl <= 0:
            return

        self.entries[key] = CacheEntry(value, self.timer() + ttl)

    async def getOrFetch(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[T]],
        ttl: Optional[float] = None,
    ) -> T:
        """Return cached 'key' or run 'fetcher' once to populate it.

        Concurrent callers missing on the same key all await the same fetch.
        The fetch is shielded: if every caller gets cancelled, the request
        still completes and fills the cache for the next caller.

        A failing fetcher stores nothing and every waiter sees its exception.
        A 'ttl' <= 0 runs the fetcher without caching the result."""
        entry = self.entries.get(key)
        if entry is not None:
            logger.debug("[cache] hit {}", key)
            return entry.value

        ttl = self.ttl if ttl is None else ttl
        if ttl <= 0:
            return await fetcher()

        task = self.inflight.get(key)
        if task is None:
            logger.debug("[cache] miss {}", key)
            task = asyncio.ensure_future(self._fill(key, fetcher, ttl))
            task.add_done_callback(_consumeException)
            self.inflight[key] = task
        else:
            logger.debug("[cache] joining in-flight fetch for {}", key)

        return await asyncio.shield(task)

    async def _fill(self, key: str, fetcher, ttl: float):
        try:
            value = await fetcher()
            self.set(key, value, ttl)
            return value
        finally:
            self.inflight.pop(key, None)

    def delete(self, key: str) -> bool:
        return self.entries.pop(key, None) is not None

    def deleteByPrefix(self, prefix: str) -> int:
        """Drop every entry whose key starts with 'prefix'. Returns count dropped."""
        doomed = [k for k in list(self.entries.keys()) if k.startswith(prefix)]
        for k in doomed:
            self.entries.pop(k, None)

        if doomed:
            logger.debug("[cache] dropped {} entries under {}", len(doomed), prefix)

        return len(doomed)

    def clear(self) -> None:
        self.entries.clear()


def _consumeException(task: asyncio.Task) -> None:
    # waiters may all be gone (cancelled); mark the failure as retrieved
    if not task.cancelled():
        task.exception()
