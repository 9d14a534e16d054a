"""
Read-through cache with stale-while-revalidate, request coalescing and failure back-off.

One RefreshingCache fronts one upstream resource family (all coins, tickers per currency,
coin detail per id/currency). For a key the cache is in one of three states:

- fresh: the entry is served without I/O.
- stale: the expired entry is served immediately and a background refresh is started
  unless one is already running or the key is backing off. Background failures are logged only.
- cold: no entry at all. Callers join the single in-flight fetch for the key (or start it)
  and wait for it. While a back-off window is open they fail fast without touching upstream.

Entries are replaced, never mutated, and every store bumps a generation counter that
downstream snapshots compare against to know when to rebuild.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Generic, Hashable, Optional, Set, TypeVar

from prometheus_client import Counter

from app.core.errors import MarketDataError, NotFoundError, UpstreamUnavailableError
from app.core.logging_config import get_logger

logger = get_logger("market_cache")

CACHE_LOOKUPS = Counter('market_cache_lookups_total', 'Cache lookups by outcome', ['resource', 'outcome'])
CACHE_REFRESHES = Counter('market_cache_refreshes_total', 'Upstream refreshes by result', ['resource', 'result'])

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    value: V
    expires_at: float
    generation: int


@dataclass(frozen=True)
class _Backoff:
    until: float
    error: Exception


class RefreshingCache(Generic[K, V]):

    def __init__(
        self,
        name: str,
        loader: Callable[[K], Awaitable[V]],
        ttl: float,
        backoff: float,
        clock: Callable[[], float] = time.monotonic,
        max_entries: Optional[int] = None,
    ):
        self.name = name
        self._loader = loader
        self._ttl = ttl
        self._backoff = backoff
        self._clock = clock
        self._max_entries = max_entries

        self._entries: Dict[K, CacheEntry[V]] = {}
        self._inflight: Dict[K, asyncio.Task] = {}
        self._backoffs: Dict[K, _Backoff] = {}
        self._background: Set[asyncio.Task] = set()
        self._generation = 0

    def is_backing_off(self, key: K) -> bool:
        backoff = self._backoffs.get(key)
        if backoff is None:
            return False
        if self._clock() < backoff.until:
            return True
        del self._backoffs[key]
        return False

    async def get(self, key: K) -> CacheEntry[V]:
        now = self._clock()
        entry = self._entries.get(key)

        if entry is not None:
            if now < entry.expires_at:
                CACHE_LOOKUPS.labels(resource=self.name, outcome="fresh").inc()
                return entry

            CACHE_LOOKUPS.labels(resource=self.name, outcome="stale").inc()
            if key not in self._inflight and not self.is_backing_off(key):
                task = self._start_refresh(key)
                self._background.add(task)
                task.add_done_callback(self._background.discard)
            return entry

        if self.is_backing_off(key):
            CACHE_LOOKUPS.labels(resource=self.name, outcome="backoff").inc()
            raise self._backoff_error(key)

        CACHE_LOOKUPS.labels(resource=self.name, outcome="cold").inc()
        task = self._inflight.get(key)
        if task is None:
            task = self._start_refresh(key)
        # Shielded so a cancelled caller does not cancel the fetch other callers share.
        return await asyncio.shield(task)

    async def _drain(self):
        """Wait for every background refresh started so far."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def close(self):
        tasks = list(self._inflight.values()) + list(self._background)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _start_refresh(self, key: K) -> asyncio.Task:
        task = asyncio.create_task(self._refresh(key), name=f"refresh:{self.name}:{key}")
        self._inflight[key] = task
        task.add_done_callback(lambda t: self._on_refresh_done(key, t))
        return task

    async def _refresh(self, key: K) -> CacheEntry[V]:
        try:
            value = await self._loader(key)
        except Exception as e:
            self._backoffs[key] = _Backoff(until=self._clock() + self._backoff, error=e)
            self._prune_backoffs()
            CACHE_REFRESHES.labels(resource=self.name, result="failure").inc()
            raise

        self._generation += 1
        entry = CacheEntry(value=value, expires_at=self._clock() + self._ttl, generation=self._generation)
        self._entries[key] = entry
        self._backoffs.pop(key, None)
        self._evict()
        CACHE_REFRESHES.labels(resource=self.name, result="success").inc()
        logger.info("cache_refreshed", resource=self.name, key=str(key), generation=entry.generation)
        return entry

    def _on_refresh_done(self, key: K, task: asyncio.Task):
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(
                "cache_refresh_failed",
                resource=self.name,
                key=str(key),
                error=str(error),
                stale_available=key in self._entries,
                backoff_seconds=self._backoff,
            )

    def _backoff_error(self, key: K) -> MarketDataError:
        cause = self._backoffs[key].error
        if isinstance(cause, NotFoundError):
            return NotFoundError(cause.message, details=cause.details)
        return UpstreamUnavailableError(
            f"Upstream unavailable for {self.name}, retrying after back-off",
            upstream_status=getattr(cause, "upstream_status", None),
        )

    def _evict(self):
        if self._max_entries is None:
            return
        overflow = len(self._entries) - self._max_entries
        if overflow <= 0:
            return
        oldest = sorted(self._entries, key=lambda k: self._entries[k].expires_at)[:overflow]
        for k in oldest:
            del self._entries[k]

    def _prune_backoffs(self):
        now = self._clock()
        for k in [k for k, b in self._backoffs.items() if b.until <= now]:
            del self._backoffs[k]
        if self._max_entries is None:
            return
        overflow = len(self._backoffs) - self._max_entries
        if overflow > 0:
            for k in sorted(self._backoffs, key=lambda k: self._backoffs[k].until)[:overflow]:
                del self._backoffs[k]
