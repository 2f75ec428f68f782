"""
Cache service facade used by request handlers.

Combines the tiered entry table with statistics, coordinates concurrent
fetches so each missing key is fetched upstream at most once at a time, and
runs the periodic expiry sweep.
"""

import asyncio
import functools
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from src.cache.backends import DiskBackend, MemoryBackend, StorageBackend
from src.cache.stats import StatsAggregator
from src.cache.tiered import TieredCache
from src.core.config.cache_config import CacheConfig
from src.core.errors import CacheServiceUnavailableError
from src.core.models import CacheStats, StorageBreakdown, StorageTier, TopKey
from src.core.utils.logging import log_operation

logger = logging.getLogger(__name__)

FetchFn = Callable[[str], Awaitable[Any]]


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


class CacheService:
    """
    Read-through cache in front of slow upstream fetches.

    Example:
        service = CacheService.from_config(config.cache)
        await service.start()
        articles = await service.fetch_with_cache(feed_url, 300, fetch_feed)
    """

    def __init__(
        self,
        cache: TieredCache,
        stats: StatsAggregator | None = None,
        enabled: bool = True,
        default_ttl: float = 300,
        sweep_interval: float = 600,
    ) -> None:
        self.cache = cache
        self.stats = stats or StatsAggregator()
        self.enabled = enabled
        self.default_ttl = default_ttl
        self.sweep_interval = sweep_interval
        self.running = False
        self._inflight: dict[str, asyncio.Task[Any]] = {}
        self._sweeper_task: asyncio.Task[None] | None = None

    @classmethod
    def from_config(cls, cache_config: CacheConfig) -> "CacheService":
        """Build a service and its tiers from configuration."""
        persistent: StorageBackend | None = None
        if cache_config.persistent_backend == "disk":
            persistent = DiskBackend(cache_config.persistent_dir)
        elif cache_config.persistent_backend == "memory":
            persistent = MemoryBackend(tier=StorageTier.PERSISTENT)

        cache = TieredCache(
            memory_capacity_bytes=cache_config.memory_capacity_bytes,
            persistent=persistent,
            persistent_capacity_bytes=cache_config.persistent_capacity_bytes if persistent else None,
            sweep_batch_size=cache_config.sweep_batch_size,
            compression_threshold=cache_config.compression_threshold or None,
        )
        stats = StatsAggregator(
            window_size=cache_config.stats_window,
            top_keys=cache_config.top_keys,
            max_tracked_keys=cache_config.max_tracked_keys,
        )
        logger.info(
            f"CacheService initialized. memory={cache_config.memory_capacity_bytes}B, "
            f"persistent={cache_config.persistent_backend}, enabled={cache_config.enable_cache}"
        )
        return cls(
            cache=cache,
            stats=stats,
            enabled=cache_config.enable_cache,
            default_ttl=cache_config.default_ttl,
            sweep_interval=cache_config.sweep_interval,
        )

    # --- Read-through ---

    async def fetch_with_cache(
        self,
        key: str,
        ttl: float | None,
        fetch_fn: FetchFn,
        tags: Iterable[str] = (),
    ) -> Any:
        """
        Return the cached value for a key, fetching and storing it on a miss.

        Concurrent misses on the same key share one upstream call. A caller
        that is cancelled while waiting stops waiting; the shared fetch keeps
        running for the remaining callers.

        Args:
            key: Cache key (e.g. feed URL plus query parameters)
            ttl: Time to live in seconds (None for the service default)
            fetch_fn: Upstream fetcher, called with the key
            tags: Labels stored with the entry for group invalidation

        Returns:
            The cached or freshly fetched value

        Raises:
            Whatever `fetch_fn` raises. Failed fetches are never cached.
        """
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl}")

        if not self.enabled:
            return await fetch_fn(key)

        start = time.perf_counter()
        self._record(self.stats.record_access, key)

        with self.cache.lock:
            found, value = self.cache.lookup_memory(key)
            task = None if found else self._inflight.get(key)

        if not found and task is None and self.cache.persistent is not None:
            # Disk reads, unpickling and promotion run off the event loop.
            found, value = await asyncio.to_thread(self.cache.lookup_persistent, key)

        if not found:
            with self.cache.lock:
                task = self._inflight.get(key)
                if task is None:
                    task = asyncio.ensure_future(self._load(key, ttl, fetch_fn, tuple(tags)))
                    self._inflight[key] = task
                    task.add_done_callback(functools.partial(self._settle, key))
                else:
                    logger.debug(f"Joining in-flight fetch for '{key}'")

        if found:
            self._record(self.stats.record_hit, _elapsed_ms(start))
            return value

        try:
            value = await asyncio.shield(task)
        except Exception:
            self._record(self.stats.record_miss, _elapsed_ms(start))
            raise

        self._record(self.stats.record_miss, _elapsed_ms(start))
        return value

    async def _load(self, key: str, ttl: float, fetch_fn: FetchFn, tags: tuple[str, ...]) -> Any:
        logger.debug(f"Cache miss for '{key}', fetching upstream")
        value = await fetch_fn(key)
        if self.cache.persistent is None:
            self.cache.set(key, value, ttl, tags)
        else:
            # Evictions demote into the persistent tier.
            await asyncio.to_thread(self.cache.set, key, value, ttl, tags)
        return value

    def _settle(self, key: str, task: asyncio.Task[Any]) -> None:
        with self.cache.lock:
            if self._inflight.get(key) is task:
                del self._inflight[key]
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Upstream fetch for '{key}' failed: {task.exception()}")

    def inflight_keys(self) -> list[str]:
        with self.cache.lock:
            return list(self._inflight)

    def _record(self, method: Callable[..., None], *args: Any) -> None:
        try:
            method(*args)
        except Exception as e:
            logger.warning(f"⚠️ Cache statistics update failed: {e}", exc_info=True)

    # --- Statistics ---

    def get_stats(self) -> CacheStats:
        """
        Current counters merged with tier totals.

        Raises:
            CacheServiceUnavailableError: if caching is disabled
        """
        if not self.enabled:
            raise CacheServiceUnavailableError("Cache service is disabled")

        snapshot = self.stats.snapshot()
        breakdown = self.cache.storage_breakdown()
        return CacheStats(
            total_entries=self.cache.total_entries,
            total_size=sum(breakdown.values()),
            hit_rate=snapshot.hit_rate,
            miss_rate=snapshot.miss_rate,
            total_hits=snapshot.total_hits,
            total_misses=snapshot.total_misses,
            average_response_time=snapshot.average_response_time,
            top_keys=[TopKey(key=key, count=count) for key, count in snapshot.top_keys],
            last_cleanup=int(self.cache.last_cleanup * 1000),
            storage_breakdown=StorageBreakdown(
                memory=breakdown[StorageTier.MEMORY],
                persistent=breakdown[StorageTier.PERSISTENT],
            ),
        )

    def reset_stats(self) -> None:
        self.stats.reset()

    # --- Invalidation ---

    def invalidate(self, key: str) -> bool:
        return self.cache.invalidate(key)

    def invalidate_tags(self, tags: Iterable[str]) -> int:
        return self.cache.invalidate_tags(tags)

    def clear(self, tier: StorageTier | None = None) -> int:
        return self.cache.clear(tier)

    # --- Maintenance ---

    async def sweep(self) -> int:
        """Run an expiry sweep in a worker thread."""
        async with log_operation("cache_sweep", entries=self.cache.total_entries):
            return await asyncio.to_thread(self.cache.sweep)

    async def start(self) -> None:
        """Start the background sweeper."""
        if self.running:
            logger.warning("Cache sweeper is already running")
            return

        self.running = True
        self._sweeper_task = asyncio.create_task(self._sweep_loop())
        logger.info(f"🕒 Cache sweeper started - sweeping every {self.sweep_interval}s")

    async def stop(self) -> None:
        """Stop the sweeper, cancel pending fetches and close the tiers."""
        self.running = False
        if self._sweeper_task:
            self._sweeper_task.cancel()
            try:
                await self._sweeper_task
            except asyncio.CancelledError:
                pass
            self._sweeper_task = None

        with self.cache.lock:
            pending = list(self._inflight.values())
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        self.cache.close()
        logger.info("🛑 Cache service stopped")

    async def _sweep_loop(self) -> None:
        while self.running:
            try:
                await asyncio.sleep(self.sweep_interval)
                await self.sweep()
            except asyncio.CancelledError:
                logger.info("Cache sweeper cancelled")
                break
            except Exception as e:
                logger.error(f"Cache sweep error: {e}")
