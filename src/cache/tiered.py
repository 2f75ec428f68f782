"""
Two-tier cache with LRU eviction and demotion.

Entries are written to the memory tier. When memory is over capacity the
least recently used entries are moved to the persistent tier (if one is
configured and has room) or dropped. Reads check memory first and promote
persistent hits back into memory.
Large payloads are stored compressed and accounted at their compressed size.
"""

import logging
import threading
import time
from collections.abc import Callable, Iterable
from typing import Any

from src.cache.backends import MemoryBackend, StorageBackend
from src.cache.sizing import compress_payload, decompress_payload
from src.core.errors import PersistentTierError
from src.core.models import CacheEntry, StorageTier

logger = logging.getLogger(__name__)


class TieredCache:
    """
    Entry table spread over a memory tier and an optional persistent tier.

    A key lives in at most one tier. All mutations happen under a single
    re-entrant lock, exposed as `lock` so callers can coordinate related
    state (such as in-flight fetches) with the entry table.

    Example:
        cache = TieredCache(memory_capacity_bytes=1024)
        cache.set("feed:bbc", articles, ttl=300)
        articles = cache.get("feed:bbc")
    """

    def __init__(
        self,
        memory_capacity_bytes: int,
        persistent: StorageBackend | None = None,
        persistent_capacity_bytes: int | None = None,
        sweep_batch_size: int = 500,
        compression_threshold: int | None = None,
        memory: StorageBackend | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize the tiered cache.

        Args:
            memory_capacity_bytes: Byte capacity of the memory tier
            persistent: Optional backend for demoted entries
            persistent_capacity_bytes: Byte capacity of the persistent tier (None for unbounded)
            sweep_batch_size: Keys examined per lock acquisition during a sweep
            compression_threshold: Payload size in bytes from which values are compressed (None disables)
            memory: Backend for the memory tier (defaults to a MemoryBackend)
            clock: Time source returning epoch seconds
        """
        self.memory = memory or MemoryBackend()
        self.persistent = persistent
        self.memory_capacity_bytes = memory_capacity_bytes
        self.persistent_capacity_bytes = persistent_capacity_bytes
        self.sweep_batch_size = max(1, sweep_batch_size)
        self.compression_threshold = compression_threshold
        self._clock = clock
        self._lock = threading.RLock()
        self._last_cleanup = clock()
        # A disk tier reopened with a smaller capacity starts over its limit.
        self._trim_persistent()

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    @property
    def last_cleanup(self) -> float:
        """Epoch seconds of the most recent sweep (construction time before the first)."""
        return self._last_cleanup

    def _tiers(self) -> list[StorageBackend]:
        return [self.memory] if self.persistent is None else [self.memory, self.persistent]

    # --- Reads ---

    def get(self, key: str) -> Any | None:
        """Return the live value for a key, or None if absent or expired."""
        _, value = self.lookup(key)
        return value

    def lookup(self, key: str) -> tuple[bool, Any]:
        """
        Look up a key in memory, then in the persistent tier.

        Returns:
            (found, value) so a cached None can be told apart from a miss
        """
        found, value = self.lookup_memory(key)
        if found or self.persistent is None:
            return found, value
        return self.lookup_persistent(key)

    def lookup_memory(self, key: str) -> tuple[bool, Any]:
        """Look up a key in the memory tier only."""
        now = self._clock()
        with self._lock:
            entry = self.memory.get(key)
            if entry is None:
                return False, None
            if entry.is_expired(now):
                self.memory.delete(key)
                logger.debug(f"Cache entry '{key}' expired in memory tier")
                return False, None

            ok, value = self._decode(entry)
            if not ok:
                self.memory.delete(key)
                return False, None
            self._mark_read(entry, now)
            self.memory.touch(key)
            return True, value

    def lookup_persistent(self, key: str) -> tuple[bool, Any]:
        """
        Look up a key in the persistent tier, promoting a hit into memory.

        Reads from a disk tier block on I/O, so async callers run this in a
        worker thread.
        """
        if self.persistent is None:
            return False, None

        now = self._clock()
        with self._lock:
            try:
                entry = self.persistent.get(key)
            except PersistentTierError as e:
                logger.warning(f"⚠️ {e}; treating as miss")
                self._delete_persistent(key)
                return False, None

            if entry is None:
                return False, None
            if entry.is_expired(now):
                self._delete_persistent(key)
                logger.debug(f"Cache entry '{key}' expired in persistent tier")
                return False, None

            ok, value = self._decode(entry)
            if not ok:
                self._delete_persistent(key)
                return False, None
            self._mark_read(entry, now)
            self._promote(entry, now)
            return True, value

    def entry(self, key: str) -> CacheEntry | None:
        """Return the stored entry for inspection without counting a read."""
        with self._lock:
            for backend in self._tiers():
                try:
                    entry = backend.get(key)
                except PersistentTierError as e:
                    logger.warning(f"⚠️ {e}")
                    continue
                if entry is not None:
                    return entry
        return None

    def _decode(self, entry: CacheEntry) -> tuple[bool, Any]:
        if not entry.compressed:
            return True, entry.value
        try:
            return True, decompress_payload(entry.value)
        except Exception as e:
            logger.warning(f"⚠️ Cache entry '{entry.key}' is corrupted, evicting: {e}")
            return False, None

    def _mark_read(self, entry: CacheEntry, now: float) -> None:
        entry.access_count += 1
        entry.last_accessed = now

    def _promote(self, entry: CacheEntry, now: float) -> None:
        if entry.size_bytes > self.memory_capacity_bytes:
            # Too big for memory: keep it where it is, with the updated access count.
            self._write_persistent(entry)
            return
        try:
            self.persistent.delete(entry.key)
        except PersistentTierError as e:
            # Still on disk: serve it from there rather than hold it in both tiers.
            logger.warning(f"⚠️ {e}; not promoting")
            return
        self._make_room(entry.size_bytes, now)
        self.memory.set(entry)
        logger.debug(f"Promoted '{entry.key}' to memory tier")

    # --- Writes ---

    def set(self, key: str, value: Any, ttl: float, tags: Iterable[str] = ()) -> CacheEntry:
        """
        Store a value in the memory tier, replacing any existing entry.

        Args:
            key: Cache key
            value: Value to cache
            ttl: Time to live in seconds (must be positive)
            tags: Labels for group invalidation

        Returns:
            The stored entry

        Note:
            Values at or above `compression_threshold` are stored compressed
            and accounted at their compressed size. An entry larger than the
            whole memory tier evicts everything else and is stored anyway,
            rather than being refused.
        """
        if ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl}")

        stored, size_bytes, compressed = compress_payload(value, self.compression_threshold)
        now = self._clock()
        entry = CacheEntry(
            key=key,
            value=stored,
            created_at=now,
            expires_at=now + ttl,
            size_bytes=size_bytes,
            tier=StorageTier.MEMORY,
            last_accessed=now,
            tags=tuple(tags),
            compressed=compressed,
        )

        with self._lock:
            self._remove(key)
            self._make_room(entry.size_bytes, now)
            self.memory.set(entry)

        logger.debug(
            f"Cached entry '{key}' ({entry.size_bytes} bytes{', compressed' if compressed else ''}, ttl: {ttl}s)"
        )
        return entry

    def _make_room(self, size_bytes: int, now: float) -> None:
        while len(self.memory) and self.memory.total_size + size_bytes > self.memory_capacity_bytes:
            victim_key = self.memory.oldest()
            if victim_key is None:
                break
            victim = self.memory.delete(victim_key)
            if victim is not None:
                self._demote(victim, now)

    def _demote(self, entry: CacheEntry, now: float) -> None:
        if entry.is_expired(now):
            logger.debug(f"Evicted expired entry '{entry.key}'")
            return
        if self.persistent is None:
            logger.debug(f"Evicted entry '{entry.key}' (no persistent tier)")
            return
        capacity = self.persistent_capacity_bytes
        if capacity is not None and self.persistent.total_size + entry.size_bytes > capacity:
            logger.debug(f"Evicted entry '{entry.key}' (persistent tier full)")
            return
        if self._write_persistent(entry):
            logger.debug(f"Demoted '{entry.key}' to persistent tier")

    def _write_persistent(self, entry: CacheEntry) -> bool:
        if self.persistent is None:
            return False
        try:
            self.persistent.set(entry)
        except PersistentTierError as e:
            logger.warning(f"⚠️ {e}; dropping entry")
            self._delete_persistent(entry.key)
            return False
        return True

    def _delete_persistent(self, key: str) -> bool:
        if self.persistent is None:
            return False
        try:
            return self.persistent.delete(key) is not None
        except PersistentTierError as e:
            logger.warning(f"⚠️ {e}")
            return True

    def _remove(self, key: str) -> bool:
        removed = self.memory.delete(key) is not None
        return self._delete_persistent(key) or removed

    # --- Invalidation ---

    def invalidate(self, key: str) -> bool:
        """
        Remove a key from whichever tier holds it.

        Returns:
            True if an entry was removed, False if the key was absent
        """
        with self._lock:
            removed = self._remove(key)
        if removed:
            logger.debug(f"Invalidated cache entry '{key}'")
        return removed

    def invalidate_tags(self, tags: Iterable[str]) -> int:
        """Remove every entry carrying any of the given tags."""
        wanted = set(tags)
        if not wanted:
            return 0

        removed = 0
        with self._lock:
            for backend in self._tiers():
                for key in backend.keys():
                    meta = backend.meta(key)
                    if meta is not None and wanted.intersection(meta.tags):
                        if backend is self.memory:
                            backend.delete(key)
                        else:
                            self._delete_persistent(key)
                        removed += 1

        logger.info(f"🗑️ Cleared {removed} cache entries with tags: {', '.join(sorted(wanted))}")
        return removed

    def clear(self, tier: StorageTier | None = None) -> int:
        """
        Remove all entries from one tier, or from both when `tier` is None.

        Returns:
            Number of entries removed
        """
        cleared = 0
        with self._lock:
            if tier in (None, StorageTier.MEMORY):
                cleared += self.memory.clear()
            if tier in (None, StorageTier.PERSISTENT) and self.persistent is not None:
                cleared += self.persistent.clear()
        logger.info(f"Cleared {cleared} cache entries ({tier or 'all tiers'})")
        return cleared

    # --- Maintenance ---

    def _trim_persistent(self) -> int:
        """Drop persistent entries until the tier fits its capacity, expired entries first."""
        capacity = self.persistent_capacity_bytes
        if self.persistent is None or capacity is None:
            return 0

        now = self._clock()
        dropped = 0
        with self._lock:
            if self.persistent.total_size <= capacity:
                return 0
            keys = self.persistent.keys()
            expired = []
            live = []
            for key in keys:
                meta = self.persistent.meta(key)
                if meta is not None and meta.expires_at <= now:
                    expired.append(key)
                else:
                    live.append(key)
            for key in expired + live:
                if self.persistent.total_size <= capacity:
                    break
                self._delete_persistent(key)
                dropped += 1

        logger.info(f"Trimmed {dropped} persistent entries to fit {capacity} bytes")
        return dropped

    def sweep(self) -> int:
        """
        Remove expired entries from every tier.

        Keys are examined in batches of `sweep_batch_size`, taking the lock
        once per batch so concurrent reads and writes are never blocked for
        the length of a full scan.

        Returns:
            Number of expired entries removed
        """
        now = self._clock()
        removed = 0

        for backend in self._tiers():
            with self._lock:
                keys = backend.keys()
            for start in range(0, len(keys), self.sweep_batch_size):
                with self._lock:
                    for key in keys[start : start + self.sweep_batch_size]:
                        meta = backend.meta(key)
                        if meta is None or meta.expires_at > now:
                            continue
                        if backend is self.memory:
                            backend.delete(key)
                        else:
                            self._delete_persistent(key)
                        removed += 1

        with self._lock:
            self._last_cleanup = self._clock()

        logger.info(f"🧹 Cache sweep completed: {removed} expired entries removed")
        return removed

    # --- Totals ---

    @property
    def total_entries(self) -> int:
        with self._lock:
            return sum(len(backend) for backend in self._tiers())

    @property
    def total_size(self) -> int:
        with self._lock:
            return sum(backend.total_size for backend in self._tiers())

    def storage_breakdown(self) -> dict[StorageTier, int]:
        """Byte totals per tier."""
        with self._lock:
            return {
                StorageTier.MEMORY: self.memory.total_size,
                StorageTier.PERSISTENT: self.persistent.total_size if self.persistent is not None else 0,
            }

    def close(self) -> None:
        for backend in self._tiers():
            backend.close()
