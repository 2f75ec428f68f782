import pytest

from src.cache.backends import MemoryBackend
from src.cache.sizing import compress_payload, payload_size
from src.cache.tiered import TieredCache
from src.core.errors import PersistentTierError
from src.core.models import CacheEntry, StorageTier


class FailingBackend(MemoryBackend):
    """Persistent tier whose writes always fail."""

    def __init__(self) -> None:
        super().__init__(tier=StorageTier.PERSISTENT)

    def set(self, entry: CacheEntry) -> None:
        raise PersistentTierError(entry.key, "write", OSError("disk full"))


class FailingDeleteBackend(MemoryBackend):
    """Persistent tier whose deletes always fail."""

    def __init__(self) -> None:
        super().__init__(tier=StorageTier.PERSISTENT)

    def delete(self, key: str) -> CacheEntry | None:
        if key in self:
            raise PersistentTierError(key, "delete", OSError("disk busy"))
        return None


def _payload(size: int, fill: bytes = b"x") -> bytes:
    return fill * size


class TestReadsAndWrites:
    def test_get_before_ttl_returns_value(self, clock) -> None:
        cache = TieredCache(memory_capacity_bytes=1024, clock=clock)
        cache.set("feed:bbc", {"title": "BBC"}, ttl=60)

        clock.advance(59)
        assert cache.get("feed:bbc") == {"title": "BBC"}

    def test_get_after_ttl_returns_none_and_evicts(self, clock) -> None:
        cache = TieredCache(memory_capacity_bytes=1024, clock=clock)
        cache.set("feed:bbc", "articles", ttl=60)

        clock.advance(60)
        assert cache.get("feed:bbc") is None
        assert cache.total_entries == 0

    def test_get_missing_key_returns_none(self, clock) -> None:
        cache = TieredCache(memory_capacity_bytes=1024, clock=clock)
        assert cache.get("missing") is None

    def test_lookup_distinguishes_cached_none(self, clock) -> None:
        cache = TieredCache(memory_capacity_bytes=1024, clock=clock)
        cache.set("empty", None, ttl=10)

        assert cache.lookup("empty") == (True, None)
        assert cache.lookup("missing") == (False, None)

    def test_set_rejects_non_positive_ttl(self, clock) -> None:
        cache = TieredCache(memory_capacity_bytes=1024, clock=clock)
        with pytest.raises(ValueError):
            cache.set("k", "v", ttl=0)

    def test_set_records_entry_bookkeeping(self, clock) -> None:
        cache = TieredCache(memory_capacity_bytes=1024, clock=clock)
        entry = cache.set("k", "héllo", ttl=30, tags=["asia"])

        assert entry.size_bytes == len("héllo".encode("utf-8"))
        assert entry.expires_at == entry.created_at + 30
        assert entry.tier == StorageTier.MEMORY
        assert entry.tags == ("asia",)

    def test_reads_increment_access_count(self, clock) -> None:
        cache = TieredCache(memory_capacity_bytes=1024, clock=clock)
        cache.set("k", "v", ttl=30)
        cache.get("k")
        cache.get("k")

        assert cache.entry("k").access_count == 2

    def test_overwrite_replaces_value_and_size(self, clock) -> None:
        cache = TieredCache(memory_capacity_bytes=1024, clock=clock)
        cache.set("k", _payload(10), ttl=30)
        cache.set("k", _payload(20), ttl=30)

        assert cache.total_entries == 1
        assert cache.total_size == 20


class TestEviction:
    def test_insert_over_capacity_evicts_lru(self, clock) -> None:
        cache = TieredCache(memory_capacity_bytes=100, clock=clock)
        cache.set("A", _payload(60), ttl=60)
        cache.set("B", _payload(50), ttl=60)

        assert cache.get("A") is None
        assert cache.get("B") == _payload(50)
        assert cache.total_size == 50

    def test_recently_read_entry_survives_eviction(self, clock) -> None:
        cache = TieredCache(memory_capacity_bytes=100, clock=clock)
        cache.set("A", _payload(30), ttl=60)
        cache.set("B", _payload(30), ttl=60)
        cache.set("C", _payload(30), ttl=60)

        cache.get("A")
        cache.set("D", _payload(30), ttl=60)

        assert cache.get("B") is None
        assert cache.get("A") is not None
        assert cache.get("C") is not None
        assert cache.get("D") is not None
        assert cache.total_size <= 100

    def test_oversized_entry_is_stored_alone(self, clock) -> None:
        cache = TieredCache(memory_capacity_bytes=100, clock=clock)
        cache.set("A", _payload(40), ttl=60)
        cache.set("big", _payload(150), ttl=60)

        assert cache.get("A") is None
        assert cache.get("big") == _payload(150)
        assert cache.total_entries == 1
        assert cache.total_size == 150


class TestPersistentTier:
    def _cache(self, clock, persistent=None, persistent_capacity_bytes=None) -> TieredCache:
        return TieredCache(
            memory_capacity_bytes=100,
            persistent=persistent if persistent is not None else MemoryBackend(tier=StorageTier.PERSISTENT),
            persistent_capacity_bytes=persistent_capacity_bytes,
            clock=clock,
        )

    def test_evicted_entry_is_demoted(self, clock) -> None:
        cache = self._cache(clock)
        cache.set("A", _payload(60), ttl=60)
        cache.set("B", _payload(50), ttl=60)

        assert cache.entry("A").tier == StorageTier.PERSISTENT
        assert cache.entry("B").tier == StorageTier.MEMORY
        assert cache.storage_breakdown() == {StorageTier.MEMORY: 50, StorageTier.PERSISTENT: 60}

    def test_persistent_hit_promotes_to_memory(self, clock) -> None:
        cache = self._cache(clock)
        cache.set("A", _payload(60), ttl=60)
        cache.set("B", _payload(50), ttl=60)

        assert cache.get("A") == _payload(60)
        assert cache.entry("A").tier == StorageTier.MEMORY
        assert cache.entry("B").tier == StorageTier.PERSISTENT
        assert "A" not in cache.persistent
        assert cache.total_entries == 2

    def test_key_lives_in_one_tier_after_overwrite(self, clock) -> None:
        cache = self._cache(clock)
        cache.set("A", _payload(60), ttl=60)
        cache.set("B", _payload(50), ttl=60)
        cache.set("A", _payload(10), ttl=60)

        assert "A" in cache.memory
        assert "A" not in cache.persistent

    def test_demotion_dropped_when_persistent_full(self, clock) -> None:
        cache = self._cache(clock, persistent_capacity_bytes=10)
        cache.set("A", _payload(60), ttl=60)
        cache.set("B", _payload(50), ttl=60)

        assert cache.get("A") is None
        assert cache.total_entries == 1

    def test_expired_entry_is_not_demoted(self, clock) -> None:
        cache = self._cache(clock)
        cache.set("A", _payload(60), ttl=1)
        clock.advance(2)
        cache.set("B", _payload(50), ttl=60)

        assert "A" not in cache.persistent

    def test_expired_persistent_entry_is_a_miss(self, clock) -> None:
        cache = self._cache(clock)
        cache.set("A", _payload(60), ttl=10)
        cache.set("B", _payload(50), ttl=60)
        clock.advance(11)

        assert cache.get("A") is None
        assert "A" not in cache.persistent

    def test_demotion_write_failure_drops_entry(self, clock) -> None:
        cache = self._cache(clock, persistent=FailingBackend())
        cache.set("A", _payload(60), ttl=60)
        cache.set("B", _payload(50), ttl=60)

        assert cache.get("A") is None
        assert cache.get("B") == _payload(50)

    def test_oversized_persistent_entry_is_not_promoted(self, clock) -> None:
        persistent = MemoryBackend(tier=StorageTier.PERSISTENT)
        cache = self._cache(clock, persistent=persistent)
        persistent.set(
            CacheEntry(key="huge", value="v", created_at=clock(), expires_at=clock() + 60, size_bytes=500)
        )

        assert cache.get("huge") == "v"
        assert cache.entry("huge").tier == StorageTier.PERSISTENT
        assert cache.entry("huge").access_count == 1

    def test_promotion_skipped_when_persistent_delete_fails(self, clock) -> None:
        persistent = FailingDeleteBackend()
        cache = self._cache(clock, persistent=persistent)
        persistent.set(CacheEntry(key="A", value="v", created_at=clock(), expires_at=clock() + 60, size_bytes=10))

        assert cache.get("A") == "v"
        assert "A" not in cache.memory
        assert "A" in cache.persistent
        assert cache.total_entries == 1

    def test_persistent_tier_trimmed_to_capacity_on_startup(self, clock) -> None:
        persistent = MemoryBackend(tier=StorageTier.PERSISTENT)
        for key, expires_in in (("old", 60), ("stale", -1), ("mid", 60), ("new", 60)):
            persistent.set(
                CacheEntry(key=key, value=key, created_at=clock() - 10, expires_at=clock() + expires_in, size_bytes=40)
            )

        cache = self._cache(clock, persistent=persistent, persistent_capacity_bytes=90)

        assert persistent.keys() == ["mid", "new"]
        assert cache.storage_breakdown()[StorageTier.PERSISTENT] == 80

    def test_persistent_tier_within_capacity_is_untouched(self, clock) -> None:
        persistent = MemoryBackend(tier=StorageTier.PERSISTENT)
        persistent.set(CacheEntry(key="A", value="a", created_at=clock(), expires_at=clock() + 60, size_bytes=40))

        self._cache(clock, persistent=persistent, persistent_capacity_bytes=40)

        assert "A" in persistent


class TestInvalidation:
    def test_invalidate_is_idempotent(self, clock) -> None:
        cache = TieredCache(memory_capacity_bytes=1024, clock=clock)
        cache.set("k", "v", ttl=30)

        assert cache.invalidate("k") is True
        assert cache.invalidate("k") is False
        assert cache.get("k") is None

    def test_invalidate_removes_from_persistent_tier(self, clock) -> None:
        cache = TieredCache(
            memory_capacity_bytes=100,
            persistent=MemoryBackend(tier=StorageTier.PERSISTENT),
            clock=clock,
        )
        cache.set("A", _payload(60), ttl=60)
        cache.set("B", _payload(50), ttl=60)

        assert cache.invalidate("A") is True
        assert cache.total_entries == 1

    def test_invalidate_tags(self, clock) -> None:
        cache = TieredCache(memory_capacity_bytes=1024, clock=clock)
        cache.set("asia:1", "a", ttl=30, tags=["asia"])
        cache.set("asia:2", "b", ttl=30, tags=["asia", "brics"])
        cache.set("africa:1", "c", ttl=30, tags=["africa"])

        assert cache.invalidate_tags(["asia"]) == 2
        assert cache.get("africa:1") == "c"
        assert cache.total_entries == 1

    def test_clear_single_tier(self, clock) -> None:
        cache = TieredCache(
            memory_capacity_bytes=100,
            persistent=MemoryBackend(tier=StorageTier.PERSISTENT),
            clock=clock,
        )
        cache.set("A", _payload(60), ttl=60)
        cache.set("B", _payload(50), ttl=60)

        assert cache.clear(StorageTier.MEMORY) == 1
        assert cache.get("A") == _payload(60)
        assert cache.clear() == 1
        assert cache.total_entries == 0


class TestSweep:
    def test_sweep_removes_expired_entries(self, clock) -> None:
        cache = TieredCache(memory_capacity_bytes=1024, clock=clock)
        cache.set("old", "v", ttl=10)
        cache.set("fresh", "v", ttl=100)
        clock.advance(10)

        assert cache.sweep() == 1
        assert cache.total_entries == 1
        assert cache.get("fresh") == "v"

    def test_sweep_updates_last_cleanup(self, clock) -> None:
        cache = TieredCache(memory_capacity_bytes=1024, clock=clock)
        clock.advance(42)
        cache.sweep()

        assert cache.last_cleanup == clock()

    def test_sweep_covers_all_batches_and_tiers(self, clock) -> None:
        cache = TieredCache(
            memory_capacity_bytes=50,
            persistent=MemoryBackend(tier=StorageTier.PERSISTENT),
            sweep_batch_size=2,
            clock=clock,
        )
        for i in range(5):
            cache.set(f"k{i}", _payload(20), ttl=10)
        assert len(cache.persistent) > 0
        clock.advance(10)

        assert cache.sweep() == 5
        assert cache.total_entries == 0
        assert cache.total_size == 0


class TestCompression:
    ARTICLES = {"items": [{"title": "Johannesburg summit", "body": "trade talks " * 50}] * 20}

    def _cache(self, clock, **kwargs) -> TieredCache:
        return TieredCache(memory_capacity_bytes=100_000, compression_threshold=1024, clock=clock, **kwargs)

    def test_large_payload_stored_compressed(self, clock) -> None:
        cache = self._cache(clock)

        entry = cache.set("feed:za", self.ARTICLES, ttl=60)

        assert entry.compressed is True
        assert isinstance(entry.value, bytes)
        assert entry.size_bytes == len(entry.value) < payload_size(self.ARTICLES)
        assert cache.total_size == entry.size_bytes
        assert cache.get("feed:za") == self.ARTICLES

    def test_small_payload_stored_as_is(self, clock) -> None:
        cache = self._cache(clock)

        entry = cache.set("feed:za", "headline", ttl=60)

        assert entry.compressed is False
        assert entry.value == "headline"

    def test_compressed_entry_survives_demotion_and_promotion(self, clock) -> None:
        _, compressed_size, _ = compress_payload(self.ARTICLES, 1024)
        cache = TieredCache(
            memory_capacity_bytes=compressed_size + compressed_size // 2,
            persistent=MemoryBackend(tier=StorageTier.PERSISTENT),
            compression_threshold=1024,
            clock=clock,
        )
        cache.set("A", self.ARTICLES, ttl=60)
        cache.set("B", self.ARTICLES, ttl=60)
        assert cache.entry("A").tier == StorageTier.PERSISTENT

        assert cache.get("A") == self.ARTICLES
        assert cache.entry("A").tier == StorageTier.MEMORY

    def test_corrupted_memory_entry_is_a_miss_and_evicted(self, clock) -> None:
        cache = self._cache(clock)
        cache.set("feed:za", self.ARTICLES, ttl=60)
        cache.memory.get("feed:za").value = b"not zlib data"

        assert cache.lookup("feed:za") == (False, None)
        assert "feed:za" not in cache.memory
        assert cache.total_size == 0

    def test_corrupted_persistent_entry_is_a_miss_and_evicted(self, clock) -> None:
        persistent = MemoryBackend(tier=StorageTier.PERSISTENT)
        cache = self._cache(clock, persistent=persistent)
        persistent.set(
            CacheEntry(
                key="feed:za",
                value=b"not zlib data",
                created_at=clock(),
                expires_at=clock() + 60,
                size_bytes=13,
                compressed=True,
            )
        )

        assert cache.lookup("feed:za") == (False, None)
        assert "feed:za" not in persistent
        assert cache.total_entries == 0
