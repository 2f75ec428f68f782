"""
Storage backends for the tiered cache.

Each tier is a `StorageBackend`: a keyed store of `CacheEntry` objects that
keeps its own byte total. Eviction policy lives in `TieredCache`; backends
only store, order and account.
"""

import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from pathlib import Path
from typing import NamedTuple

import diskcache as dc

from src.core.errors import PersistentTierError
from src.core.models import CacheEntry, StorageTier

logger = logging.getLogger(__name__)


class EntryMeta(NamedTuple):
    """Bookkeeping for an entry that can be read without loading its value."""

    size_bytes: int
    expires_at: float
    tags: tuple[str, ...]

    @classmethod
    def of(cls, entry: CacheEntry) -> "EntryMeta":
        return cls(entry.size_bytes, entry.expires_at, entry.tags)


class StorageBackend(ABC):
    """Capability interface shared by every cache tier."""

    tier: StorageTier

    @abstractmethod
    def get(self, key: str) -> CacheEntry | None:
        """Return the stored entry, or None if the key is absent."""

    @abstractmethod
    def set(self, entry: CacheEntry) -> None:
        """Store an entry, replacing any entry with the same key."""

    @abstractmethod
    def delete(self, key: str) -> CacheEntry | None:
        """Remove a key and return its entry, or None if it was absent."""

    @abstractmethod
    def meta(self, key: str) -> EntryMeta | None:
        """Return size, expiry and tags of a key without loading its value."""

    @abstractmethod
    def keys(self) -> list[str]:
        """Return all keys, least recently used first."""

    @property
    @abstractmethod
    def total_size(self) -> int:
        """Sum of `size_bytes` over all stored entries."""

    @abstractmethod
    def __len__(self) -> int: ...

    def __contains__(self, key: str) -> bool:
        return self.meta(key) is not None

    def size_of(self, key: str) -> int:
        meta = self.meta(key)
        return meta.size_bytes if meta else 0

    def oldest(self) -> str | None:
        keys = self.keys()
        return keys[0] if keys else None

    def touch(self, key: str) -> None:  # noqa: B027
        """Mark a key as most recently used. Unordered backends ignore this."""

    def clear(self) -> int:
        """Remove every entry and return how many were removed."""
        keys = self.keys()
        for key in keys:
            self.delete(key)
        return len(keys)

    def close(self) -> None:  # noqa: B027
        """Release any resources held by the backend."""


class MemoryBackend(StorageBackend):
    """In-process tier backed by an access-ordered dict."""

    def __init__(self, tier: StorageTier = StorageTier.MEMORY) -> None:
        self.tier = tier
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._total_size = 0

    def get(self, key: str) -> CacheEntry | None:
        return self._entries.get(key)

    def set(self, entry: CacheEntry) -> None:
        self.delete(entry.key)
        entry.tier = self.tier
        self._entries[entry.key] = entry
        self._total_size += entry.size_bytes

    def delete(self, key: str) -> CacheEntry | None:
        entry = self._entries.pop(key, None)
        if entry is not None:
            self._total_size -= entry.size_bytes
        return entry

    def meta(self, key: str) -> EntryMeta | None:
        entry = self._entries.get(key)
        return EntryMeta.of(entry) if entry else None

    def keys(self) -> list[str]:
        return list(self._entries)

    def oldest(self) -> str | None:
        return next(iter(self._entries), None)

    def touch(self, key: str) -> None:
        if key in self._entries:
            self._entries.move_to_end(key)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def total_size(self) -> int:
        return self._total_size

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        self._total_size = 0
        return count


class DiskBackend(StorageBackend):
    """
    Persistent tier stored on local disk with `diskcache`.

    Entries are pickled whole. A key -> metadata index is kept in memory for
    accounting and sweeping, and rebuilt from disk when the backend is opened,
    so entries written by a previous process are visible after a restart.

    Raises:
        PersistentTierError: when an entry cannot be read, written or deleted.
    """

    tier = StorageTier.PERSISTENT

    def __init__(self, directory: str | Path, timeout: float = 1) -> None:
        self.directory = Path(directory)
        self._cache = dc.Cache(str(self.directory), timeout=timeout)
        self._index: dict[str, EntryMeta] = {}
        self._total_size = 0
        self._load_index()
        logger.info(
            f"Initialized persistent cache tier at: {self._cache.directory} "
            f"({len(self._index)} entries, {self._total_size} bytes)"
        )

    def _load_index(self) -> None:
        for key in list(self._cache):
            try:
                entry = self._cache.get(key)
            except Exception as e:
                logger.warning(f"Dropping unreadable persistent entry '{key}': {e}")
                self._cache.delete(key)
                continue
            if isinstance(entry, CacheEntry):
                self._remember(entry)
            else:
                self._cache.delete(key)

    def _remember(self, entry: CacheEntry) -> None:
        self._forget(entry.key)
        self._index[entry.key] = EntryMeta.of(entry)
        self._total_size += entry.size_bytes

    def _forget(self, key: str) -> None:
        meta = self._index.pop(key, None)
        if meta is not None:
            self._total_size -= meta.size_bytes

    def get(self, key: str) -> CacheEntry | None:
        if key not in self._index:
            return None
        try:
            entry = self._cache.get(key)
        except Exception as e:
            raise PersistentTierError(key, "read", e) from e
        if entry is None:
            # Removed outside this process (e.g. the directory was wiped).
            self._forget(key)
        return entry

    def set(self, entry: CacheEntry) -> None:
        entry.tier = self.tier
        try:
            self._cache.set(entry.key, entry)
        except Exception as e:
            raise PersistentTierError(entry.key, "write", e) from e
        self._remember(entry)

    def delete(self, key: str) -> CacheEntry | None:
        if key not in self._index:
            return None
        try:
            entry = self._cache.pop(key, default=None)
        except Exception as e:
            raise PersistentTierError(key, "delete", e) from e
        self._forget(key)
        return entry

    def meta(self, key: str) -> EntryMeta | None:
        return self._index.get(key)

    def keys(self) -> list[str]:
        return list(self._index)

    def __contains__(self, key: str) -> bool:
        return key in self._index

    def __len__(self) -> int:
        return len(self._index)

    @property
    def total_size(self) -> int:
        return self._total_size

    def clear(self) -> int:
        count = len(self._index)
        self._cache.clear()
        self._index.clear()
        self._total_size = 0
        return count

    def close(self) -> None:
        self._cache.close()
