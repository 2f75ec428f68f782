from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class StorageTier(str, Enum):
    """Storage tiers ranked by speed (memory first)."""

    MEMORY = "memory"
    PERSISTENT = "persistent"

    def __str__(self) -> str:
        return self.value


@dataclass
class CacheEntry:
    """
    A cached value and its bookkeeping.

    `expires_at` is always strictly greater than `created_at`. An entry lives
    in exactly one tier at a time; `tier` records which. `size_bytes` counts
    the stored form, so a compressed entry is accounted at its compressed size.
    """

    key: str
    value: Any
    created_at: float
    expires_at: float
    size_bytes: int
    tier: StorageTier = StorageTier.MEMORY
    access_count: int = 0
    last_accessed: float = 0.0
    tags: tuple[str, ...] = field(default_factory=tuple)
    compressed: bool = False  # value holds zlib-compressed pickle bytes

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class TopKey(_CamelModel):
    """A key and how many times it was requested."""

    key: str
    count: int


class StorageBreakdown(_CamelModel):
    """Byte totals per storage tier."""

    memory: int = 0
    # Reported under the historical client-side storage name.
    persistent: int = Field(default=0, alias="localStorage")


class CacheStats(_CamelModel):
    """Immutable snapshot of cache counters and tier totals."""

    total_entries: int = 0
    total_size: int = 0
    hit_rate: float = 0.0
    miss_rate: float = 0.0
    total_hits: int = 0
    total_misses: int = 0
    average_response_time: float = 0.0
    top_keys: list[TopKey] = Field(default_factory=list)
    last_cleanup: int = 0  # epoch milliseconds
    storage_breakdown: StorageBreakdown = Field(default_factory=StorageBreakdown)
