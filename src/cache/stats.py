"""
Process-wide cache statistics.

Tracks hit/miss counters, a windowed mean of response times and a per-key
access table. The top-N key list is computed only when statistics are read.
"""

import heapq
import logging
import threading
from collections import deque
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SIZE = 1000
DEFAULT_TOP_KEYS = 10
DEFAULT_MAX_TRACKED_KEYS = 10_000


@dataclass(frozen=True)
class CounterSnapshot:
    """Immutable copy of the aggregator's counters."""

    total_hits: int
    total_misses: int
    hit_rate: float
    miss_rate: float
    average_response_time: float
    top_keys: tuple[tuple[str, int], ...] = field(default_factory=tuple)


class StatsAggregator:
    """
    Thread-safe hit/miss and latency accounting.

    The response-time average covers the most recent `window_size` samples.
    The access table is bounded to `max_tracked_keys`; when it overflows the
    least accessed half is discarded.
    """

    def __init__(
        self,
        window_size: int = DEFAULT_WINDOW_SIZE,
        top_keys: int = DEFAULT_TOP_KEYS,
        max_tracked_keys: int = DEFAULT_MAX_TRACKED_KEYS,
    ) -> None:
        if window_size <= 0:
            raise ValueError("window_size must be positive")
        self.window_size = window_size
        self.top_keys_limit = top_keys
        self.max_tracked_keys = max(1, max_tracked_keys)
        self._lock = threading.Lock()
        self._reset_unlocked()

    def _reset_unlocked(self) -> None:
        self._hits = 0
        self._misses = 0
        self._samples: deque[float] = deque()
        self._average = 0.0
        self._access_counts: dict[str, int] = {}

    def record_hit(self, response_time_ms: float) -> None:
        with self._lock:
            self._hits += 1
            self._add_sample(response_time_ms)

    def record_miss(self, response_time_ms: float) -> None:
        """Record a miss; the latency includes fetch and store time."""
        with self._lock:
            self._misses += 1
            self._add_sample(response_time_ms)

    def _add_sample(self, sample: float) -> None:
        if len(self._samples) < self.window_size:
            self._samples.append(sample)
            self._average += (sample - self._average) / len(self._samples)
        else:
            oldest = self._samples.popleft()
            self._samples.append(sample)
            self._average += (sample - oldest) / self.window_size

    def record_access(self, key: str) -> None:
        with self._lock:
            self._access_counts[key] = self._access_counts.get(key, 0) + 1
            if len(self._access_counts) > self.max_tracked_keys:
                self._prune_access_counts()

    def _prune_access_counts(self) -> None:
        keep = max(1, self.max_tracked_keys // 2)
        survivors = heapq.nlargest(keep, self._access_counts.items(), key=lambda item: item[1])
        logger.debug(f"Access table full, keeping {len(survivors)} most accessed keys")
        self._access_counts = dict(survivors)

    def access_count(self, key: str) -> int:
        with self._lock:
            return self._access_counts.get(key, 0)

    def top_keys(self, limit: int | None = None) -> list[tuple[str, int]]:
        """Most accessed keys, descending by count (ties by key)."""
        n = self.top_keys_limit if limit is None else limit
        if n <= 0:
            return []
        with self._lock:
            items = list(self._access_counts.items())
        return heapq.nsmallest(n, items, key=lambda item: (-item[1], item[0]))

    def snapshot(self) -> CounterSnapshot:
        with self._lock:
            hits, misses, average = self._hits, self._misses, self._average
        total = hits + misses
        hit_rate = hits / total if total else 0.0
        miss_rate = 1.0 - hit_rate if total else 0.0
        return CounterSnapshot(
            total_hits=hits,
            total_misses=misses,
            hit_rate=hit_rate,
            miss_rate=miss_rate,
            average_response_time=average,
            top_keys=tuple(self.top_keys()),
        )

    def reset(self) -> None:
        """Zero every counter. Only called on explicit operator request."""
        with self._lock:
            self._reset_unlocked()
        logger.info("Cache statistics reset")
