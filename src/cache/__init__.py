"""
Tiered response cache with hit/miss and size accounting.
"""

from src.cache.backends import DiskBackend, MemoryBackend, StorageBackend
from src.cache.service import CacheService
from src.cache.stats import StatsAggregator
from src.cache.tiered import TieredCache

__all__ = [
    "CacheService",
    "DiskBackend",
    "MemoryBackend",
    "StatsAggregator",
    "StorageBackend",
    "TieredCache",
]
