"""
Cache configuration.

Defines configurable settings for the tiered feed cache including TTL,
tier capacities, compression, sweep cadence and statistics bounds.
"""

from dataclasses import dataclass


@dataclass
class CacheConfig:
    """Cache configuration."""

    enable_cache: bool = True  # Master switch to disable all caching
    default_ttl: float = 300  # 5 minutes in seconds

    # Memory tier
    memory_capacity_bytes: int = 50 * 1024 * 1024  # 50MB

    # Persistent tier: "none", "memory" or "disk"
    persistent_backend: str = "none"
    persistent_dir: str = ".cache/feeds"
    persistent_capacity_bytes: int = 256 * 1024 * 1024  # 256MB

    # Payloads at or above this many bytes are stored zlib-compressed (0 disables)
    compression_threshold: int = 10 * 1024  # 10KB

    # Expiry sweep
    sweep_interval: float = 600  # 10 minutes in seconds
    sweep_batch_size: int = 500

    # Statistics
    stats_window: int = 1000
    top_keys: int = 10
    max_tracked_keys: int = 10_000
