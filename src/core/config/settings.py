"""
Main configuration class that composes all configs.
"""

import json
import os

from dotenv import load_dotenv

from src.core.config.cache_config import CacheConfig
from src.core.config.cors_config import CORSConfig
from src.core.config.feed_config import FeedConfig
from src.core.config.logging_config import LoggingConfig

# Load environment variables from a .env file
load_dotenv()

PERSISTENT_BACKENDS = ("none", "memory", "disk")


class Config:
    """Main configuration class."""

    def __init__(self) -> None:
        self.cache = CacheConfig(
            enable_cache=os.getenv("CACHE_ENABLE", "true").lower() == "true",
            default_ttl=float(os.getenv("CACHE_DEFAULT_TTL", "300")),
            memory_capacity_bytes=int(os.getenv("CACHE_MEMORY_CAPACITY_BYTES", str(50 * 1024 * 1024))),
            persistent_backend=os.getenv("CACHE_PERSISTENT_BACKEND", "none").lower(),
            persistent_dir=os.getenv("CACHE_PERSISTENT_DIR", ".cache/feeds"),
            persistent_capacity_bytes=int(os.getenv("CACHE_PERSISTENT_CAPACITY_BYTES", str(256 * 1024 * 1024))),
            compression_threshold=int(os.getenv("CACHE_COMPRESSION_THRESHOLD", str(10 * 1024))),
            sweep_interval=float(os.getenv("CACHE_SWEEP_INTERVAL", "600")),
            sweep_batch_size=int(os.getenv("CACHE_SWEEP_BATCH_SIZE", "500")),
            stats_window=int(os.getenv("CACHE_STATS_WINDOW", "1000")),
            top_keys=int(os.getenv("CACHE_TOP_KEYS", "10")),
            max_tracked_keys=int(os.getenv("CACHE_MAX_TRACKED_KEYS", "10000")),
        )

        self.feeds = FeedConfig(
            timeout=float(os.getenv("FEED_FETCH_TIMEOUT", "10")),
            user_agent=os.getenv("FEED_USER_AGENT", "feedcache/0.1"),
        )

        # CORS configuration
        cors_headers = os.getenv("CORS_HEADERS", '["*"]')
        cors_origins = os.getenv("CORS_ORIGINS", '["http://localhost:3000", "http://127.0.0.1:3000"]')

        try:
            self.cors = CORSConfig(
                headers=json.loads(cors_headers),
                origins=json.loads(cors_origins),
            )
        except json.JSONDecodeError:
            # Fallback to default values if JSON parsing fails
            self.cors = CORSConfig(
                headers=["*"],
                origins=["http://localhost:3000", "http://127.0.0.1:3000"],
            )

        self.logging = LoggingConfig(
            level=os.getenv("LOG_LEVEL", "INFO"),
            format=os.getenv("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"),
            file_path=os.getenv("LOG_FILE_PATH"),
        )

        # Development settings
        self.debug = os.getenv("DEBUG", "false").lower() == "true"
        self.environment = os.getenv("ENVIRONMENT", "development")

    def validate(self) -> bool:
        """Validate configuration."""
        errors = []

        if self.cache.default_ttl <= 0:
            errors.append("CACHE_DEFAULT_TTL must be positive")

        if self.cache.memory_capacity_bytes <= 0:
            errors.append("CACHE_MEMORY_CAPACITY_BYTES must be positive")

        if self.cache.persistent_backend not in PERSISTENT_BACKENDS:
            errors.append(f"CACHE_PERSISTENT_BACKEND must be one of {', '.join(PERSISTENT_BACKENDS)}")

        if self.cache.persistent_backend != "none" and self.cache.persistent_capacity_bytes <= 0:
            errors.append("CACHE_PERSISTENT_CAPACITY_BYTES must be positive")

        if self.cache.compression_threshold < 0:
            errors.append("CACHE_COMPRESSION_THRESHOLD must not be negative")

        if self.cache.sweep_interval <= 0:
            errors.append("CACHE_SWEEP_INTERVAL must be positive")

        if self.cache.sweep_batch_size <= 0:
            errors.append("CACHE_SWEEP_BATCH_SIZE must be positive")

        if self.cache.stats_window <= 0:
            errors.append("CACHE_STATS_WINDOW must be positive")

        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")

        return True


# Global config instance
config = Config()
