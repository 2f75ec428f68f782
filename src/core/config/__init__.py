"""
Configuration package - unified access point.

This package provides all configuration classes and the global config instance.
"""

from src.core.config.cache_config import CacheConfig
from src.core.config.settings import Config, config

__all__ = [
    "CacheConfig",
    "Config",
    "config",
]
