"""
Upstream feed fetcher configuration.
"""

from dataclasses import dataclass


@dataclass
class FeedConfig:
    """Feed fetcher configuration."""

    timeout: float = 10.0  # seconds
    user_agent: str = "feedcache/0.1"
