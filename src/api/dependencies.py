import logging

from fastapi import Request

from src.cache.service import CacheService
from src.core.config import config
from src.integrations.feeds import FeedFetcher

logger = logging.getLogger(__name__)  # Logger: keep at module level for reuse.

# --- Service Dependencies ---  # DI: override in tests via app.dependency_overrides.


def get_cache_service(request: Request) -> CacheService | None:
    """
    Injects the application's CacheService, or None before startup completes.
    """
    service = getattr(request.app.state, "cache_service", None)
    if service is None:
        logger.warning("Cache service requested but not initialized")
    return service


def get_feed_fetcher(request: Request) -> FeedFetcher:
    """
    Injects the shared FeedFetcher, falling back to one built from config.
    """
    fetcher = getattr(request.app.state, "feed_fetcher", None)
    if fetcher is None:
        fetcher = FeedFetcher(timeout=config.feeds.timeout, user_agent=config.feeds.user_agent)
    return fetcher
