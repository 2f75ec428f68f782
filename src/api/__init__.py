# API endpoints package

from src.api.cache import router as cache_router
from src.api.feeds import router as feeds_router

__all__ = [
    "cache_router",
    "feeds_router",
]
