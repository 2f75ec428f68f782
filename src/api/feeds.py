"""Feed proxy endpoint served through the cache."""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status

from src.api.dependencies import get_cache_service, get_feed_fetcher
from src.api.errors import create_error_response
from src.cache.service import CacheService
from src.core.errors import FeedFetchError
from src.integrations.feeds import FeedFetcher

logger = structlog.get_logger()

router = APIRouter(tags=["Feeds"])

FEED_TAG = "feed"


@router.get(
    "/feed",
    status_code=status.HTTP_200_OK,
    summary="Fetch Feed",
    description="Return a raw feed document, served from cache when available.",
)
async def get_feed(
    url: str = Query(..., min_length=1, description="Feed URL"),
    ttl: float | None = Query(None, gt=0, description="Cache TTL in seconds"),
    service: CacheService | None = Depends(get_cache_service),
    fetcher: FeedFetcher = Depends(get_feed_fetcher),
) -> dict[str, Any]:
    try:
        if service is None:
            # No cache available: serve straight from upstream.
            document = await fetcher(url)
        else:
            document = await service.fetch_with_cache(url, ttl, fetcher, tags=(FEED_TAG,))
    except FeedFetchError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=create_error_response(
                "feed_fetch_failed", str(e), details={"url": e.url, "status_code": e.status_code}
            ),
        ) from e

    return {"success": True, "feed": document}
