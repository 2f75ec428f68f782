"""Cache statistics and maintenance endpoints."""

import time
from datetime import UTC, datetime
from typing import Any, Literal

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from src.api.dependencies import get_cache_service
from src.api.errors import create_error_response
from src.cache.service import CacheService
from src.core.errors import CacheServiceUnavailableError
from src.core.models import CacheStats, StorageTier

logger = structlog.get_logger()

router = APIRouter(tags=["Cache"])

UNAVAILABLE_MESSAGE = "Cache service unavailable"

_CLEAR_TIERS: dict[str, StorageTier | None] = {
    "all": None,
    "memory": StorageTier.MEMORY,
    "persistent": StorageTier.PERSISTENT,
}


class ClearCacheRequest(BaseModel):
    """Scope of a cache clear operation."""

    type: Literal["all", "memory", "persistent", "tags"] = "all"
    tags: list[str] | None = None


class ClearCacheResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool = True
    message: str
    cleared_count: int
    type: str
    timestamp: str


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _require_service(service: CacheService | None) -> CacheService:
    if service is None or not service.enabled:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=create_error_response("cache_unavailable", UNAVAILABLE_MESSAGE),
        )
    return service


def fallback_stats_response() -> dict[str, Any]:
    """Degraded-mode body: zeroed stats stamped with the current time."""
    stats = CacheStats(last_cleanup=int(time.time() * 1000))
    return {
        "success": False,
        "error": UNAVAILABLE_MESSAGE,
        "stats": stats.model_dump(mode="json", by_alias=True),
        "fallback": True,
    }


@router.get(
    "/cache-stats",
    status_code=status.HTTP_200_OK,
    summary="Cache Statistics",
    description="Hit/miss counters, response times, top keys and per-tier sizes.",
)
async def get_cache_stats(service: CacheService | None = Depends(get_cache_service)) -> dict[str, Any]:
    """Report cache statistics, or the zeroed fallback body if the cache is unavailable."""
    try:
        if service is None:
            raise CacheServiceUnavailableError("Cache service is not initialized")
        stats = service.get_stats()
    except Exception as e:
        logger.error("cache_stats_error", error=str(e))
        return fallback_stats_response()

    return {
        "success": True,
        "stats": stats.model_dump(mode="json", by_alias=True),
        "timestamp": _now_iso(),
    }


@router.post(
    "/cache-stats/reset",
    status_code=status.HTTP_200_OK,
    summary="Reset Cache Statistics",
)
async def reset_cache_stats(service: CacheService | None = Depends(get_cache_service)) -> dict[str, Any]:
    """Zero hit/miss counters, response times and the access table."""
    service = _require_service(service)
    service.reset_stats()
    logger.info("cache_stats_reset")
    return {"success": True, "message": "Cache statistics reset", "timestamp": _now_iso()}


@router.post(
    "/cache-clear",
    status_code=status.HTTP_200_OK,
    summary="Clear Cache",
    description="Clear all tiers, a single tier, or every entry carrying one of the given tags.",
)
async def clear_cache(
    request: ClearCacheRequest,
    service: CacheService | None = Depends(get_cache_service),
) -> dict[str, Any]:
    service = _require_service(service)

    if request.type == "tags":
        if not request.tags:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=create_error_response(
                    "invalid_request", "Tags must be provided as an array for tag-based clearing"
                ),
            )
        cleared = service.invalidate_tags(request.tags)
        message = f"Cleared {cleared} cache entries with tags: {', '.join(request.tags)}"
    else:
        cleared = service.clear(_CLEAR_TIERS[request.type])
        message = "All cache tiers cleared successfully" if request.type == "all" else (
            f"{request.type.capitalize()} cache cleared successfully"
        )

    logger.info("cache_cleared", type=request.type, cleared_count=cleared)
    response = ClearCacheResponse(message=message, cleared_count=cleared, type=request.type, timestamp=_now_iso())
    return response.model_dump(by_alias=True)


@router.delete(
    "/cache/{key:path}",
    status_code=status.HTTP_200_OK,
    summary="Invalidate Cache Key",
)
async def invalidate_cache_key(key: str, service: CacheService | None = Depends(get_cache_service)) -> dict[str, Any]:
    """Remove a single key from whichever tier holds it. Absent keys are not an error."""
    service = _require_service(service)
    removed = service.invalidate(key)
    return {"success": True, "key": key, "invalidated": removed}
