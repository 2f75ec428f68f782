import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.cache import router as cache_api_router
from src.api.feeds import router as feeds_api_router
from src.cache.service import CacheService
from src.core.config import config
from src.core.utils.logging import configure_logging
from src.integrations.feeds import FeedFetcher

# --- Application Setup ---

configure_logging(config.logging)

app = FastAPI(
    title="Feedcache",
    description="Tiered caching for news feed aggregation.",
    version="0.1.0",
)

# --- CORS Configuration ---

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors.origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=config.cors.headers,
)

# --- Include Routers ---

app.include_router(cache_api_router, prefix="/api", tags=["Cache API"])
app.include_router(feeds_api_router, prefix="/api", tags=["Feeds API"])

# --- Root Endpoint ---


@app.get("/", tags=["Health Check"])
async def read_root():
    """A simple health check endpoint to confirm the service is running."""
    return {"status": "ok", "message": "Feedcache is running."}


# --- Application Lifecycle ---


@app.on_event("startup")
async def startup_event():
    """Application startup logic."""
    config.validate()

    cache_service = CacheService.from_config(config.cache)
    await cache_service.start()
    app.state.cache_service = cache_service
    app.state.feed_fetcher = FeedFetcher(timeout=config.feeds.timeout, user_agent=config.feeds.user_agent)

    logging.info("🚀 Cache service started")


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown logic."""
    cache_service = getattr(app.state, "cache_service", None)
    if cache_service is not None:
        await cache_service.stop()
        app.state.cache_service = None

    logging.info("Cache service stopped")
