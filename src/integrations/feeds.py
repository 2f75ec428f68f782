"""
HTTP fetcher for upstream news feeds.

Downloads raw feed documents. Parsing is left to the aggregation layer; this
module only produces the value that gets cached.
"""

from datetime import UTC, datetime
from typing import Any

import httpx
import structlog
from pydantic import BaseModel
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.core.errors import FeedFetchError

logger = structlog.get_logger(__name__)


class FeedDocument(BaseModel):
    """A raw feed document as downloaded."""

    url: str
    status_code: int
    content_type: str | None = None
    body: str
    fetched_at: datetime


class FeedFetcher:
    """
    Fetches feed documents over HTTP.

    Instances are callables with the `(key) -> awaitable value` shape the
    cache service expects, where the key is the feed URL.
    """

    def __init__(
        self,
        timeout: float = 10.0,
        user_agent: str = "feedcache/0.1",
    ) -> None:
        self.timeout = timeout
        self.headers = {
            "User-Agent": user_agent,
            "Accept": "application/rss+xml, application/atom+xml, application/xml;q=0.9, */*;q=0.8",
        }

    async def __call__(self, url: str) -> dict[str, Any]:
        """
        Fetch a feed and return it as a JSON-ready dict.

        Raises:
            FeedFetchError: If the feed cannot be downloaded.
        """
        try:
            document = await self._get(url)
        except httpx.HTTPStatusError as e:
            logger.error("feed_fetch_failed", url=url, status_code=e.response.status_code)
            raise FeedFetchError(url, f"HTTP {e.response.status_code}", e.response.status_code) from e
        except httpx.TimeoutException as e:
            logger.error("feed_fetch_timeout", url=url, timeout=self.timeout)
            raise FeedFetchError(url, f"timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            logger.error("feed_fetch_request_error", url=url, error=str(e))
            raise FeedFetchError(url, str(e) or type(e).__name__) from e

        logger.info("feed_fetched", url=url, size=len(document.body))
        return document.model_dump(mode="json")

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=2),
        reraise=True,
    )
    async def _get(self, url: str) -> FeedDocument:
        async with httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
        ) as client:
            response = await client.get(url, headers=self.headers)
            response.raise_for_status()
            return FeedDocument(
                url=str(response.url),
                status_code=response.status_code,
                content_type=response.headers.get("content-type"),
                body=response.text,
                fetched_at=datetime.now(UTC),
            )
