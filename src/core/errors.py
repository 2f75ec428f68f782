"""
Core error classes for the feed cache service.
"""


class CacheServiceUnavailableError(Exception):
    """Raised when the cache service is disabled or not initialized."""

    pass


class PersistentTierError(Exception):
    """Raised when the persistent storage tier cannot read or write an entry."""

    def __init__(self, key: str, operation: str, cause: Exception | None = None) -> None:
        self.key = key
        self.operation = operation
        self.cause = cause
        super().__init__(f"Persistent tier {operation} failed for '{key}': {cause}")


class FeedFetchError(Exception):
    """Raised when an upstream feed cannot be fetched."""

    def __init__(self, url: str, reason: str, status_code: int | None = None) -> None:
        self.url = url
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"Failed to fetch {url}: {reason}")
