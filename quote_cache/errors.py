"""Exception taxonomy for fetchers and backing stores.

Fetchers raise a ``FetchError`` subclass; the worker maps each class to an
outcome (backoff, drop from queue). Backends translate driver errors into
``CacheUnavailable`` / ``QueueUnavailable`` so callers never see psycopg2 or
redis exceptions directly.
"""

from __future__ import annotations

from typing import Optional


class QuoteCacheError(Exception):
    """Base class for every error raised by this package."""


class FetchError(QuoteCacheError):
    """A provider could not produce a quote for ``ticker``."""

    def __init__(self, ticker: str, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message} (ticker={ticker})")
        self.ticker = ticker
        self.provider = provider
        self.message = message


class RateLimited(FetchError):
    """Provider said "too many requests"; retry after backoff."""

    def __init__(self, ticker: str, provider: str, message: str, retry_after: Optional[float] = None) -> None:
        super().__init__(ticker, provider, message)
        self.retry_after = retry_after


class NotFound(FetchError):
    """Ticker is unknown to the provider; retrying will not help."""


class Transient(FetchError):
    """Network, parse or upstream failure that may succeed later."""


class ConfigError(FetchError):
    """Missing or rejected credentials for the provider."""


class StoreUnavailable(QuoteCacheError):
    """A backing store could not be reached."""


class CacheUnavailable(StoreUnavailable):
    pass


class QueueUnavailable(StoreUnavailable):
    pass
