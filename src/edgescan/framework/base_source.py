"""
Base source abstraction for data acquisition.

Every source (prediction-market venue, economic feed, etc.) inherits from
BaseSource and implements the standard interface for:
1. Declaring its identity (unique name), category and cache TTL
2. Fetching its data (the only side-effecting operation)
3. Normalizing raw provider payloads to plain, serializable values
4. Reporting whether it is configured (credentials present)
"""

from abc import ABC, abstractmethod
from typing import Any

from edgescan.framework.types import Category


class BaseSource(ABC):
    """
    Abstract base class for data sources.

    Subclasses implement specific sources (KalshiSource, PolymarketSource, etc.).
    fetch() may be a plain method (run in a worker thread by SourceFetcher) or an
    `async def` (awaited directly, cancellable at the fetch deadline).
    """

    # Subclasses override these
    name: str  # e.g., "kalshi"
    category: Category = Category.OTHER
    ttl_seconds: float = 300.0
    provides_markets: bool = False  # True if fetch() returns list[Market]

    @abstractmethod
    def fetch(self) -> Any:
        """
        Fetch the source's current data.

        May perform arbitrary I/O. Must return a plain value and must not mutate
        shared state. Exceptions are caught by SourceFetcher and recorded as a
        source error for the run; the previous cached value stays available.

        Returns:
            Source data (for market sources: list[Market])
        """
        pass

    def is_configured(self) -> bool:
        """
        Return False when required configuration (e.g., an API key) is missing.

        An unconfigured source is skipped without error and reported as missing.
        """
        return True

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, ttl={self.ttl_seconds})"
