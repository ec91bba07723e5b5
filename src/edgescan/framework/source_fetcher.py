"""
Cache-aware, time-bounded source fetching.

SourceFetcher is shared by the PipelineRunner (all sources, once per run) and by
the escalation analysis tools (one named source on demand). Concurrency is
bounded by a semaphore sized to the number of external providers so a run does
not trip provider rate limits on itself.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from edgescan.framework.cache import SourceCache
from edgescan.framework.registry import PipelineRegistry
from edgescan.framework.types import SourceStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchOutcome:
    """What one source contributed to a run."""

    name: str
    value: Any
    status: SourceStatus
    error: Optional[str] = None
    elapsed_ms: float = 0.0

    @property
    def has_value(self) -> bool:
        return self.status is not SourceStatus.MISSING


class SourceFetcher:
    """
    Fetches registered sources through the cache.

    A failed or timed-out fetch leaves the cached entry untouched and degrades to
    the stale value (status STALE) or to no data (status MISSING); it never
    raises.
    """

    DEFAULT_MAX_CONCURRENCY = 8
    DEFAULT_TIMEOUT_SECONDS = 30.0

    def __init__(
        self,
        registry: PipelineRegistry,
        cache: SourceCache,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._registry = registry
        self._cache = cache
        self._max_concurrency = max_concurrency
        self._timeout_seconds = timeout_seconds
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._semaphore_loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def cache(self) -> SourceCache:
        return self._cache

    async def fetch(self, name: str) -> FetchOutcome:
        """
        Return a source's value for this run, fetching only if the cache is stale.

        Args:
            name: Source name (unregistered names are a permanent miss)

        Returns:
            FetchOutcome with status FRESH, CACHED, STALE or MISSING
        """
        source = self._registry.get_source(name)
        if source is None:
            logger.debug("Source '%s' not registered, treating as missing", name)
            return FetchOutcome(name=name, value=None, status=SourceStatus.MISSING)

        if not source.is_configured():
            logger.info("Source '%s' not configured, skipping", name)
            return FetchOutcome(name=name, value=None, status=SourceStatus.MISSING)

        lookup = self._cache.get(name)
        if not lookup.is_stale:
            logger.debug("Using cached data for %s (age: %.0fs)", name, lookup.age_seconds)
            return FetchOutcome(name=name, value=lookup.value, status=SourceStatus.CACHED)

        start = time.monotonic()
        async with self._get_semaphore():
            try:
                value = await asyncio.wait_for(self._call_fetch(source), timeout=self._timeout_seconds)
            except asyncio.TimeoutError:
                error = f"fetch timed out after {self._timeout_seconds:.0f}s"
            except Exception as exc:
                error = f"{type(exc).__name__}: {exc}"
            else:
                self._cache.put(name, value, source.ttl_seconds)
                elapsed = (time.monotonic() - start) * 1000
                logger.debug("Fetched source %s in %.0fms", name, elapsed)
                return FetchOutcome(name=name, value=value, status=SourceStatus.FRESH, elapsed_ms=elapsed)

        elapsed = (time.monotonic() - start) * 1000
        logger.error("Failed to fetch source '%s': %s", name, error)
        if lookup.present:
            logger.warning("Returning stale cache for %s", name)
            return FetchOutcome(
                name=name, value=lookup.value, status=SourceStatus.STALE, error=error, elapsed_ms=elapsed
            )
        return FetchOutcome(name=name, value=None, status=SourceStatus.MISSING, error=error, elapsed_ms=elapsed)

    async def fetch_many(self, names: list[str]) -> dict[str, FetchOutcome]:
        """Fetch several sources concurrently. Result order follows names."""
        outcomes = await asyncio.gather(*(self.fetch(name) for name in names))
        return {outcome.name: outcome for outcome in outcomes}

    async def _call_fetch(self, source: Any) -> Any:
        if inspect.iscoroutinefunction(source.fetch):
            return await source.fetch()
        # sync fetch (requests, boto3) runs in the default thread pool executor
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, source.fetch)

    def _get_semaphore(self) -> asyncio.Semaphore:
        # a semaphore is bound to the loop it is first used on; each asyncio.run() gets a new one
        loop = asyncio.get_running_loop()
        if self._semaphore is None or self._semaphore_loop is not loop:
            self._semaphore = asyncio.Semaphore(self._max_concurrency)
            self._semaphore_loop = loop
        return self._semaphore
