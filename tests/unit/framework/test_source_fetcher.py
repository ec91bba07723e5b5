"""
Unit tests for SourceFetcher.

Tests cover:
- cache hits skip fetch()
- failures and timeouts fall back to the stale value or to missing
- sync and async fetch() are both supported
- unregistered and unconfigured sources are missing without error
"""

import asyncio
import logging

from edgescan.framework.base_source import BaseSource
from edgescan.framework.cache import SourceCache
from edgescan.framework.registry import PipelineRegistry
from edgescan.framework.source_fetcher import SourceFetcher
from edgescan.framework.types import SourceStatus


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class CountingSource(BaseSource):
    ttl_seconds = 60

    def __init__(self, name: str = "counting", value=None, error: Exception = None) -> None:
        self.name = name
        self.value = value if value is not None else ["m1"]
        self.error = error
        self.calls = 0

    def fetch(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.value


class SlowAsyncSource(BaseSource):
    name = "slow"
    ttl_seconds = 60

    async def fetch(self):
        await asyncio.sleep(5)
        return ["never"]


class UnconfiguredSource(CountingSource):
    def is_configured(self) -> bool:
        return False


class TestSourceFetcher:
    def setup_method(self) -> None:
        self.clock = FakeClock()
        self.cache = SourceCache(clock=self.clock)
        self.registry = PipelineRegistry()
        self.fetcher = SourceFetcher(self.registry, self.cache, timeout_seconds=0.05)

    def test_fresh_fetch_populates_cache(self) -> None:
        source = CountingSource()
        self.registry.register(source)

        outcome = asyncio.run(self.fetcher.fetch("counting"))

        assert outcome.status == SourceStatus.FRESH
        assert outcome.value == ["m1"]
        assert self.cache.get("counting").value == ["m1"]

    def test_cache_hit_skips_fetch(self) -> None:
        source = CountingSource()
        self.registry.register(source)
        asyncio.run(self.fetcher.fetch("counting"))

        outcome = asyncio.run(self.fetcher.fetch("counting"))

        assert outcome.status == SourceStatus.CACHED
        assert source.calls == 1

    def test_cache_age_uses_cache_clock(self, caplog) -> None:
        self.registry.register(CountingSource())
        asyncio.run(self.fetcher.fetch("counting"))
        self.clock.now += 42

        with caplog.at_level(logging.DEBUG, logger="edgescan.framework.source_fetcher"):
            asyncio.run(self.fetcher.fetch("counting"))

        assert "Using cached data for counting (age: 42s)" in caplog.text

    def test_failure_with_cache_returns_stale_value(self) -> None:
        source = CountingSource()
        self.registry.register(source)
        asyncio.run(self.fetcher.fetch("counting"))

        self.clock.now += 61
        source.error = RuntimeError("HTTP 503")
        outcome = asyncio.run(self.fetcher.fetch("counting"))

        assert outcome.status == SourceStatus.STALE
        assert outcome.value == ["m1"]
        assert "HTTP 503" in outcome.error
        # cache entry untouched by the failure
        assert self.cache.get("counting").fetched_at == 1000.0

    def test_failure_without_cache_is_missing(self) -> None:
        self.registry.register(CountingSource(error=ValueError("bad payload")))

        outcome = asyncio.run(self.fetcher.fetch("counting"))

        assert outcome.status == SourceStatus.MISSING
        assert outcome.value is None
        assert outcome.error == "ValueError: bad payload"
        assert not outcome.has_value

    def test_async_fetch_timeout(self) -> None:
        self.registry.register(SlowAsyncSource())

        outcome = asyncio.run(self.fetcher.fetch("slow"))

        assert outcome.status == SourceStatus.MISSING
        assert "timed out" in outcome.error

    def test_unregistered_source_is_missing(self) -> None:
        outcome = asyncio.run(self.fetcher.fetch("nope"))

        assert outcome.status == SourceStatus.MISSING
        assert outcome.error is None

    def test_unconfigured_source_is_not_fetched(self) -> None:
        source = UnconfiguredSource()
        self.registry.register(source)

        outcome = asyncio.run(self.fetcher.fetch("counting"))

        assert outcome.status == SourceStatus.MISSING
        assert source.calls == 0

    def test_fetch_many_isolates_failures(self) -> None:
        self.registry.register(CountingSource("good"))
        self.registry.register(CountingSource("bad", error=RuntimeError("boom")))

        outcomes = asyncio.run(self.fetcher.fetch_many(["good", "bad"]))

        assert outcomes["good"].status == SourceStatus.FRESH
        assert outcomes["bad"].status == SourceStatus.MISSING
