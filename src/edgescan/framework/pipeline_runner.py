"""
Pipeline orchestration for one end-to-end pass.

PipelineRunner coordinates:
1. Fetching every registered source through the TTL cache (SourceFetcher)
2. Running processors in dependency waves
3. Building the canonical market universe
4. Running detectors concurrently, each isolated and time-bounded
5. Aggregating edges (EdgeAggregator)
6. Optional budget-gated escalation on the aggregated output
7. Recording timings, source status and lineage in RunStats

Plug-in failures never escape run(): they are recorded as PipelineError values
in the RunResult and the rest of the run proceeds without that plug-in's output.
"""

import asyncio
import inspect
import logging
import time
from collections.abc import Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Callable, Optional

from edgescan.framework.base_detector import BaseDetector
from edgescan.framework.base_processor import BaseProcessor
from edgescan.framework.cache import SourceCache
from edgescan.framework.config_loader import PipelineConfig
from edgescan.framework.edge_aggregator import EdgeAggregator, Reranker
from edgescan.framework.lineage import RunLineage, build_run_lineage
from edgescan.framework.registry import PipelineRegistry
from edgescan.framework.source_fetcher import SourceFetcher
from edgescan.framework.types import Edge, Market, PipelineError, RunResult, RunStats

if TYPE_CHECKING:
    from edgescan.escalation.controller import EscalationController

logger = logging.getLogger(__name__)


class PipelineRunner:
    """
    Runs the registered plug-ins once per call to run().

    Only one run is ever in flight per runner: a call made while another run is
    still executing returns immediately with skipped=True.

    Usage:
        runner = PipelineRunner(registry, config=config, escalation=controller)
        result = await runner.run()
    """

    def __init__(
        self,
        registry: PipelineRegistry,
        cache: Optional[SourceCache] = None,
        config: Optional[PipelineConfig] = None,
        aggregator: Optional[EdgeAggregator] = None,
        escalation: Optional["EscalationController"] = None,
        reranker: Optional[Reranker] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the pipeline runner.

        Args:
            registry: Plug-ins to run
            cache: Source cache shared across runs (new in-memory cache if None)
            config: Loaded pipeline config (dataclass defaults if None)
            aggregator: Edge aggregator (built from config.aggregator if None)
            escalation: Optional escalation controller
            reranker: Optional external scoring function passed to the aggregator
            clock: Wall clock, injectable for tests
        """
        self.registry = registry
        self.config = config or PipelineConfig()
        self.cache = cache if cache is not None else SourceCache(clock=clock)
        self.aggregator = aggregator or EdgeAggregator.from_settings(self.config.aggregator)
        self.escalation = escalation
        self.reranker = reranker
        self._clock = clock
        self.fetcher = SourceFetcher(
            registry,
            self.cache,
            max_concurrency=self.config.pipeline.max_concurrent_fetches,
            timeout_seconds=self.config.pipeline.source_timeout_seconds,
        )
        self._in_flight = False

    @property
    def is_running(self) -> bool:
        return self._in_flight

    async def run(self) -> RunResult:
        """
        Execute one pipeline pass.

        Returns:
            RunResult with ranked edges, per-plug-in errors and run stats

        Raises:
            RegistryError: If the registry is structurally invalid
        """
        self.registry.validate()

        started_at = self._clock()
        lineage = build_run_lineage(started_at, self.config.config_hash())

        if self._in_flight:
            logger.warning("Pipeline run already in progress, skipping | run_id=%s", lineage.run_id)
            return RunResult(
                edges=[],
                errors=[
                    PipelineError(
                        source="pipeline",
                        error="run already in progress",
                        timestamp=started_at,
                        stage="pipeline",
                    )
                ],
                stats=self._new_stats(started_at, lineage),
                skipped=True,
            )

        # set before the first await so an overlapping call sees it
        self._in_flight = True
        try:
            return await self._execute(started_at, lineage)
        finally:
            self._in_flight = False

    # ------------------------------------------------------------------
    # Run steps
    # ------------------------------------------------------------------

    async def _execute(self, started_at: float, lineage: RunLineage) -> RunResult:
        run_start = time.monotonic()
        stats = self._new_stats(started_at, lineage)
        errors: list[PipelineError] = []

        logger.info("Pipeline run started | run_id=%s", lineage.run_id)

        # Step 1: sources
        source_data: dict[str, Any] = {}
        source_names = [source.name for source in self.registry.list_sources()]
        outcomes = await self.fetcher.fetch_many(source_names)
        for name, outcome in outcomes.items():
            stats.source_status[name] = outcome.status
            stats.per_source_time_ms[name] = outcome.elapsed_ms
            if outcome.error:
                errors.append(self._error(name, outcome.error, "source"))
            if outcome.has_value:
                source_data[name] = outcome.value

        # Step 2: processors
        await self._run_processors(source_data, stats, errors)

        # Step 3: market universe
        markets = self._build_market_universe(source_data, errors)

        # Step 4: detectors
        view: Mapping[str, Any] = MappingProxyType(dict(source_data))
        raw_edges = await self._run_detectors(view, markets, stats, errors)
        stats.raw_edge_count = len(raw_edges)

        # Step 5: aggregation
        edges = self.aggregator.aggregate(raw_edges, reranker=self.reranker)

        # Step 6: escalation
        if self.escalation is not None and self.escalation.enabled:
            edges = await self._run_escalation(edges, markets, view, stats, errors)

        for edge in edges:
            category = edge.market.category.value
            stats.edges_by_category[category] = stats.edges_by_category.get(category, 0) + 1
        stats.edges_by_severity = self.aggregator.summarize(edges)
        stats.total_time_ms = (time.monotonic() - run_start) * 1000

        logger.info(
            "Pipeline run complete | run_id=%s | markets=%d | raw_edges=%d | edges=%d | errors=%d | time=%.0fms",
            lineage.run_id,
            len(markets),
            len(raw_edges),
            len(edges),
            len(errors),
            stats.total_time_ms,
        )
        return RunResult(edges=edges, errors=errors, stats=stats)

    async def _run_processors(
        self, source_data: dict[str, Any], stats: RunStats, errors: list[PipelineError]
    ) -> None:
        """
        Run processors in dependency waves.

        A processor is ready once none of its inputs is the output key of a
        processor that has not run yet. If nothing is ready the remaining
        processors form a cycle and all run with whatever data is available.
        """
        pending: dict[str, BaseProcessor] = {p.name: p for p in self.registry.list_processors()}
        while pending:
            pending_keys = {p.output_key for p in pending.values()}
            ready = [
                p for p in pending.values()
                if not any(name in pending_keys for name in p.input_source_names)
            ]
            if not ready:
                logger.warning(
                    "Processor dependency cycle, running with available inputs | processors=%s",
                    ", ".join(sorted(pending)),
                )
                ready = list(pending.values())
            for processor in ready:
                del pending[processor.name]

            results = await asyncio.gather(*(self._run_processor(p, source_data) for p in ready))
            for processor, (ok, value, elapsed_ms) in zip(ready, results):
                stats.per_processor_time_ms[processor.name] = elapsed_ms
                if ok:
                    source_data[processor.output_key] = value
                else:
                    errors.append(self._error(processor.name, value, "processor"))

    async def _run_processor(
        self, processor: BaseProcessor, source_data: dict[str, Any]
    ) -> tuple[bool, Any, float]:
        inputs = {
            name: source_data[name] for name in processor.input_source_names if name in source_data
        }
        start = time.monotonic()
        try:
            if inspect.iscoroutinefunction(processor.process):
                value = await processor.process(inputs)
            else:
                loop = asyncio.get_running_loop()
                value = await loop.run_in_executor(None, processor.process, inputs)
        except Exception as exc:
            elapsed = (time.monotonic() - start) * 1000
            logger.error("Processor '%s' failed: %s", processor.name, exc)
            return False, f"{type(exc).__name__}: {exc}", elapsed
        return True, value, (time.monotonic() - start) * 1000

    def _build_market_universe(
        self, source_data: Mapping[str, Any], errors: list[PipelineError]
    ) -> tuple[Market, ...]:
        """
        Concatenate market-providing sources, deduplicated on (platform, id), first wins.

        A source whose value is not a list of records contributes no markets and
        is recorded as a source error; invalid individual records are skipped.
        """
        markets: list[Market] = []
        seen: set[tuple[str, str]] = set()
        for source in self.registry.list_sources():
            if not source.provides_markets or source.name not in source_data:
                continue
            try:
                source_markets, invalid = _normalize_markets(source_data[source.name])
            except TypeError as exc:
                logger.error("Source '%s' returned unusable market data: %s", source.name, exc)
                errors.append(self._error(source.name, f"{type(exc).__name__}: {exc}", "source"))
                continue
            if invalid:
                logger.warning("Skipped invalid market records | source=%s | count=%d", source.name, invalid)
            for market in source_markets:
                if market.key in seen:
                    continue
                seen.add(market.key)
                markets.append(market)
        return tuple(markets)

    async def _run_detectors(
        self,
        view: Mapping[str, Any],
        markets: tuple[Market, ...],
        stats: RunStats,
        errors: list[PipelineError],
    ) -> list[Edge]:
        detectors: list[BaseDetector] = []
        for detector in self.registry.list_enabled_detectors():
            if not detector.is_configured():
                logger.info("Detector '%s' not configured, skipping", detector.name)
                continue
            detectors.append(detector)

        results = await asyncio.gather(*(self._run_detector(d, view, markets) for d in detectors))

        edges: list[Edge] = []
        for detector, (ok, value, elapsed_ms) in zip(detectors, results):
            stats.per_detector_time_ms[detector.name] = elapsed_ms
            if not ok:
                errors.append(self._error(detector.name, value, "detector"))
                stats.edges_by_detector[detector.name] = 0
                continue
            stats.edges_by_detector[detector.name] = len(value)
            edges.extend(value)
        return edges

    async def _run_detector(
        self, detector: BaseDetector, view: Mapping[str, Any], markets: tuple[Market, ...]
    ) -> tuple[bool, Any, float]:
        timeout = detector.timeout_seconds or self.config.pipeline.detector_timeout_seconds
        start = time.monotonic()
        try:
            edges = await asyncio.wait_for(detector.detect_with_threshold(view, markets), timeout=timeout)
        except asyncio.TimeoutError:
            elapsed = (time.monotonic() - start) * 1000
            logger.error("Detector '%s' timed out after %ss", detector.name, timeout)
            return False, f"detector timed out after {timeout}s", elapsed
        except Exception as exc:
            elapsed = (time.monotonic() - start) * 1000
            logger.error("Detector '%s' failed: %s", detector.name, exc)
            return False, f"{type(exc).__name__}: {exc}", elapsed
        return True, edges, (time.monotonic() - start) * 1000

    async def _run_escalation(
        self,
        edges: list[Edge],
        markets: tuple[Market, ...],
        view: Mapping[str, Any],
        stats: RunStats,
        errors: list[PipelineError],
    ) -> list[Edge]:
        candidates = self.escalation.candidate_markets(edges, markets)
        try:
            outcome = await self.escalation.run(candidates, view, fetcher=self.fetcher, universe=markets)
        except Exception as exc:
            logger.error("Escalation failed: %s", exc)
            errors.append(self._error("escalation", f"{type(exc).__name__}: {exc}", "escalation"))
            return edges

        stats.escalation = outcome.summary()
        for record in outcome.records:
            if record.error:
                errors.append(self._error(record.market_id, record.error, "escalation"))
        if not outcome.edges:
            return edges
        stats.edges_by_detector["escalation"] = len(outcome.edges)
        return self.aggregator.aggregate([*edges, *outcome.edges], reranker=self.reranker)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _new_stats(self, started_at: float, lineage: RunLineage) -> RunStats:
        return RunStats(
            run_id=lineage.run_id,
            started_at=started_at,
            config_hash=lineage.config_hash,
            pipeline_version=lineage.pipeline_version,
        )

    def _error(self, source: str, error: str, stage: str) -> PipelineError:
        return PipelineError(source=source, error=error, timestamp=self._clock(), stage=stage)


def _normalize_markets(value: Any) -> tuple[list[Market], int]:
    """
    Turn one source's value into Market records.

    Returns:
        (markets, number of invalid records skipped)

    Raises:
        TypeError: If the value is not a list or tuple of records
    """
    if value is None:
        return [], 0
    if not isinstance(value, (list, tuple)):
        raise TypeError(f"expected a list of market records, got {type(value).__name__}")
    markets: list[Market] = []
    invalid = 0
    for raw in value:
        if isinstance(raw, Market):
            markets.append(raw)
            continue
        if not isinstance(raw, Mapping):
            invalid += 1
            continue
        try:
            markets.append(Market.from_dict(raw))
        except (KeyError, TypeError, ValueError):
            invalid += 1
    return markets, invalid
