"""
Budget-gated, two-tier escalation of high-value markets.

After aggregation the controller picks a few liquid markets that are outside
their cooldown and runs them, strictly one after another, through a cheap initial
analysis. Markets whose initial edge clears the escalation threshold get a deeper
(more expensive) second pass. Every call is hard-cancelled at its timeout, and
the run stops taking candidates once the remaining budget cannot cover one more
analysis.

Admission reserves one max_budget_per_analysis. The initial tier gets half of
that and the deep tier gets at most the full amount, capped at what is left of
the run ceiling. A CostMeter only stops the model after the call that crossed
its budget, so a run can exceed the ceiling by at most that last call's cost.

Per-market lifecycle:
    unanalyzed -> scanned -> escalated | rejected -> (cooldown) -> eligible again
"""

import asyncio
import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from edgescan.escalation.analyzer import (
    DEEP_TIER,
    INITIAL_TIER,
    AnalysisRequest,
    AnalysisResult,
    Analyzer,
    CostMeter,
)
from edgescan.escalation.cooldown_store import CooldownStore, InMemoryCooldownStore
from edgescan.escalation.tools import AnalysisTools
from edgescan.framework.config_loader import EscalationSettings
from edgescan.framework.source_fetcher import SourceFetcher
from edgescan.framework.types import Edge, EscalationSignal, Market, create_edge

logger = logging.getLogger(__name__)

# Float slack so that e.g. three $0.10 charges still leave room under a $0.30 ceiling
_BUDGET_EPSILON = 1e-9


class SpendLedger:
    """Run-scoped spend against the per-run ceiling. A new ledger is used for every run."""

    def __init__(self, ceiling_usd: float) -> None:
        self.ceiling_usd = ceiling_usd
        self.spent_usd = 0.0

    @property
    def remaining_usd(self) -> float:
        return self.ceiling_usd - self.spent_usd

    def can_afford(self, reserve_usd: float) -> bool:
        """True if nothing is exhausted and the headroom covers `reserve_usd`."""
        if self.spent_usd >= self.ceiling_usd:
            return False
        return self.remaining_usd + _BUDGET_EPSILON >= reserve_usd

    def charge(self, cost_usd: float) -> None:
        self.spent_usd += cost_usd


@dataclass
class TierOutcome:
    result: Optional[AnalysisResult]
    cost_usd: float
    error: Optional[str] = None


@dataclass
class EscalationRecord:
    """What happened to one analyzed market."""

    market_id: str
    platform: str
    state: str  # "scanned" | "escalated" | "rejected"
    cost_usd: float
    edge: Optional[float] = None
    error: Optional[str] = None


@dataclass
class EscalationOutcome:
    edges: list[Edge]
    spent_usd: float
    analyzed: int
    skipped: int
    records: list[EscalationRecord] = field(default_factory=list)

    def summary(self) -> dict[str, Any]:
        return {
            "edges": len(self.edges),
            "spent_usd": round(self.spent_usd, 6),
            "analyzed": self.analyzed,
            "skipped": self.skipped,
            "escalated": sum(1 for r in self.records if r.state == "escalated"),
            "rejected": sum(1 for r in self.records if r.state == "rejected"),
        }


class EscalationController:
    """
    Runs the expensive analysis tier for one pipeline run at a time.

    Usage (PipelineRunner):
        controller = EscalationController(settings, OpenAIAnalyzer())
        candidates = controller.candidate_markets(edges, universe)
        outcome = await controller.run(candidates, source_data, fetcher=fetcher, universe=universe)
    """

    def __init__(
        self,
        settings: EscalationSettings,
        analyzer: Analyzer,
        cooldown_store: Optional[CooldownStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.analyzer = analyzer
        self.cooldown_store = cooldown_store if cooldown_store is not None else InMemoryCooldownStore()
        self._clock = clock

    @property
    def enabled(self) -> bool:
        return self.settings.enabled and self.analyzer.is_configured()

    def candidate_markets(self, edges: Sequence[Edge], universe: Sequence[Market]) -> list[Market]:
        """
        Markets eligible for selection this run.

        "edges": markets that appear in the aggregated edges, in rank order.
        "universe": the whole market universe.
        """
        if self.settings.candidate_pool == "universe":
            return list(universe)
        seen: set[tuple[str, str]] = set()
        markets: list[Market] = []
        for edge in edges:
            if edge.market.key not in seen:
                seen.add(edge.market.key)
                markets.append(edge.market)
        return markets

    def select_priority_markets(self, markets: Sequence[Market], now: Optional[float] = None) -> list[Market]:
        """
        Filter and order candidates.

        Keeps markets with volume >= min_market_volume that are outside their
        cooldown (a market analyzed at T is eligible again at exactly T + cooldown),
        sorts by volume descending (stable) and caps at max_markets_per_run.
        """
        now = self._clock() if now is None else now
        cooldown = self.settings.cooldown_seconds
        eligible = []
        for market in markets:
            if (market.volume or 0) < self.settings.min_market_volume:
                continue
            last = self.cooldown_store.get_last_analyzed(market.id)
            if last is not None and now - last < cooldown:
                continue
            eligible.append(market)
        eligible.sort(key=lambda m: -(m.volume or 0))
        return eligible[: self.settings.max_markets_per_run]

    async def run(
        self,
        markets: Sequence[Market],
        source_data: Mapping[str, Any],
        fetcher: Optional[SourceFetcher] = None,
        universe: Optional[Sequence[Market]] = None,
    ) -> EscalationOutcome:
        """
        Analyze priority markets sequentially under the run budget.

        Args:
            markets: Candidate markets (see candidate_markets)
            source_data: Read-only source data of the current run
            fetcher: Shared fetcher for tools that need a source outside the snapshot
            universe: Full market universe for the tools (defaults to markets)

        Returns:
            EscalationOutcome with the edges found and what was spent
        """
        settings = self.settings
        ledger = SpendLedger(settings.max_budget_per_run)
        # cooldown stores block on I/O (DynamoDB); keep them off the event loop
        loop = asyncio.get_running_loop()
        priority = await loop.run_in_executor(None, self.select_priority_markets, markets)
        tools = AnalysisTools(universe if universe is not None else markets, source_data, fetcher=fetcher)

        logger.info("Escalation: analyzing up to %d priority markets", len(priority))

        edges: list[Edge] = []
        records: list[EscalationRecord] = []
        skipped = 0
        for position, market in enumerate(priority):
            if not ledger.can_afford(settings.max_budget_per_analysis):
                skipped = len(priority) - position
                logger.warning(
                    "Escalation budget exhausted, skipping remaining candidates | spent=$%.2f | skipped=%d",
                    ledger.spent_usd,
                    skipped,
                )
                break

            edge, record = await self._analyze_market(market, tools, ledger)
            records.append(record)
            if edge is not None:
                edges.append(edge)
                logger.info(
                    "Escalation edge: %s - %.1f%% %s", market.title, edge.edge * 100, edge.direction.value
                )

        logger.info(
            "Escalation complete: %d edges found, $%.2f spent, %d analyzed, %d skipped",
            len(edges),
            ledger.spent_usd,
            len(records),
            skipped,
        )
        return EscalationOutcome(
            edges=edges,
            spent_usd=ledger.spent_usd,
            analyzed=len(records),
            skipped=skipped,
            records=records,
        )

    # ------------------------------------------------------------------
    # Per-market analysis
    # ------------------------------------------------------------------

    async def _analyze_market(
        self, market: Market, tools: AnalysisTools, ledger: SpendLedger
    ) -> tuple[Optional[Edge], EscalationRecord]:
        settings = self.settings
        start = time.monotonic()

        # cooldown starts now, whether or not the analysis succeeds
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.cooldown_store.mark_analyzed, market.id, self._clock())

        initial = await self._run_tier(
            AnalysisRequest(
                market=market,
                tier=INITIAL_TIER,
                model=settings.initial_model,
                budget_usd=settings.max_budget_per_analysis / 2,
                max_turns=settings.initial_max_turns,
                tools=tools,
            ),
            timeout=settings.timeout_seconds,
        )
        ledger.charge(initial.cost_usd)
        cost = initial.cost_usd

        if initial.result is None or not self._has_edge(initial.result):
            logger.debug("No edge found for %s", market.id)
            return None, EscalationRecord(market.id, market.platform, "rejected", cost, error=initial.error)

        final = initial.result
        escalated = False
        error = None
        # the deep tier may only spend what is left of the run ceiling
        deep_budget = min(settings.max_budget_per_analysis, ledger.remaining_usd)
        if final.edge_size >= settings.escalation_edge_threshold and deep_budget <= _BUDGET_EPSILON:
            logger.warning("Run budget exhausted before deep analysis | market=%s", market.id)
            error = "run budget exhausted before deep analysis"
        elif final.edge_size >= settings.escalation_edge_threshold:
            logger.info("Escalating %s to deep analysis (%.1f%% edge)", market.id, final.edge_size * 100)
            deep = await self._run_tier(
                AnalysisRequest(
                    market=market,
                    tier=DEEP_TIER,
                    model=settings.deep_model,
                    budget_usd=deep_budget,
                    max_turns=settings.deep_max_turns,
                    tools=tools,
                    initial_result=initial.result,
                ),
                timeout=settings.deep_timeout_seconds,
            )
            ledger.charge(deep.cost_usd)
            cost += deep.cost_usd
            if deep.result is not None:
                final = deep.result
                escalated = True
            else:
                # deep tier failed: keep the initial verdict
                error = deep.error

        if not self._has_edge(final):
            return None, EscalationRecord(market.id, market.platform, "rejected", cost, error=error)

        elapsed_ms = int((time.monotonic() - start) * 1000)
        edge = create_edge(
            market,
            final.direction,
            final.edge_size,
            final.confidence,
            final.reasoning or "Escalation analysis edge",
            EscalationSignal(
                signal_type=final.signal_type,
                model_used=settings.deep_model if escalated else settings.initial_model,
                analysis_time_ms=elapsed_ms,
                reasoning=final.reasoning,
                escalated=escalated,
                cost_usd=cost,
                supporting_data=tuple(sorted(final.supporting_data.items())),
            ),
        )
        state = "escalated" if escalated else "scanned"
        return edge, EscalationRecord(market.id, market.platform, state, cost, edge=final.edge_size, error=error)

    async def _run_tier(self, request: AnalysisRequest, timeout: float) -> TierOutcome:
        meter = CostMeter(request.budget_usd)
        try:
            result = await asyncio.wait_for(self.analyzer.analyze(request, meter), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "%s analysis timed out | market=%s | timeout=%.0fs | spent=$%.4f",
                request.tier.capitalize(),
                request.market.id,
                timeout,
                meter.spent_usd,
            )
            return TierOutcome(None, meter.spent_usd, f"{request.tier} analysis timed out after {timeout:.0f}s")
        except Exception as exc:
            logger.error("%s analysis failed for %s: %s", request.tier.capitalize(), request.market.id, exc)
            return TierOutcome(None, meter.spent_usd, f"{type(exc).__name__}: {exc}")
        return TierOutcome(result, meter.spent_usd)

    def _has_edge(self, result: AnalysisResult) -> bool:
        return result.has_edge and result.edge_size >= self.settings.min_edge
