"""
Unit tests for EscalationController.

Tests cover:
- candidate pool and priority selection (volume floor, cooldown boundary, cap)
- per-run budget admission
- two-tier flow: reject, scan, escalate, deep-tier fallback
- partial spend of a timed-out call is charged
"""

import asyncio
import threading
from typing import Optional

import pytest

from edgescan.escalation.analyzer import DEEP_TIER, INITIAL_TIER, AnalysisResult, Analyzer
from edgescan.escalation.controller import EscalationController, SpendLedger
from edgescan.escalation.cooldown_store import InMemoryCooldownStore
from edgescan.framework.config_loader import EscalationSettings
from edgescan.framework.types import Direction, Severity

from factories import build_edge, build_market


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class ScriptedAnalyzer(Analyzer):
    """Charges a fixed cost per tier and returns scripted verdicts."""

    def __init__(self, verdicts=None, costs=None, hang: Optional[str] = None, configured: bool = True) -> None:
        self.verdicts = verdicts or {}
        self.costs = costs or {INITIAL_TIER: 0.01, DEEP_TIER: 0.03}
        self.hang = hang
        self.configured = configured
        self.calls: list[tuple[str, str]] = []
        self.budgets: list[float] = []

    async def analyze(self, request, meter):
        self.calls.append((request.market.id, request.tier))
        self.budgets.append(request.budget_usd)
        meter.charge(self.costs[request.tier])
        if request.tier == self.hang:
            await asyncio.sleep(10)
        return self.verdicts.get((request.market.id, request.tier))

    def is_configured(self) -> bool:
        return self.configured


def verdict(edge_size: float, has_edge: bool = True, direction: str = "YES") -> AnalysisResult:
    return AnalysisResult.from_dict(
        {
            "has_edge": has_edge,
            "edge_size": edge_size,
            "direction": direction,
            "confidence": 0.7,
            "reasoning": f"edge {edge_size}",
            "supporting_data": {"source": "test"},
        }
    )


def build_settings(**overrides) -> EscalationSettings:
    values = {
        "enabled": True,
        "max_markets_per_run": 10,
        "min_market_volume": 5000,
        "cooldown_minutes": 30,
        "max_budget_per_analysis": 0.10,
        "max_budget_per_run": 1.00,
        "escalation_edge_threshold": 0.08,
        "min_edge": 0.05,
        "timeout_seconds": 5,
    }
    values.update(overrides)
    return EscalationSettings(**values)


class TestSpendLedger:
    def test_admission(self) -> None:
        ledger = SpendLedger(0.30)
        for _ in range(3):
            assert ledger.can_afford(0.10)
            ledger.charge(0.10)

        assert not ledger.can_afford(0.10)

    def test_overspent_ledger_refuses(self) -> None:
        ledger = SpendLedger(1.0)
        ledger.charge(1.2)

        assert not ledger.can_afford(0.0)
        assert ledger.remaining_usd < 0


class TestSelection:
    def setup_method(self) -> None:
        self.clock = FakeClock()
        self.store = InMemoryCooldownStore()
        self.controller = EscalationController(
            build_settings(max_markets_per_run=2), ScriptedAnalyzer(), cooldown_store=self.store, clock=self.clock
        )

    def test_enabled_requires_configured_analyzer(self) -> None:
        assert self.controller.enabled
        assert not EscalationController(build_settings(), ScriptedAnalyzer(configured=False)).enabled
        assert not EscalationController(build_settings(enabled=False), ScriptedAnalyzer()).enabled

    def test_volume_floor_order_and_cap(self) -> None:
        markets = [
            build_market("LOW", volume=4999),
            build_market("MID", volume=20_000),
            build_market("NONE", volume=None),
            build_market("TOP", volume=90_000),
            build_market("ALSO_MID", volume=20_000),
        ]

        selected = self.controller.select_priority_markets(markets)

        assert [m.id for m in selected] == ["TOP", "MID"]

    def test_cooldown_boundary(self) -> None:
        market = build_market("KXFED")
        self.store.mark_analyzed("KXFED", self.clock.now)
        cooldown = 30 * 60

        assert self.controller.select_priority_markets([market], now=self.clock.now + cooldown - 1) == []
        assert self.controller.select_priority_markets([market], now=self.clock.now + cooldown) == [market]

    def test_candidate_pool_edges(self) -> None:
        a, b = build_market("A"), build_market("B")
        edges = [build_edge(b), build_edge(a, direction=Direction.NO), build_edge(b)]

        assert self.controller.candidate_markets(edges, [a, b, build_market("C")]) == [b, a]

    def test_candidate_pool_universe(self) -> None:
        controller = EscalationController(build_settings(candidate_pool="universe"), ScriptedAnalyzer())
        universe = [build_market("A"), build_market("C")]

        assert controller.candidate_markets([], universe) == universe


class TestEscalationRun:
    def setup_method(self) -> None:
        self.clock = FakeClock()
        self.store = InMemoryCooldownStore()

    def _controller(self, analyzer: Analyzer, **overrides) -> EscalationController:
        return EscalationController(build_settings(**overrides), analyzer, cooldown_store=self.store, clock=self.clock)

    def test_budget_admits_three_of_five(self) -> None:
        analyzer = ScriptedAnalyzer(costs={INITIAL_TIER: 0.30, DEEP_TIER: 0.0})
        controller = self._controller(analyzer, max_budget_per_analysis=0.30, max_budget_per_run=1.00)
        markets = [build_market(f"M{i}", volume=10_000 + i) for i in range(5)]

        outcome = asyncio.run(controller.run(markets, {}))

        assert outcome.analyzed == 3
        assert outcome.skipped == 2
        assert outcome.spent_usd == pytest.approx(0.90)
        # highest volume first
        assert [call[0] for call in analyzer.calls] == ["M4", "M3", "M2"]

    def test_no_edge_is_rejected(self) -> None:
        analyzer = ScriptedAnalyzer({("A", INITIAL_TIER): verdict(0.0, has_edge=False)})

        outcome = asyncio.run(self._controller(analyzer).run([build_market("A")], {}))

        assert outcome.edges == []
        assert [r.state for r in outcome.records] == ["rejected"]
        assert self.store.get_last_analyzed("A") == self.clock.now

    def test_small_edge_is_scanned_without_deep_tier(self) -> None:
        analyzer = ScriptedAnalyzer({("A", INITIAL_TIER): verdict(0.06)})

        outcome = asyncio.run(self._controller(analyzer).run([build_market("A")], {}))

        assert analyzer.calls == [("A", INITIAL_TIER)]
        edge = outcome.edges[0]
        assert edge.edge == 0.06
        assert edge.urgency == Severity.WATCHLIST
        assert edge.signal.escalated is False
        assert edge.signal.model_used == "gpt-4o-mini"
        assert outcome.records[0].state == "scanned"

    def test_below_min_edge_is_rejected(self) -> None:
        analyzer = ScriptedAnalyzer({("A", INITIAL_TIER): verdict(0.03)})

        outcome = asyncio.run(self._controller(analyzer).run([build_market("A")], {}))

        assert outcome.edges == []
        assert outcome.records[0].state == "rejected"

    def test_large_edge_escalates_and_deep_result_wins(self) -> None:
        analyzer = ScriptedAnalyzer(
            {
                ("A", INITIAL_TIER): verdict(0.10),
                ("A", DEEP_TIER): verdict(0.18, direction="NO"),
            }
        )

        outcome = asyncio.run(self._controller(analyzer).run([build_market("A")], {}))

        edge = outcome.edges[0]
        assert edge.edge == 0.18
        assert edge.direction == Direction.NO
        assert edge.signal.escalated is True
        assert edge.signal.model_used == "gpt-4o"
        assert edge.signal.cost_usd == pytest.approx(0.04)
        assert edge.signal.supporting_data == (("source", "test"),)
        assert outcome.records[0].state == "escalated"
        assert outcome.summary()["escalated"] == 1

    def test_deep_tier_can_reject(self) -> None:
        analyzer = ScriptedAnalyzer(
            {
                ("A", INITIAL_TIER): verdict(0.10),
                ("A", DEEP_TIER): verdict(0.0, has_edge=False),
            }
        )

        outcome = asyncio.run(self._controller(analyzer).run([build_market("A")], {}))

        assert outcome.edges == []
        assert outcome.records[0].state == "rejected"

    def test_deep_timeout_falls_back_and_charges_partial_spend(self) -> None:
        analyzer = ScriptedAnalyzer({("A", INITIAL_TIER): verdict(0.10)}, hang=DEEP_TIER)
        controller = self._controller(analyzer, timeout_seconds=0.02)

        outcome = asyncio.run(controller.run([build_market("A")], {}))

        assert outcome.edges[0].edge == 0.10
        assert outcome.edges[0].signal.escalated is False
        record = outcome.records[0]
        assert record.state == "scanned"
        assert "timed out" in record.error
        assert outcome.spent_usd == pytest.approx(0.04)

    def test_initial_timeout_is_rejected_with_error(self) -> None:
        analyzer = ScriptedAnalyzer(hang=INITIAL_TIER)
        controller = self._controller(analyzer, timeout_seconds=0.02)

        outcome = asyncio.run(controller.run([build_market("A")], {}))

        assert outcome.records[0].state == "rejected"
        assert "initial analysis timed out" in outcome.records[0].error
        assert outcome.spent_usd == pytest.approx(0.01)

    def test_analyzer_exception_is_recorded(self) -> None:
        class Broken(ScriptedAnalyzer):
            async def analyze(self, request, meter):
                raise RuntimeError("rate limited")

        outcome = asyncio.run(self._controller(Broken()).run([build_market("A")], {}))

        assert outcome.records[0].error == "RuntimeError: rate limited"

    def test_cooldown_blocks_second_run(self) -> None:
        analyzer = ScriptedAnalyzer({("A", INITIAL_TIER): verdict(0.06)})
        controller = self._controller(analyzer)
        market = build_market("A")

        asyncio.run(controller.run([market], {}))
        second = asyncio.run(controller.run([market], {}))

        assert second.analyzed == 0
        assert len(analyzer.calls) == 1

    def test_deep_budget_capped_at_run_headroom(self) -> None:
        verdicts = {}
        for market_id in ("A", "B"):
            verdicts[(market_id, INITIAL_TIER)] = verdict(0.10)
            verdicts[(market_id, DEEP_TIER)] = verdict(0.18)
        analyzer = ScriptedAnalyzer(verdicts, costs={INITIAL_TIER: 0.20, DEEP_TIER: 0.40})
        controller = self._controller(analyzer, max_budget_per_analysis=0.40, max_budget_per_run=1.00)

        asyncio.run(controller.run([build_market("A", volume=20_000), build_market("B")], {}))

        assert analyzer.calls == [("A", INITIAL_TIER), ("A", DEEP_TIER), ("B", INITIAL_TIER), ("B", DEEP_TIER)]
        assert analyzer.budgets == pytest.approx([0.20, 0.40, 0.20, 0.20])

    def test_deep_tier_skipped_when_run_budget_is_spent(self) -> None:
        analyzer = ScriptedAnalyzer(
            {("A", INITIAL_TIER): verdict(0.10)}, costs={INITIAL_TIER: 1.00, DEEP_TIER: 0.10}
        )
        controller = self._controller(analyzer, max_budget_per_analysis=0.40, max_budget_per_run=1.00)

        outcome = asyncio.run(controller.run([build_market("A")], {}))

        assert analyzer.calls == [("A", INITIAL_TIER)]
        record = outcome.records[0]
        assert record.state == "scanned"
        assert record.error == "run budget exhausted before deep analysis"
        assert outcome.edges[0].edge == 0.10


class ThreadRecordingStore(InMemoryCooldownStore):
    def __init__(self) -> None:
        super().__init__()
        self.threads: set[int] = set()

    def get_last_analyzed(self, market_id):
        self.threads.add(threading.get_ident())
        return super().get_last_analyzed(market_id)

    def mark_analyzed(self, market_id, timestamp):
        self.threads.add(threading.get_ident())
        super().mark_analyzed(market_id, timestamp)


class TestCooldownStoreIO:
    def test_store_calls_run_off_the_event_loop_thread(self) -> None:
        store = ThreadRecordingStore()
        analyzer = ScriptedAnalyzer({("A", INITIAL_TIER): verdict(0.06)})
        controller = EscalationController(build_settings(), analyzer, cooldown_store=store, clock=FakeClock())

        asyncio.run(controller.run([build_market("A")], {}))
        threads = set(store.threads)

        assert threads
        assert threading.get_ident() not in threads
        assert store.get_last_analyzed("A") == 1_000_000.0
