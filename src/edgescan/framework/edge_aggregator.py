"""
Edge aggregation: dedup, severity tiering, ranking and bounding.

Detectors work independently and routinely flag the same market. The aggregator
collapses competing signals on a dedup key, keeping the one with the best
edge * confidence, drops everything below the watchlist tier, ranks the rest and
caps the list. It is a pure function of its input: the same edge list always
yields the same output, and aggregating the output again changes nothing.
"""

import dataclasses
import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Optional

from edgescan.framework.config_loader import AggregatorSettings
from edgescan.framework.types import Edge, Severity

logger = logging.getLogger(__name__)

# Optional external re-ranking score (e.g., an ML model). Higher is better.
Reranker = Callable[[Edge], float]

DedupKey = tuple[str, str, Optional[str]]


@dataclass(frozen=True)
class SeverityThresholds:
    critical: float = 0.15
    actionable: float = 0.08
    watchlist: float = 0.04

    def classify(self, edge: float) -> Optional[Severity]:
        """Return the tier for an absolute edge, or None if it is below the minimum."""
        magnitude = abs(edge)
        if magnitude >= self.critical:
            return Severity.CRITICAL
        if magnitude >= self.actionable:
            return Severity.ACTIONABLE
        if magnitude >= self.watchlist:
            return Severity.WATCHLIST
        return None


def dedup_key(edge: Edge) -> DedupKey:
    """(platform, market id, signal sub-key); the sub-key lets e.g. several keywords coexist."""
    return (edge.market.platform, edge.market.id, edge.signal.subkey())


def _preferred(candidate: Edge, incumbent: Edge) -> bool:
    if candidate.score != incumbent.score:
        return candidate.score > incumbent.score
    # exact tie: keep the higher raw edge, otherwise the first seen
    return candidate.edge > incumbent.edge


class EdgeAggregator:
    """
    Turns the raw multiset of detector edges into a ranked, bounded list.

    Usage (PipelineRunner):
        aggregator = EdgeAggregator(SeverityThresholds(), max_results=50)
        ranked = aggregator.aggregate(all_edges, reranker=model.score)
    """

    def __init__(self, thresholds: Optional[SeverityThresholds] = None, max_results: int = 50) -> None:
        if max_results <= 0:
            raise ValueError("max_results must be positive")
        self.thresholds = thresholds or SeverityThresholds()
        self.max_results = max_results

    @classmethod
    def from_settings(cls, settings: AggregatorSettings) -> "EdgeAggregator":
        thresholds = SeverityThresholds(
            critical=settings.critical,
            actionable=settings.actionable,
            watchlist=settings.watchlist,
        )
        return cls(thresholds, max_results=settings.max_results)

    dedup_key = staticmethod(dedup_key)

    def classify(self, edge: float) -> Optional[Severity]:
        return self.thresholds.classify(edge)

    def aggregate(self, edges: Iterable[Edge], reranker: Optional[Reranker] = None) -> list[Edge]:
        """
        Deduplicate, tier, rank and bound a list of edges.

        Args:
            edges: Raw edges from all detectors (input is not modified)
            reranker: Optional external scoring function; its score replaces
                edge * confidence as the within-tier ranking key and is stored
                on the edge as ml_score

        Returns:
            At most max_results edges, critical first, each with its tier as urgency
        """
        survivors = self.deduplicate(edges)

        tiered: list[Edge] = []
        for edge in survivors:
            severity = self.classify(edge.edge)
            if severity is None:
                continue
            tiered.append(dataclasses.replace(edge, urgency=severity))

        if reranker is not None:
            tiered = [self._apply_reranker(edge, reranker) for edge in tiered]

        tiered.sort(key=self._sort_key)
        return tiered[: self.max_results]

    def deduplicate(self, edges: Iterable[Edge]) -> list[Edge]:
        """Collapse edges sharing a dedup key, keeping the best edge * confidence."""
        best: dict[DedupKey, Edge] = {}
        for edge in edges:
            key = dedup_key(edge)
            incumbent = best.get(key)
            if incumbent is None or _preferred(edge, incumbent):
                best[key] = edge
        return list(best.values())

    def summarize(self, edges: Sequence[Edge]) -> dict[str, int]:
        """Count edges per tier (for logging and run stats)."""
        counts = {severity.value: 0 for severity in Severity}
        for edge in edges:
            counts[edge.urgency.value] += 1
        return counts

    def _apply_reranker(self, edge: Edge, reranker: Reranker) -> Edge:
        try:
            score = float(reranker(edge))
        except Exception as exc:
            logger.warning(
                "Reranker failed, using edge*confidence | market=%s | error=%s", edge.market.id, exc
            )
            return dataclasses.replace(edge, ml_score=None)
        return dataclasses.replace(edge, ml_score=score)

    @staticmethod
    def _sort_key(edge: Edge) -> tuple:
        rank_score = edge.ml_score if edge.ml_score is not None else edge.score
        return (
            -edge.urgency.rank,
            -rank_score,
            edge.market.platform,
            edge.market.id,
            edge.signal.type,
            edge.signal.subkey() or "",
            edge.direction.value,
        )
