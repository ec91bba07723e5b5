"""
Cross-platform price divergence detector.

When the same question trades on Kalshi and Polymarket at different prices, the
cheaper side may be mispriced. Markets are matched on title similarity; a
matched pair whose prices differ by at least MIN_PRICE_DIFF yields an edge on the
Kalshi market.
"""

import logging
from collections.abc import Mapping, Sequence
from typing import Any, Optional

from edgescan.framework.base_detector import BaseDetector
from edgescan.framework.types import CrossPlatformSignal, Direction, Edge, Market, create_edge
from edgescan.processors.market_index import MarketIndex

logger = logging.getLogger(__name__)


class CrossPlatformDetector(BaseDetector):
    """
    Detects price divergences between Kalshi and Polymarket.

    Uses the run's market_index when the processor produced one, otherwise
    builds a private index from the two market sources.
    """

    name = "cross_platform"
    description = "Detects price divergences between Kalshi and Polymarket"
    required_source_names = ("kalshi", "polymarket", "market_index")
    min_edge = 0.05

    MIN_SIMILARITY = 0.75
    MIN_PRICE_DIFF = 0.05
    MAX_CONFIDENCE = 0.85

    def __init__(self, min_similarity: Optional[float] = None, min_price_diff: Optional[float] = None) -> None:
        self.min_similarity = self.MIN_SIMILARITY if min_similarity is None else min_similarity
        self.min_price_diff = self.MIN_PRICE_DIFF if min_price_diff is None else min_price_diff

    def detect(self, source_data: Mapping[str, Any], markets: Sequence[Market]) -> list[Edge]:
        kalshi_markets = source_data.get("kalshi")
        polymarket_markets = source_data.get("polymarket")
        if not kalshi_markets or not polymarket_markets:
            logger.debug("Cross-platform: missing market data")
            return []

        index = source_data.get("market_index")
        if not isinstance(index, MarketIndex):
            index = MarketIndex(polymarket_markets)

        edges: list[Edge] = []
        for kalshi in kalshi_markets:
            match = index.best_match(kalshi, "polymarket", self.min_similarity)
            if match is None:
                continue
            polymarket, similarity = match
            edge = self._build_edge(kalshi, polymarket, similarity)
            if edge is not None:
                edges.append(edge)

        logger.debug("Cross-platform: %d divergences across %d Kalshi markets", len(edges), len(kalshi_markets))
        return edges

    def _build_edge(self, kalshi: Market, polymarket: Market, similarity: float) -> Optional[Edge]:
        price_diff = abs(kalshi.price - polymarket.price)
        if price_diff < self.min_price_diff:
            return None

        polymarket_higher = polymarket.price > kalshi.price
        direction = Direction.YES if polymarket_higher else Direction.NO
        confidence = min(self.MAX_CONFIDENCE, 0.5 + similarity * 0.2 + price_diff * 0.5)

        reason = (
            f"Polymarket prices YES at {polymarket.price * 100:.0f}c vs Kalshi {kalshi.price * 100:.0f}c"
        )
        if not polymarket_higher:
            reason += " - Kalshi may be overpriced"

        return create_edge(
            kalshi,
            direction,
            round(price_diff, 4),
            confidence,
            reason,
            CrossPlatformSignal(
                kalshi_price=kalshi.price,
                polymarket_price=polymarket.price,
                similarity=similarity,
                matched_title=polymarket.title,
            ),
        )
