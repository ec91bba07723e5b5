"""
Title-token index over every market source.

Detectors and analysis tools that match markets by title (cross-platform
comparison, market search) share one index per run instead of re-tokenizing every
title pair. Titles are lowercased, stripped of punctuation and stopwords, and
compared with Jaccard similarity over the remaining words.
"""

import logging
import re
from collections import defaultdict
from collections.abc import Iterable
from typing import Any, Optional

from edgescan.framework.base_processor import BaseProcessor
from edgescan.framework.types import Market

logger = logging.getLogger(__name__)

STOPWORDS = frozenset({"the", "a", "an", "will", "be", "in", "on", "at", "to", "for", "of"})

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")


def title_tokens(title: str) -> frozenset[str]:
    """Lowercase word set of a title without punctuation or stopwords."""
    words = _NON_ALNUM.sub("", title.lower()).split()
    return frozenset(word for word in words if word not in STOPWORDS)


def jaccard(left: frozenset[str], right: frozenset[str]) -> float:
    if not left or not right:
        return 0.0
    return len(left & right) / len(left | right)


def title_similarity(title1: str, title2: str) -> float:
    return jaccard(title_tokens(title1), title_tokens(title2))


class MarketIndex:
    """Inverted index from title token to market, grouped by platform."""

    def __init__(self, markets: Iterable[Market] = ()) -> None:
        self._markets: dict[tuple[str, str], Market] = {}
        self._tokens: dict[tuple[str, str], frozenset[str]] = {}
        self._postings: dict[str, set[tuple[str, str]]] = defaultdict(set)
        for market in markets:
            self.add(market)

    def __len__(self) -> int:
        return len(self._markets)

    def add(self, market: Market) -> None:
        if market.key in self._markets:
            return
        tokens = title_tokens(market.title)
        self._markets[market.key] = market
        self._tokens[market.key] = tokens
        for token in tokens:
            self._postings[token].add(market.key)

    def get(self, platform: str, market_id: str) -> Optional[Market]:
        return self._markets.get((platform, market_id))

    def tokens(self, market: Market) -> frozenset[str]:
        return self._tokens.get(market.key) or title_tokens(market.title)

    def candidates(self, market: Market, platform: str) -> list[Market]:
        """Markets on `platform` that share at least one title token with `market`."""
        keys: set[tuple[str, str]] = set()
        for token in self.tokens(market):
            keys.update(key for key in self._postings.get(token, ()) if key[0] == platform)
        return [self._markets[key] for key in sorted(keys)]

    def best_match(
        self, market: Market, platform: str, min_similarity: float
    ) -> Optional[tuple[Market, float]]:
        """
        Most similar market on another platform.

        Returns:
            (match, similarity) for the highest similarity >= min_similarity,
            first candidate wins ties; None if nothing qualifies
        """
        source_tokens = self.tokens(market)
        best: Optional[tuple[Market, float]] = None
        for candidate in self.candidates(market, platform):
            similarity = jaccard(source_tokens, self._tokens[candidate.key])
            if similarity >= min_similarity and (best is None or similarity > best[1]):
                best = (candidate, similarity)
        return best

    def search(self, query: str, limit: int = 20) -> list[tuple[Market, float]]:
        """
        Rank markets by how many query tokens their title contains.

        Returns:
            Up to `limit` (market, score) pairs, score = matched query tokens / query tokens
        """
        query_tokens = title_tokens(query)
        if not query_tokens:
            return []
        hits: dict[tuple[str, str], int] = defaultdict(int)
        for token in query_tokens:
            for key in self._postings.get(token, ()):
                hits[key] += 1
        ranked = sorted(hits.items(), key=lambda item: (-item[1], item[0]))
        return [(self._markets[key], count / len(query_tokens)) for key, count in ranked[:limit]]


class MarketIndexProcessor(BaseProcessor):
    """
    Builds a MarketIndex from every market-providing source it is given.

    Inputs that are absent this run are skipped; the index then covers whatever
    platforms did return data.
    """

    name = "market_index"
    description = "Title-token index over all market sources"

    def __init__(self, input_source_names: tuple[str, ...] = ("kalshi", "polymarket")) -> None:
        self.input_source_names = tuple(input_source_names)

    def process(self, inputs_by_name: dict[str, Any]) -> MarketIndex:
        index = MarketIndex()
        for name in self.input_source_names:
            for raw in inputs_by_name.get(name) or []:
                try:
                    market = raw if isinstance(raw, Market) else Market.from_dict(raw)
                except (KeyError, TypeError, ValueError):
                    continue
                index.add(market)
        logger.debug(
            "Market index built | markets=%d | inputs=%s",
            len(index),
            ", ".join(n for n in self.input_source_names if n in inputs_by_name),
        )
        return index
