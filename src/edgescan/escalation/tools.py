"""
Read-only lookup tools offered to the analyzer during escalation.

Every tool reads the current run's market universe and source data; nothing here
places orders or writes anywhere. source_snapshot may pull a single named source
through the shared SourceFetcher when it is absent from the run snapshot, which
goes through (and refreshes) the normal TTL cache.

Tool arguments arrive as model-written JSON and are validated against a pydantic
model per tool; the same models produce the function schemas offered to the
model. Tool results are JSON strings so they can be handed straight back.
"""

import dataclasses
import json
import logging
from collections.abc import Mapping, Sequence
from typing import Any, Callable, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from edgescan.framework.source_fetcher import SourceFetcher
from edgescan.framework.types import Category, Market
from edgescan.processors.market_index import MarketIndex

logger = logging.getLogger(__name__)

MAX_ITEMS = 20


# ----------------------------------------------------------------------
# Argument schemas
# ----------------------------------------------------------------------


class ToolArguments(BaseModel):
    model_config = ConfigDict(extra="forbid")


class FindMarketsArgs(ToolArguments):
    search: Optional[str] = Field(default=None, description="Title keywords")
    category: Optional[Category] = None
    min_volume: float = Field(default=0.0, ge=0.0)
    limit: int = Field(default=MAX_ITEMS, ge=1)

    @field_validator("category", mode="before")
    @classmethod
    def _lower_category(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value


class MarketDetailArgs(ToolArguments):
    market_id: str


class CrossPlatformCompareArgs(ToolArguments):
    search: str
    min_similarity: float = Field(default=0.5, ge=0.0, le=1.0)


class TopicSentimentArgs(ToolArguments):
    topic: str


class SourceSnapshotArgs(ToolArguments):
    name: str


class Tool(NamedTuple):
    handler: Callable[..., Any]
    arguments: type[ToolArguments]
    description: str

    def spec(self, name: str) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": name,
                "description": self.description,
                "parameters": self.arguments.model_json_schema(),
            },
        }


class AnalysisTools:
    """
    Tool registry bound to one run's data.

    Usage (EscalationController):
        tools = AnalysisTools(universe, source_data, fetcher=runner.fetcher)
        output = await tools.call("find_markets", '{"search": "fed rate"}')
    """

    def __init__(
        self,
        markets: Sequence[Market],
        source_data: Mapping[str, Any],
        fetcher: Optional[SourceFetcher] = None,
        news_source: str = "news",
    ) -> None:
        self._markets = tuple(markets)
        self._source_data = source_data
        self._fetcher = fetcher
        self._news_source = news_source

        index = source_data.get("market_index")
        self._index = index if isinstance(index, MarketIndex) else MarketIndex(self._markets)

        self._tools: dict[str, Tool] = {
            "find_markets": Tool(
                self.find_markets,
                FindMarketsArgs,
                "Search the current market universe by title keywords, category and volume.",
            ),
            "market_detail": Tool(
                self.market_detail,
                MarketDetailArgs,
                "Full record of one market by id, with its best cross-platform match.",
            ),
            "cross_platform_compare": Tool(
                self.cross_platform_compare,
                CrossPlatformCompareArgs,
                "Compare Kalshi and Polymarket prices for markets matching a search.",
            ),
            "topic_sentiment": Tool(
                self.topic_sentiment,
                TopicSentimentArgs,
                "News article count, headlines and average sentiment for a topic.",
            ),
            "source_snapshot": Tool(
                self.source_snapshot,
                SourceSnapshotArgs,
                "Summary of one data source's current value.",
            ),
        }

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def call(self, name: str, arguments: str) -> str:
        """
        Run a tool by name with JSON-encoded arguments.

        Unknown tools and arguments that fail validation come back as
        {"error": ...} so the model can correct itself; they are not raised.
        """
        tool = self._tools.get(name)
        if tool is None:
            return json.dumps({"error": f"unknown tool: {name}"})
        try:
            args = tool.arguments.model_validate_json(arguments or "{}")
        except ValidationError as exc:
            logger.debug("Tool call rejected | tool=%s | error=%s", name, exc)
            return json.dumps({"error": f"invalid arguments for {name}: {exc}"})

        result = tool.handler(**dict(args))
        if name == "source_snapshot":
            result = await result
        return json.dumps(result, default=_to_jsonable)

    def specs(self) -> list[dict[str, Any]]:
        """OpenAI function-tool definitions for every tool."""
        return [tool.spec(name) for name, tool in self._tools.items()]

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    def find_markets(
        self,
        search: Optional[str] = None,
        category: Optional[Category] = None,
        min_volume: float = 0.0,
        limit: int = MAX_ITEMS,
    ) -> list[dict[str, Any]]:
        limit = min(limit, MAX_ITEMS)
        if search:
            pool = [market for market, _score in self._index.search(search, limit=len(self._index))]
        else:
            pool = sorted(self._markets, key=lambda m: -(m.volume or 0))

        results = []
        for market in pool:
            if category is not None and market.category != category:
                continue
            if (market.volume or 0) < min_volume:
                continue
            results.append(market.to_dict())
            if len(results) >= limit:
                break
        return results

    def market_detail(self, market_id: str) -> dict[str, Any]:
        market = next((m for m in self._markets if m.id == market_id), None)
        if market is None:
            return {"error": f"market not found: {market_id}"}
        detail = market.to_dict()
        other = "polymarket" if market.platform == "kalshi" else "kalshi"
        match = self._index.best_match(market, other, min_similarity=0.5)
        if match is not None:
            matched, similarity = match
            detail["cross_platform_match"] = {
                "platform": matched.platform,
                "id": matched.id,
                "title": matched.title,
                "price": matched.price,
                "similarity": round(similarity, 3),
            }
        return detail

    def cross_platform_compare(self, search: str, min_similarity: float = 0.5) -> list[dict[str, Any]]:
        comparisons = []
        for market, _score in self._index.search(search, limit=len(self._index)):
            if market.platform != "kalshi":
                continue
            match = self._index.best_match(market, "polymarket", min_similarity)
            if match is None:
                continue
            polymarket, similarity = match
            comparisons.append(
                {
                    "kalshi_id": market.id,
                    "kalshi_title": market.title,
                    "kalshi_price": market.price,
                    "polymarket_id": polymarket.id,
                    "polymarket_title": polymarket.title,
                    "polymarket_price": polymarket.price,
                    "similarity": round(similarity, 3),
                    "price_diff": round(polymarket.price - market.price, 4),
                }
            )
            if len(comparisons) >= MAX_ITEMS:
                break
        return comparisons

    def topic_sentiment(self, topic: str) -> dict[str, Any]:
        """
        Aggregate articles from the news source whose title mentions the topic.

        Articles are mappings with a "title" and an optional numeric "sentiment"
        in [-1, 1].
        """
        articles = self._source_data.get(self._news_source)
        if not articles or not isinstance(articles, (list, tuple)):
            return {"topic": topic, "available": False}

        needle = topic.lower()
        matched = [a for a in articles if isinstance(a, Mapping) and needle in str(a.get("title", "")).lower()]
        scores = [float(a["sentiment"]) for a in matched if isinstance(a.get("sentiment"), (int, float))]
        return {
            "topic": topic,
            "available": True,
            "article_count": len(matched),
            "sentiment_score": round(sum(scores) / len(scores), 3) if scores else None,
            "headlines": [str(a.get("title")) for a in matched[:5]],
        }

    async def source_snapshot(self, name: str) -> dict[str, Any]:
        if name in self._source_data:
            return _summarize(name, self._source_data[name], status="snapshot")
        if self._fetcher is None:
            return {"name": name, "status": "missing"}
        outcome = await self._fetcher.fetch(name)
        if not outcome.has_value:
            return {"name": name, "status": outcome.status.value, "error": outcome.error}
        return _summarize(name, outcome.value, status=outcome.status.value)


def _summarize(name: str, value: Any, status: str) -> dict[str, Any]:
    if isinstance(value, (list, tuple)):
        return {"name": name, "status": status, "count": len(value), "items": list(value[:MAX_ITEMS])}
    if isinstance(value, MarketIndex):
        return {"name": name, "status": status, "markets": len(value)}
    return {"name": name, "status": status, "value": value}


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, Market):
        return value.to_dict()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        to_dict = getattr(value, "to_dict", None)
        return to_dict() if to_dict else dataclasses.asdict(value)
    return str(value)
