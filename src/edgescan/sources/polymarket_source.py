"""
Polymarket market source for the Gamma API.

Pulls active, open markets in one request, drops thin books below a liquidity
floor and normalizes the rest to the canonical Market record. Gamma encodes
outcomePrices and clobTokenIds as JSON strings inside the JSON payload.
"""

import json
import logging
import re
import time
from typing import Any, Optional

import requests

from edgescan.framework.base_source import BaseSource
from edgescan.framework.types import Category, Market

logger = logging.getLogger(__name__)

GAMMA_API_BASE = "https://gamma-api.polymarket.com"

# Checked in order against the lowercased question (whole words, optional plural s)
# and the Gamma category
_CATEGORY_KEYWORDS: list[tuple[Category, tuple[str, ...], str]] = [
    (Category.CRYPTO, ("bitcoin", "btc", "ethereum", "eth", "crypto"), "crypto"),
    (Category.POLITICS, ("president", "election", "presidential", "trump", "biden", "congress", "senate"), "politic"),
    (Category.SPORTS, ("nfl", "nba", "mlb", "super bowl", "championship"), "sport"),
    (Category.ENTERTAINMENT, ("oscar", "movie", "box office", "rotten tomatoes"), "entertainment"),
    (Category.MACRO, ("fed", "interest rate", "gdp", "inflation", "cpi"), "economic"),
    (Category.HEALTH, ("covid", "virus", "vaccine", "disease"), "health"),
    (Category.WEATHER, ("weather", "temperature", "hurricane", "snow"), "weather"),
]
_CATEGORY_PATTERNS = [
    (category, re.compile(r"\b(?:" + "|".join(map(re.escape, keywords)) + r")s?\b"), category_hint)
    for category, keywords, category_hint in _CATEGORY_KEYWORDS
]


class PolymarketSource(BaseSource):
    """
    Fetches liquid, open Polymarket markets.

    Usage (PipelineRegistry):
        registry.register_source(PolymarketSource(min_liquidity=10000))
    """

    name = "polymarket"
    category = Category.OTHER  # Polymarket spans all categories
    ttl_seconds = 180.0
    provides_markets = True

    PAGE_LIMIT = 200
    MAX_RETRIES = 3
    REQUEST_TIMEOUT_SECONDS = 30

    def __init__(
        self,
        min_liquidity: float = 5000.0,
        base_url: str = GAMMA_API_BASE,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.min_liquidity = min_liquidity
        self.base_url = base_url.rstrip("/")
        self._session = session or requests.Session()

    def fetch(self) -> list[Market]:
        """
        Fetch and normalize active markets.

        Returns:
            Markets at or above min_liquidity with a price strictly inside (0, 1)

        Raises:
            requests.RequestException: If the Gamma API cannot be reached after retries
        """
        params = {"limit": self.PAGE_LIMIT, "active": "true", "closed": "false"}
        payload = self._get_json("/markets", params)

        markets: list[Market] = []
        for raw in payload or []:
            market = self.normalize(raw)
            if market is not None:
                markets.append(market)

        logger.info("Fetched %d Polymarket markets via Gamma API", len(markets))
        return markets

    def normalize(self, raw: dict[str, Any]) -> Optional[Market]:
        """
        Normalize one Gamma market to the canonical Market record.

        The YES price is the first entry of outcomePrices. Returns None for thin
        books, unparseable prices and prices outside (0, 1).

        Args:
            raw: Market object from the Gamma /markets endpoint

        Returns:
            Market, or None if the market should be skipped
        """
        liquidity = _safe_float(raw.get("liquidity")) or 0.0
        if liquidity < self.min_liquidity:
            return None

        try:
            prices = json.loads(raw.get("outcomePrices") or "[]")
            price = float(prices[0]) if prices else 0.0
        except (json.JSONDecodeError, TypeError, ValueError):
            return None
        if not 0 < price < 1:
            return None

        title = raw.get("question", "")
        slug = raw.get("slug") or raw.get("conditionId", "")
        return Market(
            platform="polymarket",
            id=str(raw["id"]),
            ticker=_first_token_id(raw.get("clobTokenIds")),
            title=title,
            category=categorize_market(title, raw.get("category")),
            price=price,
            volume=_safe_float(raw.get("volume")) or 0.0,
            liquidity=liquidity,
            url=f"https://polymarket.com/event/{slug}",
            close_time=raw.get("endDate"),
        )

    def _get_json(self, path: str, params: dict[str, Any]) -> Any:
        """
        GET a Gamma API path with retries.

        Uses exponential backoff between attempts: 1s, 2s (MAX_RETRIES=3).
        """
        url = f"{self.base_url}{path}"
        for attempt in range(self.MAX_RETRIES):
            try:
                resp = self._session.get(url, params=params, timeout=self.REQUEST_TIMEOUT_SECONDS)
                resp.raise_for_status()
                return resp.json()
            except requests.RequestException as exc:
                if attempt == self.MAX_RETRIES - 1:
                    logger.error("Gamma API request failed after %d retries: %s", self.MAX_RETRIES, exc)
                    raise
                wait = 2**attempt
                logger.warning(
                    "Gamma API retry %d/%d failed: %s, waiting %ds", attempt + 1, self.MAX_RETRIES, exc, wait
                )
                time.sleep(wait)
        return None


def categorize_market(title: str, gamma_category: Optional[str] = None) -> Category:
    """Map a Polymarket question (and optional Gamma category) to a Category."""
    text = title.lower()
    hint = (gamma_category or "").lower()
    for category, pattern, category_hint in _CATEGORY_PATTERNS:
        if pattern.search(text) or category_hint in hint:
            return category
    return Category.OTHER


def _first_token_id(raw: Any) -> Optional[str]:
    if not raw:
        return None
    try:
        tokens = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return None
    return str(tokens[0]) if tokens else None


def _safe_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (ValueError, TypeError):
        return None
