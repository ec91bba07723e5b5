"""
Kalshi market source for the trade API.

Pages through the public markets endpoint once per configured series, keeps only
active markets with a tradeable YES price, and normalizes each one to the
canonical Market record. A series that fails after retries is logged and skipped;
the rest of the series still contribute.

Scaling: set KALSHI_SERIES to a comma-separated subset to narrow what a
deployment pulls.
"""

import logging
import os
import time
from typing import Any, Optional

import requests

from edgescan.framework.base_source import BaseSource
from edgescan.framework.types import Category, Market

logger = logging.getLogger(__name__)

DEFAULT_SERIES = [
    # Crypto
    "KXBTC", "KXBTCD", "KXETH",
    # Economics
    "KXGDP", "KXCPI", "KXFED", "KXJOBS", "KXRECESSION",
    # Politics
    "KXPRES", "KXSENATE", "KXHOUSE",
    # Entertainment
    "KXRT", "KXBOXOFFICE", "KXOSCARS",
    # Health
    "KXMEASLES", "KXFLU",
    # Sports
    "KXNFL", "KXNBA", "KXMLB",
]

# Checked in order against the series code after the KX prefix; first prefix match wins
_SERIES_CATEGORIES: list[tuple[tuple[str, ...], Category]] = [
    (("BTC", "ETH", "CRYPTO"), Category.CRYPTO),
    (("GDP", "CPI", "FED", "JOBS", "RECESSION"), Category.MACRO),
    (("PRES", "SENATE", "HOUSE"), Category.POLITICS),
    (("RT", "BOX", "OSCAR"), Category.ENTERTAINMENT),
    (("MEASLES", "FLU", "COVID"), Category.HEALTH),
    (("WEATHER", "HIGH", "SNOW", "RAIN"), Category.WEATHER),
    (("NFL", "NBA", "MLB", "NHL"), Category.SPORTS),
]


class KalshiSource(BaseSource):
    """
    Fetches active Kalshi markets, series by series.

    Usage (PipelineRegistry):
        registry.register_source(KalshiSource(series=["KXFED", "KXCPI"]))
    """

    name = "kalshi"
    category = Category.OTHER  # Kalshi spans all categories
    ttl_seconds = 120.0
    provides_markets = True

    BASE_URL = "https://api.elections.kalshi.com"
    PAGE_LIMIT = 100
    MAX_PAGES = 5  # caps very large series (crypto) at 500 markets
    MAX_RETRIES = 3
    REQUEST_TIMEOUT_SECONDS = 15

    def __init__(
        self,
        series: Optional[list[str]] = None,
        base_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        """
        Initialize the source.

        Args:
            series: Series tickers to fetch (defaults to DEFAULT_SERIES).
                    Overridden by the KALSHI_SERIES env var if set.
            base_url: API host override (e.g., the demo environment)
            session: requests session (new one if None)
        """
        env_series = [s.strip() for s in os.getenv("KALSHI_SERIES", "").split(",") if s.strip()]
        self.series = env_series or list(series or DEFAULT_SERIES)
        self.base_url = (base_url or os.getenv("KALSHI_API_BASE") or self.BASE_URL).rstrip("/")
        self._session = session or requests.Session()

    def fetch(self) -> list[Market]:
        """
        Fetch and normalize markets for every configured series.

        Returns:
            Normalized markets across all series that could be fetched
        """
        markets: list[Market] = []
        start = time.monotonic()
        for index, series in enumerate(self.series, start=1):
            try:
                series_markets = self._fetch_series(series)
            except requests.RequestException as exc:
                logger.warning(
                    "Kalshi series failed, skipping | series=%s | progress=%d/%d | error=%s",
                    series,
                    index,
                    len(self.series),
                    exc,
                )
                continue
            if series_markets:
                logger.debug("Kalshi series fetched | series=%s | markets=%d", series, len(series_markets))
            markets.extend(series_markets)

        logger.info(
            "Fetched %d Kalshi markets from %d series in %.1fs",
            len(markets),
            len(self.series),
            time.monotonic() - start,
        )
        return markets

    def normalize(self, raw: dict[str, Any], series: str) -> Optional[Market]:
        """
        Normalize one trade-API market to the canonical Market record.

        Kalshi quotes prices in cents. The YES price is the best bid, falling back
        to the last trade, then to 50c. Markets that are not active or whose price
        is not strictly inside (0, 1) are not tradeable and return None.

        Args:
            raw: Market object from /trade-api/v2/markets
            series: Series ticker the market was fetched under

        Returns:
            Market, or None if the market should be skipped
        """
        if raw.get("status") != "active":
            return None
        cents = raw.get("yes_bid")
        if cents is None:
            cents = raw.get("last_price")
        if cents is None:
            cents = 50
        price = float(cents) / 100
        if not 0 < price < 1:
            return None

        ticker = raw["ticker"]
        return Market(
            platform="kalshi",
            id=ticker,
            ticker=ticker,
            title=raw.get("title", ""),
            subtitle=raw.get("subtitle") or None,
            category=categorize_series(series),
            price=price,
            volume=_optional_float(raw.get("volume")),
            liquidity=_optional_float(raw.get("open_interest")),
            url=build_market_url(series, ticker),
            close_time=raw.get("close_time"),
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _fetch_series(self, series: str) -> list[Market]:
        markets: list[Market] = []
        cursor: Optional[str] = None
        for page in range(1, self.MAX_PAGES + 1):
            params: dict[str, Any] = {"series_ticker": series, "limit": self.PAGE_LIMIT}
            if cursor:
                params["cursor"] = cursor
            data = self._get_json("/trade-api/v2/markets", params)

            for raw in data.get("markets") or []:
                market = self.normalize(raw, series)
                if market is not None:
                    markets.append(market)

            cursor = data.get("cursor")
            if not cursor:
                break
            if page == self.MAX_PAGES:
                logger.debug("%s: hit %d page limit, more pages available", series, self.MAX_PAGES)
        return markets

    def _get_json(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        """
        GET a trade-API path with retries.

        Uses exponential backoff between attempts: 1s, 2s (MAX_RETRIES=3).

        Raises:
            requests.RequestException: If every attempt fails
        """
        url = f"{self.base_url}{path}"
        for attempt in range(self.MAX_RETRIES):
            try:
                resp = self._session.get(url, params=params, timeout=self.REQUEST_TIMEOUT_SECONDS)
                resp.raise_for_status()
                return resp.json()
            except requests.RequestException as exc:
                if attempt == self.MAX_RETRIES - 1:
                    raise
                wait = 2**attempt
                logger.warning(
                    "Kalshi request retry %d/%d failed: %s, waiting %ds",
                    attempt + 1,
                    self.MAX_RETRIES,
                    exc,
                    wait,
                )
                time.sleep(wait)
        return {}


def categorize_series(series: str) -> Category:
    """Map a Kalshi series ticker to a Category."""
    code = series.upper()
    if code.startswith("KX"):
        code = code[2:]
    for prefixes, category in _SERIES_CATEGORIES:
        if code.startswith(prefixes):
            return category
    return Category.OTHER


def build_market_url(series: str, ticker: str) -> str:
    """
    Build the public Kalshi market URL.

    Example:
        ("KXFED", "KXFED-25DEC-T4.00") -> https://kalshi.com/markets/kxfed/kxfed-25dec-t400
    """
    series_slug = "".join(ch for ch in series.lower() if ch.isalnum())
    ticker_slug = "".join(ch for ch in ticker.lower() if ch.isalnum() or ch == "-")
    return f"https://kalshi.com/markets/{series_slug}/{ticker_slug}"


def _optional_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
