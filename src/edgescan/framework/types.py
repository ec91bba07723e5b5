"""
Core data types shared by every stage of the pipeline.

Markets and edges are frozen dataclasses: a run works on an immutable snapshot
and the aggregator derives new edges with dataclasses.replace() instead of
mutating detector output.

The Edge.signal field is a tagged union. Each known detector family has its own
signal dataclass; third-party plug-ins use GenericSignal. Every variant carries a
`type` tag and a subkey() used by the aggregator's dedup key.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional, Union


class Category(str, Enum):
    SPORTS = "sports"
    CRYPTO = "crypto"
    MACRO = "macro"
    POLITICS = "politics"
    ENTERTAINMENT = "entertainment"
    HEALTH = "health"
    WEATHER = "weather"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Any) -> "Category":
        """Map a raw string (any case) to a Category, falling back to OTHER."""
        if isinstance(value, Category):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.OTHER


class Direction(str, Enum):
    YES = "YES"
    NO = "NO"


class Severity(str, Enum):
    """Severity tier of a surviving edge. Edges below WATCHLIST are dropped."""

    CRITICAL = "critical"
    ACTIONABLE = "actionable"
    WATCHLIST = "watchlist"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.CRITICAL: 2,
    Severity.ACTIONABLE: 1,
    Severity.WATCHLIST: 0,
}

# Default tier boundaries (absolute edge). The aggregator takes its own,
# configurable copy; these only seed create_edge().
DEFAULT_CRITICAL_EDGE = 0.15
DEFAULT_ACTIONABLE_EDGE = 0.08
DEFAULT_WATCHLIST_EDGE = 0.04


class SourceStatus(str, Enum):
    FRESH = "fresh"  # fetched during this run
    CACHED = "cached"  # cache entry still within its TTL
    STALE = "stale"  # fetch failed or timed out, previous value used
    MISSING = "missing"  # no value available at all


# ----------------------------------------------------------------------
# Markets
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class Market:
    """Canonical cross-platform market record. price is the YES probability."""

    platform: str
    id: str
    title: str
    category: Category
    price: float
    url: str
    ticker: Optional[str] = None
    subtitle: Optional[str] = None
    volume: Optional[float] = None
    liquidity: Optional[float] = None
    close_time: Optional[str] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.platform, self.id)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "Market":
        """
        Build a Market from a plain mapping.

        Accepts both snake_case and the camelCase keys some providers use
        (closeTime). Raises KeyError / ValueError on missing or invalid fields.
        """
        price = float(raw["price"])
        if not 0.0 <= price <= 1.0:
            raise ValueError(f"price must be a probability in [0, 1], got {price}")
        return cls(
            platform=str(raw["platform"]),
            id=str(raw["id"]),
            title=str(raw["title"]),
            category=Category.parse(raw.get("category", "other")),
            price=price,
            url=str(raw.get("url", "")),
            ticker=raw.get("ticker"),
            subtitle=raw.get("subtitle"),
            volume=_optional_float(raw.get("volume")),
            liquidity=_optional_float(raw.get("liquidity")),
            close_time=raw.get("close_time", raw.get("closeTime")),
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["category"] = self.category.value
        return data


def _optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


# ----------------------------------------------------------------------
# Signals
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class CrossPlatformSignal:
    kalshi_price: float
    polymarket_price: float
    similarity: float
    matched_title: str
    type: str = field(default="cross-platform", init=False)

    def subkey(self) -> Optional[str]:
        return None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SentimentSignal:
    topic: str
    sentiment_score: float
    article_count: int
    type: str = field(default="sentiment", init=False)

    def subkey(self) -> Optional[str]:
        return None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class MentionSignal:
    """Several keywords can be live on the same market, so each keyword is its own dedup slot."""

    keyword: str
    implied_probability: float
    citations: tuple[str, ...] = ()
    type: str = field(default="mention", init=False)

    def subkey(self) -> Optional[str]:
        return self.keyword.lower()

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["citations"] = list(self.citations)
        return data


@dataclass(frozen=True)
class EscalationSignal:
    signal_type: str
    model_used: str
    analysis_time_ms: int
    reasoning: str
    escalated: bool
    cost_usd: float
    supporting_data: tuple[tuple[str, Any], ...] = ()
    type: str = field(default="escalation", init=False)

    def subkey(self) -> Optional[str]:
        return None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["supporting_data"] = dict(self.supporting_data)
        return data


@dataclass(frozen=True)
class GenericSignal:
    """Open variant for plug-ins outside the known detector families."""

    type: str
    subtype: Optional[str] = None
    data: tuple[tuple[str, Any], ...] = ()

    def subkey(self) -> Optional[str]:
        return self.subtype

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "subtype": self.subtype, **dict(self.data)}


Signal = Union[
    CrossPlatformSignal,
    SentimentSignal,
    MentionSignal,
    EscalationSignal,
    GenericSignal,
]


# ----------------------------------------------------------------------
# Edges
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class Edge:
    market: Market
    direction: Direction
    edge: float
    confidence: float
    reason: str
    signal: Signal
    urgency: Severity = Severity.WATCHLIST
    ml_score: Optional[float] = None

    @property
    def score(self) -> float:
        """Expected-value proxy used for dedup and default ranking."""
        return self.edge * self.confidence

    def to_dict(self) -> dict[str, Any]:
        return {
            "market": self.market.to_dict(),
            "direction": self.direction.value,
            "edge": self.edge,
            "confidence": self.confidence,
            "reason": self.reason,
            "signal": self.signal.to_dict(),
            "urgency": self.urgency.value,
            "ml_score": self.ml_score,
        }


def severity_for(edge: float) -> Optional[Severity]:
    """Classify an absolute edge with the default tier boundaries."""
    if edge >= DEFAULT_CRITICAL_EDGE:
        return Severity.CRITICAL
    if edge >= DEFAULT_ACTIONABLE_EDGE:
        return Severity.ACTIONABLE
    if edge >= DEFAULT_WATCHLIST_EDGE:
        return Severity.WATCHLIST
    return None


def create_edge(
    market: Market,
    direction: Direction,
    edge: float,
    confidence: float,
    reason: str,
    signal: Signal,
) -> Edge:
    """Build an Edge with urgency derived from the default tier boundaries."""
    return Edge(
        market=market,
        direction=direction,
        edge=edge,
        confidence=confidence,
        reason=reason,
        signal=signal,
        urgency=severity_for(edge) or Severity.WATCHLIST,
    )


# ----------------------------------------------------------------------
# Run output
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class PipelineError:
    source: str  # source, processor or detector name
    error: str
    timestamp: float
    stage: str  # "source" | "processor" | "detector" | "escalation" | "pipeline"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class RunStats:
    run_id: str
    started_at: float
    total_time_ms: float = 0.0
    per_source_time_ms: dict[str, float] = field(default_factory=dict)
    per_processor_time_ms: dict[str, float] = field(default_factory=dict)
    per_detector_time_ms: dict[str, float] = field(default_factory=dict)
    source_status: dict[str, SourceStatus] = field(default_factory=dict)
    edges_by_detector: dict[str, int] = field(default_factory=dict)
    edges_by_category: dict[str, int] = field(default_factory=dict)
    edges_by_severity: dict[str, int] = field(default_factory=dict)
    raw_edge_count: int = 0
    escalation: Optional[dict[str, Any]] = None
    config_hash: str = ""
    pipeline_version: str = "dev"

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["source_status"] = {k: v.value for k, v in self.source_status.items()}
        return data


@dataclass
class RunResult:
    """The only artifact consumers (alerting, persistence, ML scoring) may depend on."""

    edges: list[Edge]
    errors: list[PipelineError]
    stats: RunStats
    skipped: bool = False
