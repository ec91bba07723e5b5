"""
Base detector abstraction for signal production.

Every detector (cross-platform divergence, sentiment, etc.) inherits from
BaseDetector and implements the standard interface for:
1. Declaring the source names it depends on
2. Turning source data and the market universe into edges
3. Declaring its minimum reportable edge
"""

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any, Optional

from edgescan.framework.types import Direction, Edge, Market

logger = logging.getLogger(__name__)


class BaseDetector(ABC):
    """
    Abstract base class for edge detectors.

    Subclasses implement specific detectors (CrossPlatformDetector, etc.).
    """

    # Subclasses override these
    name: str  # e.g., "cross_platform"
    description: str = ""
    required_source_names: tuple[str, ...] = ()
    min_edge: float = 0.03
    enabled: bool = True
    timeout_seconds: Optional[float] = None  # overrides pipeline.detector_timeout_seconds

    @abstractmethod
    def detect(self, source_data: Mapping[str, Any], markets: Sequence[Market]) -> list[Edge]:
        """
        Run detection logic over one run's data.

        source_data maps every available source name and processor output key to
        its value. A declared source that is absent from source_data had no data
        this run (never fetched, failed with no cache, or never registered) and
        must be treated as "no data", not as an error. Must not block on sources
        it did not declare. May be a plain method or an `async def`.

        Args:
            source_data: Read-only mapping of source/processor name to value
            markets: Canonical market universe for this run (immutable)

        Returns:
            Edges, each with edge >= self.min_edge
        """
        pass

    def is_configured(self) -> bool:
        """Return False when required configuration is missing; the detector is then skipped."""
        return True

    async def detect_with_threshold(
        self, source_data: Mapping[str, Any], markets: Sequence[Market]
    ) -> list[Edge]:
        """
        Run detect() and enforce the min_edge contract.

        This is the public method called by PipelineRunner. It:
        1. Calls the detector-specific detect() (awaiting it if it is async)
        2. Rejects output that is not a list of well-formed Edge records
        3. Drops edges below min_edge so the aggregator can rely on the contract

        Args:
            source_data: Read-only mapping of source/processor name to value
            markets: Canonical market universe for this run

        Returns:
            Edges at or above min_edge

        Raises:
            TypeError: If the detector returned anything other than Edge records
        """
        if inspect.iscoroutinefunction(self.detect):
            result = await self.detect(source_data, markets)
        else:
            # sync detectors run in a worker thread so siblings keep running
            loop = asyncio.get_running_loop()
            result = await loop.run_in_executor(None, self.detect, source_data, markets)

        edges = list(result or [])
        for edge in edges:
            _check_edge(edge)
        kept = [e for e in edges if e.edge >= self.min_edge]
        if len(kept) < len(edges):
            logger.debug(
                "Detector dropped sub-threshold edges | detector=%s | dropped=%d | min_edge=%.3f",
                self.name,
                len(edges) - len(kept),
                self.min_edge,
            )
        return kept

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, sources={list(self.required_source_names)})"


def _check_edge(edge: Any) -> None:
    """Raise TypeError unless edge is an Edge the aggregator can key, tier and rank."""
    if not isinstance(edge, Edge):
        raise TypeError(f"detector output must be Edge, got {type(edge).__name__}")
    if not isinstance(edge.market, Market) or not isinstance(edge.direction, Direction):
        raise TypeError("edge.market must be a Market and edge.direction a Direction")
    if not all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in (edge.edge, edge.confidence)):
        raise TypeError("edge.edge and edge.confidence must be numbers")
    signal = edge.signal
    if not isinstance(getattr(signal, "type", None), str) or not callable(getattr(signal, "subkey", None)):
        raise TypeError(f"edge.signal must have a type tag and subkey(), got {type(signal).__name__}")
