"""
Base processor abstraction for data enrichment between sources and detectors.

A processor declares the source names (or other processors' output keys) it reads
and publishes its result into the shared source data under output_key, where
detectors see it as if it were another source.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional


class BaseProcessor(ABC):
    """Abstract base class for processors."""

    name: str
    description: str = ""
    input_source_names: tuple[str, ...] = ()
    _output_key: Optional[str] = None

    @property
    def output_key(self) -> str:
        """Key under which the result is merged into source data (defaults to name)."""
        return self._output_key or self.name

    @abstractmethod
    def process(self, inputs_by_name: dict[str, Any]) -> Any:
        """
        Derive new data from the declared inputs.

        inputs_by_name only contains inputs that are available for this run; a
        missing key means "not available" and must not be treated as fatal.
        May be a plain method or an `async def`.

        Args:
            inputs_by_name: Mapping of input name to value (available inputs only)

        Returns:
            Processor output, merged into source data under output_key
        """
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, output_key={self.output_key!r})"
