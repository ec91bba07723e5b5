"""
Plugin registry for sources, processors and detectors.

PipelineRegistry is an explicit object handed to the PipelineRunner, so several
independent pipelines (e.g., one per test) can coexist. Registration is
last-write-wins by name and performs no dependency validation: plug-ins may be
registered in any order and a detector naming an unregistered source simply sees
that input as absent at run time.

Plug-ins can also be loaded from configuration: each entry is a dotted class path
(or a mapping with `class` and `options`) that is imported with importlib,
type-checked against the base classes and instantiated.
"""

import importlib
import logging
from typing import Any, Optional, Union

from edgescan.framework.base_detector import BaseDetector
from edgescan.framework.base_processor import BaseProcessor
from edgescan.framework.base_source import BaseSource
from edgescan.framework.errors import PluginError, RegistryError
from edgescan.framework.types import Category

logger = logging.getLogger(__name__)

Plugin = Union[BaseSource, BaseProcessor, BaseDetector]

# Config section name -> expected base class
_PLUGIN_KINDS: dict[str, type] = {
    "sources": BaseSource,
    "processors": BaseProcessor,
    "detectors": BaseDetector,
}


class PipelineRegistry:
    """
    Registry of pipeline plug-ins keyed by name.

    Usage:
        registry = PipelineRegistry()
        registry.register_source(KalshiSource())
        registry.register_detector(CrossPlatformDetector())
        runner = PipelineRunner(registry)
    """

    def __init__(self) -> None:
        self._sources: dict[str, BaseSource] = {}
        self._processors: dict[str, BaseProcessor] = {}
        self._detectors: dict[str, BaseDetector] = {}

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_source(self, source: BaseSource) -> None:
        if source.ttl_seconds <= 0:
            raise ValueError(f"Source '{source.name}' must have ttl_seconds > 0")
        if source.name in self._sources:
            logger.warning("Source '%s' already registered, overwriting", source.name)
        self._sources[source.name] = source
        logger.debug("Registered source: %s (ttl=%ss)", source.name, source.ttl_seconds)

    def register_processor(self, processor: BaseProcessor) -> None:
        if processor.name in self._processors:
            logger.warning("Processor '%s' already registered, overwriting", processor.name)
        self._processors[processor.name] = processor
        logger.debug(
            "Registered processor: %s (inputs: %s)",
            processor.name,
            ", ".join(processor.input_source_names),
        )

    def register_detector(self, detector: BaseDetector) -> None:
        if not 0.0 < detector.min_edge < 1.0:
            raise ValueError(
                f"Detector '{detector.name}' min_edge must be in (0, 1), got {detector.min_edge}"
            )
        if detector.name in self._detectors:
            logger.warning("Detector '%s' already registered, overwriting", detector.name)
        self._detectors[detector.name] = detector
        logger.debug(
            "Registered detector: %s (sources: %s)",
            detector.name,
            ", ".join(detector.required_source_names),
        )

    def register(self, plugin: Plugin) -> None:
        """Register any plug-in, dispatching on its base class."""
        if isinstance(plugin, BaseSource):
            self.register_source(plugin)
        elif isinstance(plugin, BaseProcessor):
            self.register_processor(plugin)
        elif isinstance(plugin, BaseDetector):
            self.register_detector(plugin)
        else:
            raise TypeError(f"{type(plugin).__name__} is not a source, processor or detector")

    def unregister(self, name: str) -> bool:
        """Remove every plug-in registered under name. Returns True if anything was removed."""
        removed = False
        for table in (self._sources, self._processors, self._detectors):
            if table.pop(name, None) is not None:
                removed = True
        return removed

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_source(self, name: str) -> Optional[BaseSource]:
        return self._sources.get(name)

    def get_processor(self, name: str) -> Optional[BaseProcessor]:
        return self._processors.get(name)

    def get_detector(self, name: str) -> Optional[BaseDetector]:
        return self._detectors.get(name)

    def list_sources(self) -> list[BaseSource]:
        return list(self._sources.values())

    def list_processors(self) -> list[BaseProcessor]:
        return list(self._processors.values())

    def list_detectors(self) -> list[BaseDetector]:
        return list(self._detectors.values())

    def list_enabled_detectors(self) -> list[BaseDetector]:
        return [d for d in self._detectors.values() if d.enabled]

    def sources_by_category(self, category: Category) -> list[BaseSource]:
        return [s for s in self._sources.values() if s.category == category]

    def stats(self) -> dict[str, Any]:
        by_category: dict[str, int] = {}
        for category in Category:
            count = len(self.sources_by_category(category))
            if count:
                by_category[category.value] = count
        return {
            "source_count": len(self._sources),
            "processor_count": len(self._processors),
            "detector_count": len(self._detectors),
            "enabled_detectors": len(self.list_enabled_detectors()),
            "sources_by_category": by_category,
        }

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self) -> None:
        """
        Check the registry for structurally invalid state.

        Missing dependencies are NOT structural errors. Only output-key
        collisions are, because they would make source data ambiguous.

        Raises:
            RegistryError: If two processors share an output key, or a processor
                output key shadows a registered source name
        """
        owners: dict[str, str] = {}
        for processor in self._processors.values():
            key = processor.output_key
            if key in self._sources:
                raise RegistryError(
                    f"Processor '{processor.name}' output key '{key}' shadows a registered source"
                )
            if key in owners:
                raise RegistryError(
                    f"Processors '{owners[key]}' and '{processor.name}' share output key '{key}'"
                )
            owners[key] = processor.name

    # ------------------------------------------------------------------
    # Config-driven loading
    # ------------------------------------------------------------------

    def load_plugins(self, plugins_config: dict[str, list[Any]]) -> list[Plugin]:
        """
        Import, instantiate and register plug-ins listed in configuration.

        Args:
            plugins_config: Mapping of "sources" / "processors" / "detectors" to a
                list of entries; each entry is a dotted class path or
                {"class": "pkg.module.Class", "options": {...}}

        Returns:
            The registered plug-in instances, in config order

        Raises:
            PluginError: If an entry is malformed, cannot be imported, or is not a
                subclass of the expected base class
        """
        loaded: list[Plugin] = []
        for kind, base_cls in _PLUGIN_KINDS.items():
            for entry in plugins_config.get(kind) or []:
                class_path, options = _parse_plugin_entry(entry)
                plugin_cls = _import_class(class_path)
                if not (isinstance(plugin_cls, type) and issubclass(plugin_cls, base_cls)):
                    raise PluginError(
                        f"{class_path} is not a subclass of {base_cls.__name__} ({kind})"
                    )
                plugin = plugin_cls(**options)
                self.register(plugin)
                loaded.append(plugin)
                logger.info("Loaded plugin: %s (%s)", plugin.name, class_path)
        return loaded


def _parse_plugin_entry(entry: Any) -> tuple[str, dict[str, Any]]:
    if isinstance(entry, str):
        return entry, {}
    if isinstance(entry, dict) and isinstance(entry.get("class"), str):
        return entry["class"], dict(entry.get("options") or {})
    raise PluginError(f"Invalid plugin entry: {entry!r}")


def _import_class(class_path: str) -> Any:
    module_path, _, class_name = class_path.rpartition(".")
    if not module_path:
        raise PluginError(f"Plugin path must be dotted (module.Class): {class_path!r}")
    try:
        module = importlib.import_module(module_path)
    except ImportError as exc:
        raise PluginError(f"Cannot import plugin module '{module_path}': {exc}") from exc
    try:
        return getattr(module, class_name)
    except AttributeError as exc:
        raise PluginError(f"Module '{module_path}' has no attribute '{class_name}'") from exc
