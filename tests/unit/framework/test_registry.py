"""
Unit tests for PipelineRegistry.

Tests cover:
- registration is last-write-wins and order-independent
- per-kind validation on register (TTL, min_edge)
- validate() rejects output-key collisions only
- load_plugins() from dotted class paths
"""

import pytest

from edgescan.framework.base_detector import BaseDetector
from edgescan.framework.base_processor import BaseProcessor
from edgescan.framework.base_source import BaseSource
from edgescan.framework.errors import PluginError, RegistryError
from edgescan.framework.registry import PipelineRegistry
from edgescan.framework.types import Category


class StubSource(BaseSource):
    name = "stub_source"
    category = Category.MACRO
    ttl_seconds = 60

    def __init__(self, name: str = "stub_source", ttl_seconds: float = 60) -> None:
        self.name = name
        self.ttl_seconds = ttl_seconds

    def fetch(self):
        return []


class StubProcessor(BaseProcessor):
    name = "stub_processor"

    def __init__(self, name: str = "stub_processor", output_key=None) -> None:
        self.name = name
        self._output_key = output_key

    def process(self, inputs_by_name):
        return None


class StubDetector(BaseDetector):
    name = "stub_detector"
    required_source_names = ("missing_source",)

    def __init__(self, name: str = "stub_detector", min_edge: float = 0.03) -> None:
        self.name = name
        self.min_edge = min_edge

    def detect(self, source_data, markets):
        return []


class TestRegistration:
    def setup_method(self) -> None:
        self.registry = PipelineRegistry()

    def test_register_dispatches_on_kind(self) -> None:
        self.registry.register(StubSource())
        self.registry.register(StubProcessor())
        self.registry.register(StubDetector())

        assert self.registry.get_source("stub_source") is not None
        assert self.registry.get_processor("stub_processor") is not None
        assert self.registry.get_detector("stub_detector") is not None

    def test_register_rejects_unknown_type(self) -> None:
        with pytest.raises(TypeError):
            self.registry.register(object())

    def test_last_write_wins(self) -> None:
        first = StubSource(ttl_seconds=60)
        second = StubSource(ttl_seconds=90)
        self.registry.register_source(first)
        self.registry.register_source(second)

        assert self.registry.get_source("stub_source") is second
        assert len(self.registry.list_sources()) == 1

    def test_detector_may_reference_unregistered_source(self) -> None:
        self.registry.register_detector(StubDetector())
        self.registry.validate()  # missing dependency is not structural

    @pytest.mark.parametrize("ttl", [0, -1])
    def test_source_ttl_must_be_positive(self, ttl: float) -> None:
        with pytest.raises(ValueError):
            self.registry.register_source(StubSource(ttl_seconds=ttl))

    @pytest.mark.parametrize("min_edge", [0.0, 1.0])
    def test_detector_min_edge_bounds(self, min_edge: float) -> None:
        with pytest.raises(ValueError):
            self.registry.register_detector(StubDetector(min_edge=min_edge))

    def test_unregister(self) -> None:
        self.registry.register(StubSource())
        assert self.registry.unregister("stub_source") is True
        assert self.registry.unregister("stub_source") is False

    def test_disabled_detector_excluded_from_enabled_list(self) -> None:
        detector = StubDetector()
        detector.enabled = False
        self.registry.register(detector)
        self.registry.register(StubDetector(name="other"))

        assert [d.name for d in self.registry.list_enabled_detectors()] == ["other"]

    def test_stats(self) -> None:
        self.registry.register(StubSource("a"))
        self.registry.register(StubSource("b"))
        self.registry.register(StubDetector())

        stats = self.registry.stats()
        assert stats["source_count"] == 2
        assert stats["detector_count"] == 1
        assert stats["sources_by_category"] == {"macro": 2}
        assert len(self.registry.sources_by_category(Category.MACRO)) == 2


class TestValidate:
    def setup_method(self) -> None:
        self.registry = PipelineRegistry()

    def test_shared_output_key_rejected(self) -> None:
        self.registry.register(StubProcessor("p1", output_key="joined"))
        self.registry.register(StubProcessor("p2", output_key="joined"))

        with pytest.raises(RegistryError, match="share output key"):
            self.registry.validate()

    def test_output_key_shadowing_source_rejected(self) -> None:
        self.registry.register(StubSource("kalshi"))
        self.registry.register(StubProcessor("p1", output_key="kalshi"))

        with pytest.raises(RegistryError, match="shadows"):
            self.registry.validate()


class TestLoadPlugins:
    def setup_method(self) -> None:
        self.registry = PipelineRegistry()

    def test_loads_dotted_paths_and_options(self) -> None:
        loaded = self.registry.load_plugins(
            {
                "sources": [
                    {
                        "class": "edgescan.sources.polymarket_source.PolymarketSource",
                        "options": {"min_liquidity": 1000},
                    }
                ],
                "processors": ["edgescan.processors.market_index.MarketIndexProcessor"],
                "detectors": ["edgescan.detectors.cross_platform.CrossPlatformDetector"],
            }
        )

        assert [p.name for p in loaded] == ["polymarket", "market_index", "cross_platform"]
        assert self.registry.get_source("polymarket").min_liquidity == 1000

    def test_wrong_base_class_rejected(self) -> None:
        with pytest.raises(PluginError, match="not a subclass"):
            self.registry.load_plugins(
                {"sources": ["edgescan.detectors.cross_platform.CrossPlatformDetector"]}
            )

    @pytest.mark.parametrize(
        "entry",
        [
            "NoDots",
            "edgescan.does_not_exist.Thing",
            "edgescan.framework.registry.NoSuchClass",
            {"options": {}},
            42,
        ],
    )
    def test_bad_entries_raise_plugin_error(self, entry) -> None:
        with pytest.raises(PluginError):
            self.registry.load_plugins({"detectors": [entry]})
