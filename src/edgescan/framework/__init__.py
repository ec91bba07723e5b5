"""
Framework for modular edge detection and routing.

edgescan uses a plugin architecture where:
- BaseSource: Standardizes data acquisition (prediction-market venues, feeds)
- BaseProcessor: Derives shared data from sources for detectors to consume
- BaseDetector: Standardizes detection logic (price divergence, sentiment, etc.)
- PipelineRegistry: Holds the plug-ins for one pipeline, loaded from config
- SourceCache / SourceFetcher: Per-source TTL cache and bounded, timed fetching
- PipelineRunner: Orchestrates Sources -> Processors -> Detectors -> Aggregator
- EdgeAggregator: Dedups, tiers, ranks and bounds edges
- EdgeRouter: Standardizes output routing (log, calibration log, DynamoDB)
- ConfigLoader: Reads pipeline configuration from YAML + env + SSM

Every run carries a RunLineage:
- run_id: Deterministic ID for one pipeline pass
- config_hash: Reproducibility, same hash means identical thresholds and plug-ins
- pipeline_version: Git SHA for audit trail
"""

from edgescan.framework.base_detector import BaseDetector
from edgescan.framework.base_processor import BaseProcessor
from edgescan.framework.base_source import BaseSource
from edgescan.framework.cache import CacheEntry, CacheStore, InMemoryCacheStore, SourceCache
from edgescan.framework.config_loader import ConfigLoader, PipelineConfig
from edgescan.framework.edge_aggregator import EdgeAggregator, SeverityThresholds
from edgescan.framework.edge_router import EdgeRouter
from edgescan.framework.errors import ConfigError, EdgescanError, PluginError, RegistryError
from edgescan.framework.lineage import RunLineage, generate_edge_id, get_pipeline_version, hash_config
from edgescan.framework.pipeline_runner import PipelineRunner
from edgescan.framework.registry import PipelineRegistry
from edgescan.framework.source_fetcher import FetchOutcome, SourceFetcher

__all__ = [
    "BaseDetector",
    "BaseProcessor",
    "BaseSource",
    "CacheEntry",
    "CacheStore",
    "ConfigError",
    "ConfigLoader",
    "EdgeAggregator",
    "EdgeRouter",
    "EdgescanError",
    "FetchOutcome",
    "InMemoryCacheStore",
    "PipelineConfig",
    "PipelineRegistry",
    "PipelineRunner",
    "PluginError",
    "RegistryError",
    "RunLineage",
    "SeverityThresholds",
    "SourceCache",
    "SourceFetcher",
    "generate_edge_id",
    "get_pipeline_version",
    "hash_config",
]
