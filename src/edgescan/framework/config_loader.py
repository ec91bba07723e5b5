"""
Configuration loading from YAML, environment variables and AWS SSM Parameter Store.

Reads:
1. config/pipeline.yaml: pipeline cadence, aggregator thresholds, escalation
   budgets and the plug-in list
2. Environment variables: per-deployment overrides (ESCALATION_*, etc.)
3. SSM parameters: runtime overrides under an optional prefix (highest priority)

Configuration is read once at startup; nothing re-reads it mid-run.
"""

import logging
import os
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Optional

import boto3
import yaml

from edgescan.framework.errors import ConfigError
from edgescan.framework.lineage import hash_config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineSettings:
    interval_seconds: float = 300.0
    max_concurrent_fetches: int = 8
    source_timeout_seconds: float = 30.0
    detector_timeout_seconds: Optional[float] = 120.0
    calibration_log_path: Optional[str] = None
    edges_table: Optional[str] = None  # DynamoDB hot-edge table, disabled if unset
    aws_region: str = "us-west-2"


@dataclass(frozen=True)
class AggregatorSettings:
    critical: float = 0.15
    actionable: float = 0.08
    watchlist: float = 0.04
    max_results: int = 50


@dataclass(frozen=True)
class EscalationSettings:
    enabled: bool = False
    max_markets_per_run: int = 10
    min_market_volume: float = 5000.0
    cooldown_minutes: float = 30.0
    max_budget_per_analysis: float = 0.10
    max_budget_per_run: float = 1.00
    escalation_edge_threshold: float = 0.08
    min_edge: float = 0.05
    timeout_seconds: float = 60.0
    candidate_pool: str = "edges"  # "edges" or "universe"
    initial_model: str = "gpt-4o-mini"
    deep_model: str = "gpt-4o"
    initial_max_turns: int = 5
    deep_max_turns: int = 8
    cooldown_store: str = "memory"  # "memory" or "dynamodb"
    dynamodb_table: str = "edgescan-cooldowns"

    @property
    def cooldown_seconds(self) -> float:
        return self.cooldown_minutes * 60.0

    @property
    def deep_timeout_seconds(self) -> float:
        return self.timeout_seconds * 2


@dataclass(frozen=True)
class PipelineConfig:
    pipeline: PipelineSettings = field(default_factory=PipelineSettings)
    aggregator: AggregatorSettings = field(default_factory=AggregatorSettings)
    escalation: EscalationSettings = field(default_factory=EscalationSettings)
    plugins: dict[str, list[Any]] = field(default_factory=dict)

    def config_hash(self) -> str:
        return hash_config(asdict(self))


# (section, key) -> (env var, parser)
_ENV_OVERRIDES: dict[tuple[str, str], tuple[str, Callable[[str], Any]]] = {
    ("pipeline", "interval_seconds"): ("PIPELINE_INTERVAL_SECONDS", float),
    ("pipeline", "calibration_log_path"): ("CALIBRATION_LOG_PATH", str),
    ("pipeline", "edges_table"): ("EDGESCAN_EDGES_TABLE", str),
    ("pipeline", "aws_region"): ("AWS_REGION", str),
    ("aggregator", "watchlist"): ("MIN_EDGE_THRESHOLD", float),
    ("escalation", "enabled"): ("ESCALATION_ENABLED", lambda v: v.strip().lower() in ("1", "true", "yes")),
    ("escalation", "max_markets_per_run"): ("ESCALATION_MAX_MARKETS", int),
    ("escalation", "min_market_volume"): ("ESCALATION_MIN_VOLUME", float),
    ("escalation", "cooldown_minutes"): ("ESCALATION_COOLDOWN_MINUTES", float),
    ("escalation", "max_budget_per_analysis"): ("ESCALATION_MAX_BUDGET_PER_ANALYSIS", float),
    ("escalation", "max_budget_per_run"): ("ESCALATION_MAX_BUDGET_PER_RUN", float),
    ("escalation", "escalation_edge_threshold"): ("ESCALATION_THRESHOLD", float),
    ("escalation", "timeout_seconds"): ("ESCALATION_TIMEOUT_SECONDS", float),
    ("escalation", "cooldown_store"): ("ESCALATION_COOLDOWN_STORE", str),
}

_SECTIONS: dict[str, type] = {
    "pipeline": PipelineSettings,
    "aggregator": AggregatorSettings,
    "escalation": EscalationSettings,
}


class ConfigLoader:
    """
    Loads and merges configuration from multiple sources.

    Configuration hierarchy (highest to lowest priority):
    1. SSM Parameter Store (runtime overrides, only if ssm_prefix is set)
    2. Environment variables
    3. YAML configuration (config/pipeline.yaml)
    4. Dataclass defaults
    """

    DEFAULT_CONFIG_PATH = "config/pipeline.yaml"

    def __init__(self, config_path: str = DEFAULT_CONFIG_PATH):
        """
        Initialize the config loader.

        Args:
            config_path: Path to pipeline.yaml (relative to project root)
        """
        self.config_path = config_path
        self._config: Optional[PipelineConfig] = None

    def load(self) -> PipelineConfig:
        """
        Load configuration from all sources.

        Returns:
            Merged, validated PipelineConfig

        Raises:
            ConfigError: If the YAML file is missing or malformed, or a value is invalid
        """
        raw = self._read_yaml()
        sections = {name: dict(raw.get(name) or {}) for name in _SECTIONS}

        self._apply_env_overrides(sections)
        ssm_prefix = os.getenv("EDGESCAN_SSM_PREFIX") or raw.get("ssm_prefix")
        if ssm_prefix:
            region = sections["pipeline"].get("aws_region", PipelineSettings.aws_region)
            self._apply_ssm_overrides(sections, ssm_prefix, region)

        config = PipelineConfig(
            pipeline=_build_section(PipelineSettings, sections["pipeline"]),
            aggregator=_build_section(AggregatorSettings, sections["aggregator"]),
            escalation=_build_section(EscalationSettings, sections["escalation"]),
            plugins=dict(raw.get("plugins") or {}),
        )
        validate_config(config)
        self._config = config
        logger.info(
            "Configuration loaded | path=%s | config_hash=%s", self.config_path, config.config_hash()[:12]
        )
        return config

    def get_config(self) -> PipelineConfig:
        """Return the loaded config, loading it on first access."""
        if self._config is None:
            return self.load()
        return self._config

    def get_plugins(self) -> dict[str, list[Any]]:
        """
        Get the configured plug-in lists.

        Returns:
            {"sources": [...], "processors": [...], "detectors": [...]}
        """
        return self.get_config().plugins

    def get_escalation_settings(self) -> EscalationSettings:
        return self.get_config().escalation

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _read_yaml(self) -> dict[str, Any]:
        try:
            with open(self.config_path) as f:
                raw = yaml.safe_load(f)
        except FileNotFoundError as exc:
            raise ConfigError(f"Config file not found: {self.config_path}") from exc
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {self.config_path}: {exc}") from exc
        if raw is None:
            return {}
        if not isinstance(raw, dict):
            raise ConfigError(f"{self.config_path} must contain a mapping at the top level")
        return raw

    def _apply_env_overrides(self, sections: dict[str, dict[str, Any]]) -> None:
        for (section, key), (env_var, parser) in _ENV_OVERRIDES.items():
            value = os.getenv(env_var)
            if value is None or value == "":
                continue
            try:
                sections[section][key] = parser(value)
            except ValueError as exc:
                raise ConfigError(f"Invalid value for {env_var}: {value!r}") from exc
            logger.debug("Env override applied | %s=%s", env_var, value)

    def _apply_ssm_overrides(
        self, sections: dict[str, dict[str, Any]], prefix: str, region: str
    ) -> None:
        """
        Apply SSM parameters named {prefix}/{section}/{key}.

        Values are YAML-parsed so numbers and booleans keep their types. SSM
        failures are logged and ignored: the file and env config still apply.
        """
        prefix = prefix.rstrip("/")
        try:
            ssm = boto3.client("ssm", region_name=region)
            paginator = ssm.get_paginator("get_parameters_by_path")
            pages = paginator.paginate(Path=prefix, Recursive=True, WithDecryption=True)
            parameters = [p for page in pages for p in page.get("Parameters", [])]
        except Exception as exc:
            logger.warning("SSM override lookup failed (non-fatal) | prefix=%s | error=%s", prefix, exc)
            return

        for param in parameters:
            relative = param["Name"][len(prefix):].strip("/")
            section, _, key = relative.partition("/")
            if section not in sections or not key:
                logger.debug("Ignoring SSM parameter outside known sections: %s", param["Name"])
                continue
            sections[section][key] = yaml.safe_load(param["Value"])
            logger.debug("SSM override applied | %s", param["Name"])


def _build_section(cls: type, values: dict[str, Any]) -> Any:
    known = set(cls.__dataclass_fields__)
    unknown = set(values) - known
    if unknown:
        raise ConfigError(f"Unknown {cls.__name__} keys: {sorted(unknown)}")
    try:
        return cls(**values)
    except TypeError as exc:
        raise ConfigError(f"Invalid {cls.__name__}: {exc}") from exc


def validate_config(config: PipelineConfig) -> None:
    """
    Reject values that would make the pipeline misbehave.

    Raises:
        ConfigError: On the first invalid value found
    """
    agg = config.aggregator
    if not 0 < agg.watchlist <= agg.actionable <= agg.critical < 1:
        raise ConfigError(
            "Aggregator thresholds must satisfy 0 < watchlist <= actionable <= critical < 1"
        )
    if agg.max_results <= 0:
        raise ConfigError("aggregator.max_results must be positive")

    pipe = config.pipeline
    if pipe.interval_seconds <= 0 or pipe.source_timeout_seconds <= 0:
        raise ConfigError("pipeline interval and source timeout must be positive")
    if pipe.max_concurrent_fetches <= 0:
        raise ConfigError("pipeline.max_concurrent_fetches must be positive")

    esc = config.escalation
    if esc.max_budget_per_analysis <= 0 or esc.max_budget_per_run <= 0:
        raise ConfigError("escalation budgets must be positive")
    if esc.max_budget_per_analysis > esc.max_budget_per_run:
        raise ConfigError("escalation.max_budget_per_analysis cannot exceed max_budget_per_run")
    if esc.timeout_seconds <= 0 or esc.cooldown_minutes < 0 or esc.max_markets_per_run < 0:
        raise ConfigError("escalation timeout must be positive; cooldown and market cap non-negative")
    if esc.candidate_pool not in ("edges", "universe"):
        raise ConfigError(f"escalation.candidate_pool must be 'edges' or 'universe', got {esc.candidate_pool!r}")
    if esc.cooldown_store not in ("memory", "dynamodb"):
        raise ConfigError(f"escalation.cooldown_store must be 'memory' or 'dynamodb', got {esc.cooldown_store!r}")
