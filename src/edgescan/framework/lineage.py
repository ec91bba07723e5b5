"""
Run lineage for edgescan.

Every RunResult carries a RunLineage containing:
- run_id: Deterministic ID for one pipeline pass (version + start time)
- config_hash: Reproducibility, same hash means identical thresholds and plug-in set
- pipeline_version: Git SHA for audit trail

Every routed edge carries an edge_id derived from the market and signal, so the
same signal can be followed across runs in the calibration log.
"""

import hashlib
import json
import os
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any


@dataclass
class RunLineage:
    """Attached to RunStats and to every calibration log line."""

    run_id: str  # sha256(version+started_at)[:16]
    started_at: str  # ISO timestamp of run start
    config_hash: str  # sha256(config), reproducibility
    pipeline_version: str  # Git SHA or "dev", from env var PIPELINE_VERSION

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for JSON serialization."""
        return asdict(self)


def _short_hash(*parts: str) -> str:
    combined = ":".join(parts)
    return hashlib.sha256(combined.encode("utf-8")).hexdigest()[:16]


def generate_run_id(started_at: str, pipeline_version: str) -> str:
    """
    Generate a deterministic run ID.

    Args:
        started_at: ISO timestamp of the run start
        pipeline_version: Pipeline version string

    Returns:
        16-character hex string (sha256[:16])
    """
    return _short_hash(pipeline_version, started_at)


def generate_edge_id(platform: str, market_id: str, direction: str, signal_type: str) -> str:
    """
    Generate a deterministic edge ID.

    Same market + direction + signal type always produces the same ID, so a
    signal that persists over several runs keeps its identity.

    Returns:
        16-character hex string (sha256[:16])
    """
    return _short_hash(platform, market_id, direction, signal_type)


def hash_config(config: dict[str, Any]) -> str:
    """
    Hash a configuration dict for reproducibility tracking.

    Args:
        config: Configuration dict (e.g., {"aggregator": {"critical": 0.15}})

    Returns:
        64-character hex string (full sha256)
    """
    # Sort keys for deterministic serialization
    json_str = json.dumps(config, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(json_str.encode("utf-8")).hexdigest()


def get_pipeline_version() -> str:
    """
    Get the pipeline version from environment or default to 'dev'.

    In CI/CD, set PIPELINE_VERSION to git commit SHA.
    """
    return os.getenv("PIPELINE_VERSION", "dev")


def build_run_lineage(started_at: float, config_hash: str) -> RunLineage:
    """Build the lineage record for a run starting at the given epoch seconds."""
    started_iso = (
        datetime.fromtimestamp(started_at, tz=timezone.utc).isoformat().replace("+00:00", "Z")
    )
    version = get_pipeline_version()
    return RunLineage(
        run_id=generate_run_id(started_iso, version),
        started_at=started_iso,
        config_hash=config_hash,
        pipeline_version=version,
    )
