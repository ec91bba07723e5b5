"""
Unit tests for run lineage and edge ID tracking.

Verifies that:
1. Run IDs and edge IDs are generated deterministically
2. Configuration hashes are reproducible
3. RunLineage holds all required fields and serializes to JSON
4. The pipeline version comes from PIPELINE_VERSION
"""

import json
import os
from unittest.mock import patch

import pytest

from edgescan.framework.lineage import (
    RunLineage,
    build_run_lineage,
    generate_edge_id,
    generate_run_id,
    get_pipeline_version,
    hash_config,
)


class TestRunIdGeneration:
    """Test run ID generation."""

    def test_run_id_deterministic(self):
        """Same inputs always produce same run ID."""
        rid1 = generate_run_id("2025-02-05T10:30:00Z", "a3f8c9e")
        rid2 = generate_run_id("2025-02-05T10:30:00Z", "a3f8c9e")

        assert rid1 == rid2
        assert len(rid1) == 16  # First 16 chars of sha256

    def test_run_id_different_inputs(self):
        """Different start times or versions produce different run IDs."""
        base = generate_run_id("2025-02-05T10:30:00Z", "a3f8c9e")

        assert base != generate_run_id("2025-02-05T10:35:00Z", "a3f8c9e")
        assert base != generate_run_id("2025-02-05T10:30:00Z", "dev")

    def test_run_id_format(self):
        """Run ID is lowercase hex string."""
        rid = generate_run_id("2025-02-05T10:30:00Z", "dev")

        assert all(c in "0123456789abcdef" for c in rid)


class TestEdgeIdGeneration:
    """Test edge ID generation."""

    def test_edge_id_stable_across_runs(self):
        eid1 = generate_edge_id("kalshi", "KXFED-25DEC", "YES", "cross-platform")
        eid2 = generate_edge_id("kalshi", "KXFED-25DEC", "YES", "cross-platform")

        assert eid1 == eid2
        assert len(eid1) == 16

    def test_edge_id_changes_with_direction_and_signal(self):
        base = generate_edge_id("kalshi", "KXFED-25DEC", "YES", "cross-platform")

        assert base != generate_edge_id("kalshi", "KXFED-25DEC", "NO", "cross-platform")
        assert base != generate_edge_id("kalshi", "KXFED-25DEC", "YES", "escalation")
        assert base != generate_edge_id("polymarket", "KXFED-25DEC", "YES", "cross-platform")


class TestConfigHashing:
    """Test configuration hashing for reproducibility."""

    def test_config_hash_deterministic(self):
        """Same config dict always produces same hash."""
        config = {"critical": 0.15, "max_results": 50, "enabled": True}

        assert hash_config(config) == hash_config(config)

    def test_config_hash_key_order_independent(self):
        """Config hash independent of dict key order."""
        config_a = {"critical": 0.15, "watchlist": 0.04}
        config_b = {"watchlist": 0.04, "critical": 0.15}

        assert hash_config(config_a) == hash_config(config_b)

    def test_config_hash_different_values(self):
        """Different config values produce different hashes."""
        assert hash_config({"critical": 0.15}) != hash_config({"critical": 0.20})

    def test_config_hash_format(self):
        """Config hash is full SHA256 (64 hex chars)."""
        hash_val = hash_config({"key": "value"})

        assert len(hash_val) == 64
        assert all(c in "0123456789abcdef" for c in hash_val)


class TestRunLineage:
    """Test RunLineage dataclass."""

    def test_to_dict_and_json(self):
        lineage = RunLineage(
            run_id="a3f8c9e2b1d45f67",
            started_at="2025-02-05T10:30:00Z",
            config_hash="abc123def456",
            pipeline_version="a3f8c9e2b",
        )

        parsed = json.loads(json.dumps(lineage.to_dict()))

        assert parsed == {
            "run_id": "a3f8c9e2b1d45f67",
            "started_at": "2025-02-05T10:30:00Z",
            "config_hash": "abc123def456",
            "pipeline_version": "a3f8c9e2b",
        }

    def test_build_run_lineage(self):
        with patch.dict(os.environ, {"PIPELINE_VERSION": "sha123"}):
            lineage = build_run_lineage(1738751400.0, "cfg")

        assert lineage.started_at == "2025-02-05T10:30:00Z"
        assert lineage.pipeline_version == "sha123"
        assert lineage.config_hash == "cfg"
        assert lineage.run_id == generate_run_id("2025-02-05T10:30:00Z", "sha123")


class TestPipelineVersion:
    """Test pipeline version retrieval."""

    def test_pipeline_version_from_env(self):
        """Get pipeline version from PIPELINE_VERSION env var."""
        with patch.dict(os.environ, {"PIPELINE_VERSION": "abc123def456"}):
            assert get_pipeline_version() == "abc123def456"

    def test_pipeline_version_default(self, monkeypatch):
        """Default to 'dev' if PIPELINE_VERSION not set."""
        monkeypatch.delenv("PIPELINE_VERSION", raising=False)

        assert get_pipeline_version() == "dev"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
