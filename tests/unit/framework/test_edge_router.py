"""
Unit tests for EdgeRouter.

Tests cover:
- records carry run lineage and a deterministic edge_id
- calibration log is appended as JSON lines
- DynamoDB writes use Decimal values and a TTL
- sink failures are logged, never raised
"""

import json
from decimal import Decimal
from unittest.mock import MagicMock, patch

from edgescan.framework.edge_router import HOT_EDGE_TTL_SECONDS, EdgeRouter
from edgescan.framework.lineage import generate_edge_id
from edgescan.framework.types import PipelineError, RunResult, RunStats

from factories import build_edge, build_market


def build_result(edges=None, errors=None, skipped=False) -> RunResult:
    stats = RunStats(run_id="a3f8c9e2b1d45f67", started_at=1738751400.0, config_hash="cfg", pipeline_version="sha")
    return RunResult(edges=edges if edges is not None else [], errors=errors or [], stats=stats, skipped=skipped)


class TestEdgeRouter:
    def test_skipped_run_routes_nothing(self, tmp_path) -> None:
        path = tmp_path / "calibration.jsonl"
        router = EdgeRouter(calibration_log_path=str(path))

        assert router.route(build_result([build_edge()], skipped=True)) == 0
        assert not path.exists()

    def test_calibration_log_appends_records(self, tmp_path) -> None:
        path = tmp_path / "nested" / "calibration.jsonl"
        router = EdgeRouter(calibration_log_path=str(path))
        edges = [build_edge(build_market("A")), build_edge(build_market("B"))]

        assert router.route(build_result(edges)) == 2
        router.route(build_result(edges[:1]))

        lines = [json.loads(line) for line in path.read_text().splitlines()]
        assert [line["market_id"] for line in lines] == ["A", "B", "A"]
        first = lines[0]
        assert first["run_id"] == "a3f8c9e2b1d45f67"
        assert first["config_hash"] == "cfg"
        assert first["pipeline_version"] == "sha"
        assert first["edge_id"] == generate_edge_id("kalshi", "A", "YES", "cross-platform")
        assert first["signal"]["type"] == "cross-platform"

    def test_calibration_log_failure_is_logged(self, tmp_path, caplog) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("")
        router = EdgeRouter(calibration_log_path=str(blocker / "calibration.jsonl"))

        assert router.route(build_result([build_edge()])) == 1
        assert "Failed to write calibration log" in caplog.text

    def test_errors_are_logged(self, caplog) -> None:
        error = PipelineError("kalshi", "HTTP 503", 1.0, "source")

        with caplog.at_level("WARNING"):
            EdgeRouter().route(build_result(errors=[error]))

        assert "source=kalshi" in caplog.text

    def test_summary_logs_severity_counts(self, caplog) -> None:
        result = build_result([build_edge()])
        result.stats.edges_by_severity = {"critical": 0, "actionable": 1, "watchlist": 0}

        with caplog.at_level("INFO"):
            EdgeRouter().route(result)

        assert "severity={'critical': 0, 'actionable': 1, 'watchlist': 0}" in caplog.text

    def test_dynamodb_write(self) -> None:
        table = MagicMock()
        batch = table.batch_writer.return_value.__enter__.return_value
        router = EdgeRouter(dynamodb_table="edgescan-hot-edges")

        with patch("edgescan.framework.edge_router.boto3.resource") as resource:
            resource.return_value.Table.return_value = table
            with patch("edgescan.framework.edge_router.time.time", return_value=1000.0):
                router.route(build_result([build_edge(edge=0.12)]))

        resource.assert_called_once_with("dynamodb", region_name="us-west-2")
        table.batch_writer.assert_called_once_with(overwrite_by_pkeys=["edge_id"])
        item = batch.put_item.call_args.kwargs["Item"]
        assert item["edge"] == Decimal("0.12")
        assert item["expires_at"] == 1000 + HOT_EDGE_TTL_SECONDS

    def test_dynamodb_failure_is_logged(self, caplog) -> None:
        router = EdgeRouter(dynamodb_table="edgescan-hot-edges")

        with patch("edgescan.framework.edge_router.boto3.resource", side_effect=RuntimeError("no creds")):
            assert router.route(build_result([build_edge()])) == 1

        assert "Failed to write hot edges" in caplog.text
