"""
Edge routing and output sink management.

EdgeRouter takes a RunResult and writes its edges to:
1. The log: one summary line per run, one line per edge
2. A calibration log (JSON lines) for later hit-rate analysis
3. DynamoDB (optional): hot edges with a 24h TTL, keyed by edge_id

Every routed record carries the run lineage and a deterministic edge_id so the
same signal can be followed across runs.
"""

import json
import logging
import os
import time
from decimal import Decimal
from typing import Any, Optional

import boto3

from edgescan.framework.lineage import generate_edge_id
from edgescan.framework.types import Edge, RunResult

logger = logging.getLogger(__name__)

HOT_EDGE_TTL_SECONDS = 24 * 60 * 60


class EdgeRouter:
    """
    Routes pipeline output to its sinks.

    Sink failures are logged and never raised: a broken disk or table must not
    stop the next run.
    """

    def __init__(
        self,
        calibration_log_path: Optional[str] = None,
        dynamodb_table: Optional[str] = None,
        region: str = "us-west-2",
    ):
        """
        Initialize the edge router.

        Args:
            calibration_log_path: JSONL file to append routed edges to (disabled if None)
            dynamodb_table: DynamoDB table for hot edges (disabled if None)
            region: AWS region for DynamoDB
        """
        self.calibration_log_path = calibration_log_path
        self.dynamodb_table = dynamodb_table
        self.region = region
        self._table = None

    def route(self, result: RunResult) -> int:
        """
        Route one run's edges to every configured sink.

        Args:
            result: Output of PipelineRunner.run()

        Returns:
            Number of records built for routing (0 for a skipped run)
        """
        if result.skipped:
            logger.info("Run skipped, nothing to route")
            return 0

        stats = result.stats
        logger.info(
            "Run summary | run_id=%s | edges=%d | severity=%s | errors=%d | time=%.0fms",
            stats.run_id,
            len(result.edges),
            stats.edges_by_severity,
            len(result.errors),
            stats.total_time_ms,
        )
        for error in result.errors:
            logger.warning("Run error | stage=%s | source=%s | error=%s", error.stage, error.source, error.error)

        records = [self._build_record(edge, result) for edge in result.edges]
        for record in records:
            logger.info(
                "Edge | %s | %s %s:%s | edge=%.3f | conf=%.2f | %s",
                record["urgency"],
                record["direction"],
                record["platform"],
                record["market_id"],
                record["edge"],
                record["confidence"],
                record["reason"],
            )

        if records and self.calibration_log_path:
            self._write_calibration_log(records)
        if records and self.dynamodb_table:
            self._write_dynamodb(records)
        return len(records)

    def _build_record(self, edge: Edge, result: RunResult) -> dict[str, Any]:
        stats = result.stats
        return {
            "edge_id": generate_edge_id(
                edge.market.platform, edge.market.id, edge.direction.value, edge.signal.type
            ),
            "run_id": stats.run_id,
            "config_hash": stats.config_hash,
            "pipeline_version": stats.pipeline_version,
            "routed_at": time.time(),
            "platform": edge.market.platform,
            "market_id": edge.market.id,
            "title": edge.market.title,
            "category": edge.market.category.value,
            "market_price": edge.market.price,
            "direction": edge.direction.value,
            "edge": edge.edge,
            "confidence": edge.confidence,
            "urgency": edge.urgency.value,
            "ml_score": edge.ml_score,
            "reason": edge.reason,
            "signal": edge.signal.to_dict(),
        }

    def _write_calibration_log(self, records: list[dict[str, Any]]) -> None:
        try:
            directory = os.path.dirname(self.calibration_log_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(self.calibration_log_path, "a") as f:
                for record in records:
                    f.write(json.dumps(record, default=str) + "\n")
        except OSError as exc:
            logger.error(
                "Failed to write calibration log | path=%s | error=%s", self.calibration_log_path, exc
            )
            return
        logger.debug("Appended %d edges to %s", len(records), self.calibration_log_path)

    def _write_dynamodb(self, records: list[dict[str, Any]]) -> None:
        """
        Write hot edges to DynamoDB.

        Key structure:
          - PK: edge_id
          - TTL attribute: expires_at (24 hours)
        """
        expires_at = int(time.time()) + HOT_EDGE_TTL_SECONDS
        try:
            table = self._get_table()
            with table.batch_writer(overwrite_by_pkeys=["edge_id"]) as batch:
                for record in records:
                    # DynamoDB rejects float; round-trip through JSON into Decimal
                    item = json.loads(json.dumps(record, default=str), parse_float=Decimal)
                    item["expires_at"] = expires_at
                    batch.put_item(Item=item)
        except Exception as exc:
            logger.error(
                "Failed to write hot edges to DynamoDB | table=%s | error=%s", self.dynamodb_table, exc
            )
            return
        logger.debug("Wrote %d edges to DynamoDB table %s", len(records), self.dynamodb_table)

    def _get_table(self):
        if self._table is None:
            self._table = boto3.resource("dynamodb", region_name=self.region).Table(self.dynamodb_table)
        return self._table
