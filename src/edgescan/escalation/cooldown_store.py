"""
Per-market cooldown state for the escalation controller.

A market that was analyzed at time T is not eligible again before T + cooldown.
The in-memory store covers a single process; DynamoCooldownStore shares the state
between instances so two schedulers do not pay to analyze the same market.
"""

import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional

import boto3

logger = logging.getLogger(__name__)


class CooldownStore(ABC):
    """Last-analyzed timestamps keyed by market id."""

    @abstractmethod
    def get_last_analyzed(self, market_id: str) -> Optional[float]:
        pass

    @abstractmethod
    def mark_analyzed(self, market_id: str, timestamp: float) -> None:
        pass

    @abstractmethod
    def clear(self) -> None:
        pass


class InMemoryCooldownStore(CooldownStore):
    def __init__(self) -> None:
        self._last_analyzed: dict[str, float] = {}

    def get_last_analyzed(self, market_id: str) -> Optional[float]:
        return self._last_analyzed.get(market_id)

    def mark_analyzed(self, market_id: str, timestamp: float) -> None:
        self._last_analyzed[market_id] = timestamp

    def clear(self) -> None:
        self._last_analyzed.clear()


class DynamoCooldownStore(CooldownStore):
    """
    DynamoDB-backed cooldown store.

    Key structure:
      - PK: market_id (string)
      - last_analyzed_at: epoch seconds
      - expires_at: TTL attribute, last_analyzed_at + ttl_seconds

    Store errors are logged and never raised: a failed read counts as "never
    analyzed" and a failed write is best-effort.
    """

    def __init__(self, table_name: str, region: str, ttl_seconds: float = 24 * 60 * 60, table=None) -> None:
        """
        Initialize the store.

        Args:
            table_name: DynamoDB table with partition key market_id
            region: AWS region
            ttl_seconds: How long items live before DynamoDB expires them
            table: Pre-built boto3 Table resource (tests); built lazily if None
        """
        self._table_name = table_name
        self._region = region
        self._ttl_seconds = ttl_seconds
        self._table = table

    def get_last_analyzed(self, market_id: str) -> Optional[float]:
        try:
            response = self._get_table().get_item(Key={"market_id": market_id})
        except Exception as exc:
            logger.warning("Cooldown lookup failed (non-fatal) | market=%s | error=%s", market_id, exc)
            return None
        item = response.get("Item")
        if not item or "last_analyzed_at" not in item:
            return None
        return float(item["last_analyzed_at"])

    def mark_analyzed(self, market_id: str, timestamp: float) -> None:
        try:
            self._get_table().put_item(
                Item={
                    "market_id": market_id,
                    "last_analyzed_at": Decimal(str(timestamp)),
                    "expires_at": int(timestamp + self._ttl_seconds),
                }
            )
        except Exception as exc:
            logger.warning("Cooldown write failed (non-fatal) | market=%s | error=%s", market_id, exc)

    def clear(self) -> None:
        """Delete every item. Intended for tests and manual resets, not production use."""
        try:
            table = self._get_table()
            scan_kwargs: dict = {"ProjectionExpression": "market_id"}
            with table.batch_writer() as batch:
                while True:
                    page = table.scan(**scan_kwargs)
                    for item in page.get("Items", []):
                        batch.delete_item(Key={"market_id": item["market_id"]})
                    if "LastEvaluatedKey" not in page:
                        break
                    scan_kwargs["ExclusiveStartKey"] = page["LastEvaluatedKey"]
        except Exception as exc:
            logger.warning("Cooldown clear failed (non-fatal) | table=%s | error=%s", self._table_name, exc)

    def _get_table(self):
        if self._table is None:
            self._table = boto3.resource("dynamodb", region_name=self._region).Table(self._table_name)
        return self._table


def build_cooldown_store(kind: str, table_name: str, region: str) -> CooldownStore:
    """Construct the store named in EscalationSettings.cooldown_store."""
    if kind == "dynamodb":
        logger.info("Using DynamoDB cooldown store | table=%s | region=%s", table_name, region)
        return DynamoCooldownStore(table_name, region)
    return InMemoryCooldownStore()
