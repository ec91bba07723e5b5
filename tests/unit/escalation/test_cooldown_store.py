"""
Unit tests for cooldown stores.
"""

from decimal import Decimal
from unittest.mock import MagicMock, patch

from edgescan.escalation.cooldown_store import (
    DynamoCooldownStore,
    InMemoryCooldownStore,
    build_cooldown_store,
)


class TestInMemoryCooldownStore:
    def test_mark_and_get(self) -> None:
        store = InMemoryCooldownStore()
        assert store.get_last_analyzed("KXFED") is None

        store.mark_analyzed("KXFED", 1000.0)
        store.mark_analyzed("KXFED", 1200.0)

        assert store.get_last_analyzed("KXFED") == 1200.0

    def test_clear(self) -> None:
        store = InMemoryCooldownStore()
        store.mark_analyzed("KXFED", 1000.0)

        store.clear()

        assert store.get_last_analyzed("KXFED") is None


class TestDynamoCooldownStore:
    def setup_method(self) -> None:
        self.table = MagicMock()
        self.store = DynamoCooldownStore("edgescan-cooldowns", "us-west-2", ttl_seconds=3600, table=self.table)

    def test_get_last_analyzed(self) -> None:
        self.table.get_item.return_value = {"Item": {"market_id": "KXFED", "last_analyzed_at": Decimal("1000.5")}}

        assert self.store.get_last_analyzed("KXFED") == 1000.5
        self.table.get_item.assert_called_once_with(Key={"market_id": "KXFED"})

    def test_get_missing_item(self) -> None:
        self.table.get_item.return_value = {}

        assert self.store.get_last_analyzed("KXFED") is None

    def test_get_failure_counts_as_never_analyzed(self) -> None:
        self.table.get_item.side_effect = RuntimeError("throttled")

        assert self.store.get_last_analyzed("KXFED") is None

    def test_mark_analyzed_writes_ttl(self) -> None:
        self.store.mark_analyzed("KXFED", 1000.25)

        self.table.put_item.assert_called_once_with(
            Item={"market_id": "KXFED", "last_analyzed_at": Decimal("1000.25"), "expires_at": 4600}
        )

    def test_mark_failure_is_swallowed(self, caplog) -> None:
        self.table.put_item.side_effect = RuntimeError("throttled")

        self.store.mark_analyzed("KXFED", 1000.0)

        assert "Cooldown write failed" in caplog.text

    def test_clear_pages_through_scan(self) -> None:
        self.table.scan.side_effect = [
            {"Items": [{"market_id": "A"}], "LastEvaluatedKey": {"market_id": "A"}},
            {"Items": [{"market_id": "B"}]},
        ]
        batch = self.table.batch_writer.return_value.__enter__.return_value

        self.store.clear()

        assert [c.kwargs["Key"]["market_id"] for c in batch.delete_item.call_args_list] == ["A", "B"]
        assert self.table.scan.call_args_list[1].kwargs["ExclusiveStartKey"] == {"market_id": "A"}


class TestBuildCooldownStore:
    def test_memory(self) -> None:
        assert isinstance(build_cooldown_store("memory", "t", "us-west-2"), InMemoryCooldownStore)

    def test_dynamodb_builds_table_lazily(self) -> None:
        with patch("edgescan.escalation.cooldown_store.boto3.resource") as resource:
            store = build_cooldown_store("dynamodb", "edgescan-cooldowns", "eu-west-1")
            resource.assert_not_called()

            resource.return_value.Table.return_value.get_item.return_value = {}
            store.get_last_analyzed("KXFED")

        resource.assert_called_once_with("dynamodb", region_name="eu-west-1")
        resource.return_value.Table.assert_called_once_with("edgescan-cooldowns")
