# ============================================================================
# SNAPSHOT TESTS
# ============================================================================
# EPOCH: 1 - DYNAMIC SCHEMA MIGRATION
# STATUS: Tests - Snapshot builder and persisted snapshot loading
# PURPOSE: Verify snapshot contents, versioning and immutability
# CREATED: 17 OCT 2026
# ============================================================================
"""
Snapshot Tests

Run with:
    pytest tests/test_snapshot.py -v
"""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from core.schema.snapshot import (
    CURRENT_SCHEMA_SNAPSHOT_VERSION,
    UnsupportedSnapshotError,
    build_schema_snapshot,
    snapshot_from_dict,
)


FIXED_NOW = datetime(2026, 10, 17, 12, 30, 0, tzinfo=timezone.utc)


class TestBuildSchemaSnapshot:

    def test_contents(self, product_entity, order_entity):
        snapshot = build_schema_snapshot([product_entity, order_entity], now=FIXED_NOW)

        assert snapshot.version == CURRENT_SCHEMA_SNAPSHOT_VERSION
        assert snapshot.generated_at == FIXED_NOW.isoformat()
        assert set(snapshot.entities) == {"product", "order"}

        product = snapshot.entities["product"]
        assert product.kind == "catalog"
        assert product.table_name == "cat_product"
        assert product.fields["price"].column_name == "attr_price"
        assert product.fields["price"].data_type == "NUMBER"
        assert product.fields["price"].is_required is True

        item = snapshot.entities["order"].fields["item"]
        assert item.target_entity_id == "product"

    def test_empty_model(self):
        snapshot = build_schema_snapshot([], now=FIXED_NOW)
        assert snapshot.entities == {}

    def test_snapshot_is_frozen(self, product_entity):
        snapshot = build_schema_snapshot([product_entity])
        with pytest.raises(PydanticValidationError):
            snapshot.version = 99


class TestSnapshotFromDict:

    def test_round_trip_through_json(self, product_entity):
        snapshot = build_schema_snapshot([product_entity], now=FIXED_NOW)
        restored = snapshot_from_dict(snapshot.model_dump(mode="json"))
        assert restored == snapshot

    def test_newer_version_rejected(self, product_entity):
        data = build_schema_snapshot([product_entity]).model_dump(mode="json")
        data["version"] = CURRENT_SCHEMA_SNAPSHOT_VERSION + 1
        with pytest.raises(UnsupportedSnapshotError):
            snapshot_from_dict(data)
