# ============================================================================
# SYSTEM METADATA TESTS
# ============================================================================
# EPOCH: 1 - DYNAMIC SCHEMA MIGRATION
# STATUS: Tests - _sys_objects / _sys_attributes synchronizer
# PURPOSE: Verify upserts and stale row removal
# CREATED: 17 OCT 2026
# ============================================================================
"""
System Metadata Tests

Run with:
    pytest tests/test_metadata_repo.py -v
"""

import asyncio

import pytest

from repositories.metadata_repo import SystemMetadataRepository

SCHEMA = "app_0a1b2c"


@pytest.fixture
def repo(pool_manager):
    return SystemMetadataRepository(pool_manager)


def _params_for(fake_db, fragment):
    return [fake_db.params[i] for i, s in enumerate(fake_db.statements) if fragment in s]


class TestSync:

    def test_creates_catalog_tables(self, repo, fake_db, product_entity):
        asyncio.run(repo.sync(SCHEMA, [product_entity]))
        assert fake_db.executed('CREATE TABLE IF NOT EXISTS "app_0a1b2c"."_sys_objects"')
        attributes = fake_db.executed('CREATE TABLE IF NOT EXISTS "app_0a1b2c"."_sys_attributes"')[0]
        assert 'REFERENCES "app_0a1b2c"."_sys_objects" (id) ON DELETE CASCADE' in attributes

    def test_upserts_objects_and_attributes(self, repo, fake_db, product_entity, order_entity):
        asyncio.run(repo.sync(SCHEMA, [product_entity, order_entity]))

        objects = _params_for(fake_db, 'INSERT INTO "app_0a1b2c"."_sys_objects"')
        assert [p["table_name"] for p in objects] == ["cat_product", "doc_order"]
        assert objects[0]["kind"] == "catalog"

        attributes = _params_for(fake_db, 'INSERT INTO "app_0a1b2c"."_sys_attributes"')
        assert [p["column_name"] for p in attributes] == [
            "attr_name", "attr_price", "attr_qty", "attr_item",
        ]
        item = attributes[-1]
        assert item["object_id"] == "order"
        assert item["target_object_id"] == "product"
        assert all("ON CONFLICT (id) DO UPDATE" in s for s in fake_db.executed("INSERT INTO"))

    def test_keeps_stale_rows_by_default(self, repo, fake_db, product_entity):
        asyncio.run(repo.sync(SCHEMA, [product_entity]))
        assert not fake_db.executed("DELETE FROM")

    def test_remove_missing_deletes_attributes_then_objects(self, repo, fake_db, product_entity):
        asyncio.run(repo.sync(SCHEMA, [product_entity], remove_missing=True))

        deletes = fake_db.executed("DELETE FROM")
        assert deletes == [
            'DELETE FROM "app_0a1b2c"."_sys_attributes" WHERE id <> ALL(%s)',
            'DELETE FROM "app_0a1b2c"."_sys_objects" WHERE id <> ALL(%s)',
        ]
        assert _params_for(fake_db, "DELETE FROM")[0] == (["name", "price"],)
        assert _params_for(fake_db, "DELETE FROM")[1] == (["product"],)

    def test_runs_in_callers_transaction(self, repo, fake_db, fake_pool, product_entity):
        async def run():
            conn = await fake_pool.getconn()
            await repo.sync(SCHEMA, [product_entity], conn=conn)

        asyncio.run(run())
        assert "BEGIN" not in fake_db.statements

    def test_own_transaction_when_no_connection(self, repo, fake_db, product_entity):
        asyncio.run(repo.sync(SCHEMA, [product_entity]))
        assert fake_db.statements[0] == "BEGIN"
        assert fake_db.statements[-1] == "COMMIT"
