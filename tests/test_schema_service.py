# ============================================================================
# SCHEMA SYNC SERVICE TESTS
# ============================================================================
# EPOCH: 1 - DYNAMIC SCHEMA MIGRATION
# STATUS: Tests - Provision-or-migrate entry point
# PURPOSE: Verify SyncStatus decisions with mocked generator and migrator
# CREATED: 17 OCT 2026
# ============================================================================
"""
SchemaSyncService Tests

Unit tests with mocked generator, migrator and metadata repository.
No database, no DDL.

Run with:
    pytest tests/test_schema_service.py -v
"""

import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock

from core.contracts import ChangeType, SyncStatus
from core.models.migration import (
    MigrationResult,
    SchemaChange,
    SchemaDiff,
    SchemaGenerationResult,
)

from services.schema_service import SchemaSyncService

APP_ID = "0A1B2C3D-0000-4000-8000-00000000ABCD"
SCHEMA = "app_0a1b2c3d00004000800000000000abcd"


# ============================================================================
# HELPERS
# ============================================================================

def _make_service(schema_exists=True, diff=None, generated=None, migrated=None):
    generator = MagicMock()
    generator.schema_exists = AsyncMock(return_value=schema_exists)
    generator.generate_full_schema = AsyncMock(return_value=generated)

    migrator = MagicMock()
    migrator.calculate_diff = AsyncMock(return_value=diff)
    migrator.apply_all_changes = AsyncMock(return_value=migrated)

    metadata_repo = MagicMock()
    metadata_repo.sync = AsyncMock()

    service = SchemaSyncService(
        db=MagicMock(),
        generator=generator,
        migrator=migrator,
        migration_manager=MagicMock(),
        metadata_repo=metadata_repo,
    )
    return service, generator, migrator, metadata_repo


def _additive_diff():
    return SchemaDiff(
        has_changes=True,
        additive=[SchemaChange(type=ChangeType.ADD_COLUMN, description='Add column "sku"')],
        summary="1 additive change(s)",
    )


def _destructive_diff():
    return SchemaDiff(
        has_changes=True,
        destructive=[SchemaChange(
            type=ChangeType.DROP_TABLE,
            is_destructive=True,
            description='Drop table "Order" (DATA WILL BE LOST)',
        )],
        summary="1 DESTRUCTIVE change(s)",
    )


# ============================================================================
# NEW SCHEMA
# ============================================================================

class TestProvisioning:

    def test_missing_schema_is_created(self, product_entity):
        generated = SchemaGenerationResult(
            success=True, schema_name=SCHEMA, tables_created=["Product"], migration_id="m-1",
        )
        service, generator, migrator, _ = _make_service(schema_exists=False, generated=generated)

        result = asyncio.run(service.sync(APP_ID, [product_entity]))

        assert result.status == SyncStatus.CREATED
        assert result.success
        assert result.schema_name == SCHEMA
        assert result.tables_created == ["Product"]
        assert result.migration_id == "m-1"
        generator.generate_full_schema.assert_awaited_once()
        kwargs = generator.generate_full_schema.call_args.kwargs
        assert kwargs["record_migration"] is True
        assert kwargs["migration_description"] == "initial_schema"
        migrator.calculate_diff.assert_not_called()

    def test_creation_failure_is_error(self, product_entity):
        generated = SchemaGenerationResult(
            success=False, schema_name=SCHEMA, errors=["Table Product: boom"],
        )
        service, _, _, _ = _make_service(schema_exists=False, generated=generated)

        result = asyncio.run(service.sync(APP_ID, [product_entity]))

        assert result.status == SyncStatus.ERROR
        assert not result.success
        assert result.errors == ["Table Product: boom"]
        assert result.message == "Schema creation failed"


# ============================================================================
# EXISTING SCHEMA
# ============================================================================

class TestMigration:

    def test_no_changes_refreshes_metadata(self, product_entity):
        service, _, migrator, metadata_repo = _make_service(diff=SchemaDiff(summary="No changes"))

        result = asyncio.run(service.sync(APP_ID, [product_entity]))

        assert result.status == SyncStatus.NO_CHANGES
        metadata_repo.sync.assert_awaited_once_with(SCHEMA, [product_entity])
        migrator.apply_all_changes.assert_not_called()

    def test_destructive_needs_confirmation(self, product_entity):
        diff = _destructive_diff()
        service, _, migrator, _ = _make_service(diff=diff)

        result = asyncio.run(service.sync(APP_ID, [product_entity]))

        assert result.status == SyncStatus.PENDING_CONFIRMATION
        assert result.success
        assert result.diff == diff
        migrator.apply_all_changes.assert_not_called()

    def test_confirmed_destructive_is_applied(self, product_entity):
        migrated = MigrationResult(success=True, changes_applied=1, migration_id="m-2")
        service, _, migrator, _ = _make_service(diff=_destructive_diff(), migrated=migrated)

        result = asyncio.run(service.sync(APP_ID, [product_entity], confirmed_destructive=True))

        assert result.status == SyncStatus.MIGRATED
        assert result.changes_applied == 1
        assert result.migration_id == "m-2"
        kwargs = migrator.apply_all_changes.call_args.kwargs
        assert kwargs["confirmed_destructive"] is True
        assert kwargs["record_migration"] is True

    def test_additive_is_applied_without_confirmation(self, product_entity):
        migrated = MigrationResult(success=True, changes_applied=1, migration_id="m-3")
        service, _, migrator, _ = _make_service(diff=_additive_diff(), migrated=migrated)

        result = asyncio.run(service.sync(APP_ID, [product_entity]))

        assert result.status == SyncStatus.MIGRATED
        migrator.apply_all_changes.assert_awaited_once()

    def test_migration_failure_is_error(self, product_entity):
        migrated = MigrationResult(success=False, errors=['Add column "sku": disk full'])
        service, _, _, _ = _make_service(diff=_additive_diff(), migrated=migrated)

        result = asyncio.run(service.sync(APP_ID, [product_entity]))

        assert result.status == SyncStatus.ERROR
        assert result.errors == ['Add column "sku": disk full']
        assert result.message == "Schema migration failed"


class TestGetDiff:

    def test_missing_schema_has_no_diff(self, product_entity):
        service, _, migrator, _ = _make_service(schema_exists=False)
        assert asyncio.run(service.get_diff(APP_ID, [product_entity])) is None
        migrator.calculate_diff.assert_not_called()

    def test_existing_schema_returns_diff(self, product_entity):
        diff = _additive_diff()
        service, _, migrator, _ = _make_service(diff=diff)
        assert asyncio.run(service.get_diff(APP_ID, [product_entity])) == diff
        migrator.calculate_diff.assert_awaited_once_with(SCHEMA, [product_entity])
