# ============================================================================
# SCHEMA SYNC SERVICE
# ============================================================================
# EPOCH: 1 - DYNAMIC SCHEMA MIGRATION
# STATUS: Service - Bring an application's schema in line with its model
# PURPOSE: Single entry point: provision on first sync, migrate afterwards
# CREATED: 17 OCT 2026
# ============================================================================
"""
Schema Sync Service

Entry point used by calling services (an HTTP layer, a job, a script):

    schema missing            -> generate_full_schema (records initial migration)
    no changes                -> metadata refresh only
    destructive, unconfirmed  -> PENDING_CONFIRMATION with the diff
    otherwise                 -> apply_all_changes (recorded)

The schema name is derived from the application id; callers never pass
raw schema names through this service.
"""

import logging
from typing import List, Optional

from core.contracts import SyncStatus
from core.logging import log_context
from core.models.entity import EntityDefinition
from core.models.migration import SchemaDiff, SchemaSyncResult
from core.schema.naming import generate_schema_name
from repositories.metadata_repo import SystemMetadataRepository
from repositories.migration_repo import MigrationManager
from services.schema_generator import INITIAL_MIGRATION_DESCRIPTION, SchemaGenerator
from services.schema_migrator import SchemaMigrator

logger = logging.getLogger(__name__)


class SchemaSyncService:
    """
    Orchestrates generator and migrator for one application at a time.
    """

    def __init__(
        self,
        db,
        generator: Optional[SchemaGenerator] = None,
        migrator: Optional[SchemaMigrator] = None,
        migration_manager: Optional[MigrationManager] = None,
        metadata_repo: Optional[SystemMetadataRepository] = None,
    ):
        """
        Args:
            db: PoolManager shared by every component
        """
        self.db = db
        self.migration_manager = migration_manager or MigrationManager(db)
        self.metadata_repo = metadata_repo or SystemMetadataRepository(db)
        self.generator = generator or SchemaGenerator(
            db, self.metadata_repo, self.migration_manager
        )
        self.migrator = migrator or SchemaMigrator(
            db, self.generator, self.migration_manager, self.metadata_repo
        )

    async def get_diff(self, application_id: str, entities: List[EntityDefinition]) -> Optional[SchemaDiff]:
        """
        Preview what sync() would change.

        Returns:
            SchemaDiff, or None when the schema does not exist yet
        """
        schema_name = generate_schema_name(application_id)
        if not await self.generator.schema_exists(schema_name):
            return None
        return await self.migrator.calculate_diff(schema_name, entities)

    async def sync(
        self,
        application_id: str,
        entities: List[EntityDefinition],
        confirmed_destructive: bool = False,
    ) -> SchemaSyncResult:
        """
        Provision or migrate the application's schema.

        Args:
            application_id: Owning application (schema name is derived from it)
            entities: Current entity model
            confirmed_destructive: Caller reviewed and accepted data loss

        Returns:
            SchemaSyncResult; status ERROR carries the collected errors
        """
        schema_name = generate_schema_name(application_id)

        with log_context(application_id=application_id, schema_name=schema_name, operation="sync"):
            if not await self.generator.schema_exists(schema_name):
                logger.info(f"Schema {schema_name} does not exist; provisioning")
                generated = await self.generator.generate_full_schema(
                    schema_name,
                    entities,
                    record_migration=True,
                    migration_description=INITIAL_MIGRATION_DESCRIPTION,
                )
                if not generated.success:
                    return SchemaSyncResult(
                        status=SyncStatus.ERROR,
                        schema_name=schema_name,
                        tables_created=generated.tables_created,
                        errors=generated.errors,
                        message="Schema creation failed",
                    )
                return SchemaSyncResult(
                    status=SyncStatus.CREATED,
                    schema_name=schema_name,
                    tables_created=generated.tables_created,
                    migration_id=generated.migration_id,
                    message=f"Schema created with {len(generated.tables_created)} table(s)",
                )

            diff = await self.migrator.calculate_diff(schema_name, entities)

            if not diff.has_changes:
                await self.metadata_repo.sync(schema_name, entities)
                return SchemaSyncResult(
                    status=SyncStatus.NO_CHANGES,
                    schema_name=schema_name,
                    diff=diff,
                    message="Schema is already up to date",
                )

            if diff.destructive and not confirmed_destructive:
                logger.warning(f"Sync of {schema_name} needs confirmation: {diff.summary}")
                return SchemaSyncResult(
                    status=SyncStatus.PENDING_CONFIRMATION,
                    schema_name=schema_name,
                    diff=diff,
                    message="Destructive changes detected. Set confirmed_destructive=True to proceed.",
                )

            migrated = await self.migrator.apply_all_changes(
                schema_name,
                diff,
                entities,
                confirmed_destructive=confirmed_destructive,
                record_migration=True,
            )
            if not migrated.success:
                return SchemaSyncResult(
                    status=SyncStatus.ERROR,
                    schema_name=schema_name,
                    diff=diff,
                    errors=migrated.errors,
                    message="Schema migration failed",
                )

            return SchemaSyncResult(
                status=SyncStatus.MIGRATED,
                schema_name=schema_name,
                diff=diff,
                changes_applied=migrated.changes_applied,
                migration_id=migrated.migration_id,
                message="Schema migration applied successfully",
            )


__all__ = ["SchemaSyncService"]
