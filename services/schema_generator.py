# ============================================================================
# SCHEMA GENERATOR
# ============================================================================
# EPOCH: 1 - DYNAMIC SCHEMA MIGRATION
# STATUS: Service - Provision schemas and tables from an entity model
# PURPOSE: Full-schema generation plus per-table DDL primitives for the migrator
# CREATED: 17 OCT 2026
# ============================================================================
"""
Schema Generator

Provisions a brand-new schema from an entity model:

    create schema -> create every table -> add every FK -> sync metadata
                  -> (optionally) record the initial migration

All of it runs in one transaction. Each table and each FK gets its own
savepoint, so one bad entity is reported in `errors` without undoing the
rest of the batch. FKs come after all tables so entities may reference
each other in any order.

create_entity_table / add_foreign_key are reused by the migrator for
ADD_TABLE and ADD_FK changes. add_foreign_key replaces a constraint of the
same name, so replaying it is harmless.
"""

import logging
from typing import List, Optional

from psycopg.rows import dict_row

from core.contracts import ChangeType
from core.logging import log_context
from core.models.entity import EntityDefinition, FieldDefinition, find_entity
from core.models.migration import SchemaDiff, SchemaGenerationResult
from core.models.snapshot import SchemaSnapshot
from core.schema.ddl_utils import (
    ColumnBuilder,
    ConstraintBuilder,
    SchemaUtils,
    TableBuilder,
    TriggerBuilder,
    map_data_type,
)
from core.schema.diff import calculate_schema_diff
from core.schema.naming import (
    SafeIdentifier,
    build_fk_constraint_name,
    generate_column_name,
    generate_table_name,
)
from core.schema.snapshot import build_schema_snapshot
from infrastructure.base_repository import AsyncBaseRepository
from repositories.metadata_repo import SystemMetadataRepository
from repositories.migration_repo import MigrationManager

logger = logging.getLogger(__name__)

INITIAL_MIGRATION_DESCRIPTION = "initial_schema"


class SchemaGenerator(AsyncBaseRepository):
    """
    Creates schemas, entity tables and FK constraints.

    Used by:
    - SchemaSyncService to provision a new application schema
    - SchemaMigrator for ADD_TABLE / ADD_FK changes
    """

    def __init__(
        self,
        db,
        metadata_repo: Optional[SystemMetadataRepository] = None,
        migration_manager: Optional[MigrationManager] = None,
    ):
        """
        Args:
            db: PoolManager
            metadata_repo: Catalog synchronizer (built from db when omitted)
            migration_manager: History repository (built from db when omitted)
        """
        super().__init__(db)
        self.metadata_repo = metadata_repo or SystemMetadataRepository(db)
        self.migration_manager = migration_manager or MigrationManager(db)

    @staticmethod
    def map_data_type(data_type: str) -> str:
        return map_data_type(data_type)

    # =========================================================================
    # SCHEMA
    # =========================================================================

    async def create_schema(self, schema_name: str, conn=None) -> None:
        """
        CREATE SCHEMA IF NOT EXISTS.

        Raises:
            ValidationError: Invalid name (nothing is sent to the database)
        """
        schema = self._validate_schema_name(schema_name)
        await self._execute([SchemaUtils.create_schema(schema)], conn)
        logger.info(f"Schema {schema} created")

    async def drop_schema(self, schema_name: str, conn=None) -> None:
        """
        DROP SCHEMA IF EXISTS ... CASCADE.

        Destroys every table in the schema; callers gate this behind an
        explicit confirmation.
        """
        schema = self._validate_schema_name(schema_name)
        await self._execute([SchemaUtils.drop_schema(schema)], conn)
        logger.warning(f"Schema {schema} dropped")

    async def schema_exists(self, schema_name: str) -> bool:
        async with self.db.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(SchemaUtils.schema_exists(), (schema_name,))
            row = await result.fetchone()
        return bool(row and row["exists"])

    async def _execute(self, stmts, conn=None) -> None:
        """Run statements on the caller's connection, or in one transaction of our own."""
        if conn is None:
            async with self.db.connection() as own_conn:
                for stmt in stmts:
                    await own_conn.execute(stmt)
        else:
            for stmt in stmts:
                await conn.execute(stmt)

    # =========================================================================
    # TABLES
    # =========================================================================

    async def create_entity_table(self, schema_name: str, entity: EntityDefinition, conn=None) -> str:
        """
        Create the entity's table with its updated_at trigger.

        Returns:
            Table name
        """
        schema = self._validate_schema_name(schema_name)
        table = SafeIdentifier.of(generate_table_name(entity.id, entity.kind))
        columns = [
            (
                SafeIdentifier.of(generate_column_name(field.id)),
                map_data_type(field.data_type),
                field.is_required,
            )
            for field in entity.fields
        ]

        logger.info(f"Creating table {schema}.{table} (entity: {entity.codename})")
        stmts = [TableBuilder.create_entity_table(schema, table, columns)]
        stmts.extend(TriggerBuilder.updated_at(schema, table))

        await self._execute(stmts, conn)
        return table

    async def ensure_entity_columns(self, schema_name: str, entity: EntityDefinition, conn=None) -> None:
        """
        Bring an already existing table up to the entity's columns.

        CREATE TABLE IF NOT EXISTS leaves an existing table as it is; this
        adds missing columns and NOT NULL where the field is required.
        """
        schema = self._validate_schema_name(schema_name)
        table = SafeIdentifier.of(generate_table_name(entity.id, entity.kind))
        stmts = []
        for field in entity.fields:
            column = SafeIdentifier.of(generate_column_name(field.id))
            stmts.append(ColumnBuilder.add_column(schema, table, column, map_data_type(field.data_type)))
            if field.is_required:
                stmts.append(ColumnBuilder.set_not_null(schema, table, column))
        await self._execute(stmts, conn)

    async def add_foreign_key(
        self,
        schema_name: str,
        entity: EntityDefinition,
        field: FieldDefinition,
        entities: List[EntityDefinition],
        conn=None,
    ) -> bool:
        """
        FK from the field's column to the target entity's id.

        A target missing from `entities` is logged and skipped.

        Returns:
            True if a constraint was added
        """
        if not field.target_entity_id:
            return False

        target = find_entity(entities, field.target_entity_id)
        if target is None:
            logger.warning(
                f"Target entity {field.target_entity_id} not found for REF field {field.id}; "
                "skipping foreign key"
            )
            return False

        schema = self._validate_schema_name(schema_name)
        table = SafeIdentifier.of(generate_table_name(entity.id, entity.kind))
        target_table = SafeIdentifier.of(generate_table_name(target.id, target.kind))
        column = SafeIdentifier.of(generate_column_name(field.id))
        constraint = SafeIdentifier.of(build_fk_constraint_name(table, column))

        logger.info(f"Adding FK {constraint}: {table}.{column} -> {target_table}.id")
        # Re-adding an existing constraint replaces it
        await self._execute(
            [
                ConstraintBuilder.drop_constraint(schema, table, constraint),
                ConstraintBuilder.add_foreign_key(schema, table, constraint, column, target_table),
            ],
            conn,
        )
        return True

    # =========================================================================
    # FULL SCHEMA
    # =========================================================================

    async def generate_full_schema(
        self,
        schema_name: str,
        entities: List[EntityDefinition],
        record_migration: bool = False,
        migration_description: Optional[str] = None,
    ) -> SchemaGenerationResult:
        """
        Provision schema, tables, FKs and metadata in one transaction.

        Per-table and per-FK errors are collected; success is True only
        when none occurred. The initial migration (snapshot_before=None) is
        recorded only for a clean run.

        Raises:
            ValidationError: Invalid schema name (before any DDL)
        """
        schema = self._validate_schema_name(schema_name)
        result = SchemaGenerationResult(schema_name=schema)

        with log_context(schema_name=schema, operation="generate_full_schema"):
            try:
                async with self.db.connection() as conn:
                    await self.create_schema(schema, conn)
                    await conn.execute(TriggerBuilder.updated_at_function(schema))

                    for entity in entities:
                        try:
                            async with conn.transaction():
                                await self.create_entity_table(schema, entity, conn)
                            result.tables_created.append(entity.codename)
                        except Exception as e:
                            logger.error(f"Failed to create table for {entity.codename}: {e}")
                            result.errors.append(f"Table {entity.codename}: {e}")

                    for entity in entities:
                        for field in entity.reference_fields():
                            try:
                                async with conn.transaction():
                                    await self.add_foreign_key(schema, entity, field, entities, conn)
                            except Exception as e:
                                logger.error(f"Failed to add FK for {entity.codename}.{field.codename}: {e}")
                                result.errors.append(f"Foreign key {entity.codename}.{field.codename}: {e}")

                    await self.metadata_repo.sync(schema, entities, remove_missing=True, conn=conn)

                    if record_migration and not result.errors:
                        result.migration_id = await self._record_initial_migration(
                            schema, entities, migration_description, conn
                        )
            except Exception as e:
                logger.error(f"Schema generation failed for {schema}: {e}")
                result.errors.append(f"Schema generation failed: {e}")
                result.migration_id = None

        result.success = not result.errors
        logger.info(
            f"Schema generation for {schema}: {len(result.tables_created)} table(s), "
            f"{len(result.errors)} error(s)"
        )
        return result

    async def _record_initial_migration(
        self,
        schema: SafeIdentifier,
        entities: List[EntityDefinition],
        description: Optional[str],
        conn,
    ) -> str:
        snapshot = self.generate_snapshot(entities)
        bootstrap = calculate_schema_diff(None, entities)
        diff = SchemaDiff(
            has_changes=True,
            additive=[c for c in bootstrap.additive if c.type == ChangeType.ADD_TABLE],
            summary=f"Initial schema creation with {len(entities)} table(s)",
        )
        name = self.migration_manager.generate_migration_name(
            description or INITIAL_MIGRATION_DESCRIPTION
        )
        return await self.migration_manager.record_migration(
            schema, name, None, snapshot, diff, conn=conn
        )

    def generate_snapshot(self, entities: List[EntityDefinition]) -> SchemaSnapshot:
        return build_schema_snapshot(entities)


__all__ = ["SchemaGenerator", "INITIAL_MIGRATION_DESCRIPTION"]
