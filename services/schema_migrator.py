# ============================================================================
# SCHEMA MIGRATOR
# ============================================================================
# EPOCH: 1 - DYNAMIC SCHEMA MIGRATION
# STATUS: Service - Apply a SchemaDiff to a live schema
# PURPOSE: Locked, transactional, all-or-nothing DDL application
# CREATED: 17 OCT 2026
# ============================================================================
"""
Schema Migrator

Applies the changes of a SchemaDiff under a per-schema advisory lock, in a
single transaction:

    PENDING -> LOCKED -> IN_TRANSACTION -> COMMITTED   -> UNLOCKED
                                        -> ROLLED_BACK -> UNLOCKED
    PENDING -> REFUSED   (unconfirmed destructive changes, lock held elsewhere,
                          no connection or lock query failed)

The lock is taken on the same pooled connection that then runs the
transaction, so one migration never waits on a second connection. Any
failing change rolls back the whole batch. The lock is released on every
path once taken. Failures are reported in MigrationResult.errors as
"<change description>: <database message>"; nothing is retried.
"""

import logging
from typing import List, Optional, Set

from core.config.defaults import MigrationDefaults, get_defaults
from core.contracts import ChangeType, MigrationState
from core.logging import log_context
from core.models.entity import EntityDefinition, find_entity
from core.models.migration import MigrationResult, SchemaChange, SchemaDiff
from core.models.snapshot import SchemaSnapshot
from core.schema.ddl_utils import (
    ColumnBuilder,
    ConstraintBuilder,
    TableBuilder,
    is_supported_cast,
    map_data_type,
)
from core.schema.diff import calculate_schema_diff
from core.schema.naming import SafeIdentifier, build_fk_constraint_name
from core.schema.snapshot import build_schema_snapshot
from infrastructure.base_repository import (
    MIGRATION_STATE_TRANSITIONS,
    AsyncBaseRepository,
    RepositoryError,
    validate_transition,
)
from repositories.metadata_repo import SystemMetadataRepository
from repositories.migration_repo import MigrationManager
from services.schema_generator import SchemaGenerator

logger = logging.getLogger(__name__)

LOCK_NOT_ACQUIRED_MESSAGE = "Could not acquire advisory lock. Another migration may be in progress."


class MigrationChangeError(Exception):
    """One change failed; aborts the surrounding transaction."""

    def __init__(self, change: SchemaChange, cause: BaseException):
        self.change = change
        self.cause = cause
        super().__init__(f"{change.description}: {cause}")


class SchemaMigrator(AsyncBaseRepository):
    """
    Applies schema diffs.

    Used by:
    - SchemaSyncService for every sync of an existing schema
    """

    def __init__(
        self,
        db,
        generator: Optional[SchemaGenerator] = None,
        migration_manager: Optional[MigrationManager] = None,
        metadata_repo: Optional[SystemMetadataRepository] = None,
        defaults: Optional[MigrationDefaults] = None,
    ):
        super().__init__(db)
        self.defaults = defaults or get_defaults().migration
        self.migration_manager = migration_manager or MigrationManager(db, self.defaults)
        self.metadata_repo = metadata_repo or SystemMetadataRepository(db, self.defaults)
        self.generator = generator or SchemaGenerator(
            db, self.metadata_repo, self.migration_manager
        )

    # =========================================================================
    # DIFF
    # =========================================================================

    async def _latest_snapshot(self, schema_name: str) -> Optional[SchemaSnapshot]:
        latest = await self.migration_manager.get_latest_migration(schema_name)
        return latest.meta.snapshot_after if latest else None

    async def calculate_diff(self, schema_name: str, entities: List[EntityDefinition]) -> SchemaDiff:
        """Diff the entity model against the last recorded snapshot."""
        self._validate_schema_name(schema_name)
        return calculate_schema_diff(await self._latest_snapshot(schema_name), entities)

    # =========================================================================
    # APPLY
    # =========================================================================

    async def apply_additive_changes(
        self,
        schema_name: str,
        diff: SchemaDiff,
        entities: List[EntityDefinition],
    ) -> MigrationResult:
        """
        Apply only diff.additive; destructive changes are ignored.

        Metadata rows for entities/fields no longer in the model are kept,
        since their tables and columns are still there.
        """
        schema = self._validate_schema_name(schema_name)
        with log_context(schema_name=schema, operation="apply_additive_changes"):
            return await self._run(
                schema,
                diff,
                changes=list(diff.additive),
                entities=entities,
                remove_missing=False,
            )

    async def apply_all_changes(
        self,
        schema_name: str,
        diff: SchemaDiff,
        entities: List[EntityDefinition],
        confirmed_destructive: bool = False,
        record_migration: bool = False,
        migration_description: Optional[str] = None,
    ) -> MigrationResult:
        """
        Apply destructive then additive changes.

        Unconfirmed destructive changes are refused before any lock or DDL.
        With record_migration, a history row is written in the same
        transaction when at least one change was applied.
        """
        schema = self._validate_schema_name(schema_name)
        with log_context(schema_name=schema, operation="apply_all_changes"):
            if diff.destructive and not confirmed_destructive:
                result = MigrationResult()
                descriptions = "; ".join(c.description for c in diff.destructive)
                result.errors.append(
                    f"Destructive changes require explicit confirmation. Changes: {descriptions}"
                )
                self._transition(result, MigrationState.REFUSED)
                logger.warning(
                    f"Refused {len(diff.destructive)} unconfirmed destructive change(s) for {schema}"
                )
                return result

            snapshot_before = await self._latest_snapshot(schema)
            return await self._run(
                schema,
                diff,
                changes=diff.all_changes(),
                entities=entities,
                remove_missing=bool(diff.destructive),
                record_migration=record_migration,
                migration_description=migration_description,
                snapshot_before=snapshot_before,
            )

    async def _run(
        self,
        schema: SafeIdentifier,
        diff: SchemaDiff,
        changes: List[SchemaChange],
        entities: List[EntityDefinition],
        remove_missing: bool,
        record_migration: bool = False,
        migration_description: Optional[str] = None,
        snapshot_before: Optional[SchemaSnapshot] = None,
    ) -> MigrationResult:
        """
        Lock, transact, apply, sync, record, unlock.

        The advisory lock and the transaction share one pooled connection.
        """
        result = MigrationResult()
        locks = self.db.locks

        try:
            async with self.db.session() as conn:
                async with locks.schema_lock(conn, schema) as acquired:
                    if not acquired:
                        result.errors.append(LOCK_NOT_ACQUIRED_MESSAGE)
                        self._transition(result, MigrationState.REFUSED)
                        return result

                    self._transition(result, MigrationState.LOCKED)
                    await self._transact(
                        conn, result, schema, diff, changes, entities, remove_missing,
                        record_migration, migration_description, snapshot_before,
                    )
                self._transition(result, MigrationState.UNLOCKED)

        except RepositoryError as e:
            # No connection, or the lock query failed: nothing ran
            if result.state != MigrationState.PENDING:
                raise
            logger.error(f"Advisory lock for {schema} failed: {e}")
            result.errors.append(f"Advisory lock for {schema} failed: {e}")
            self._transition(result, MigrationState.REFUSED)

        return result

    async def _transact(
        self,
        conn,
        result: MigrationResult,
        schema: SafeIdentifier,
        diff: SchemaDiff,
        changes: List[SchemaChange],
        entities: List[EntityDefinition],
        remove_missing: bool,
        record_migration: bool,
        migration_description: Optional[str],
        snapshot_before: Optional[SchemaSnapshot],
    ) -> None:
        """One transaction on the locked connection; failures land in result."""
        try:
            self._transition(result, MigrationState.IN_TRANSACTION)
            async with conn.transaction():
                applied = await self._apply_changes(
                    schema, changes, entities, conn, reconcile=diff.is_bootstrap
                )
                new_snapshot = build_schema_snapshot(entities)

                await self.metadata_repo.sync(
                    schema, entities, remove_missing=remove_missing, conn=conn
                )

                migration_id = None
                if record_migration and applied > 0:
                    name = self.migration_manager.generate_migration_name(
                        migration_description or self.defaults.default_description
                    )
                    with log_context(migration_name=name):
                        migration_id = await self.migration_manager.record_migration(
                            schema, name, snapshot_before, new_snapshot, diff, conn=conn
                        )

            result.success = True
            result.changes_applied = applied
            result.new_snapshot = new_snapshot
            result.migration_id = migration_id
            self._transition(result, MigrationState.COMMITTED)
            logger.info(f"Migration of {schema} committed: {applied} change(s) applied")

        except Exception as e:
            result.success = False
            result.changes_applied = 0
            result.errors.append(str(e))
            self._transition(result, MigrationState.ROLLED_BACK)
            logger.error(f"Migration of {schema} rolled back: {e}")

    async def _apply_changes(
        self,
        schema: SafeIdentifier,
        changes: List[SchemaChange],
        entities: List[EntityDefinition],
        conn,
        reconcile: bool = False,
    ) -> int:
        """
        Apply changes in order, then FKs of tables created on the way.

        With reconcile (no recorded baseline), tables that may already exist
        also get any missing columns.
        """
        applied = 0
        created: Set[str] = set()
        recreated: Set[str] = set()
        dropped = {c.entity_id for c in changes if c.type == ChangeType.DROP_TABLE}
        explicit_fks = {
            (c.entity_id, c.field_id) for c in changes if c.type == ChangeType.ADD_FK
        }

        for change in changes:
            try:
                await self.apply_change(schema, change, entities, conn)
                if reconcile and change.type == ChangeType.ADD_TABLE:
                    entity = self._require_entity(change, entities)
                    await self.generator.ensure_entity_columns(schema, entity, conn)
            except Exception as e:
                raise MigrationChangeError(change, e) from e
            applied += 1
            if change.type == ChangeType.ADD_TABLE:
                created.add(change.entity_id)
                if change.entity_id in dropped:
                    recreated.add(change.entity_id)

        # New tables carry no FKs yet; a recreated table also lost the FKs pointing at it
        for entity in entities:
            for field in entity.reference_fields():
                if (entity.id, field.id) in explicit_fks:
                    continue
                if entity.id not in created and field.target_entity_id not in recreated:
                    continue
                try:
                    await self.generator.add_foreign_key(schema, entity, field, entities, conn)
                except Exception as e:
                    raise MigrationChangeError(
                        SchemaChange(
                            type=ChangeType.ADD_FK,
                            entity_id=entity.id,
                            field_id=field.id,
                            description=f'Add FK on "{field.codename}"',
                        ),
                        e,
                    ) from e

        return applied

    async def apply_change(
        self,
        schema_name: str,
        change: SchemaChange,
        entities: List[EntityDefinition],
        conn,
    ) -> None:
        """
        Emit the DDL for one change on the caller's connection.

        Raises:
            ValueError: Change refers to an unknown entity/field or an
                unsupported type conversion
        """
        schema = self._validate_schema_name(schema_name)
        logger.info(f"Applying {change.type.value}: {change.description}")

        if change.type == ChangeType.ADD_TABLE:
            entity = self._require_entity(change, entities)
            await self.generator.create_entity_table(schema, entity, conn)

        elif change.type == ChangeType.DROP_TABLE:
            table = SafeIdentifier.of(change.table_name)
            await conn.execute(TableBuilder.drop_table(schema, table))

        elif change.type == ChangeType.ADD_COLUMN:
            entity = self._require_entity(change, entities)
            field = entity.get_field(change.field_id)
            if field is None:
                raise ValueError(f"Field {change.field_id} not found in entity {entity.id}")
            table = SafeIdentifier.of(change.table_name)
            column = SafeIdentifier.of(change.column_name)
            await conn.execute(ColumnBuilder.add_column(
                schema, table, column, map_data_type(field.data_type)
            ))
            if field.is_required:
                await conn.execute(ColumnBuilder.set_not_null(schema, table, column))

        elif change.type == ChangeType.DROP_COLUMN:
            await conn.execute(ColumnBuilder.drop_column(
                schema, SafeIdentifier.of(change.table_name), SafeIdentifier.of(change.column_name)
            ))

        elif change.type == ChangeType.ALTER_COLUMN:
            await self._alter_column(schema, change, conn)

        elif change.type == ChangeType.ADD_FK:
            entity = self._require_entity(change, entities)
            field = entity.get_field(change.field_id)
            if field is None:
                raise ValueError(f"Field {change.field_id} not found in entity {entity.id}")
            await self.generator.add_foreign_key(schema, entity, field, entities, conn)

        elif change.type == ChangeType.DROP_FK:
            table = SafeIdentifier.of(change.table_name)
            constraint = SafeIdentifier.of(
                build_fk_constraint_name(change.table_name, change.column_name)
            )
            await conn.execute(ConstraintBuilder.drop_constraint(schema, table, constraint))

        elif change.type == ChangeType.RENAME_TABLE:
            await conn.execute(TableBuilder.rename_table(
                schema, SafeIdentifier.of(change.old_value), SafeIdentifier.of(change.new_value)
            ))

        else:
            raise ValueError(f"Unknown change type: {change.type}")

    async def _alter_column(self, schema: SafeIdentifier, change: SchemaChange, conn) -> None:
        table = SafeIdentifier.of(change.table_name)
        column = SafeIdentifier.of(change.column_name)

        if change.new_value == "required":
            await conn.execute(ColumnBuilder.set_not_null(schema, table, column))
            return
        if change.new_value == "nullable":
            await conn.execute(ColumnBuilder.drop_not_null(schema, table, column))
            return

        from_type = map_data_type(change.old_value)
        to_type = map_data_type(change.new_value)
        if from_type == to_type:
            logger.info(f"{change.column_name}: {change.old_value} -> {change.new_value} keeps {to_type}")
            return
        if not is_supported_cast(from_type, to_type):
            raise ValueError(f"Unsupported type conversion {from_type} -> {to_type}")
        await conn.execute(ColumnBuilder.alter_type(schema, table, column, to_type))

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _require_entity(change: SchemaChange, entities: List[EntityDefinition]) -> EntityDefinition:
        entity = find_entity(entities, change.entity_id)
        if entity is None:
            raise ValueError(f"Entity {change.entity_id} not found in entity model")
        return entity

    @staticmethod
    def _transition(result: MigrationResult, new_state: MigrationState) -> None:
        validate_transition(result.state, new_state, MIGRATION_STATE_TRANSITIONS)
        result.transition(new_state)


__all__ = ["SchemaMigrator", "MigrationChangeError", "LOCK_NOT_ACQUIRED_MESSAGE"]
