# ============================================================================
# MIGRATION HISTORY REPOSITORY
# ============================================================================
# EPOCH: 1 - DYNAMIC SCHEMA MIGRATION
# STATUS: Domain - Append-only migration history per schema
# PURPOSE: Record, list and inspect applied migrations (_sys_migrations)
# CREATED: 17 OCT 2026
# ============================================================================
"""
Migration History Repository

Each managed schema carries its own _sys_migrations table. Rows are
inserted once, inside the same transaction as the DDL they describe, and
never updated or deleted here.

Missing schema or missing table means "no history yet": list/get calls
return empty results instead of raising.
"""

import json
import logging
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Json

from core.config.defaults import MigrationDefaults, get_defaults
from core.contracts import ChangeType
from core.models.migration import (
    MIGRATION_META_VERSION,
    MigrationChangeRecord,
    MigrationList,
    MigrationMeta,
    MigrationRecord,
    RollbackAnalysis,
    SchemaDiff,
)
from core.models.snapshot import SchemaSnapshot
from core.schema.ddl_utils import SchemaUtils
from core.schema.naming import SafeIdentifier
from core.schema.snapshot import ensure_supported_snapshot
from infrastructure.base_repository import AsyncBaseRepository, ValidationError

logger = logging.getLogger(__name__)

_NON_ALNUM_RUN = re.compile(r"[^a-z0-9]+")


def generate_migration_name(
    description: str,
    now: Optional[datetime] = None,
    max_length: int = 50,
) -> str:
    """
    YYYYMMDD_HHMMSS_<sanitized description>.

    Sanitization: lowercase, non-alphanumeric runs become one underscore,
    leading/trailing underscores stripped, cut to max_length characters.
    """
    now = now or datetime.now(timezone.utc)
    sanitized = _NON_ALNUM_RUN.sub("_", (description or "").lower()).strip("_")
    return f"{now:%Y%m%d}_{now:%H%M%S}_{sanitized[:max_length]}"


class MigrationManager(AsyncBaseRepository):
    """Repository for the per-schema migration history."""

    def __init__(self, db, defaults: Optional[MigrationDefaults] = None):
        """
        Args:
            db: PoolManager
            defaults: Table name and paging defaults
        """
        super().__init__(db)
        self.defaults = defaults or get_defaults().migration

    def generate_migration_name(self, description: str, now: Optional[datetime] = None) -> str:
        return generate_migration_name(
            description, now=now, max_length=self.defaults.max_description_length
        )

    def _table(self, schema: SafeIdentifier) -> sql.Identifier:
        return sql.Identifier(schema, self.defaults.migrations_table)

    # =========================================================================
    # DDL
    # =========================================================================

    async def ensure_table(self, schema_name: str, conn) -> None:
        """Create _sys_migrations if missing (inside the caller's transaction)."""
        schema = self._validate_schema_name(schema_name)
        await conn.execute(
            sql.SQL("""
                CREATE TABLE IF NOT EXISTS {} (
                    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                    name TEXT NOT NULL UNIQUE,
                    applied_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                    meta JSONB NOT NULL DEFAULT '{{}}'::jsonb
                )
            """).format(self._table(schema))
        )

    async def _table_exists(self, conn, schema: SafeIdentifier) -> bool:
        result = await conn.execute(
            SchemaUtils.table_exists(),
            (str(schema), self.defaults.migrations_table),
        )
        row = await result.fetchone()
        if not row:
            return False
        return bool(row["exists"] if hasattr(row, "keys") else row[0])

    # =========================================================================
    # WRITE
    # =========================================================================

    async def record_migration(
        self,
        schema_name: str,
        name: str,
        snapshot_before: Optional[SchemaSnapshot],
        snapshot_after: SchemaSnapshot,
        diff: SchemaDiff,
        conn=None,
    ) -> str:
        """
        Insert one history row.

        Pass the transaction's connection so the record commits or rolls
        back together with the DDL it describes.

        Returns:
            Generated migration id
        """
        schema = self._validate_schema_name(schema_name)
        changes = [MigrationChangeRecord.from_change(c) for c in diff.all_changes()]
        meta = MigrationMeta(
            format_version=MIGRATION_META_VERSION,
            snapshot_before=snapshot_before,
            snapshot_after=snapshot_after,
            changes=changes,
            has_destructive=bool(diff.destructive),
            summary=diff.summary,
        )

        if conn is None:
            async with self.db.connection() as own_conn:
                return await self._insert(own_conn, schema, name, meta)
        return await self._insert(conn, schema, name, meta)

    async def _insert(self, conn, schema: SafeIdentifier, name: str, meta: MigrationMeta) -> str:
        with self._error_context("record migration", name):
            await self.ensure_table(schema, conn)
            result = await conn.execute(
                sql.SQL("""
                    INSERT INTO {} (name, meta)
                    VALUES (%(name)s, %(meta)s)
                    RETURNING id
                """).format(self._table(schema)),
                {"name": name, "meta": Json(meta.model_dump(mode="json"))},
            )
            row = await result.fetchone()
            migration_id = str(row["id"] if hasattr(row, "keys") else row[0])

        logger.info(
            f"Recorded migration {name} ({migration_id}) in {schema}: {meta.summary}"
        )
        return migration_id

    # =========================================================================
    # READ
    # =========================================================================

    async def list_migrations(
        self,
        schema_name: str,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> MigrationList:
        """
        Page through history, newest first.

        Returns an empty list when the schema or table does not exist.
        """
        schema = self._validate_schema_name(schema_name)
        limit = self.defaults.list_limit if limit is None else limit

        async with self.db.connection() as conn:
            conn.row_factory = dict_row
            if not await self._table_exists(conn, schema):
                return MigrationList(migrations=[], total=0)

            with self._error_context("list migrations", schema_name):
                result = await conn.execute(
                    sql.SQL("SELECT count(*) AS total FROM {}").format(self._table(schema))
                )
                total = (await result.fetchone())["total"]

                result = await conn.execute(
                    sql.SQL("""
                        SELECT id, name, applied_at, meta FROM {}
                        ORDER BY applied_at DESC, name DESC
                        LIMIT %s OFFSET %s
                    """).format(self._table(schema)),
                    (limit, offset),
                )
                rows = await result.fetchall()

        return MigrationList(
            migrations=[self._row_to_record(row) for row in rows],
            total=int(total),
        )

    async def get_migration(self, schema_name: str, migration_id: str) -> Optional[MigrationRecord]:
        """Single record by id; None when missing (table or row)."""
        schema = self._validate_schema_name(schema_name)
        try:
            key = uuid.UUID(str(migration_id))
        except ValueError:
            return None

        async with self.db.connection() as conn:
            conn.row_factory = dict_row
            if not await self._table_exists(conn, schema):
                return None
            with self._error_context("get migration", str(migration_id)):
                result = await conn.execute(
                    sql.SQL(
                        "SELECT id, name, applied_at, meta FROM {} WHERE id = %s"
                    ).format(self._table(schema)),
                    (key,),
                )
                row = await result.fetchone()

        return self._row_to_record(row) if row else None

    async def get_latest_migration(self, schema_name: str) -> Optional[MigrationRecord]:
        """Most recently applied migration, or None."""
        page = await self.list_migrations(schema_name, limit=1)
        return page.migrations[0] if page.migrations else None

    # =========================================================================
    # ROLLBACK ANALYSIS
    # =========================================================================

    async def analyze_rollback_path(self, schema_name: str, migration_id: str) -> RollbackAnalysis:
        """
        Check whether the schema could be reverted to a past migration.

        Analysis only: nothing is executed. DROP_TABLE, DROP_COLUMN and
        destructive ALTER_COLUMN changes applied after the target block
        rollback because their data is gone.
        """
        target = await self.get_migration(schema_name, migration_id)
        if target is None:
            return RollbackAnalysis(can_rollback=False, blockers=["Target migration not found"])

        page = await self.list_migrations(schema_name, limit=1000)
        later = [m for m in page.migrations if m.applied_at > target.applied_at]
        if not later:
            return RollbackAnalysis(
                can_rollback=False,
                blockers=["No migrations to rollback - target is the latest migration"],
            )

        analysis = RollbackAnalysis()
        for migration in later:
            for change in migration.meta.changes:
                if change.type in (ChangeType.DROP_TABLE, ChangeType.DROP_COLUMN):
                    analysis.can_rollback = False
                    analysis.blockers.append(
                        f'Migration "{migration.name}" contains {change.type.value}: {change.description}'
                    )
                elif change.type == ChangeType.ALTER_COLUMN and change.is_destructive:
                    analysis.can_rollback = False
                    analysis.blockers.append(
                        f'Migration "{migration.name}" contains destructive column alteration: '
                        f"{change.description}"
                    )

                inverse = _inverse_change(change)
                if inverse is not None:
                    analysis.rollback_changes.append(inverse)

            if any(c.type == ChangeType.ADD_TABLE for c in migration.meta.changes):
                analysis.warnings.append(
                    f'Rolling back "{migration.name}" will drop tables and lose all data in them'
                )

        return analysis

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _row_to_record(row: Dict[str, Any]) -> MigrationRecord:
        """Convert database row to MigrationRecord, checking meta versions."""
        raw_meta = row["meta"]
        if isinstance(raw_meta, (str, bytes)):
            raw_meta = json.loads(raw_meta)
        meta = MigrationMeta.model_validate(raw_meta or {})
        if meta.format_version > MIGRATION_META_VERSION:
            raise ValidationError(
                f"Migration {row['name']} has meta format {meta.format_version}, "
                f"newer than supported {MIGRATION_META_VERSION}",
                field="meta.format_version",
                value=meta.format_version,
            )
        for snapshot in (meta.snapshot_before, meta.snapshot_after):
            if snapshot is not None:
                ensure_supported_snapshot(snapshot)

        return MigrationRecord(
            id=str(row["id"]),
            name=row["name"],
            applied_at=row["applied_at"],
            meta=meta,
        )


def _inverse_change(change: MigrationChangeRecord) -> Optional[MigrationChangeRecord]:
    """Change that would undo `change`, or None when it can't be undone."""
    if change.type == ChangeType.ADD_TABLE:
        return change.model_copy(update={
            "type": ChangeType.DROP_TABLE,
            "is_destructive": True,
            "description": f'Drop table "{change.entity_codename}"',
        })
    if change.type == ChangeType.ADD_COLUMN:
        return change.model_copy(update={
            "type": ChangeType.DROP_COLUMN,
            "is_destructive": True,
            "description": f'Drop column "{change.column_name}" from "{change.table_name}"',
        })
    if change.type == ChangeType.ADD_FK:
        return change.model_copy(update={
            "type": ChangeType.DROP_FK,
            "old_value": change.new_value,
            "new_value": None,
            "is_destructive": True,
            "description": f'Drop FK on "{change.column_name}" in "{change.table_name}"',
        })
    if change.type == ChangeType.ALTER_COLUMN:
        # Only relaxing NOT NULL is safe to revert
        return change.model_copy(update={
            "old_value": change.new_value,
            "new_value": change.old_value,
            "is_destructive": change.old_value != "nullable",
            "description": (
                f'Revert column "{change.column_name}" in "{change.table_name}" '
                f"from {change.new_value} to {change.old_value}"
            ),
        })
    # DROP_TABLE / DROP_COLUMN lose data; the rest has no inverse
    return None


__all__ = ["MigrationManager", "generate_migration_name"]
