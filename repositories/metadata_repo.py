# ============================================================================
# SYSTEM METADATA REPOSITORY
# ============================================================================
# EPOCH: 1 - DYNAMIC SCHEMA MIGRATION
# STATUS: Domain - Entity/field catalog inside each managed schema
# PURPOSE: Keep _sys_objects / _sys_attributes in step with the entity model
# CREATED: 17 OCT 2026
# ============================================================================
"""
System Metadata Repository

Every managed schema carries two catalog tables that describe which
physical table and column belong to which entity and field:

    _sys_objects     one row per entity
    _sys_attributes  one row per field

sync() upserts the current model and, with remove_missing, deletes rows for
entities and fields that no longer exist. Both the generator and the
migrator call it inside their own transaction.
"""

import logging
from typing import List, Optional

from psycopg import sql
from psycopg.types.json import Json

from core.config.defaults import MigrationDefaults, get_defaults
from core.models.entity import EntityDefinition
from core.schema.naming import SafeIdentifier, generate_column_name, generate_table_name
from infrastructure.base_repository import AsyncBaseRepository

logger = logging.getLogger(__name__)


class SystemMetadataRepository(AsyncBaseRepository):
    """Synchronizer for the per-schema entity/field catalog."""

    def __init__(self, db, defaults: Optional[MigrationDefaults] = None):
        super().__init__(db)
        self.defaults = defaults or get_defaults().migration

    def _objects(self, schema: SafeIdentifier) -> sql.Identifier:
        return sql.Identifier(schema, self.defaults.objects_table)

    def _attributes(self, schema: SafeIdentifier) -> sql.Identifier:
        return sql.Identifier(schema, self.defaults.attributes_table)

    async def ensure_tables(self, schema_name: str, conn) -> None:
        """Create the catalog tables if missing."""
        schema = self._validate_schema_name(schema_name)
        await conn.execute(
            sql.SQL("""
                CREATE TABLE IF NOT EXISTS {} (
                    id TEXT PRIMARY KEY,
                    kind TEXT NOT NULL,
                    codename TEXT NOT NULL,
                    table_name TEXT NOT NULL,
                    presentation JSONB NOT NULL DEFAULT '{{}}'::jsonb,
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
            """).format(self._objects(schema))
        )
        await conn.execute(
            sql.SQL("""
                CREATE TABLE IF NOT EXISTS {} (
                    id TEXT PRIMARY KEY,
                    object_id TEXT NOT NULL REFERENCES {} (id) ON DELETE CASCADE,
                    codename TEXT NOT NULL,
                    column_name TEXT NOT NULL,
                    data_type TEXT NOT NULL,
                    is_required BOOLEAN NOT NULL DEFAULT false,
                    target_object_id TEXT,
                    presentation JSONB NOT NULL DEFAULT '{{}}'::jsonb,
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
            """).format(self._attributes(schema), self._objects(schema))
        )

    async def sync(
        self,
        schema_name: str,
        entities: List[EntityDefinition],
        remove_missing: bool = False,
        conn=None,
    ) -> None:
        """
        Upsert one row per entity and field.

        Args:
            schema_name: Managed schema
            entities: Current entity model
            remove_missing: Delete rows for entities/fields not in the model
            conn: Caller's transaction; a new one is opened when omitted
        """
        schema = self._validate_schema_name(schema_name)
        if conn is None:
            async with self.db.connection() as own_conn:
                await self._sync(own_conn, schema, entities, remove_missing)
        else:
            await self._sync(conn, schema, entities, remove_missing)

    async def _sync(
        self,
        conn,
        schema: SafeIdentifier,
        entities: List[EntityDefinition],
        remove_missing: bool,
    ) -> None:
        with self._error_context("sync system metadata", schema):
            await self.ensure_tables(schema, conn)

            entity_ids = []
            field_ids = []
            for entity in entities:
                entity_ids.append(entity.id)
                await conn.execute(
                    sql.SQL("""
                        INSERT INTO {} (id, kind, codename, table_name, presentation)
                        VALUES (%(id)s, %(kind)s, %(codename)s, %(table_name)s, %(presentation)s)
                        ON CONFLICT (id) DO UPDATE SET
                            kind = EXCLUDED.kind,
                            codename = EXCLUDED.codename,
                            table_name = EXCLUDED.table_name,
                            presentation = EXCLUDED.presentation,
                            updated_at = now()
                    """).format(self._objects(schema)),
                    {
                        "id": entity.id,
                        "kind": entity.kind.value,
                        "codename": entity.codename,
                        "table_name": str(generate_table_name(entity.id, entity.kind)),
                        "presentation": Json(entity.presentation),
                    },
                )

                for field in entity.fields:
                    field_ids.append(field.id)
                    await conn.execute(
                        sql.SQL("""
                            INSERT INTO {} (
                                id, object_id, codename, column_name, data_type,
                                is_required, target_object_id, presentation
                            ) VALUES (
                                %(id)s, %(object_id)s, %(codename)s, %(column_name)s, %(data_type)s,
                                %(is_required)s, %(target_object_id)s, %(presentation)s
                            )
                            ON CONFLICT (id) DO UPDATE SET
                                object_id = EXCLUDED.object_id,
                                codename = EXCLUDED.codename,
                                column_name = EXCLUDED.column_name,
                                data_type = EXCLUDED.data_type,
                                is_required = EXCLUDED.is_required,
                                target_object_id = EXCLUDED.target_object_id,
                                presentation = EXCLUDED.presentation,
                                updated_at = now()
                        """).format(self._attributes(schema)),
                        {
                            "id": field.id,
                            "object_id": entity.id,
                            "codename": field.codename,
                            "column_name": str(generate_column_name(field.id)),
                            "data_type": field.data_type,
                            "is_required": field.is_required,
                            "target_object_id": field.target_entity_id,
                            "presentation": Json(field.presentation),
                        },
                    )

            if remove_missing:
                await conn.execute(
                    sql.SQL("DELETE FROM {} WHERE id <> ALL(%s)").format(self._attributes(schema)),
                    (field_ids,),
                )
                await conn.execute(
                    sql.SQL("DELETE FROM {} WHERE id <> ALL(%s)").format(self._objects(schema)),
                    (entity_ids,),
                )

        logger.info(
            f"Synced system metadata for {schema}: {len(entity_ids)} object(s), "
            f"{len(field_ids)} attribute(s)"
            + (" (stale rows removed)" if remove_missing else "")
        )


__all__ = ["SystemMetadataRepository"]
