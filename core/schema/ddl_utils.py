# ============================================================================
# DDL UTILITIES
# ============================================================================
# EPOCH: 1 - DYNAMIC SCHEMA MIGRATION
# STATUS: Core - SQL DDL composition for managed schemas
# PURPOSE: Type mapping, cast checks and statement builders using psycopg.sql
# LAST_REVIEWED: 17 OCT 2026
# EXPORTS: DATA_TYPE_MAP, map_data_type, is_supported_cast, SchemaUtils,
#          TableBuilder, ColumnBuilder, ConstraintBuilder, TriggerBuilder
# DEPENDENCIES: psycopg
# ============================================================================
"""
DDL Utilities - Shared SQL Generation Patterns.

All builders return psycopg.sql.Composed objects for safe execution and
only accept SafeIdentifier names; passing a plain str raises TypeError.
Column types come from DATA_TYPE_MAP, never from caller input.

Usage:
    from core.schema.ddl_utils import ColumnBuilder
    from core.schema.naming import SafeIdentifier

    stmt = ColumnBuilder.add_column(
        SafeIdentifier.of("app_x"), SafeIdentifier.of("cat_1"),
        SafeIdentifier.of("attr_2"), "TEXT",
    )
    await conn.execute(stmt)
"""

from typing import Dict, FrozenSet, List, Sequence, Tuple

from psycopg import sql

from core.contracts import DataType
from core.schema.naming import SafeIdentifier, fit_identifier


# ============================================================================
# TYPE MAPPING
# ============================================================================

DATA_TYPE_MAP: Dict[str, str] = {
    DataType.STRING.value: "TEXT",
    DataType.NUMBER.value: "NUMERIC",
    DataType.BOOLEAN.value: "BOOLEAN",
    DataType.DATE.value: "DATE",
    DataType.DATETIME.value: "TIMESTAMPTZ",
    DataType.REF.value: "UUID",
    DataType.JSON.value: "JSONB",
}

_PG_TYPES: FrozenSet[str] = frozenset(DATA_TYPE_MAP.values())


def map_data_type(data_type: str) -> str:
    """
    Map a field data type to a PostgreSQL column type.

    Unknown types map to TEXT: new data types can reach the engine before
    this table is updated.
    """
    return DATA_TYPE_MAP.get(str(data_type), "TEXT")


# Explicit casts (col::type) that PostgreSQL defines between our column types.
# Anything converts to and from TEXT through the type's I/O functions.
_SUPPORTED_CASTS: FrozenSet[Tuple[str, str]] = frozenset({
    ("DATE", "TIMESTAMPTZ"),
    ("TIMESTAMPTZ", "DATE"),
    ("JSONB", "NUMERIC"),
    ("JSONB", "BOOLEAN"),
})


def is_supported_cast(from_type: str, to_type: str) -> bool:
    """
    Check whether `ALTER COLUMN ... TYPE to USING col::to` can be attempted.

    A supported cast can still fail at apply time on data that doesn't
    parse (e.g. 'abc'::NUMERIC); unsupported pairs fail before any DDL runs.
    """
    if from_type == to_type:
        return True
    if from_type == "TEXT" or to_type == "TEXT":
        return True
    return (from_type, to_type) in _SUPPORTED_CASTS


# ============================================================================
# HELPERS
# ============================================================================

def _require_safe(*names: object) -> None:
    """Reject anything that did not go through SafeIdentifier.of()."""
    for name in names:
        if not isinstance(name, SafeIdentifier):
            raise TypeError(
                f"DDL identifiers must be SafeIdentifier, got {type(name).__name__}: {name!r}"
            )


def _column_type(pg_type: str) -> sql.SQL:
    if pg_type not in _PG_TYPES:
        raise ValueError(f"Unsupported column type: {pg_type!r}")
    return sql.SQL(pg_type)


def _qualified(schema: SafeIdentifier, table: SafeIdentifier) -> sql.Identifier:
    return sql.Identifier(schema, table)


# ============================================================================
# SCHEMA UTILITIES
# ============================================================================

class SchemaUtils:
    """
    Utility methods for schema-level DDL operations.
    """

    @staticmethod
    def create_schema(schema: SafeIdentifier) -> sql.Composed:
        """CREATE SCHEMA IF NOT EXISTS."""
        _require_safe(schema)
        return sql.SQL("CREATE SCHEMA IF NOT EXISTS {}").format(sql.Identifier(schema))

    @staticmethod
    def drop_schema(schema: SafeIdentifier) -> sql.Composed:
        """DROP SCHEMA ... CASCADE. Destroys every table in it."""
        _require_safe(schema)
        return sql.SQL("DROP SCHEMA IF EXISTS {} CASCADE").format(sql.Identifier(schema))

    @staticmethod
    def schema_exists() -> sql.SQL:
        """Introspection query; bind the schema name as the only parameter."""
        return sql.SQL(
            "SELECT EXISTS (SELECT 1 FROM information_schema.schemata "
            "WHERE schema_name = %s) AS exists"
        )

    @staticmethod
    def table_exists() -> sql.SQL:
        """Introspection query; bind (schema, table)."""
        return sql.SQL(
            "SELECT EXISTS (SELECT 1 FROM information_schema.tables "
            "WHERE table_schema = %s AND table_name = %s) AS exists"
        )


# ============================================================================
# TABLE BUILDER
# ============================================================================

class TableBuilder:
    """
    Builder for entity table DDL.

    Every entity table carries a UUID primary key and created_at /
    updated_at timestamps ahead of its field columns.
    """

    @staticmethod
    def create_entity_table(
        schema: SafeIdentifier,
        table: SafeIdentifier,
        columns: Sequence[Tuple[SafeIdentifier, str, bool]],
    ) -> sql.Composed:
        """
        CREATE TABLE IF NOT EXISTS with system columns.

        Args:
            schema: Target schema
            table: Table name
            columns: (column name, PostgreSQL type, NOT NULL) per field
        """
        _require_safe(schema, table)
        parts: List[sql.Composable] = [
            sql.SQL("id UUID PRIMARY KEY DEFAULT gen_random_uuid()"),
            sql.SQL("created_at TIMESTAMPTZ NOT NULL DEFAULT now()"),
            sql.SQL("updated_at TIMESTAMPTZ NOT NULL DEFAULT now()"),
        ]
        for column, pg_type, not_null in columns:
            _require_safe(column)
            parts.append(sql.SQL("{} {}{}").format(
                sql.Identifier(column),
                _column_type(pg_type),
                sql.SQL(" NOT NULL") if not_null else sql.SQL(""),
            ))

        return sql.SQL("CREATE TABLE IF NOT EXISTS {table} ({columns})").format(
            table=_qualified(schema, table),
            columns=sql.SQL(", ").join(parts),
        )

    @staticmethod
    def drop_table(schema: SafeIdentifier, table: SafeIdentifier) -> sql.Composed:
        """DROP TABLE IF EXISTS ... CASCADE (dependent FKs go with it)."""
        _require_safe(schema, table)
        return sql.SQL("DROP TABLE IF EXISTS {} CASCADE").format(_qualified(schema, table))

    @staticmethod
    def rename_table(
        schema: SafeIdentifier,
        table: SafeIdentifier,
        new_name: SafeIdentifier,
    ) -> sql.Composed:
        _require_safe(schema, table, new_name)
        return sql.SQL("ALTER TABLE {} RENAME TO {}").format(
            _qualified(schema, table),
            sql.Identifier(new_name),
        )


# ============================================================================
# COLUMN BUILDER
# ============================================================================

class ColumnBuilder:
    """
    Builder for ALTER TABLE ... column statements.
    """

    @staticmethod
    def add_column(
        schema: SafeIdentifier,
        table: SafeIdentifier,
        column: SafeIdentifier,
        pg_type: str,
    ) -> sql.Composed:
        """
        ADD COLUMN IF NOT EXISTS, always nullable and without a default.

        NOT NULL is applied separately with set_not_null() once the column
        exists, since adding it inline fails on populated tables.
        """
        _require_safe(schema, table, column)
        return sql.SQL("ALTER TABLE {} ADD COLUMN IF NOT EXISTS {} {}").format(
            _qualified(schema, table),
            sql.Identifier(column),
            _column_type(pg_type),
        )

    @staticmethod
    def drop_column(
        schema: SafeIdentifier,
        table: SafeIdentifier,
        column: SafeIdentifier,
    ) -> sql.Composed:
        _require_safe(schema, table, column)
        return sql.SQL("ALTER TABLE {} DROP COLUMN IF EXISTS {}").format(
            _qualified(schema, table),
            sql.Identifier(column),
        )

    @staticmethod
    def set_not_null(
        schema: SafeIdentifier,
        table: SafeIdentifier,
        column: SafeIdentifier,
    ) -> sql.Composed:
        _require_safe(schema, table, column)
        return sql.SQL("ALTER TABLE {} ALTER COLUMN {} SET NOT NULL").format(
            _qualified(schema, table),
            sql.Identifier(column),
        )

    @staticmethod
    def drop_not_null(
        schema: SafeIdentifier,
        table: SafeIdentifier,
        column: SafeIdentifier,
    ) -> sql.Composed:
        _require_safe(schema, table, column)
        return sql.SQL("ALTER TABLE {} ALTER COLUMN {} DROP NOT NULL").format(
            _qualified(schema, table),
            sql.Identifier(column),
        )

    @staticmethod
    def alter_type(
        schema: SafeIdentifier,
        table: SafeIdentifier,
        column: SafeIdentifier,
        pg_type: str,
    ) -> sql.Composed:
        """ALTER COLUMN ... TYPE t USING col::t (explicit cast)."""
        _require_safe(schema, table, column)
        col_type = _column_type(pg_type)
        return sql.SQL("ALTER TABLE {} ALTER COLUMN {} TYPE {} USING {}::{}").format(
            _qualified(schema, table),
            sql.Identifier(column),
            col_type,
            sql.Identifier(column),
            col_type,
        )


# ============================================================================
# CONSTRAINT BUILDER
# ============================================================================

class ConstraintBuilder:
    """
    Builder for foreign key constraints.
    """

    @staticmethod
    def add_foreign_key(
        schema: SafeIdentifier,
        table: SafeIdentifier,
        constraint: SafeIdentifier,
        column: SafeIdentifier,
        target_table: SafeIdentifier,
    ) -> sql.Composed:
        """
        FK to target_table(id) with ON DELETE SET NULL.

        Deleting a referenced row clears the reference instead of cascading
        or blocking.
        """
        _require_safe(schema, table, constraint, column, target_table)
        return sql.SQL(
            "ALTER TABLE {table} ADD CONSTRAINT {name} FOREIGN KEY ({column}) "
            "REFERENCES {target} (id) ON DELETE SET NULL"
        ).format(
            table=_qualified(schema, table),
            name=sql.Identifier(constraint),
            column=sql.Identifier(column),
            target=_qualified(schema, target_table),
        )

    @staticmethod
    def drop_constraint(
        schema: SafeIdentifier,
        table: SafeIdentifier,
        constraint: SafeIdentifier,
    ) -> sql.Composed:
        _require_safe(schema, table, constraint)
        return sql.SQL("ALTER TABLE {} DROP CONSTRAINT IF EXISTS {}").format(
            _qualified(schema, table),
            sql.Identifier(constraint),
        )


# ============================================================================
# TRIGGER BUILDER
# ============================================================================

class TriggerBuilder:
    """
    Builder for PostgreSQL trigger DDL statements.
    """

    @staticmethod
    def updated_at_function(schema: SafeIdentifier) -> sql.Composed:
        """
        Create the set_updated_at() trigger function in a schema.
        """
        _require_safe(schema)
        return sql.SQL("""
            CREATE OR REPLACE FUNCTION {schema}.set_updated_at()
            RETURNS TRIGGER
            LANGUAGE plpgsql
            AS $$
            BEGIN
                NEW.updated_at = now();
                RETURN NEW;
            END;
            $$
        """).format(schema=sql.Identifier(schema))

    @staticmethod
    def updated_at_trigger(schema: SafeIdentifier, table: SafeIdentifier) -> List[sql.Composed]:
        """
        Trigger calling set_updated_at() on UPDATE.

        Returns DROP + CREATE for idempotency.
        """
        _require_safe(schema, table)
        trig_name = sql.Identifier(fit_identifier(f"trg_{table}_updated_at"))

        drop_stmt = sql.SQL("DROP TRIGGER IF EXISTS {name} ON {table}").format(
            name=trig_name,
            table=_qualified(schema, table),
        )
        create_stmt = sql.SQL("""
            CREATE TRIGGER {name}
            BEFORE UPDATE ON {table}
            FOR EACH ROW
            EXECUTE FUNCTION {schema}.set_updated_at()
        """).format(
            name=trig_name,
            table=_qualified(schema, table),
            schema=sql.Identifier(schema),
        )
        return [drop_stmt, create_stmt]

    @staticmethod
    def updated_at(schema: SafeIdentifier, table: SafeIdentifier) -> List[sql.Composed]:
        """
        Complete updated_at trigger setup for a table.
        """
        stmts = [TriggerBuilder.updated_at_function(schema)]
        stmts.extend(TriggerBuilder.updated_at_trigger(schema, table))
        return stmts


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "DATA_TYPE_MAP",
    "map_data_type",
    "is_supported_cast",
    "SchemaUtils",
    "TableBuilder",
    "ColumnBuilder",
    "ConstraintBuilder",
    "TriggerBuilder",
]
