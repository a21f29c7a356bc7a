# ============================================================================
# BASE CONTRACTS & ENUMS
# ============================================================================
# EPOCH: 1 - DYNAMIC SCHEMA MIGRATION
# STATUS: Foundation - Core enums shared by every layer
# PURPOSE: Data types, entity kinds, change types and migration states
# LAST_REVIEWED: 17 OCT 2026
# EXPORTS: DataType, EntityKind, ChangeType, MigrationState, SyncStatus
# DEPENDENCIES: enum
# ============================================================================
"""
Base contracts for the schema migration engine.

These enums cross every boundary:
- Entity model (produced by the upstream metadata editor)
- Snapshots persisted in _sys_migrations (JSON)
- DDL generation (PostgreSQL)
"""

from enum import Enum


# ============================================================================
# FIELD DATA TYPES
# ============================================================================

class DataType(str, Enum):
    """
    Field data types understood by the DDL generator.

    Values are the wire-level strings used by the metadata editor.
    Unknown strings are tolerated by the generator (mapped to TEXT).
    """
    STRING = "STRING"
    NUMBER = "NUMBER"
    BOOLEAN = "BOOLEAN"
    DATE = "DATE"
    DATETIME = "DATETIME"
    REF = "REF"
    JSON = "JSON"


class EntityKind(str, Enum):
    """
    Entity kind discriminator.

    The kind drives the table-name prefix so tables of the same kind
    group together when listed.
    """
    CATALOG = "catalog"
    HUB = "hub"
    DOCUMENT = "document"
    LINK = "link"

    @property
    def table_prefix(self) -> str:
        """Short prefix used in physical table names."""
        return _KIND_PREFIXES[self]


_KIND_PREFIXES = {
    EntityKind.CATALOG: "cat",
    EntityKind.HUB: "hub",
    EntityKind.DOCUMENT: "doc",
    EntityKind.LINK: "lnk",
}


# ============================================================================
# SCHEMA CHANGES
# ============================================================================

class ChangeType(str, Enum):
    """Atomic DDL intents produced by the diff engine."""
    ADD_TABLE = "ADD_TABLE"
    DROP_TABLE = "DROP_TABLE"
    RENAME_TABLE = "RENAME_TABLE"
    ADD_COLUMN = "ADD_COLUMN"
    DROP_COLUMN = "DROP_COLUMN"
    ALTER_COLUMN = "ALTER_COLUMN"
    ADD_FK = "ADD_FK"
    DROP_FK = "DROP_FK"


class MigrationState(str, Enum):
    """
    Migration attempt lifecycle.

    State transitions:
        PENDING -> LOCKED -> IN_TRANSACTION -> COMMITTED   -> UNLOCKED
                                            -> ROLLED_BACK -> UNLOCKED
        PENDING -> REFUSED (destructive changes without confirmation,
                            or advisory lock not acquired)
    """
    PENDING = "pending"
    LOCKED = "locked"
    IN_TRANSACTION = "in_transaction"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    UNLOCKED = "unlocked"
    REFUSED = "refused"

    def is_terminal(self) -> bool:
        """Check if no further transitions follow this state."""
        return self in (MigrationState.UNLOCKED, MigrationState.REFUSED)


class SyncStatus(str, Enum):
    """Outcome of one application schema sync."""
    CREATED = "created"
    NO_CHANGES = "no_changes"
    PENDING_CONFIRMATION = "pending_confirmation"
    MIGRATED = "migrated"
    ERROR = "error"


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "DataType",
    "EntityKind",
    "ChangeType",
    "MigrationState",
    "SyncStatus",
]
