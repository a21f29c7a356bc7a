# ============================================================================
# MIGRATION MODELS
# ============================================================================
# EPOCH: 1 - DYNAMIC SCHEMA MIGRATION
# STATUS: Core model - Changes, diffs, history records and results
# PURPOSE: Contracts between diff engine, migrator and migration history
# LAST_REVIEWED: 17 OCT 2026
# EXPORTS: SchemaChange, SchemaDiff, MigrationMeta, MigrationRecord,
#          MigrationList, MigrationResult, SchemaGenerationResult,
#          RollbackAnalysis, SchemaSyncResult, MIGRATION_META_VERSION
# DEPENDENCIES: pydantic
# ============================================================================
"""
Migration Models

SchemaChange / SchemaDiff are produced by the diff engine and consumed by
the migrator. MigrationMeta is the JSON document stored in the meta column
of _sys_migrations; it carries its own format_version so a reader can tell
which layout it is looking at.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from core.contracts import ChangeType, MigrationState, SyncStatus
from core.models.snapshot import SchemaSnapshot

# Bump whenever the layout of MigrationMeta changes
# 2: change records carry entity_kind, old_value and new_value
MIGRATION_META_VERSION = 2


# ============================================================================
# DIFF
# ============================================================================

class SchemaChange(BaseModel):
    """One atomic DDL intent."""
    type: ChangeType
    entity_id: Optional[str] = None
    entity_kind: Optional[str] = None
    entity_codename: Optional[str] = None
    table_name: Optional[str] = None
    field_id: Optional[str] = None
    field_codename: Optional[str] = None
    column_name: Optional[str] = None
    old_value: Optional[Any] = None
    new_value: Optional[Any] = None
    is_destructive: bool = False
    description: str = ""

    model_config = {"frozen": True}


class SchemaDiff(BaseModel):
    """Classified output of a snapshot comparison."""
    has_changes: bool = False
    # Computed without a recorded baseline: every entity is an ADD_TABLE
    is_bootstrap: bool = False
    additive: List[SchemaChange] = Field(default_factory=list)
    destructive: List[SchemaChange] = Field(default_factory=list)
    summary: str = ""

    def all_changes(self) -> List[SchemaChange]:
        """Destructive changes first, then additive (apply order)."""
        return [*self.destructive, *self.additive]


# ============================================================================
# HISTORY
# ============================================================================

class MigrationChangeRecord(BaseModel):
    """Flattened change as stored in migration meta."""
    type: ChangeType
    entity_id: Optional[str] = None
    entity_kind: Optional[str] = None
    entity_codename: Optional[str] = None
    field_id: Optional[str] = None
    field_codename: Optional[str] = None
    table_name: Optional[str] = None
    column_name: Optional[str] = None
    old_value: Optional[Any] = None
    new_value: Optional[Any] = None
    is_destructive: bool = False
    description: str = ""

    @classmethod
    def from_change(cls, change: SchemaChange) -> "MigrationChangeRecord":
        return cls(
            type=change.type,
            entity_id=change.entity_id,
            entity_kind=change.entity_kind,
            entity_codename=change.entity_codename,
            field_id=change.field_id,
            field_codename=change.field_codename,
            table_name=change.table_name,
            column_name=change.column_name,
            old_value=change.old_value,
            new_value=change.new_value,
            is_destructive=change.is_destructive,
            description=change.description,
        )


class MigrationMeta(BaseModel):
    """JSON document stored in _sys_migrations.meta."""
    format_version: int = Field(default=MIGRATION_META_VERSION, ge=1)
    snapshot_before: Optional[SchemaSnapshot] = None
    snapshot_after: Optional[SchemaSnapshot] = None
    changes: List[MigrationChangeRecord] = Field(default_factory=list)
    has_destructive: bool = False
    summary: str = ""


class MigrationRecord(BaseModel):
    """One applied migration (append-only)."""
    id: str
    name: str
    applied_at: datetime
    meta: MigrationMeta


class MigrationList(BaseModel):
    """A page of migration history."""
    migrations: List[MigrationRecord] = Field(default_factory=list)
    total: int = 0


class RollbackAnalysis(BaseModel):
    """Whether the schema could be reverted to an earlier migration."""
    can_rollback: bool = True
    blockers: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    rollback_changes: List[MigrationChangeRecord] = Field(default_factory=list)


# ============================================================================
# RESULTS
# ============================================================================

class MigrationResult(BaseModel):
    """Outcome of apply_additive_changes / apply_all_changes."""
    success: bool = False
    changes_applied: int = 0
    errors: List[str] = Field(default_factory=list)
    new_snapshot: Optional[SchemaSnapshot] = None
    migration_id: Optional[str] = None
    state_history: List[MigrationState] = Field(
        default_factory=lambda: [MigrationState.PENDING]
    )

    @property
    def state(self) -> MigrationState:
        """Latest state reached."""
        return self.state_history[-1]

    def transition(self, state: MigrationState) -> None:
        self.state_history.append(state)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": self.success,
            "changes_applied": self.changes_applied,
            "errors": self.errors,
            "migration_id": self.migration_id,
            "state": self.state.value,
        }


class SchemaGenerationResult(BaseModel):
    """Outcome of first-time schema provisioning."""
    success: bool = False
    schema_name: str
    tables_created: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    migration_id: Optional[str] = None


class SchemaSyncResult(BaseModel):
    """Outcome of SchemaSyncService.sync for one application."""
    status: SyncStatus
    schema_name: str
    tables_created: List[str] = Field(default_factory=list)
    changes_applied: int = 0
    diff: Optional[SchemaDiff] = None
    migration_id: Optional[str] = None
    errors: List[str] = Field(default_factory=list)
    message: str = ""

    @property
    def success(self) -> bool:
        return self.status != SyncStatus.ERROR


__all__ = [
    "MIGRATION_META_VERSION",
    "SchemaChange",
    "SchemaDiff",
    "MigrationChangeRecord",
    "MigrationMeta",
    "MigrationRecord",
    "MigrationList",
    "RollbackAnalysis",
    "MigrationResult",
    "SchemaGenerationResult",
    "SchemaSyncResult",
]
