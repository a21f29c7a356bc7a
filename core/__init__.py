# ============================================================================
# CORE MODULE
# ============================================================================
# EPOCH: 1 - DYNAMIC SCHEMA MIGRATION
# STATUS: Core module initialization
# PURPOSE: Export core contracts, models, and schema utilities
# LAST_REVIEWED: 17 OCT 2026
# ============================================================================

from core.contracts import ChangeType, DataType, EntityKind, MigrationState
from core.models import (
    EntityDefinition,
    FieldDefinition,
    SchemaSnapshot,
    SchemaChange,
    SchemaDiff,
    MigrationRecord,
    MigrationResult,
    SchemaGenerationResult,
)
from core.schema import build_schema_snapshot, calculate_schema_diff

__all__ = [
    # Enums
    "ChangeType",
    "DataType",
    "EntityKind",
    "MigrationState",
    # Models
    "EntityDefinition",
    "FieldDefinition",
    "SchemaSnapshot",
    "SchemaChange",
    "SchemaDiff",
    "MigrationRecord",
    "MigrationResult",
    "SchemaGenerationResult",
    # Schema
    "build_schema_snapshot",
    "calculate_schema_diff",
]
