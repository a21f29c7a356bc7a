# ============================================================================
# MODELS MODULE
# ============================================================================
# EPOCH: 1 - DYNAMIC SCHEMA MIGRATION
# STATUS: Model exports
# PURPOSE: Central export point for all Pydantic models
# LAST_REVIEWED: 17 OCT 2026
# ============================================================================
"""
Models Module - Central Export Point

Entity model (input), snapshots (baseline), changes/diffs (plan) and
migration records/results (outcome).
"""

from core.models.entity import EntityDefinition, FieldDefinition, find_entity
from core.models.snapshot import SchemaSnapshot, SchemaEntitySnapshot, SchemaFieldSnapshot
from core.models.migration import (
    MIGRATION_META_VERSION,
    SchemaChange,
    SchemaDiff,
    MigrationChangeRecord,
    MigrationMeta,
    MigrationRecord,
    MigrationList,
    RollbackAnalysis,
    MigrationResult,
    SchemaGenerationResult,
    SchemaSyncResult,
)

__all__ = [
    # Entity model
    "EntityDefinition",
    "FieldDefinition",
    "find_entity",
    # Snapshots
    "SchemaSnapshot",
    "SchemaEntitySnapshot",
    "SchemaFieldSnapshot",
    # Diff
    "SchemaChange",
    "SchemaDiff",
    # History
    "MIGRATION_META_VERSION",
    "MigrationChangeRecord",
    "MigrationMeta",
    "MigrationRecord",
    "MigrationList",
    "RollbackAnalysis",
    # Results
    "MigrationResult",
    "SchemaGenerationResult",
    "SchemaSyncResult",
]
