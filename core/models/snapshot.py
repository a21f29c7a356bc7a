# ============================================================================
# SCHEMA SNAPSHOT MODEL
# ============================================================================
# EPOCH: 1 - DYNAMIC SCHEMA MIGRATION
# STATUS: Core model - Versioned description of a generated schema
# PURPOSE: Diffing baseline persisted inside migration records
# LAST_REVIEWED: 17 OCT 2026
# EXPORTS: SchemaSnapshot, SchemaEntitySnapshot, SchemaFieldSnapshot
# DEPENDENCIES: pydantic
# ============================================================================
"""
Schema Snapshot Model

A snapshot records the shape of a managed schema at a point in time:
entity id -> table, field id -> column. Snapshots are immutable; a new one
is built from the current entity model on every diff cycle.
"""

from typing import Dict, Optional

from pydantic import BaseModel, Field


class SchemaFieldSnapshot(BaseModel):
    """Column-level snapshot entry."""
    codename: str
    column_name: str
    data_type: str
    is_required: bool = False
    target_entity_id: Optional[str] = None

    model_config = {"frozen": True}


class SchemaEntitySnapshot(BaseModel):
    """Table-level snapshot entry."""
    kind: str
    codename: str
    table_name: str
    fields: Dict[str, SchemaFieldSnapshot] = Field(default_factory=dict)

    model_config = {"frozen": True}


class SchemaSnapshot(BaseModel):
    """
    Versioned snapshot of a schema.

    version guards against misreading snapshots persisted by an older
    (or newer) build; see core.schema.snapshot.CURRENT_SCHEMA_SNAPSHOT_VERSION.
    """
    version: int = Field(..., ge=1)
    generated_at: str = Field(..., description="ISO-8601 UTC timestamp")
    entities: Dict[str, SchemaEntitySnapshot] = Field(default_factory=dict)

    model_config = {"frozen": True}


__all__ = ["SchemaSnapshot", "SchemaEntitySnapshot", "SchemaFieldSnapshot"]
