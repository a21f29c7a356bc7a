# ============================================================================
# SNAPSHOT BUILDER
# ============================================================================
# EPOCH: 1 - DYNAMIC SCHEMA MIGRATION
# STATUS: Core - Pure snapshot construction
# PURPOSE: Derive a versioned SchemaSnapshot from the entity model
# LAST_REVIEWED: 17 OCT 2026
# EXPORTS: CURRENT_SCHEMA_SNAPSHOT_VERSION, build_schema_snapshot,
#          ensure_supported_snapshot, snapshot_from_dict
# DEPENDENCIES: pydantic
# ============================================================================
"""
Snapshot Builder

No I/O. The snapshot is the diffing baseline persisted in migration meta,
so its version is bumped whenever its own layout changes.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from core.models.entity import EntityDefinition
from core.models.snapshot import SchemaEntitySnapshot, SchemaFieldSnapshot, SchemaSnapshot
from core.schema.naming import generate_column_name, generate_table_name

CURRENT_SCHEMA_SNAPSHOT_VERSION = 1


class UnsupportedSnapshotError(ValueError):
    """Raised when a persisted snapshot was written by a newer format."""

    def __init__(self, version: int):
        self.version = version
        super().__init__(
            f"Snapshot version {version} is newer than supported "
            f"version {CURRENT_SCHEMA_SNAPSHOT_VERSION}"
        )


def build_schema_snapshot(
    entities: List[EntityDefinition],
    now: Optional[datetime] = None,
) -> SchemaSnapshot:
    """
    Build a snapshot of the desired schema for an entity model.

    Args:
        entities: Current entity model
        now: Clock override (defaults to current UTC time)

    Returns:
        Fresh SchemaSnapshot stamped with CURRENT_SCHEMA_SNAPSHOT_VERSION
    """
    generated_at = (now or datetime.now(timezone.utc)).isoformat()

    entity_snapshots: Dict[str, SchemaEntitySnapshot] = {}
    for entity in entities:
        fields = {
            field.id: SchemaFieldSnapshot(
                codename=field.codename,
                column_name=generate_column_name(field.id),
                data_type=field.data_type,
                is_required=field.is_required,
                target_entity_id=field.target_entity_id,
            )
            for field in entity.fields
        }
        entity_snapshots[entity.id] = SchemaEntitySnapshot(
            kind=entity.kind.value,
            codename=entity.codename,
            table_name=generate_table_name(entity.id, entity.kind),
            fields=fields,
        )

    return SchemaSnapshot(
        version=CURRENT_SCHEMA_SNAPSHOT_VERSION,
        generated_at=generated_at,
        entities=entity_snapshots,
    )


def ensure_supported_snapshot(snapshot: SchemaSnapshot) -> SchemaSnapshot:
    """Reject snapshots written by a newer format than this build reads."""
    if snapshot.version > CURRENT_SCHEMA_SNAPSHOT_VERSION:
        raise UnsupportedSnapshotError(snapshot.version)
    return snapshot


def snapshot_from_dict(data: Dict[str, Any]) -> SchemaSnapshot:
    """Rebuild a persisted snapshot and check its version."""
    return ensure_supported_snapshot(SchemaSnapshot.model_validate(data))


__all__ = [
    "CURRENT_SCHEMA_SNAPSHOT_VERSION",
    "UnsupportedSnapshotError",
    "build_schema_snapshot",
    "ensure_supported_snapshot",
    "snapshot_from_dict",
]
