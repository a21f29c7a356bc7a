# ============================================================================
# SCHEMA DIFF ENGINE
# ============================================================================
# EPOCH: 1 - DYNAMIC SCHEMA MIGRATION
# STATUS: Core - Snapshot comparison and change classification
# PURPOSE: Produce additive/destructive SchemaChange lists in apply order
# LAST_REVIEWED: 17 OCT 2026
# EXPORTS: calculate_schema_diff, order_changes_for_apply
# DEPENDENCIES: pydantic
# ============================================================================
"""
Schema Diff Engine

Compares a stored snapshot (or nothing, on first provisioning) against the
current entity model. Identity is the entity/field id: codenames are
display labels, so a "rename" produces no change at all.

Classification:
    ADD_TABLE, ADD_COLUMN, ADD_FK, required -> optional      additive
    DROP_TABLE, DROP_COLUMN, DROP_FK, optional -> required,
    any data type change                                     destructive

Both lists come out in apply order. Destructive: DROP_FK, DROP_COLUMN,
ALTER_COLUMN, DROP_TABLE, RENAME_TABLE. Additive: ADD_TABLE, ADD_COLUMN,
ALTER_COLUMN, ADD_FK, RENAME_TABLE. A FK is therefore always dropped
before the column under it is altered and added back after every table
and column exists.
"""

import logging
from typing import Dict, List, Optional

from core.contracts import ChangeType, DataType
from core.models.entity import EntityDefinition, FieldDefinition
from core.models.migration import SchemaChange, SchemaDiff
from core.models.snapshot import SchemaEntitySnapshot, SchemaFieldSnapshot, SchemaSnapshot
from core.schema.naming import generate_column_name, generate_table_name

logger = logging.getLogger(__name__)


# ============================================================================
# APPLY ORDER
# ============================================================================

_DESTRUCTIVE_RANK: Dict[ChangeType, int] = {
    ChangeType.DROP_FK: 10,
    ChangeType.DROP_COLUMN: 20,
    ChangeType.ALTER_COLUMN: 25,
    ChangeType.DROP_TABLE: 40,
    ChangeType.RENAME_TABLE: 50,
}

_ADDITIVE_RANK: Dict[ChangeType, int] = {
    ChangeType.ADD_TABLE: 10,
    ChangeType.ADD_COLUMN: 20,
    ChangeType.ALTER_COLUMN: 30,
    ChangeType.ADD_FK: 40,
    ChangeType.RENAME_TABLE: 50,
}


def order_changes_for_apply(changes: List[SchemaChange], destructive: bool) -> List[SchemaChange]:
    """
    Stable sort of changes into dependency-safe apply order.

    Idempotent, so the migrator can re-apply it to diffs built elsewhere.
    """
    ranks = _DESTRUCTIVE_RANK if destructive else _ADDITIVE_RANK
    return sorted(changes, key=lambda change: ranks.get(change.type, 100))


# ============================================================================
# DIFF
# ============================================================================

def _reference_target(data_type: str, target_entity_id: Optional[str]) -> Optional[str]:
    """FK target of a field, or None when it carries no constraint."""
    if data_type == DataType.REF.value and target_entity_id:
        return target_entity_id
    return None


def _add_table(entity: EntityDefinition, description: Optional[str] = None) -> SchemaChange:
    return SchemaChange(
        type=ChangeType.ADD_TABLE,
        entity_id=entity.id,
        entity_kind=entity.kind.value,
        entity_codename=entity.codename,
        table_name=generate_table_name(entity.id, entity.kind),
        is_destructive=False,
        description=description or f'Create table "{entity.codename}"',
    )


def _drop_table(entity_id: str, old: SchemaEntitySnapshot, description: str) -> SchemaChange:
    return SchemaChange(
        type=ChangeType.DROP_TABLE,
        entity_id=entity_id,
        entity_kind=old.kind,
        entity_codename=old.codename,
        table_name=old.table_name,
        is_destructive=True,
        description=description,
    )


def _build_summary(diff: SchemaDiff) -> str:
    parts = []
    if diff.additive:
        parts.append(f"{len(diff.additive)} additive change(s)")
    if diff.destructive:
        parts.append(f"{len(diff.destructive)} DESTRUCTIVE change(s)")
    return ", ".join(parts) if parts else "No changes"


def _diff_fields(
    entity: EntityDefinition,
    old_entity: SchemaEntitySnapshot,
    additive: List[SchemaChange],
    destructive: List[SchemaChange],
) -> None:
    """Column-level comparison for an entity present on both sides."""
    table_name = generate_table_name(entity.id, entity.kind)
    base = {
        "entity_id": entity.id,
        "entity_kind": entity.kind.value,
        "entity_codename": entity.codename,
        "table_name": table_name,
    }
    new_field_ids = {field.id for field in entity.fields}

    for field in entity.fields:
        if field.id in old_entity.fields:
            continue
        column_name = generate_column_name(field.id)
        additive.append(SchemaChange(
            type=ChangeType.ADD_COLUMN,
            field_id=field.id,
            field_codename=field.codename,
            column_name=column_name,
            new_value=field.data_type,
            is_destructive=False,
            description=f'Add column "{field.codename}" ({field.data_type}) to "{entity.codename}"',
            **base,
        ))
        if field.is_reference:
            additive.append(SchemaChange(
                type=ChangeType.ADD_FK,
                field_id=field.id,
                field_codename=field.codename,
                column_name=column_name,
                new_value=field.target_entity_id,
                is_destructive=False,
                description=f'Add FK on "{field.codename}"',
                **base,
            ))

    for old_field_id, old_field in old_entity.fields.items():
        if old_field_id in new_field_ids:
            continue
        destructive.append(SchemaChange(
            type=ChangeType.DROP_COLUMN,
            field_id=old_field_id,
            field_codename=old_field.codename,
            column_name=old_field.column_name,
            is_destructive=True,
            description=f'Drop column "{old_field.codename}" from "{entity.codename}" (DATA WILL BE LOST)',
            **base,
        ))

    for field in entity.fields:
        old_field = old_entity.fields.get(field.id)
        if old_field is None:
            continue
        _diff_field(field, old_field, base, additive, destructive)


def _diff_field(
    field: FieldDefinition,
    old_field: SchemaFieldSnapshot,
    base: dict,
    additive: List[SchemaChange],
    destructive: List[SchemaChange],
) -> None:
    """Attribute-level comparison for a field present on both sides."""
    common = {
        **base,
        "field_id": field.id,
        "field_codename": field.codename,
        "column_name": old_field.column_name,
    }

    if old_field.codename != field.codename:
        logger.info(
            f"Field codename changed from '{old_field.codename}' to '{field.codename}'; "
            f"column {old_field.column_name} unchanged"
        )

    if old_field.data_type != field.data_type:
        destructive.append(SchemaChange(
            type=ChangeType.ALTER_COLUMN,
            old_value=old_field.data_type,
            new_value=field.data_type,
            is_destructive=True,
            description=f'Change type of "{field.codename}" from {old_field.data_type} to {field.data_type}',
            **common,
        ))

    if not old_field.is_required and field.is_required:
        destructive.append(SchemaChange(
            type=ChangeType.ALTER_COLUMN,
            old_value="nullable",
            new_value="required",
            is_destructive=True,
            description=f'Make "{field.codename}" required (may fail if NULLs exist)',
            **common,
        ))
    elif old_field.is_required and not field.is_required:
        additive.append(SchemaChange(
            type=ChangeType.ALTER_COLUMN,
            old_value="required",
            new_value="nullable",
            is_destructive=False,
            description=f'Make "{field.codename}" optional',
            **common,
        ))

    old_target = _reference_target(old_field.data_type, old_field.target_entity_id)
    new_target = _reference_target(field.data_type, field.target_entity_id)
    if old_target != new_target:
        if old_target:
            destructive.append(SchemaChange(
                type=ChangeType.DROP_FK,
                old_value=old_target,
                is_destructive=True,
                description=f'Drop FK on "{field.codename}"',
                **common,
            ))
        if new_target:
            additive.append(SchemaChange(
                type=ChangeType.ADD_FK,
                new_value=new_target,
                is_destructive=False,
                description=f'Add FK on "{field.codename}"',
                **common,
            ))


def calculate_schema_diff(
    old_snapshot: Optional[SchemaSnapshot],
    new_entities: List[EntityDefinition],
) -> SchemaDiff:
    """
    Compare a stored snapshot with the current entity model.

    Args:
        old_snapshot: Baseline from migration history, or None on bootstrap
        new_entities: Current entity model

    Returns:
        SchemaDiff with both change lists in apply order
    """
    if old_snapshot is None:
        additive = [_add_table(entity) for entity in new_entities]
        return SchemaDiff(
            has_changes=bool(additive),
            is_bootstrap=True,
            additive=additive,
            destructive=[],
            summary=f"{len(additive)} new table(s)",
        )

    additive: List[SchemaChange] = []
    destructive: List[SchemaChange] = []
    new_entity_ids = {entity.id for entity in new_entities}

    for entity in new_entities:
        if entity.id not in old_snapshot.entities:
            additive.append(_add_table(entity))

    for old_entity_id, old_entity in old_snapshot.entities.items():
        if old_entity_id not in new_entity_ids:
            destructive.append(_drop_table(
                old_entity_id, old_entity,
                f'Drop table "{old_entity.codename}" (DATA WILL BE LOST)',
            ))

    for entity in new_entities:
        old_entity = old_snapshot.entities.get(entity.id)
        if old_entity is None:
            continue

        if old_entity.kind != entity.kind.value:
            # Table name embeds the kind: recreate under the new name
            destructive.append(_drop_table(
                entity.id, old_entity,
                f'Drop table "{old_entity.codename}" (kind changed)',
            ))
            additive.append(_add_table(entity, f'Create table "{entity.codename}" (kind changed)'))
            continue

        if old_entity.codename != entity.codename:
            logger.info(
                f"Entity codename changed from '{old_entity.codename}' to '{entity.codename}'; "
                f"table {old_entity.table_name} unchanged"
            )

        _diff_fields(entity, old_entity, additive, destructive)

    diff = SchemaDiff(
        additive=order_changes_for_apply(additive, destructive=False),
        destructive=order_changes_for_apply(destructive, destructive=True),
    )
    diff.has_changes = bool(diff.additive or diff.destructive)
    diff.summary = _build_summary(diff)
    return diff


__all__ = ["calculate_schema_diff", "order_changes_for_apply"]
