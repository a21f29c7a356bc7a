# ============================================================================
# ENTITY MODEL
# ============================================================================
# EPOCH: 1 - DYNAMIC SCHEMA MIGRATION
# STATUS: Core model - User-defined record types and fields
# PURPOSE: Input model consumed read-only by the DDL core
# LAST_REVIEWED: 17 OCT 2026
# EXPORTS: EntityDefinition, FieldDefinition
# DEPENDENCIES: pydantic
# ============================================================================
"""
Entity Model

EntityDefinition and FieldDefinition describe the user-defined model that
the engine turns into tables and columns. They are produced by the upstream
metadata editor and never mutated here.

Wire payloads use camelCase keys (dataType, isRequired, targetEntityId).
`from_dict` maps them field by field onto the internal snake_case models.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from core.contracts import DataType, EntityKind


class FieldDefinition(BaseModel):
    """
    One field of an entity.

    data_type is kept as a plain string: the generator maps unknown
    types to TEXT instead of rejecting them.
    """
    id: str = Field(..., min_length=1, max_length=64, description="Stable field identifier")
    codename: str = Field(..., max_length=100, description="Display label, not a storage key")
    data_type: str = Field(default=DataType.STRING.value, description="One of DataType values")
    is_required: bool = Field(default=False)
    target_entity_id: Optional[str] = Field(
        default=None,
        description="Referenced entity (REF fields only)",
    )
    presentation: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @property
    def is_reference(self) -> bool:
        """True for REF fields that point at another entity."""
        return self.data_type == DataType.REF.value and bool(self.target_entity_id)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldDefinition":
        """Build from a wire-level payload."""
        data_type = data.get("dataType", data.get("data_type", DataType.STRING.value))
        target = data.get("targetEntityId", data.get("target_entity_id"))
        return cls(
            id=str(data["id"]),
            codename=str(data.get("codename", data["id"])),
            data_type=str(data_type),
            is_required=bool(data.get("isRequired", data.get("is_required", False))),
            target_entity_id=str(target) if target else None,
            presentation=dict(data.get("presentation") or {}),
        )


class EntityDefinition(BaseModel):
    """
    A user-defined record type: one table per entity.
    """
    id: str = Field(..., min_length=1, max_length=64, description="Stable entity identifier")
    codename: str = Field(..., max_length=100)
    kind: EntityKind = Field(default=EntityKind.CATALOG)
    fields: List[FieldDefinition] = Field(default_factory=list)
    presentation: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}

    def get_field(self, field_id: str) -> Optional[FieldDefinition]:
        """Find a field by id."""
        for field in self.fields:
            if field.id == field_id:
                return field
        return None

    def reference_fields(self) -> List[FieldDefinition]:
        """REF fields with a target entity."""
        return [f for f in self.fields if f.is_reference]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EntityDefinition":
        """Build from a wire-level payload."""
        return cls(
            id=str(data["id"]),
            codename=str(data.get("codename", data["id"])),
            kind=EntityKind(data.get("kind", EntityKind.CATALOG.value)),
            fields=[FieldDefinition.from_dict(f) for f in data.get("fields") or []],
            presentation=dict(data.get("presentation") or {}),
        )


def find_entity(entities: List[EntityDefinition], entity_id: Optional[str]) -> Optional[EntityDefinition]:
    """Find an entity by id in a model."""
    if not entity_id:
        return None
    for entity in entities:
        if entity.id == entity_id:
            return entity
    return None


__all__ = ["EntityDefinition", "FieldDefinition", "find_entity"]
