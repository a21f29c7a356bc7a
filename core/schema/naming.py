# ============================================================================
# IDENTIFIER NAMING
# ============================================================================
# EPOCH: 1 - DYNAMIC SCHEMA MIGRATION
# STATUS: Core - Deterministic PostgreSQL identifier derivation
# PURPOSE: Schema, table, column and constraint names from opaque ids
# LAST_REVIEWED: 17 OCT 2026
# EXPORTS: SafeIdentifier, generate_schema_name, is_valid_schema_name,
#          generate_table_name, generate_column_name, build_fk_constraint_name
# DEPENDENCIES: hashlib, re
# ============================================================================
"""
Identifier Naming

Pure functions that derive PostgreSQL identifiers from entity/field ids.
Names are embedded in persisted snapshots, so for a fixed input the output
must never change between releases.

Identifiers cannot be bound as query parameters, so every name that reaches
DDL goes through SafeIdentifier.of() first. The DDL builders in
core.schema.ddl_utils only accept SafeIdentifier instances.

Usage:
    from core.schema.naming import generate_schema_name, SafeIdentifier

    schema = SafeIdentifier.of(generate_schema_name(application_id))
"""

import hashlib
import re
from typing import Union

from core.contracts import EntityKind

# PostgreSQL NAMEDATALEN - 1
MAX_IDENTIFIER_LENGTH = 63

_HASH_SUFFIX_LENGTH = 8
_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")


class SafeIdentifier(str):
    """
    A validated SQL identifier.

    Only SafeIdentifier.of() builds instances; constructing one directly
    raises TypeError so an unvalidated string can't be promoted by accident.
    """

    _token = object()

    def __new__(cls, value: str, _token: object = None):
        if _token is not cls._token:
            raise TypeError("Use SafeIdentifier.of() to build identifiers")
        return super().__new__(cls, value)

    @classmethod
    def of(cls, name: Union[str, "SafeIdentifier"]) -> "SafeIdentifier":
        """
        Validate and wrap an identifier.

        Raises:
            ValueError: If name is not a plain identifier or is too long
        """
        if isinstance(name, SafeIdentifier):
            return name
        if not isinstance(name, str) or not is_valid_identifier(name):
            raise ValueError(f"Invalid SQL identifier: {name!r}")
        return cls(name, _token=cls._token)


# ============================================================================
# HELPERS
# ============================================================================

def is_valid_identifier(name: str) -> bool:
    """Letters, digits, underscore; not starting with a digit; <= 63 chars."""
    return bool(name) and len(name) <= MAX_IDENTIFIER_LENGTH and bool(_IDENTIFIER_RE.match(name))


def _clean_id(raw_id: str) -> str:
    """Lowercase and drop everything that is not [a-z0-9]."""
    return _NON_ALNUM_RE.sub("", str(raw_id).lower())


def fit_identifier(name: str) -> str:
    """
    Bound a derived name to MAX_IDENTIFIER_LENGTH.

    Long names are cut and suffixed with "_" plus the first 8 hex chars of
    the SHA-256 of the full name, so two long names that share a prefix
    still map to different identifiers.
    """
    if len(name) <= MAX_IDENTIFIER_LENGTH:
        return name
    digest = hashlib.sha256(name.encode()).hexdigest()[:_HASH_SUFFIX_LENGTH]
    keep = MAX_IDENTIFIER_LENGTH - _HASH_SUFFIX_LENGTH - 1
    return f"{name[:keep]}_{digest}"


# ============================================================================
# NAME DERIVATION
# ============================================================================

def generate_schema_name(application_id: str) -> str:
    """app_<id without hyphens, lowercased>."""
    clean = str(application_id).replace("-", "").lower()
    return fit_identifier(f"app_{clean}")


def is_valid_schema_name(name: str) -> bool:
    """
    Check a schema name before it is used in DDL.

    CREATE SCHEMA can't take a bound parameter, so this is the only guard
    between caller input and the statement text.
    """
    return isinstance(name, str) and is_valid_identifier(name)


def generate_table_name(entity_id: str, kind: Union[EntityKind, str]) -> str:
    """<kind prefix>_<clean id>, e.g. cat_0192ab..."""
    prefix = EntityKind(kind).table_prefix
    return fit_identifier(f"{prefix}_{_clean_id(entity_id)}")


def generate_column_name(field_id: str) -> str:
    """attr_<clean id>. Derived from the id only; codenames are labels."""
    return fit_identifier(f"attr_{_clean_id(field_id)}")


def build_fk_constraint_name(table_name: str, column_name: str) -> str:
    """fk_<table>_<column>, hash-truncated to fit."""
    return fit_identifier(f"fk_{table_name}_{column_name}")


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "MAX_IDENTIFIER_LENGTH",
    "SafeIdentifier",
    "is_valid_identifier",
    "fit_identifier",
    "generate_schema_name",
    "is_valid_schema_name",
    "generate_table_name",
    "generate_column_name",
    "build_fk_constraint_name",
]
