# ============================================================================
# SCHEMA MODULE
# ============================================================================
# EPOCH: 1 - DYNAMIC SCHEMA MIGRATION
# STATUS: Core - Pure schema logic (no I/O)
# PURPOSE: Naming, snapshots, diffing and DDL composition
# LAST_REVIEWED: 17 OCT 2026
# ============================================================================

from core.schema.naming import (
    SafeIdentifier,
    generate_schema_name,
    is_valid_schema_name,
    generate_table_name,
    generate_column_name,
    build_fk_constraint_name,
)
from core.schema.snapshot import (
    CURRENT_SCHEMA_SNAPSHOT_VERSION,
    UnsupportedSnapshotError,
    build_schema_snapshot,
    ensure_supported_snapshot,
    snapshot_from_dict,
)
from core.schema.diff import calculate_schema_diff, order_changes_for_apply
from core.schema.ddl_utils import (
    DATA_TYPE_MAP,
    map_data_type,
    is_supported_cast,
    SchemaUtils,
    TableBuilder,
    ColumnBuilder,
    ConstraintBuilder,
    TriggerBuilder,
)

__all__ = [
    # Naming
    "SafeIdentifier",
    "generate_schema_name",
    "is_valid_schema_name",
    "generate_table_name",
    "generate_column_name",
    "build_fk_constraint_name",
    # Snapshots
    "CURRENT_SCHEMA_SNAPSHOT_VERSION",
    "UnsupportedSnapshotError",
    "build_schema_snapshot",
    "ensure_supported_snapshot",
    "snapshot_from_dict",
    # Diff
    "calculate_schema_diff",
    "order_changes_for_apply",
    # DDL
    "DATA_TYPE_MAP",
    "map_data_type",
    "is_supported_cast",
    "SchemaUtils",
    "TableBuilder",
    "ColumnBuilder",
    "ConstraintBuilder",
    "TriggerBuilder",
]
