# ============================================================================
# INFRASTRUCTURE MODULE
# ============================================================================
# EPOCH: 1 - DYNAMIC SCHEMA MIGRATION
# STATUS: Infrastructure - Error types and advisory locking
# PURPOSE: Shared repository patterns and cross-process coordination
# CREATED: 17 OCT 2026
# ============================================================================
"""
Infrastructure module for the schema migration engine.

Provides:
- RepositoryError / ValidationError / PoolAcquireError: wrapped failures
- AsyncBaseRepository: error context and schema name validation
- LockService: per-schema advisory locks

Usage:
    from infrastructure import LockService

    lock_service = LockService()
    async with db.session() as conn:
        async with lock_service.schema_lock(conn, "app_abc") as acquired:
            ...
"""

from infrastructure.base_repository import (
    AsyncBaseRepository,
    BaseRepository,
    PoolAcquireError,
    RepositoryError,
    ValidationError,
    validate_schema_name,
)
from infrastructure.locking import (
    LockService,
    LockNotAcquired,
)

__all__ = [
    # Base patterns
    "AsyncBaseRepository",
    "BaseRepository",
    "RepositoryError",
    "ValidationError",
    "PoolAcquireError",
    "validate_schema_name",
    # Locking
    "LockService",
    "LockNotAcquired",
]
