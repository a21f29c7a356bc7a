# ============================================================================
# REPOSITORIES MODULE
# ============================================================================
# EPOCH: 1 - DYNAMIC SCHEMA MIGRATION
# STATUS: Core - Database access layer
# PURPOSE: Pool management, migration history and system metadata
# CREATED: 17 OCT 2026
# ============================================================================
"""
Repositories Module

Provides database access for the migration engine.
Uses psycopg3 async with connection pooling.

Usage:
    from repositories import get_instance, MigrationManager

    db = get_instance()
    history = await MigrationManager(db).list_migrations("app_abc")
"""

from .database import PoolManager, get_instance, close_instance
from .migration_repo import MigrationManager, generate_migration_name
from .metadata_repo import SystemMetadataRepository

__all__ = [
    "PoolManager",
    "get_instance",
    "close_instance",
    "MigrationManager",
    "generate_migration_name",
    "SystemMetadataRepository",
]
