# ============================================================================
# SERVICES MODULE
# ============================================================================
# EPOCH: 1 - DYNAMIC SCHEMA MIGRATION
# STATUS: Core - Business logic layer
# PURPOSE: Schema generation, migration and sync services
# CREATED: 17 OCT 2026
# ============================================================================
"""
Services Module

Schema provisioning and migration.
Services coordinate the DDL builders with the history and metadata
repositories.

Usage:
    from services import SchemaSyncService

    sync_service = SchemaSyncService(db)
    result = await sync_service.sync(application_id, entities)
"""

from .schema_generator import SchemaGenerator
from .schema_migrator import SchemaMigrator, MigrationChangeError
from .schema_service import SchemaSyncService

__all__ = [
    "SchemaGenerator",
    "SchemaMigrator",
    "MigrationChangeError",
    "SchemaSyncService",
]
