# ============================================================================
# CONFIGURATION MODULE
# ============================================================================
# EPOCH: 1 - DYNAMIC SCHEMA MIGRATION
# STATUS: Core - Configuration and defaults
# PURPOSE: Centralized configuration management
# CREATED: 17 OCT 2026
# ============================================================================
"""
Configuration Module

Provides database connectivity settings and migration defaults.
"""

from core.config.defaults import (
    ConfigurationError,
    DatabaseConfig,
    MigrationDefaults,
    get_defaults,
    reset_defaults,
)

__all__ = [
    "ConfigurationError",
    "DatabaseConfig",
    "MigrationDefaults",
    "get_defaults",
    "reset_defaults",
]
