# ============================================================================
# BASE REPOSITORY - ERROR HANDLING AND VALIDATION PATTERNS
# ============================================================================
# EPOCH: 1 - DYNAMIC SCHEMA MIGRATION
# STATUS: Infrastructure - Base repository patterns
# PURPOSE: Common validation, error handling, and logging for all repositories
# CREATED: 17 OCT 2026
# ============================================================================
"""
Base Repository Patterns

Abstract base class that provides common infrastructure for repositories
and DDL services:
- Consistent error handling with context managers
- Schema name validation before any DDL
- Migration state transition validation
- Standardized logging

Driver exceptions never leave this layer raw: _error_context wraps them in
RepositoryError so callers don't have to know psycopg's exception types.
"""

import logging
from abc import ABC
from contextlib import contextmanager
from enum import Enum
from typing import Any, Dict, Optional

from core.contracts import MigrationState
from core.schema.naming import SafeIdentifier, is_valid_schema_name

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Base exception for repository operations."""

    def __init__(self, message: str, operation: str = None, entity_id: str = None):
        self.operation = operation
        self.entity_id = entity_id
        super().__init__(message)


class ValidationError(RepositoryError):
    """Raised when validation fails (schema name, state transition, etc)."""

    def __init__(self, message: str, field: str = None, value: Any = None):
        self.field = field
        self.value = value
        super().__init__(message)


class PoolAcquireError(RepositoryError):
    """Raised when no pooled connection could be obtained in time."""


def validate_schema_name(schema_name: str) -> SafeIdentifier:
    """
    Validate a schema name and wrap it for DDL use.

    Raises:
        ValidationError: If the name is not a plain identifier
    """
    if not is_valid_schema_name(schema_name):
        raise ValidationError(
            f"Invalid schema name: {schema_name!r}",
            field="schema_name",
            value=schema_name,
        )
    return SafeIdentifier.of(schema_name)


def validate_transition(current: Enum, new: Enum, allowed_transitions: Dict[Any, set]) -> None:
    """
    Validate a state transition against an allowed-transitions map.

    Raises:
        ValidationError: If the transition is not allowed
    """
    if current == new:
        return  # No-op is always allowed

    allowed = allowed_transitions.get(current, set())
    if new not in allowed:
        raise ValidationError(
            f"Invalid state transition: {current.value} -> {new.value}. "
            f"Allowed from {current.value}: {sorted(s.value for s in allowed)}",
            field="state",
            value=f"{current.value} -> {new.value}",
        )


class BaseRepository(ABC):
    """
    Abstract base repository with common patterns.

    Provides:
    - Error context manager for consistent error handling
    - Schema name validation
    - Standardized logging
    """

    def __init__(self):
        """Initialize base repository."""
        self.logger = logging.getLogger(self.__class__.__name__)
        self.logger.debug(f"{self.__class__.__name__} initialized")

    @contextmanager
    def _error_context(self, operation: str, entity_id: Optional[str] = None):
        """
        Context manager for consistent error handling.

        All exceptions are logged with context before being re-raised as
        RepositoryError. ValidationError and PoolAcquireError already carry
        context and pass through unchanged.

        Args:
            operation: Human-readable description of the operation
            entity_id: Optional schema/migration id for context

        Example:
            with self._error_context("record migration", schema_name):
                await conn.execute(stmt, params)
        """
        try:
            yield
        except (ValidationError, PoolAcquireError):
            raise
        except Exception as e:
            error_msg = f"{operation} failed"
            if entity_id:
                error_msg += f" for {entity_id}"
            error_msg += f": {e}"
            self.logger.error(error_msg)
            raise RepositoryError(error_msg, operation=operation, entity_id=entity_id) from e

    def _validate_schema_name(self, schema_name: str) -> SafeIdentifier:
        return validate_schema_name(schema_name)


class AsyncBaseRepository(BaseRepository):
    """
    Base for repositories and services that work against the pool.

    Holds the injected PoolManager.
    """

    def __init__(self, db):
        super().__init__()
        self.db = db


# ============================================================================
# STATE TRANSITION RULES
# ============================================================================

MIGRATION_STATE_TRANSITIONS = {
    MigrationState.PENDING: {MigrationState.LOCKED, MigrationState.REFUSED},
    MigrationState.LOCKED: {MigrationState.IN_TRANSACTION, MigrationState.UNLOCKED},
    MigrationState.IN_TRANSACTION: {MigrationState.COMMITTED, MigrationState.ROLLED_BACK},
    MigrationState.COMMITTED: {MigrationState.UNLOCKED},
    MigrationState.ROLLED_BACK: {MigrationState.UNLOCKED},
    MigrationState.UNLOCKED: set(),  # Terminal
    MigrationState.REFUSED: set(),   # Terminal
}


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "BaseRepository",
    "AsyncBaseRepository",
    "RepositoryError",
    "ValidationError",
    "PoolAcquireError",
    "validate_schema_name",
    "validate_transition",
    "MIGRATION_STATE_TRANSITIONS",
]
