# ============================================================================
# DISTRIBUTED LOCKING SERVICE
# ============================================================================
# EPOCH: 1 - DYNAMIC SCHEMA MIGRATION
# STATUS: Infrastructure - Concurrency control
# PURPOSE: PostgreSQL advisory locks serializing migrations per schema
# CREATED: 17 OCT 2026
# ============================================================================
"""
Distributed Locking Service

Uses PostgreSQL session-level advisory locks so that two processes never
run DDL against the same schema at once. Different schemas hash to
different keys and migrate in parallel.

Advisory locks are:
- Fast (in-memory, no disk I/O)
- Auto-release on disconnect (crash-safe)
- Support non-blocking try_lock semantics
- 64-bit key space

A session-level lock belongs to the connection that took it. The caller
passes that connection in and runs its own work on it, so a locked
migration needs exactly one pooled connection. The lock survives
ROLLBACK of transactions opened on the same connection.

Usage:
    from infrastructure.locking import LockService

    lock_service = LockService()

    async with db.session() as conn:
        async with lock_service.schema_lock(conn, "app_abc") as acquired:
            if acquired:
                async with conn.transaction():
                    await migrate(conn)
"""

import hashlib
import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from core.config.defaults import get_defaults
from infrastructure.base_repository import RepositoryError

logger = logging.getLogger(__name__)


def _first_value(row: Any, key: str) -> Any:
    """Read a single-column row from either dict_row or tuple factories."""
    if not row:
        return None
    return row[key] if hasattr(row, "keys") else row[0]


class LockService:
    """
    PostgreSQL-based distributed locking on a caller-supplied connection.
    """

    def __init__(self, lock_prefix: Optional[str] = None):
        """
        Initialize lock service.

        Args:
            lock_prefix: Namespace hashed in front of schema names
        """
        self.lock_prefix = lock_prefix or get_defaults().migration.lock_prefix

    @staticmethod
    def hash_to_lock_id(key: str) -> int:
        """
        Convert string key to int64 for PostgreSQL advisory lock.

        PostgreSQL advisory locks use bigint keys. We hash our string
        keys to get consistent int64 values.
        """
        # Use first 8 bytes of SHA256, interpret as signed int64
        h = hashlib.sha256(key.encode()).digest()[:8]
        return int.from_bytes(h, byteorder="big", signed=True)

    def schema_lock_key(self, schema_name: str) -> int:
        """Lock key for migrations of one schema."""
        return self.hash_to_lock_id(f"{self.lock_prefix}{schema_name}")

    # =========================================================================
    # ACQUIRE / RELEASE (Session-level)
    # =========================================================================

    async def try_acquire(self, conn, lock_key: int) -> bool:
        """
        Try to take a session-level advisory lock without blocking.

        The connection must not be inside a transaction block.

        Returns:
            True if acquired, False if another session holds it

        Raises:
            RepositoryError: If the lock query itself failed
        """
        try:
            result = await conn.execute(
                "SELECT pg_try_advisory_lock(%s) AS acquired",
                (lock_key,),
            )
            acquired = bool(_first_value(await result.fetchone(), "acquired"))
            # End the implicit transaction; the lock itself is session-scoped
            await conn.commit()
        except Exception as e:
            logger.error(f"Error acquiring advisory lock {lock_key}: {e}")
            raise RepositoryError(
                f"Advisory lock query failed: {e}",
                operation="acquire_advisory_lock",
            ) from e

        if acquired:
            logger.info(f"Acquired advisory lock (lock_id={lock_key})")
        else:
            logger.warning(
                f"Advisory lock {lock_key} is held elsewhere - "
                "another migration may be in progress"
            )
        return acquired

    async def release(self, conn, lock_key: int) -> bool:
        """
        Release a lock taken by try_acquire() on the same connection.

        If the unlock fails the connection is closed, which ends the
        session and with it the lock; the pool discards closed connections.

        Returns:
            True if the lock was held and released
        """
        try:
            result = await conn.execute(
                "SELECT pg_advisory_unlock(%s) AS released",
                (lock_key,),
            )
            released = bool(_first_value(await result.fetchone(), "released"))
            await conn.commit()
        except Exception as e:
            logger.warning(f"Error releasing advisory lock {lock_key}, closing session: {e}")
            await conn.close()
            return False

        if released:
            logger.info(f"Released advisory lock (lock_id={lock_key})")
        else:
            logger.warning(f"Release of advisory lock {lock_key} that is not held")
        return released

    @asynccontextmanager
    async def schema_lock(self, conn, schema_name: str, required: bool = False):
        """
        Context manager for per-schema locking on one connection.

        Args:
            conn: Connection outside any transaction block
            schema_name: Schema being migrated
            required: Raise LockNotAcquired instead of yielding False

        Yields:
            bool: True if lock acquired

        Usage:
            async with lock_service.schema_lock(conn, schema) as acquired:
                if acquired:
                    await apply(diff)
        """
        lock_key = self.schema_lock_key(schema_name)
        acquired = await self.try_acquire(conn, lock_key)
        if not acquired and required:
            raise LockNotAcquired("schema", schema_name)
        try:
            yield acquired
        finally:
            if acquired:
                await self.release(conn, lock_key)


class LockNotAcquired(Exception):
    """
    Raised when a required lock cannot be acquired.

    Use this when you need to signal the failure as an exception rather
    than a boolean return.
    """

    def __init__(self, lock_type: str, key: str):
        self.lock_type = lock_type
        self.key = key
        super().__init__(f"Failed to acquire {lock_type} lock for {key}")


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["LockService", "LockNotAcquired"]
