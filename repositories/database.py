# ============================================================================
# DATABASE CONNECTION POOL
# ============================================================================
# EPOCH: 1 - DYNAMIC SCHEMA MIGRATION
# STATUS: Core - Async PostgreSQL connection management
# PURPOSE: Single process-wide pool with pressure logging and advisory locks
# CREATED: 17 OCT 2026
# ============================================================================
"""
Database Connection Pool

Manages async PostgreSQL connections using psycopg3 and psycopg_pool.
One PoolManager per process: get_instance() builds it on first use and
close_instance() tears it down. Components receive the manager through
their constructors and never build pools of their own.

The database is shared with a separately pooled ORM layer, so the pool is
sized from DATABASE_CONNECTION_BUDGET and kept below half of it (see
core.config.defaults.DatabaseConfig).

Usage:
    from repositories.database import get_instance

    db = get_instance()
    async with db.connection() as conn:
        await conn.execute("SELECT 1")
"""

import asyncio
import base64
import logging
import os
import tempfile
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from psycopg.conninfo import make_conninfo
from psycopg_pool import AsyncConnectionPool, PoolTimeout

from core.config.defaults import ConfigurationError, DatabaseConfig, MigrationDefaults, get_defaults
from infrastructure.base_repository import PoolAcquireError
from infrastructure.locking import LockService

logger = logging.getLogger(__name__)


class PoolManager:
    """
    Owner of the process-wide connection pool.

    Exposes:
    - connection(): transactional connection with pressure hooks
    - session(): connection without a transaction (migrations lock on it)
    - pool_state(): used/free/pending versus max
    - acquire_advisory_lock() / release_advisory_lock(): per-schema locks
    - destroy(): shutdown

    Usage:
        async with PoolManager(DatabaseConfig.from_env()) as db:
            async with db.connection() as conn:
                ...
    """

    def __init__(
        self,
        config: Optional[DatabaseConfig] = None,
        pool: Optional[AsyncConnectionPool] = None,
        defaults: Optional[MigrationDefaults] = None,
    ):
        """
        Args:
            config: Connection settings (validated unless a pool is injected)
            pool: Pre-built pool (tests)
            defaults: Pressure threshold, heartbeat interval, lock prefix
        """
        if pool is None:
            self.config = (config or DatabaseConfig.from_env()).validate()
        else:
            self.config = config or DatabaseConfig()
        self.defaults = defaults or get_defaults().migration

        self.max_size = self.config.effective_pool_size()
        requested = self.config.requested_pool_size()
        if requested > self.max_size:
            logger.warning(
                f"Pool size {requested} reduced to {self.max_size} to stay below half "
                f"of the connection budget ({self.config.connection_budget})"
            )

        self.acquire_timeout, self.idle_timeout, self.create_timeout = (
            self.config.effective_timeouts()
        )
        if self.config.is_transaction_pooler:
            logger.warning(
                f"Port {self.config.port} is a transaction pooler: session state "
                "(advisory locks, SET) is unreliable; timeouts shortened to "
                f"acquire={self.acquire_timeout}s idle={self.idle_timeout}s "
                f"create={self.create_timeout}s"
            )

        self._pool: Optional[AsyncConnectionPool] = pool
        self._injected = pool is not None
        self._open_lock = asyncio.Lock()
        self.locks = LockService(self.defaults.lock_prefix)
        self._held_locks: Dict[int, Any] = {}
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._ssl_ca_path: Optional[str] = None
        self._acquire_failures = 0

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def _write_ssl_ca(self) -> Optional[str]:
        """Decode DATABASE_SSL_KEY_BASE64 into a temp file for sslrootcert."""
        if not self.config.ssl_ca_base64:
            return None
        try:
            pem = base64.b64decode(self.config.ssl_ca_base64, validate=True)
        except ValueError as e:
            raise ConfigurationError(f"DATABASE_SSL_KEY_BASE64 is not valid base64: {e}") from e
        with tempfile.NamedTemporaryFile("wb", suffix=".pem", delete=False) as handle:
            handle.write(pem)
        return handle.name

    def _conninfo(self) -> str:
        kwargs = self.config.connection_kwargs()
        kwargs["connect_timeout"] = max(1, int(self.create_timeout))
        self._ssl_ca_path = self._write_ssl_ca()
        if self._ssl_ca_path:
            kwargs["sslrootcert"] = self._ssl_ca_path
        return make_conninfo(**kwargs)

    async def open(self) -> AsyncConnectionPool:
        """
        Build and open the pool on first use.

        Returns:
            The underlying AsyncConnectionPool
        """
        if self._pool is not None:
            self._ensure_heartbeat()
            return self._pool

        async with self._open_lock:
            if self._pool is not None:
                return self._pool

            logger.info(
                f"Initializing connection pool: {self.config.host}:{self.config.port}/"
                f"{self.config.dbname} (max={self.max_size})"
            )
            pool = AsyncConnectionPool(
                conninfo=self._conninfo(),
                min_size=1,
                max_size=self.max_size,
                timeout=self.acquire_timeout,
                max_idle=self.idle_timeout,
                reconnect_timeout=self.create_timeout,
                open=False,  # We'll open it explicitly
            )
            try:
                await pool.open(wait=True, timeout=self.create_timeout)
            except PoolTimeout as e:
                await pool.close()
                self._on_acquire_failure(e)
                raise PoolAcquireError(
                    f"Could not open connection pool within {self.create_timeout}s: {e}",
                    operation="open",
                ) from e

            self._pool = pool
            logger.info(f"Connection pool opened (max={self.max_size})")

            self._ensure_heartbeat()
            return pool

    @property
    def pool(self) -> AsyncConnectionPool:
        """The opened pool. Call open() (or use connection()) first."""
        if self._pool is None:
            raise RuntimeError("Connection pool is not open")
        return self._pool

    async def destroy(self) -> None:
        """Release held locks, stop the heartbeat and close the pool."""
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            try:
                await self._heartbeat_task
            except asyncio.CancelledError:
                pass
            self._heartbeat_task = None

        for lock_key in list(self._held_locks):
            await self.release_advisory_lock(lock_key)

        if self._pool is not None:
            if not self._injected:
                await self._pool.close()
            self._pool = None
            logger.info("Connection pool closed")

        if self._ssl_ca_path:
            try:
                os.unlink(self._ssl_ca_path)
            except FileNotFoundError:
                pass
            self._ssl_ca_path = None

    async def __aenter__(self) -> "PoolManager":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.destroy()

    # =========================================================================
    # CONNECTIONS
    # =========================================================================

    async def _getconn(self, operation: str):
        pool = await self.open()
        try:
            conn = await pool.getconn(timeout=self.acquire_timeout)
        except PoolTimeout as e:
            self._on_acquire_failure(e)
            raise PoolAcquireError(
                f"Timed out after {self.acquire_timeout}s waiting for a database connection",
                operation=operation,
            ) from e
        self._on_acquire()
        return conn

    async def _putconn(self, conn) -> None:
        await self.pool.putconn(conn)
        self._on_release()

    @asynccontextmanager
    async def session(self):
        """
        Borrow a connection with no transaction opened around it.

        For work that needs session state across transactions, such as an
        advisory lock held while conn.transaction() blocks run.

        Raises:
            PoolAcquireError: If no connection frees up within acquire_timeout
        """
        conn = await self._getconn("session")
        try:
            yield conn
        except Exception as e:
            self._on_error(e)
            raise
        finally:
            await self._putconn(conn)

    @asynccontextmanager
    async def connection(self):
        """
        Borrow a connection inside a transaction.

        The transaction commits when the block exits normally and rolls back
        on exception. Nested conn.transaction() blocks become savepoints.

        Raises:
            PoolAcquireError: If no connection frees up within acquire_timeout
        """
        conn = await self._getconn("connection")
        try:
            async with conn.transaction():
                yield conn
        except Exception as e:
            self._on_error(e)
            raise
        finally:
            await self._putconn(conn)

    # =========================================================================
    # PRESSURE MONITORING
    # =========================================================================

    def pool_state(self) -> Dict[str, Any]:
        """
        Snapshot of pool utilisation.

        Returns:
            Dict with max, size, used, free, pending and utilization (0..1)
        """
        if self._pool is None:
            return {"max": self.max_size, "size": 0, "used": 0, "free": 0,
                    "pending": 0, "utilization": 0.0}
        stats = self._pool.get_stats()
        pool_max = stats.get("pool_max", self.max_size) or self.max_size
        size = stats.get("pool_size", 0)
        free = stats.get("pool_available", 0)
        used = max(0, size - free)
        return {
            "max": pool_max,
            "size": size,
            "used": used,
            "free": free,
            "pending": stats.get("requests_waiting", 0),
            "utilization": used / pool_max if pool_max else 0.0,
        }

    def _log_pool_state(self, event: str, error: Optional[BaseException] = None) -> None:
        """
        Log pool state only when it is worth reading.

        error / acquire failure -> ERROR, pressure -> WARNING, debug flag -> DEBUG.
        """
        state = self.pool_state()
        summary = (
            f"Pool {event}: used={state['used']}/{state['max']} free={state['free']} "
            f"pending={state['pending']}"
        )
        if error is not None:
            logger.error(f"{summary} error={error}")
        elif state["utilization"] >= self.defaults.pressure_threshold or state["pending"] > 0:
            logger.warning(f"{summary} (utilization {state['utilization']:.0%})")
        elif self.config.pool_debug:
            logger.debug(summary)

    def _on_acquire(self) -> None:
        self._log_pool_state("acquire")

    def _on_release(self) -> None:
        self._log_pool_state("release")

    def _on_error(self, error: BaseException) -> None:
        self._log_pool_state("error", error)

    def _on_acquire_failure(self, error: BaseException) -> None:
        self._acquire_failures += 1
        self._log_pool_state("acquire failed", error)

    @property
    def acquire_failures(self) -> int:
        return self._acquire_failures

    def _ensure_heartbeat(self) -> None:
        if self.config.pool_debug and self._heartbeat_task is None:
            self._heartbeat_task = asyncio.create_task(self._heartbeat())

    async def _heartbeat(self) -> None:
        """Periodic status line; only runs with DATABASE_POOL_DEBUG set."""
        interval = self.defaults.heartbeat_interval_seconds
        while True:
            await asyncio.sleep(interval)
            state = self.pool_state()
            logger.info(
                f"Pool status: used={state['used']}/{state['max']} "
                f"free={state['free']} pending={state['pending']}"
            )

    # =========================================================================
    # ADVISORY LOCKS
    # =========================================================================

    def uuid_to_lock_key(self, schema_name: str) -> int:
        """Deterministic int64 lock key for a schema."""
        return self.locks.schema_lock_key(schema_name)

    async def acquire_advisory_lock(self, lock_key: int) -> bool:
        """
        Non-blocking session-level lock on a dedicated connection.

        The connection stays checked out until release_advisory_lock().
        Migrations lock on their own transaction connection instead
        (see session()).

        Returns:
            True if acquired, False if held elsewhere

        Raises:
            PoolAcquireError: If no connection could be obtained
            RepositoryError: If the lock query failed
        """
        if lock_key in self._held_locks:
            logger.warning(f"Advisory lock {lock_key} already held by this process")
            return False

        conn = await self._getconn("acquire_advisory_lock")
        try:
            acquired = await self.locks.try_acquire(conn, lock_key)
        except Exception:
            await self._putconn(conn)
            raise

        if acquired:
            self._held_locks[lock_key] = conn
        else:
            await self._putconn(conn)
        return acquired

    async def release_advisory_lock(self, lock_key: int) -> bool:
        """Release a lock from acquire_advisory_lock() and return its connection."""
        conn = self._held_locks.pop(lock_key, None)
        if conn is None:
            logger.warning(f"Release of advisory lock {lock_key} that is not held")
            return False
        try:
            return await self.locks.release(conn, lock_key)
        finally:
            await self._putconn(conn)


# ============================================================================
# PROCESS-WIDE INSTANCE
# ============================================================================

_instance: Optional[PoolManager] = None


def get_instance(config: Optional[DatabaseConfig] = None) -> PoolManager:
    """
    Get the process-wide PoolManager, constructing it on first call.

    Construction validates configuration (ConfigurationError if incomplete);
    the pool itself opens lazily on first connection.
    """
    global _instance

    if _instance is None:
        _instance = PoolManager(config or DatabaseConfig.from_env())
    elif config is not None:
        logger.warning("PoolManager already initialized, ignoring new config")

    return _instance


async def close_instance() -> None:
    """Destroy the process-wide PoolManager."""
    global _instance

    if _instance is not None:
        await _instance.destroy()
        _instance = None


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["PoolManager", "get_instance", "close_instance"]
