# ============================================================================
# CONNECTION POOL TESTS
# ============================================================================
# EPOCH: 1 - DYNAMIC SCHEMA MIGRATION
# STATUS: Tests - PoolManager, config sizing and advisory locks
# PURPOSE: Verify sizing, pooler mode, fail-fast config, transactions, locks
# CREATED: 17 OCT 2026
# ============================================================================
"""
Connection Pool Tests

Covers:
1. DATABASE_* environment parsing and fail-fast validation
2. Pool size clamped below half the connection budget
3. Transaction-pooler port shortens timeouts
4. connection() commits, rolls back and always returns the connection
5. Acquire timeouts surface as PoolAcquireError
6. Advisory locks: contention, release, release after failure
7. Process-wide instance lifecycle

Run with:
    pytest tests/test_database_pool.py -v
"""

import asyncio
import logging
from unittest.mock import patch

import pytest

import repositories.database as database_module
from core.config.defaults import ConfigurationError, DatabaseConfig, MigrationDefaults
from infrastructure.base_repository import PoolAcquireError, RepositoryError
from infrastructure.locking import LockService
from repositories.database import PoolManager, close_instance, get_instance


ENV = {
    "DATABASE_HOST": "db.internal",
    "DATABASE_USER": "svc",
    "DATABASE_PASSWORD": "secret",
    "DATABASE_NAME": "apps",
}


# ============================================================================
# CONFIG
# ============================================================================

class TestDatabaseConfig:

    def test_from_env_reads_required_values(self):
        with patch.dict("os.environ", ENV, clear=True):
            config = DatabaseConfig.from_env()
        assert config.host == "db.internal"
        assert config.port == 5432
        assert config.connection_budget == 15
        assert config.acquire_timeout == 10.0

    def test_missing_values_fail_fast(self):
        with patch.dict("os.environ", {"DATABASE_HOST": "db"}, clear=True):
            with pytest.raises(ConfigurationError) as exc:
                DatabaseConfig.from_env()
        assert set(exc.value.missing) == {"DATABASE_USER", "DATABASE_PASSWORD", "DATABASE_NAME"}

    def test_bad_number_is_configuration_error(self):
        with patch.dict("os.environ", {**ENV, "DATABASE_PORT": "abc"}, clear=True):
            with pytest.raises(ConfigurationError):
                DatabaseConfig.from_env()

    def test_pool_manager_without_config_fails_fast(self):
        with patch.dict("os.environ", {}, clear=True):
            with pytest.raises(ConfigurationError):
                PoolManager()

    def test_password_not_in_repr(self):
        assert "secret" not in repr(DatabaseConfig(password="secret"))

    def test_ssl_mode(self):
        assert DatabaseConfig(ssl=True).connection_kwargs()["sslmode"] == "require"
        assert DatabaseConfig(ssl_ca_base64="QUJD").connection_kwargs()["sslmode"] == "verify-ca"
        assert "sslmode" not in DatabaseConfig().connection_kwargs()

    def test_statement_timeout_option(self):
        kwargs = DatabaseConfig(statement_timeout_ms=30000).connection_kwargs()
        assert kwargs["options"] == "-c statement_timeout=30000"


class TestPoolSizing:

    def test_default_is_third_of_budget(self):
        assert DatabaseConfig(connection_budget=15).effective_pool_size() == 5

    @pytest.mark.parametrize("budget,pool_max,expected", [
        (15, 20, 7),
        (10, 10, 4),
        (2, 5, 1),
        (1, None, 1),
    ])
    def test_clamped_below_half_budget(self, budget, pool_max, expected):
        config = DatabaseConfig(connection_budget=budget, pool_max=pool_max)
        size = config.effective_pool_size()
        assert size == expected
        assert size >= 1
        if budget > 2:
            assert size < budget / 2

    def test_reduction_is_logged(self, fake_pool, caplog):
        with caplog.at_level(logging.WARNING, logger="repositories.database"):
            manager = PoolManager(DatabaseConfig(pool_max=50), pool=fake_pool)
        assert manager.max_size == 7
        assert "reduced to 7" in caplog.text


class TestTransactionPooler:

    def test_detected_on_6543(self):
        assert DatabaseConfig(port=6543).is_transaction_pooler
        assert not DatabaseConfig(port=5432).is_transaction_pooler

    def test_timeouts_halved_and_capped(self):
        assert DatabaseConfig(port=6543).effective_timeouts() == (5.0, 10.0, 5.0)
        short = DatabaseConfig(port=6543, acquire_timeout=4, idle_timeout=6, create_timeout=2)
        assert short.effective_timeouts() == (2.0, 3.0, 1.0)

    def test_direct_port_keeps_timeouts(self):
        assert DatabaseConfig().effective_timeouts() == (10.0, 20.0, 15.0)

    def test_pooler_mode_warns(self, fake_pool, caplog):
        with caplog.at_level(logging.WARNING, logger="repositories.database"):
            manager = PoolManager(DatabaseConfig(port=6543), pool=fake_pool)
        assert manager.acquire_timeout == 5.0
        assert "transaction pooler" in caplog.text


# ============================================================================
# CONNECTIONS
# ============================================================================

class TestConnection:

    def test_commits_and_returns_connection(self, pool_manager, fake_db, fake_pool):
        async def run():
            async with pool_manager.connection() as conn:
                await conn.execute("SELECT 1")

        asyncio.run(run())
        assert fake_db.statements == ["BEGIN", "SELECT 1", "COMMIT"]
        assert fake_pool.in_use == []

    def test_rolls_back_and_reraises(self, pool_manager, fake_db, fake_pool):
        async def run():
            async with pool_manager.connection() as conn:
                await conn.execute("SELECT 1")
                raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            asyncio.run(run())
        assert fake_db.statements[-1] == "ROLLBACK"
        assert fake_pool.in_use == []

    def test_acquire_timeout_raises_pool_acquire_error(self, pool_manager, fake_pool, caplog):
        fake_pool.exhausted = True

        async def run():
            async with pool_manager.connection():
                pass

        with caplog.at_level(logging.ERROR, logger="repositories.database"):
            with pytest.raises(PoolAcquireError):
                asyncio.run(run())
        assert pool_manager.acquire_failures == 1
        assert "acquire failed" in caplog.text


    def test_session_has_no_transaction(self, pool_manager, fake_db, fake_pool):
        async def run():
            async with pool_manager.session() as conn:
                await conn.execute("SELECT 1")
                return len(fake_pool.in_use)

        assert asyncio.run(run()) == 1
        assert fake_db.statements == ["SELECT 1"]
        assert fake_pool.in_use == []

    def test_pressure_warning_when_pool_nearly_full(self, pool_manager, fake_pool, caplog):
        fake_pool.max_size = 2

        async def run():
            held = await fake_pool.getconn()
            async with pool_manager.connection():
                pass
            await fake_pool.putconn(held)

        with caplog.at_level(logging.WARNING, logger="repositories.database"):
            asyncio.run(run())
        assert "Pool acquire: used=2/2" in caplog.text

    def test_pool_state(self, pool_manager, fake_pool):
        async def run():
            await pool_manager.open()
            async with pool_manager.connection():
                return pool_manager.pool_state()

        state = asyncio.run(run())
        assert state["max"] == 4
        assert state["used"] == 1
        assert state["free"] == 3
        assert state["utilization"] == 0.25


# ============================================================================
# ADVISORY LOCKS
# ============================================================================

class TestAdvisoryLocks:

    def test_lock_key_is_deterministic_per_schema(self, pool_manager):
        assert pool_manager.uuid_to_lock_key("app_x") == pool_manager.uuid_to_lock_key("app_x")
        assert pool_manager.uuid_to_lock_key("app_x") != pool_manager.uuid_to_lock_key("app_y")

    def test_contention_between_processes(self, pool_manager, make_pool_manager):
        other = make_pool_manager()
        key = pool_manager.uuid_to_lock_key("app_x")

        async def run():
            first = await pool_manager.acquire_advisory_lock(key)
            blocked = await other.acquire_advisory_lock(key)
            await pool_manager.release_advisory_lock(key)
            after_release = await other.acquire_advisory_lock(key)
            await other.release_advisory_lock(key)
            return first, blocked, after_release

        assert asyncio.run(run()) == (True, False, True)

    def test_different_schemas_lock_independently(self, pool_manager, make_pool_manager):
        other = make_pool_manager()

        async def run():
            a = await pool_manager.acquire_advisory_lock(pool_manager.uuid_to_lock_key("app_a"))
            b = await other.acquire_advisory_lock(pool_manager.uuid_to_lock_key("app_b"))
            return a, b

        assert asyncio.run(run()) == (True, True)

    def test_held_lock_pins_one_connection(self, pool_manager, fake_pool):
        key = pool_manager.uuid_to_lock_key("app_x")

        async def run():
            await pool_manager.acquire_advisory_lock(key)
            held = len(fake_pool.in_use)
            await pool_manager.release_advisory_lock(key)
            return held

        assert asyncio.run(run()) == 1
        assert fake_pool.in_use == []

    def test_lock_key_uses_injected_prefix(self, fake_pool):
        manager = PoolManager(DatabaseConfig(), pool=fake_pool, defaults=MigrationDefaults(lock_prefix="tenant:"))
        assert manager.uuid_to_lock_key("app_x") == LockService.hash_to_lock_id("tenant:app_x")

    def test_lock_query_error_returns_connection(self, pool_manager, fake_db, fake_pool):
        fake_db.fail_on("pg_try_advisory_lock", RuntimeError("connection reset"))
        with pytest.raises(RepositoryError):
            asyncio.run(pool_manager.acquire_advisory_lock(1))
        assert fake_pool.in_use == []

    def test_double_acquire_in_same_process_is_refused(self, pool_manager):
        key = pool_manager.uuid_to_lock_key("app_x")

        async def run():
            first = await pool_manager.acquire_advisory_lock(key)
            second = await pool_manager.acquire_advisory_lock(key)
            await pool_manager.release_advisory_lock(key)
            return first, second

        assert asyncio.run(run()) == (True, False)

    def test_release_of_unheld_lock(self, pool_manager):
        assert asyncio.run(pool_manager.release_advisory_lock(12345)) is False

    def test_lock_acquire_without_connection_raises(self, pool_manager, fake_pool):
        fake_pool.exhausted = True
        with pytest.raises(PoolAcquireError):
            asyncio.run(pool_manager.acquire_advisory_lock(1))

    def test_destroy_releases_locks_and_keeps_injected_pool(self, pool_manager, fake_db, fake_pool):
        async def run():
            await pool_manager.acquire_advisory_lock(pool_manager.uuid_to_lock_key("app_x"))
            await pool_manager.destroy()

        asyncio.run(run())
        assert fake_db.locks == {}
        assert fake_pool.in_use == []
        assert not fake_pool.closed


# ============================================================================
# PROCESS-WIDE INSTANCE
# ============================================================================

class TestInstance:

    def test_constructed_once(self):
        config = DatabaseConfig(host="h", user="u", password="p", dbname="d")
        with patch.object(database_module, "_instance", None):
            first = get_instance(config)
            second = get_instance()
            assert first is second
            asyncio.run(close_instance())
            assert database_module._instance is None

    def test_invalid_config_raises(self):
        with patch.object(database_module, "_instance", None):
            with pytest.raises(ConfigurationError):
                get_instance(DatabaseConfig(host="h"))
