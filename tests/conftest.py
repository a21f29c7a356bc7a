# ============================================================================
# TEST FIXTURES
# ============================================================================
# EPOCH: 1 - DYNAMIC SCHEMA MIGRATION
# STATUS: Tests - Shared fakes for the pool and connections
# PURPOSE: Run DDL code paths without a live PostgreSQL
# CREATED: 17 OCT 2026
# ============================================================================
"""
Shared test fixtures.

FakeDatabase records every statement as text and answers queries from
scripted responses. FakePool / FakeConnection mimic the parts of
psycopg_pool.AsyncConnectionPool and psycopg.AsyncConnection the code
uses: getconn/putconn, execute, commit, transaction() (nested blocks are
savepoints) and advisory lock functions backed by a shared lock table.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import pytest
from psycopg import sql
from psycopg_pool import PoolTimeout

from core.config.defaults import DatabaseConfig, reset_defaults
from core.contracts import DataType, EntityKind
from core.models.entity import EntityDefinition, FieldDefinition
from repositories.database import PoolManager


def render(query: Any) -> str:
    """Statement text for assertions."""
    if isinstance(query, sql.Composable):
        return query.as_string(None)
    return str(query)


class FakeCursor:
    def __init__(self, rows: List[Dict[str, Any]]):
        self._rows = rows

    async def fetchone(self):
        return self._rows[0] if self._rows else None

    async def fetchall(self):
        return list(self._rows)


class FakeDatabase:
    """Statement log, scripted responses, failures and advisory locks."""

    def __init__(self):
        self.statements: List[str] = []
        self.params: List[Any] = []
        self.locks: Dict[int, object] = {}
        self._responses: List[list] = []
        self._failures: List[tuple] = []

    def respond(self, fragment: str, rows: List[Dict[str, Any]], once: bool = False) -> None:
        """Answer statements containing `fragment` with `rows` (first match wins)."""
        self._responses.append([fragment, rows, once])

    def fail_on(self, fragment: str, error: Optional[Exception] = None) -> None:
        """Raise when a statement containing `fragment` is executed."""
        self._failures.append((fragment, error or RuntimeError(f"simulated failure on {fragment}")))

    def rows_for(self, text: str) -> List[Dict[str, Any]]:
        for entry in self._responses:
            fragment, rows, once = entry
            if fragment in text:
                if once:
                    self._responses.remove(entry)
                return rows
        return []

    def executed(self, fragment: str) -> List[str]:
        """Logged statements containing `fragment`."""
        return [s for s in self.statements if fragment in s]

    @property
    def ddl(self) -> List[str]:
        """Statements other than transaction control and lock calls."""
        control = ("BEGIN", "COMMIT", "ROLLBACK", "SAVEPOINT", "RELEASE SAVEPOINT")
        return [
            s for s in self.statements
            if s not in control
            and not s.startswith("ROLLBACK TO")
            and "advisory" not in s
        ]


class FakeConnection:
    def __init__(self, db: FakeDatabase):
        self.db = db
        self.row_factory = None
        self.closed = False
        self._depth = 0

    async def execute(self, query, params=None):
        await asyncio.sleep(0)
        text = render(query)
        self.db.statements.append(text)
        self.db.params.append(params)

        for fragment, error in self.db._failures:
            if fragment in text:
                raise error

        if "pg_try_advisory_lock" in text:
            key = params[0]
            holder = self.db.locks.get(key)
            acquired = holder is None or holder is self
            if acquired:
                self.db.locks[key] = self
            return FakeCursor([{"acquired": acquired}])

        if "pg_advisory_unlock" in text:
            key = params[0]
            released = self.db.locks.get(key) is self
            if released:
                del self.db.locks[key]
            return FakeCursor([{"released": released}])

        return FakeCursor(self.db.rows_for(text))

    async def commit(self):
        self.db.statements.append("COMMIT")
        self.db.params.append(None)

    async def close(self):
        # Ending the session frees its advisory locks
        self.closed = True
        for key in [k for k, holder in self.db.locks.items() if holder is self]:
            del self.db.locks[key]

    @asynccontextmanager
    async def transaction(self):
        nested = self._depth > 0
        self._depth += 1
        self.db.statements.append("SAVEPOINT" if nested else "BEGIN")
        self.db.params.append(None)
        try:
            yield self
        except Exception:
            self.db.statements.append("ROLLBACK TO SAVEPOINT" if nested else "ROLLBACK")
            self.db.params.append(None)
            raise
        else:
            self.db.statements.append("RELEASE SAVEPOINT" if nested else "COMMIT")
            self.db.params.append(None)
        finally:
            self._depth -= 1


class FakePool:
    """
    Just enough of AsyncConnectionPool.

    getconn() waits, yielding to other tasks, until a connection is returned;
    it gives up with PoolTimeout after `max_waits` turns of the event loop.
    """

    def __init__(self, db: FakeDatabase, max_size: int = 4, max_waits: int = 1000):
        self.db = db
        self.max_size = max_size
        self.in_use: List[FakeConnection] = []
        self.max_waits = max_waits
        self.peak_in_use = 0
        self.exhausted = False
        self.closed = False

    async def getconn(self, timeout: Optional[float] = None) -> FakeConnection:
        waits = 0
        while self.exhausted or len(self.in_use) >= self.max_size:
            if self.exhausted or waits >= self.max_waits:
                raise PoolTimeout(f"couldn't get a connection after {timeout} sec")
            waits += 1
            await asyncio.sleep(0)
        conn = FakeConnection(self.db)
        self.in_use.append(conn)
        self.peak_in_use = max(self.peak_in_use, len(self.in_use))
        return conn

    async def putconn(self, conn: FakeConnection) -> None:
        self.in_use.remove(conn)

    def get_stats(self) -> Dict[str, int]:
        return {
            "pool_max": self.max_size,
            "pool_size": self.max_size,
            "pool_available": self.max_size - len(self.in_use),
            "requests_waiting": 0,
        }

    async def close(self) -> None:
        self.closed = True


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture(autouse=True)
def _fresh_defaults():
    reset_defaults()
    yield
    reset_defaults()


@pytest.fixture
def fake_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def fake_pool(fake_db) -> FakePool:
    return FakePool(fake_db)


@pytest.fixture
def pool_manager(fake_pool) -> PoolManager:
    return PoolManager(DatabaseConfig(), pool=fake_pool)


@pytest.fixture
def product_entity() -> EntityDefinition:
    """Product: name STRING required, price NUMBER required."""
    return EntityDefinition(
        id="product",
        codename="Product",
        kind=EntityKind.CATALOG,
        fields=[
            FieldDefinition(id="name", codename="name", data_type=DataType.STRING.value, is_required=True),
            FieldDefinition(id="price", codename="price", data_type=DataType.NUMBER.value, is_required=True),
        ],
    )


@pytest.fixture
def order_entity() -> EntityDefinition:
    """Order with a REF to product."""
    return EntityDefinition(
        id="order",
        codename="Order",
        kind=EntityKind.DOCUMENT,
        fields=[
            FieldDefinition(id="qty", codename="qty", data_type=DataType.NUMBER.value),
            FieldDefinition(
                id="item",
                codename="item",
                data_type=DataType.REF.value,
                target_entity_id="product",
            ),
        ],
    )


@pytest.fixture
def make_pool_manager(fake_db):
    """Another PoolManager (another process) on the same database."""
    def factory(pool_size: int = 4, **config_kwargs) -> PoolManager:
        return PoolManager(DatabaseConfig(**config_kwargs), pool=FakePool(fake_db, max_size=pool_size))
    return factory
