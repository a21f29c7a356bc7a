# ============================================================================
# CONFIGURATION DEFAULTS
# ============================================================================
# EPOCH: 1 - DYNAMIC SCHEMA MIGRATION
# STATUS: Core - Default configuration values
# PURPOSE: Database connectivity, pool sizing and migration defaults
# CREATED: 17 OCT 2026
# ============================================================================
"""
Configuration Defaults

Database connectivity and migration settings, read from environment
variables.

Design:
- Immutable dataclasses for defaults
- Environment variable overrides
- Type-safe access

The pool shares the database's connection budget with a separately pooled
ORM layer, so it is sized as a fraction of DATABASE_CONNECTION_BUDGET and
always kept below half of it.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

# Supabase-style transaction pooler port
TRANSACTION_POOLER_PORT = 6543

# Pooler mode caps (seconds): acquire, idle, create
_POOLER_TIMEOUT_CAPS = (5.0, 10.0, 5.0)


class ConfigurationError(ValueError):
    """Raised when required configuration is missing or invalid. Fatal."""

    def __init__(self, message: str, missing: Optional[List[str]] = None):
        self.missing = missing or []
        super().__init__(message)


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from e


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from e


@dataclass(frozen=True)
class DatabaseConfig:
    """
    Connection parameters and pool limits.

    host/user/password/dbname are required; validate() fails fast when any
    of them is missing.
    """
    host: str = ""
    port: int = 5432
    user: str = ""
    password: str = field(default="", repr=False)
    dbname: str = ""
    ssl: bool = False
    ssl_ca_base64: Optional[str] = field(default=None, repr=False)

    # Pool sizing
    pool_max: Optional[int] = None
    connection_budget: int = 15

    # Timeouts (seconds)
    acquire_timeout: float = 10.0
    idle_timeout: float = 20.0
    create_timeout: float = 15.0
    statement_timeout_ms: int = 0

    pool_debug: bool = False

    @property
    def is_transaction_pooler(self) -> bool:
        """Port 6543 is the transaction pooler: weaker session semantics."""
        return self.port == TRANSACTION_POOLER_PORT

    @property
    def pool_ceiling(self) -> int:
        """Largest pool that stays strictly below half the budget."""
        return max(1, (self.connection_budget - 1) // 2)

    def requested_pool_size(self) -> int:
        """DATABASE_POOL_MAX if set, otherwise a third of the budget."""
        if self.pool_max is not None:
            return max(1, self.pool_max)
        return max(1, self.connection_budget // 3)

    def effective_pool_size(self) -> int:
        return min(self.requested_pool_size(), self.pool_ceiling)

    def effective_timeouts(self) -> Tuple[float, float, float]:
        """(acquire, idle, create), shortened in transaction-pooler mode."""
        timeouts = (self.acquire_timeout, self.idle_timeout, self.create_timeout)
        if not self.is_transaction_pooler:
            return timeouts
        return tuple(
            min(value / 2, cap) for value, cap in zip(timeouts, _POOLER_TIMEOUT_CAPS)
        )

    def validate(self) -> "DatabaseConfig":
        """
        Check required connection parameters.

        Raises:
            ConfigurationError: Listing every missing variable
        """
        required = {
            "DATABASE_HOST": self.host,
            "DATABASE_USER": self.user,
            "DATABASE_PASSWORD": self.password,
            "DATABASE_NAME": self.dbname,
        }
        missing = [name for name, value in required.items() if not value]
        if missing:
            raise ConfigurationError(
                f"Missing required database configuration: {', '.join(missing)}",
                missing=missing,
            )
        if self.connection_budget < 1:
            raise ConfigurationError("DATABASE_CONNECTION_BUDGET must be >= 1")
        return self

    def connection_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for psycopg.conninfo.make_conninfo."""
        kwargs: Dict[str, Any] = {
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "password": self.password,
            "dbname": self.dbname,
            "application_name": "metaschema",
        }
        if self.ssl or self.ssl_ca_base64:
            kwargs["sslmode"] = "verify-ca" if self.ssl_ca_base64 else "require"
        if self.statement_timeout_ms > 0:
            kwargs["options"] = f"-c statement_timeout={self.statement_timeout_ms}"
        return kwargs

    @classmethod
    def from_env(cls) -> "DatabaseConfig":
        """Create from environment variables and validate."""
        return cls(
            host=os.getenv("DATABASE_HOST", ""),
            port=_env_int("DATABASE_PORT", 5432),
            user=os.getenv("DATABASE_USER", ""),
            password=os.getenv("DATABASE_PASSWORD", ""),
            dbname=os.getenv("DATABASE_NAME", ""),
            ssl=_env_bool("DATABASE_SSL"),
            ssl_ca_base64=os.getenv("DATABASE_SSL_KEY_BASE64") or None,
            pool_max=_env_int("DATABASE_POOL_MAX", None),
            connection_budget=_env_int("DATABASE_CONNECTION_BUDGET", 15),
            acquire_timeout=_env_float("DATABASE_POOL_ACQUIRE_TIMEOUT", 10.0),
            idle_timeout=_env_float("DATABASE_POOL_IDLE_TIMEOUT", 20.0),
            create_timeout=_env_float("DATABASE_POOL_CREATE_TIMEOUT", 15.0),
            statement_timeout_ms=_env_int("DATABASE_STATEMENT_TIMEOUT_MS", 0),
            pool_debug=_env_bool("DATABASE_POOL_DEBUG"),
        ).validate()


@dataclass(frozen=True)
class MigrationDefaults:
    """
    Defaults for migration application and history.
    """
    # Advisory lock namespace (hashed with the schema name)
    lock_prefix: str = "metaschema:migration:"

    # Migration naming
    default_description: str = "schema_sync"
    max_description_length: int = 50

    # History paging
    list_limit: int = 50

    # System tables inside each managed schema
    migrations_table: str = "_sys_migrations"
    objects_table: str = "_sys_objects"
    attributes_table: str = "_sys_attributes"

    # Pool pressure reporting
    pressure_threshold: float = 0.7
    heartbeat_interval_seconds: float = 10.0

    @classmethod
    def from_env(cls) -> "MigrationDefaults":
        """Create from environment variables."""
        return cls(
            lock_prefix=os.getenv("MIGRATION_LOCK_PREFIX", "metaschema:migration:"),
            default_description=os.getenv("MIGRATION_DEFAULT_DESCRIPTION", "schema_sync"),
            list_limit=_env_int("MIGRATION_LIST_LIMIT", 50),
            heartbeat_interval_seconds=_env_float("DATABASE_POOL_HEARTBEAT_SECONDS", 10.0),
        )


# ============================================================================
# GLOBAL DEFAULTS INSTANCE
# ============================================================================

@dataclass
class Defaults:
    """Container for non-connection defaults."""
    migration: MigrationDefaults = field(default_factory=MigrationDefaults)

    @classmethod
    def from_env(cls) -> "Defaults":
        """Create all defaults from environment variables."""
        return cls(migration=MigrationDefaults.from_env())


_defaults: Optional[Defaults] = None


def get_defaults() -> Defaults:
    """Get global defaults instance."""
    global _defaults
    if _defaults is None:
        _defaults = Defaults.from_env()
    return _defaults


def reset_defaults() -> None:
    """Reset defaults (for testing)."""
    global _defaults
    _defaults = None


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "TRANSACTION_POOLER_PORT",
    "ConfigurationError",
    "DatabaseConfig",
    "MigrationDefaults",
    "Defaults",
    "get_defaults",
    "reset_defaults",
]
