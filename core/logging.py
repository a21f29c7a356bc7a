# ============================================================================
# STRUCTURED LOGGING
# ============================================================================
# EPOCH: 1 - DYNAMIC SCHEMA MIGRATION
# STATUS: Core - Structured logging with context
# PURPOSE: Consistent, queryable logging across all components
# CREATED: 17 OCT 2026
# ============================================================================
"""
Structured Logging

JSON or human-readable log output with contextual fields attached by
log_context(). Modules log through plain `logging.getLogger(__name__)`;
the formatters pick up whatever context is active.

Features:
- Contextual fields (schema_name, migration_name, operation, ...)
- JSON output for log aggregation (LOG_FORMAT=json)
- Human output with inline context for development

Usage:
    from core.logging import configure_logging, log_context

    configure_logging("INFO")

    with log_context(schema_name="app_x", operation="apply_all_changes"):
        logger.info("Applying 3 changes")
"""

import json
import logging
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union


@dataclass
class LogContext:
    """
    Context for structured logging.

    Held in a ContextVar, so each asyncio task and each thread sees its own.
    """
    schema_name: Optional[str] = None
    migration_name: Optional[str] = None
    application_id: Optional[str] = None
    entity_id: Optional[str] = None
    correlation_id: Optional[str] = None
    component: Optional[str] = None
    operation: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict, excluding None values."""
        result = {}
        for key, value in asdict(self).items():
            if value is not None and key != "extra":
                result[key] = value
        if self.extra:
            result.update(self.extra)
        return result


# Innermost context first; tasks inherit a copy when they are created
_current_context: ContextVar[Optional[LogContext]] = ContextVar("log_context", default=None)

_CONTEXT_FIELDS = (
    "schema_name",
    "migration_name",
    "application_id",
    "entity_id",
    "correlation_id",
    "component",
    "operation",
)


def get_current_context() -> LogContext:
    """Get current logging context."""
    return _current_context.get() or LogContext()


@contextmanager
def log_context(**kwargs):
    """
    Context manager for adding logging context.

    Args:
        **kwargs: Context fields to add; unknown keys go into extra

    Example:
        with log_context(schema_name="app_x", operation="generate_full_schema"):
            logger.info("Creating tables")
    """
    parent = get_current_context()
    extra = {**parent.extra, **kwargs.pop("extra", {})}
    for key in list(kwargs):
        if key not in _CONTEXT_FIELDS:
            extra[key] = kwargs.pop(key)

    new_context = LogContext(
        **{name: kwargs.get(name, getattr(parent, name)) for name in _CONTEXT_FIELDS},
        extra=extra,
    )

    token = _current_context.set(new_context)
    try:
        yield new_context
    finally:
        _current_context.reset(token)


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs log records as JSON for easy parsing by log aggregators.
    """

    def __init__(
        self,
        include_timestamp: bool = True,
        include_level: bool = True,
        include_logger: bool = True,
        include_context: bool = True,
    ):
        super().__init__()
        self.include_timestamp = include_timestamp
        self.include_level = include_level
        self.include_logger = include_logger
        self.include_context = include_context

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data: Dict[str, Any] = {}

        if self.include_timestamp:
            log_data["timestamp"] = datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat()

        if self.include_level:
            log_data["level"] = record.levelname

        if self.include_logger:
            log_data["logger"] = record.name

        log_data["message"] = record.getMessage()

        if self.include_context:
            context_dict = get_current_context().to_dict()
            if context_dict:
                log_data["context"] = context_dict

        # Include extra fields from record
        if hasattr(record, "extra") and record.extra:
            log_data["data"] = record.extra

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        log_data["source"] = {
            "file": record.filename,
            "line": record.lineno,
            "function": record.funcName,
        }

        return json.dumps(log_data, default=str)


class HumanFormatter(logging.Formatter):
    """
    Human-readable formatter for development.

    Includes context fields inline for easy reading.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record for human reading."""
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc).strftime(
            "%Y-%m-%d %H:%M:%S"
        )
        level = record.levelname.ljust(8)

        context = get_current_context()
        context_parts = []
        if context.schema_name:
            context_parts.append(f"schema={context.schema_name}")
        if context.migration_name:
            context_parts.append(f"migration={context.migration_name}")
        if context.operation:
            context_parts.append(f"op={context.operation}")

        context_str = f" [{', '.join(context_parts)}]" if context_parts else ""

        message = record.getMessage()

        extra_str = ""
        if hasattr(record, "extra") and record.extra:
            extra_str = f" {record.extra}"

        result = f"{timestamp} {level} {record.name}{context_str}: {message}{extra_str}"

        if record.exc_info:
            result += f"\n{self.formatException(record.exc_info)}"

        return result


def configure_logging(
    level: Union[str, int] = "INFO",
    json_output: bool = False,
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_output: Use JSON format (for production); LOG_FORMAT=json also enables it
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    if json_output or os.getenv("LOG_FORMAT", "").lower() == "json":
        formatter = StructuredFormatter(include_context=True)
    else:
        formatter = HumanFormatter()

    root = logging.getLogger()
    root.setLevel(level)

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root.addHandler(handler)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "LogContext",
    "StructuredFormatter",
    "HumanFormatter",
    "configure_logging",
    "log_context",
    "get_current_context",
]
