"""
Logging utilities for sqlsnap.

Provides structured logging with correlation context so every engine
command issued during a create or rollback can be traced back to its
group, snapshot and operation.
"""

import json
import logging
import sys
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, Optional


CORRELATION_FIELDS = ("operation", "group_id", "snapshot_id", "database", "step")


class StructuredFormatter(logging.Formatter):
    """
    Formatter that outputs JSON-structured log lines.

    Each log line includes:
    - Standard log fields (timestamp, level, message, logger)
    - Correlation fields if present (operation, group_id, snapshot_id, ...)
    """

    def __init__(self, include_timestamp: bool = True):
        super().__init__()
        self.include_timestamp = include_timestamp

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as JSON."""
        log_entry = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if self.include_timestamp:
            log_entry["timestamp"] = datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat()

        for field in CORRELATION_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Formatter that outputs human-readable log lines with correlation context.

    Format: TIMESTAMP [LEVEL] LOGGER - MESSAGE [group_id=X snapshot_id=Y]
    """

    def __init__(self, include_timestamp: bool = True):
        if include_timestamp:
            fmt = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
        else:
            fmt = "[%(levelname)s] %(name)s - %(message)s"
        super().__init__(fmt, datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)

        context_parts = []
        for field in ("group_id", "snapshot_id", "database"):
            value = getattr(record, field, None)
            if value is not None:
                context_parts.append(f"{field}={value}")

        if context_parts:
            return f"{base} [{' '.join(context_parts)}]"
        return base


def configure_logging(
    level: int = logging.INFO,
    structured: bool = False,
    include_timestamp: bool = True,
) -> None:
    """
    Configure the sqlsnap package logger.

    Args:
        level: Logging level (default: INFO)
        include_timestamp: Whether to include timestamp in log messages
        structured: If True, output JSON-structured logs; if False, human-readable
    """
    package_logger = logging.getLogger("sqlsnap")
    package_logger.setLevel(level)

    # Avoid duplicate handlers when called more than once
    if not package_logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        package_logger.addHandler(handler)

    for handler in package_logger.handlers:
        handler.setLevel(level)
        if structured:
            handler.setFormatter(StructuredFormatter(include_timestamp=include_timestamp))
        else:
            handler.setFormatter(HumanReadableFormatter(include_timestamp=include_timestamp))


class CorrelationContext:
    """
    Context manager for adding correlation fields to log records.

    Contexts nest; inner fields override outer ones. Each thread sees only
    the contexts it entered itself.

    Example:
        >>> with CorrelationContext(operation="rollback", group_id="g1"):
        ...     log_with_context(logger, logging.INFO, "Evicting snapshots")
    """

    _current: ContextVar[Dict[str, Any]] = ContextVar("sqlsnap_correlation", default={})

    def __init__(self, **fields: Any):
        self.context = {k: v for k, v in fields.items() if v is not None}
        self._token: Optional[Token] = None

    def __enter__(self) -> "CorrelationContext":
        merged = dict(CorrelationContext._current.get())
        merged.update(self.context)
        self.context = merged
        self._token = CorrelationContext._current.set(merged)
        return self

    def __exit__(self, *args) -> None:
        CorrelationContext._current.reset(self._token)
        self._token = None

    @classmethod
    def get_current(cls) -> Dict[str, Any]:
        """Get the current correlation context."""
        return dict(cls._current.get())


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    **extra: Any,
) -> None:
    """
    Log a message with correlation context.

    Merges the current CorrelationContext with any extra fields provided.
    """
    context = CorrelationContext.get_current()
    context.update(extra)
    logger.log(level, message, extra=context)
