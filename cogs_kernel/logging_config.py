"""
Structured JSON logging for the COGS kernel.

Every logger lives under ``cogs_kernel`` and emits one JSON object per line:
timestamp, level, logger, event name, the bound request context
(organization, actor, run, correlation id) and whatever the caller passed in
``extra``.  Ledger quantities and costs are Decimals and ids are UUIDs; both
are written as strings so no precision is lost.
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from typing import Any

from cogs_kernel.exceptions import CogsKernelError

_LOGGER_PREFIX = "cogs_kernel"


class LogContext:
    """Request-scoped fields stamped on every record (contextvar backed)."""

    _fields: dict[str, ContextVar[str | None]] = {
        name: ContextVar(f"cogs_log_{name}", default=None)
        for name in ("correlation_id", "organization_id", "actor_id", "run_id")
    }

    @classmethod
    def _var(cls, name: str) -> ContextVar[str | None]:
        try:
            return cls._fields[name]
        except KeyError:
            raise ValueError(f"Unknown log context field: {name}") from None

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Set the given fields; None values are left untouched."""
        for name, value in fields.items():
            if value is not None:
                cls._var(name).set(str(value))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return {
            name: var.get() for name, var in cls._fields.items() if var.get() is not None
        }

    @classmethod
    def clear(cls) -> None:
        for var in cls._fields.values():
            var.set(None)

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[None]:
        """Set fields for the duration of the block, then restore them."""
        tokens = [
            (cls._var(name), cls._var(name).set(str(value)))
            for name, value in fields.items()
            if value is not None
        ]
        try:
            yield
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRIBUTES = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _to_json(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRIBUTES:
                payload.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            payload["exc_type"] = type(exc).__name__
            payload["exc_message"] = str(exc)
            if isinstance(exc, CogsKernelError):
                # Typed errors carry their offending values as attributes.
                payload["exc_code"] = exc.code
                for key, value in vars(exc).items():
                    if not key.startswith("_"):
                        payload[f"exc_{key}"] = value
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_to_json)


def get_logger(name: str) -> logging.Logger:
    """Logger named ``cogs_kernel.<name>``."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int = logging.INFO,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach one JSON handler (stderr unless given) to the ``cogs_kernel`` tree.

    Only the first call has an effect; ``init_engine_from_url`` calls this so
    an application that never configures logging still gets structured output.
    """
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    handler = handler or logging.StreamHandler()
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger(_LOGGER_PREFIX)
    root.setLevel(level)
    root.propagate = False
    root.addHandler(handler)


def reset_logging() -> None:
    """Remove the handler and allow ``configure_logging`` again (tests)."""
    global _configured
    with _lock:
        _configured = False
    root = logging.getLogger(_LOGGER_PREFIX)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
