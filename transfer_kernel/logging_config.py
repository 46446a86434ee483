"""
Structured logging for store transfers (``transfer_kernel.logging_config``).

Responsibility:
    Every record is one JSON object.  Which request, which line, who and
    which workflow action ride along on every record through ``LogContext``,
    so an operation's logs can be joined without threading ids through
    every call.  Kernel errors render as flat ``exc_*`` fields.

Architecture position:
    Kernel -- imported by every layer.  Depends only on
    ``transfer_kernel.exceptions``.

Invariants:
    - Context set inside ``LogContext.bind`` is gone when the block exits,
      including fields set later with ``LogContext.set``.
    - A ``StoreTransferError`` is a refusal, not a crash: it is logged with
      its code and attributes and no traceback.  Any other exception keeps
      its traceback.
"""

__all__ = [
    "CONTEXT_FIELDS",
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, TextIO
from uuid import UUID

from transfer_kernel.exceptions import StoreTransferError

CONTEXT_FIELDS = (
    "correlation_id",
    "request_id",
    "reference_number",
    "item_id",
    "actor_id",
    "action",
)

_EMPTY: Mapping[str, str] = MappingProxyType({})
_context: ContextVar[Mapping[str, str]] = ContextVar("transfer_log_context", default=_EMPTY)


class LogContext:
    """Request-scoped fields added to every record (contextvars, so thread and task local)."""

    @staticmethod
    def _merged(fields: Mapping[str, Any]) -> Mapping[str, str]:
        unknown = set(fields) - set(CONTEXT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown log context field(s): {sorted(unknown)}")
        current = dict(_context.get())
        for name, value in fields.items():
            if value is None:
                current.pop(name, None)
            else:
                current[name] = str(value)
        return MappingProxyType(current)

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Set fields for the rest of the current scope.  None removes a field."""
        _context.set(cls._merged(fields))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_context.get())

    @classmethod
    def clear(cls) -> None:
        _context.set(_EMPTY)

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[None]:
        """Set fields for the duration of a ``with`` block."""
        token = _context.set(cls._merged(fields))
        try:
            yield
        finally:
            _context.reset(token)


# ---------------------------------------------------------------------------
# JSON rendering
# ---------------------------------------------------------------------------

_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (Decimal, UUID)):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    return str(obj)


class StructuredFormatter(logging.Formatter):
    """Formats each record as a single JSON line.

    Key order: ``ts, level, logger, message``, then context fields, then
    ``extra`` fields, then ``exc_*``.  An ``extra`` key never overrides a
    context field.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_context.get())
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS:
                payload.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            payload["exc_type"] = type(exc).__name__
            payload["exc_message"] = str(exc)
            if isinstance(exc, StoreTransferError):
                payload["exc_code"] = exc.code
                for key, value in exc.details().items():
                    payload[f"exc_{key}"] = value
            else:
                payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------

_ROOT = "transfer_kernel"
_configured = False
_lock = threading.Lock()


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``transfer_kernel`` hierarchy."""
    return logging.getLogger(f"{_ROOT}.{name}")


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: TextIO | None = None,
    handler: logging.Handler | None = None,
) -> bool:
    """Attach one JSON handler to the ``transfer_kernel`` hierarchy.

    ``level`` accepts a number or a name such as the configured
    ``log_level``.  Only the first call has an effect; returns whether this
    call configured logging.
    """
    global _configured
    with _lock:
        if _configured:
            return False
        _configured = True

    root = logging.getLogger(_ROOT)
    root.setLevel(level.upper() if isinstance(level, str) else level)
    root.propagate = False
    out = handler or logging.StreamHandler(stream or sys.stderr)
    out.setFormatter(StructuredFormatter())
    root.addHandler(out)
    return True


def reset_logging() -> None:
    """Undo ``configure_logging`` (tests only)."""
    global _configured
    with _lock:
        _configured = False
    root = logging.getLogger(_ROOT)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
