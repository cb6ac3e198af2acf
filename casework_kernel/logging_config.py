"""
Structured logging for the casework kernel.

Every record under the ``casework`` logger is rendered as one JSON object.
Request-scoped identifiers (who is acting, on which case, project or
approval) live in a ``LogContext`` and are merged into each line, so
services log an event name plus the few fields specific to it:

    with LogContext.bind(case_id=case_id, actor_id=actor_id):
        logger.info("approval_granted", extra={"role": role.name})
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
import sys
import threading
from collections.abc import Mapping
from contextvars import ContextVar
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any
from uuid import UUID

ROOT_LOGGER = "casework"

CONTEXT_FIELDS: tuple[str, ...] = (
    "correlation_id",
    "actor_id",
    "case_id",
    "project_id",
    "approval_id",
    "trace_id",
)

_EMPTY: Mapping[str, str] = MappingProxyType({})
_context: ContextVar[Mapping[str, str]] = ContextVar("casework_log_context", default=_EMPTY)


def _merged(fields: Mapping[str, Any]) -> Mapping[str, str]:
    """Current context overlaid with the known, non-None ``fields``."""
    merged = dict(_context.get())
    for name, value in fields.items():
        if name in CONTEXT_FIELDS and value is not None:
            merged[name] = str(value)
    return MappingProxyType(merged)


class LogContext:
    """Request-scoped log fields, safe across threads and tasks.

    The context is an immutable mapping held in one ContextVar; every change
    installs a new mapping, so ``bind`` can restore the previous one exactly.
    Unknown field names are ignored.
    """

    @staticmethod
    def set(**fields: Any) -> None:
        """Overlay fields for the rest of the current context."""
        _context.set(_merged(fields))

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_context.get())

    @staticmethod
    def clear() -> None:
        _context.set(_EMPTY)

    @staticmethod
    def bind(**fields: Any) -> "_Binding":
        """Overlay fields for the duration of a ``with`` block."""
        return _Binding(fields)


class _Binding:
    def __init__(self, fields: Mapping[str, Any]):
        self._fields = fields
        self._token = None

    def __enter__(self) -> type[LogContext]:
        self._token = _context.set(_merged(self._fields))
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        _context.reset(self._token)


# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _jsonable(obj: Any) -> Any:
    if isinstance(obj, (UUID, Decimal)):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    return str(obj)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    """``exc_*`` fields, including the structured attributes of CaseworkError."""
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    fields.update(
        (f"exc_{name}", value)
        for name, value in vars(exc).items()
        if not name.startswith("_") and name not in ("args", "code")
    )
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: envelope, context, extras, exception."""

    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        line.update(_context.get())
        for name, value in vars(record).items():
            if name not in _RECORD_ATTRS:
                line.setdefault(name, value)

        if record.exc_info and record.exc_info[1] is not None:
            line.update(_exception_fields(record.exc_info[1]))
            line["traceback"] = self.formatException(record.exc_info)

        return json.dumps(line, default=_jsonable)


def get_logger(name: str) -> logging.Logger:
    """Logger ``casework.<name>``."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


_state_lock = threading.Lock()
_installed: logging.Handler | None = None


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach a JSON handler to the ``casework`` logger.

    Only the first call has an effect until ``reset_logging``.  The logger
    does not propagate, so host applications keep their own root handlers.
    """
    global _installed
    with _state_lock:
        if _installed is not None:
            return
        if handler is None:
            handler = logging.StreamHandler(stream or sys.stderr)
        _installed = handler

    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level)
    root.propagate = False
    root.addHandler(handler)


def reset_logging() -> None:
    """Drop every handler from the ``casework`` logger.  For tests."""
    global _installed
    with _state_lock:
        _installed = None
    root = logging.getLogger(ROOT_LOGGER)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
