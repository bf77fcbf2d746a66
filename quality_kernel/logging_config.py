"""
Structured JSON logging for the quality kernel.

Every record under the ``quality_kernel`` logger is emitted as one JSON
line.  Fields bound in LogContext (the request correlation id, the acting
user, and the NCR / MRB / CAPA a service call is working on) are stamped
onto every line written while they are bound, so a single approval or
transition can be followed across services and retries.

Usage::

    with LogContext.bind(ncr_id=ncr.id, actor_id=actor):
        logger.info("disposition_approval_recorded", extra={"approvals": 2})
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
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from enum import Enum
from types import MappingProxyType
from typing import Any

CONTEXT_FIELDS: tuple[str, ...] = (
    "correlation_id",
    "actor_id",
    "ncr_id",
    "mrb_id",
    "capa_id",
)

_EMPTY: Mapping[str, str] = MappingProxyType({})

_context: ContextVar[Mapping[str, str]] = ContextVar(
    "quality_log_context", default=_EMPTY
)


class LogContext:
    """Request-scoped log fields held in a single context variable.

    The bound fields are an immutable mapping; ``set`` and ``bind`` swap in
    a new mapping, and ``bind`` restores the previous one on exit.
    """

    @staticmethod
    def _merged(fields: dict[str, str | None]) -> Mapping[str, str]:
        unknown = sorted(set(fields) - set(CONTEXT_FIELDS))
        if unknown:
            raise ValueError(f"Unknown log context field(s): {', '.join(unknown)}")
        merged = dict(_context.get())
        merged.update({k: v for k, v in fields.items() if v is not None})
        return MappingProxyType(merged)

    @classmethod
    def set(cls, **fields: str | None) -> None:
        """Set fields for the rest of the current context.  None is ignored."""
        _context.set(cls._merged(fields))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_context.get())

    @classmethod
    def clear(cls) -> None:
        _context.set(_EMPTY)

    @classmethod
    @contextmanager
    def bind(cls, **fields: str | None) -> Iterator[None]:
        """Bind fields for the duration of a ``with`` block."""
        token = _context.set(cls._merged(fields))
        try:
            yield
        finally:
            _context.reset(token)


# ---------------------------------------------------------------------------
# JSON formatter
# ---------------------------------------------------------------------------

_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    # UUIDs and anything else fall back to str
    return str(obj)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    # QualityKernelError carries a code, a kind and its context as attributes
    for attr in ("code", "kind"):
        if hasattr(exc, attr):
            fields[f"exc_{attr}"] = getattr(exc, attr)
    for name, value in vars(exc).items():
        if not name.startswith("_") and name not in ("args", "code", "kind"):
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: ts, level, logger, message, context, extras."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS:
                payload.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------

_LOGGER_PREFIX = "quality_kernel"

_setup_lock = threading.Lock()
_installed_handler: logging.Handler | None = None


def get_logger(name: str) -> logging.Logger:
    """Return ``quality_kernel.<name>``."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach a JSON handler to the ``quality_kernel`` logger.

    Only the first call installs a handler; later calls are no-ops until
    ``reset_logging``.
    """
    global _installed_handler
    with _setup_lock:
        if _installed_handler is not None:
            return
        if handler is None:
            handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(StructuredFormatter())
        kernel_logger = logging.getLogger(_LOGGER_PREFIX)
        kernel_logger.setLevel(level)
        kernel_logger.propagate = False
        kernel_logger.addHandler(handler)
        _installed_handler = handler


def reset_logging() -> None:
    """Remove the installed handler.  Used by tests."""
    global _installed_handler
    with _setup_lock:
        kernel_logger = logging.getLogger(_LOGGER_PREFIX)
        kernel_logger.handlers.clear()
        kernel_logger.setLevel(logging.WARNING)
        _installed_handler = None
