"""
Structured logging for the billing kernel.

Every record leaves as one JSON object::

    {"ts": "2024-03-15T12:00:00+00:00", "level": "INFO",
     "component": "services.payment_ledger", "message": "payment_recorded",
     "company_id": "...", "claim_id": "...", "actor_id": "...",
     "amount": "2500.00", "to_status": "partially_paid"}

``component`` is the logger name below the ``billing_kernel`` root.  The
ids of the company, claim, unit and actor an operation works on come from
``LogContext``: services bind them once around each operation, so each log
call passes only the fields of its own event.  ``BillingKernelError``
subclasses add their ``code`` and structured attributes as ``exc_*`` keys.
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
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any
from uuid import UUID

from billing_kernel.exceptions import BillingKernelError

_ROOT = "billing_kernel"

# ---------------------------------------------------------------------------
# Bound entity ids
# ---------------------------------------------------------------------------

_EMPTY: Mapping[str, str] = MappingProxyType({})
_bound: ContextVar[Mapping[str, str]] = ContextVar("billing_log_context", default=_EMPTY)


def _merged(fields: Mapping[str, Any]) -> Mapping[str, str]:
    current = dict(_bound.get())
    for name, value in fields.items():
        if name in LogContext.FIELDS and value is not None:
            current[name] = str(value)
    return MappingProxyType(current)


class LogContext:
    """
    Entity ids carried into every log line of the current task.

    Backed by a single ContextVar holding an immutable mapping, so
    concurrent threads and tasks never see each other's ids.  Names outside
    ``FIELDS`` and ``None`` values are ignored.
    """

    FIELDS: tuple[str, ...] = ("company_id", "actor_id", "claim_id", "unit_id")

    @classmethod
    def set(cls, **fields: Any) -> None:
        _bound.set(_merged(fields))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_bound.get())

    @classmethod
    def clear(cls) -> None:
        _bound.set(_EMPTY)

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[None]:
        """Bind ``fields`` for the duration of the block; the outer ids come back on exit."""
        token = _bound.set(_merged(fields))
        try:
            yield
        finally:
            _bound.reset(token)


# ---------------------------------------------------------------------------
# JSON formatter
# ---------------------------------------------------------------------------

_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _to_json(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        # Fixed-point, never exponent notation.
        return format(obj, "f")
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    return str(obj)


def _component(logger_name: str) -> str:
    return logger_name.removeprefix(f"{_ROOT}.")


def _error_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    if isinstance(exc, BillingKernelError):
        fields["exc_code"] = exc.code
        for name, value in vars(exc).items():
            if not name.startswith("_") and name not in ("code", "message"):
                fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """Envelope, bound ids, event fields and error details as one JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "component": _component(record.name),
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())
        payload.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and key not in payload
        )
        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_error_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=_to_json)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """Logger ``billing_kernel.<name>``; ``name`` becomes the ``component`` field."""
    return logging.getLogger(f"{_ROOT}.{name}")


_installed: logging.Handler | None = None
_lock = threading.Lock()


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> logging.Handler:
    """
    Install the JSON handler on the ``billing_kernel`` logger.

    Only the first call takes effect until ``reset_logging``; later calls
    return the handler already installed.  Records do not propagate to the
    root logger.
    """
    global _installed
    with _lock:
        if _installed is None:
            root = logging.getLogger(_ROOT)
            root.setLevel(level)
            root.propagate = False
            _installed = handler or logging.StreamHandler(stream or sys.stderr)
            _installed.setFormatter(StructuredFormatter())
            root.addHandler(_installed)
        return _installed


def reset_logging() -> None:
    """Remove the installed handler and drop the level back to WARNING. Test support."""
    global _installed
    with _lock:
        root = logging.getLogger(_ROOT)
        if _installed is not None:
            root.removeHandler(_installed)
            _installed = None
        root.setLevel(logging.WARNING)
