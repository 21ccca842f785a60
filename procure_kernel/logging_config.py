"""
Structured JSON logging for the procurement kernel.

Responsibility:
    One JSON object per log line under the ``procure_kernel`` logger tree.
    Every line carries the workflow context that was bound when it was
    written (which operation, which requisition, which actor, which budget,
    which approval step) and, when a kernel error is involved, that error's
    code, family and structured fields.

Architecture position:
    Kernel, leaf module.  Imports only ``procure_kernel.exceptions``.

Invariants enforced:
    - Context is per thread and per task (``contextvars``); ``bind`` always
      restores the previous values on exit.
    - Only the fields in ``LogContext.FIELDS`` can be bound.  A misspelled
      field raises instead of silently dropping context.
    - Kernel errors are rendered the same way whether they arrive through
      ``exc_info`` or through ``kernel_error_fields`` in ``extra``.
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "error_family",
    "kernel_error_fields",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from contextvars import ContextVar
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from procure_kernel.exceptions import (
    BudgetInvariantViolationError,
    ConcurrencyError,
    ConfigurationError,
    ConsistencyFaultError,
    GuardViolationError,
    NotFoundError,
    OrderingViolationError,
    ProcurementKernelError,
)

# ---------------------------------------------------------------------------
# Context propagation
# ---------------------------------------------------------------------------


class LogContext:
    """Workflow fields attached to every record written while they are bound.

    ``operation`` is bound by the workflow's transaction scope; the ids are
    bound by each public workflow method.  ``correlation_id`` is for the
    caller (an API request id, a batch run id).
    """

    FIELDS: tuple[str, ...] = (
        "correlation_id",
        "operation",
        "requisition_id",
        "actor_id",
        "budget_id",
        "step_id",
    )

    _vars: dict[str, ContextVar[str | None]] = {
        name: ContextVar(f"procure_log_{name}", default=None) for name in FIELDS
    }

    @classmethod
    def _var(cls, name: str) -> ContextVar[str | None]:
        try:
            return cls._vars[name]
        except KeyError:
            raise ValueError(
                f"Unknown log context field {name!r}; expected one of {cls.FIELDS}"
            ) from None

    @classmethod
    def set(cls, **fields: object) -> None:
        """Set context fields.  None values are skipped; UUIDs are stringified."""
        for name, value in fields.items():
            var = cls._var(name)
            if value is not None:
                var.set(str(value))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        """Bound fields, in ``FIELDS`` order."""
        ctx: dict[str, str] = {}
        for name in cls.FIELDS:
            value = cls._vars[name].get()
            if value is not None:
                ctx[name] = value
        return ctx

    @classmethod
    def clear(cls) -> None:
        for var in cls._vars.values():
            var.set(None)

    @classmethod
    def bind(cls, **fields: object) -> "_BoundContext":
        """Context manager that sets fields on entry and restores them on exit."""
        for name in fields:
            cls._var(name)
        return _BoundContext(fields)


class _BoundContext:

    def __init__(self, fields: dict[str, object]):
        self._fields = fields
        self._tokens: list[tuple[ContextVar[str | None], Any]] = []

    def __enter__(self) -> type[LogContext]:
        for name, value in self._fields.items():
            if value is not None:
                var = LogContext._vars[name]
                self._tokens.append((var, var.set(str(value))))
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()


# ---------------------------------------------------------------------------
# Kernel error rendering
# ---------------------------------------------------------------------------

_ERROR_FAMILIES: tuple[tuple[type[ProcurementKernelError], str], ...] = (
    (GuardViolationError, "guard"),
    (OrderingViolationError, "ordering"),
    (BudgetInvariantViolationError, "budget"),
    (ConfigurationError, "configuration"),
    (ConsistencyFaultError, "consistency"),
    (NotFoundError, "not_found"),
    (ConcurrencyError, "concurrency"),
)


def error_family(exc: BaseException) -> str:
    """Family name of a kernel error; ``unexpected`` for anything else."""
    for base, family in _ERROR_FAMILIES:
        if isinstance(exc, base):
            return family
    if isinstance(exc, ProcurementKernelError):
        return "kernel"
    return "unexpected"


def kernel_error_fields(exc: BaseException) -> dict[str, Any]:
    """Flat ``error_*`` log fields for ``exc``.

    Kernel errors contribute their ``code`` and every public attribute
    (``error_budget_id``, ``error_requested``, ...).  Other exceptions are
    reported by type name only.
    """
    fields: dict[str, Any] = {
        "error_code": getattr(exc, "code", type(exc).__name__),
        "error_family": error_family(exc),
        "error_message": str(exc),
    }
    if isinstance(exc, ProcurementKernelError):
        for name, value in vars(exc).items():
            if not name.startswith("_"):
                fields[f"error_{name}"] = value
    return fields


# ---------------------------------------------------------------------------
# JSON Formatter
# ---------------------------------------------------------------------------

_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (UUID, Decimal)):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    return str(obj)


class StructuredFormatter(logging.Formatter):
    """Formats each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())

        for key, value in vars(record).items():
            if key not in _STDLIB_KEYS and key not in payload:
                payload[key] = value

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            payload["exc_type"] = type(exc).__name__
            for key, value in kernel_error_fields(exc).items():
                payload.setdefault(key, value)
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


# ---------------------------------------------------------------------------
# Logger factory and initialization
# ---------------------------------------------------------------------------

_LOGGER_PREFIX = "procure_kernel"

_configured = False
_lock = threading.Lock()


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the procure_kernel namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Configure the procure_kernel logger hierarchy (idempotent)."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root_logger = logging.getLogger(_LOGGER_PREFIX)
    root_logger.setLevel(level)
    root_logger.propagate = False

    h = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    h.setFormatter(StructuredFormatter())
    root_logger.addHandler(h)


def reset_logging() -> None:
    """Reset logging configuration. FOR TESTING ONLY."""
    global _configured
    with _lock:
        _configured = False
    logger = logging.getLogger(_LOGGER_PREFIX)
    logger.handlers.clear()
    logger.setLevel(logging.WARNING)
