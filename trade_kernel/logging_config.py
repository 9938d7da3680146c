"""JSON log lines for stock and listing actions.

Every record leaves as one JSON object. Besides the envelope (``ts``,
``level``, ``logger``, ``message``) a line carries whatever the running
action has bound into :class:`LogContext` (the correlation id, the action
name, the stock entry and the remote listing it touches) plus any
``extra`` fields the caller passed. Kernel errors are flattened into
``exc_*`` keys so a failed sell can be filtered by ``exc_code``.
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "KernelJSONEncoder",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from contextvars import ContextVar, Token
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, TextIO
from uuid import UUID

# ---------------------------------------------------------------------------
# Action context
# ---------------------------------------------------------------------------

_CONTEXT_VARS: dict[str, ContextVar[str | None]] = {
    "correlation_id": ContextVar("trade_log_correlation_id", default=None),
    "operation": ContextVar("trade_log_operation", default=None),
    "entry_id": ContextVar("trade_log_entry_id", default=None),
    "listing_id": ContextVar("trade_log_listing_id", default=None),
}


def _context_var(name: str) -> ContextVar[str | None]:
    try:
        return _CONTEXT_VARS[name]
    except KeyError:
        raise TypeError(f"unknown log context field: {name!r}") from None


class LogContext:
    """Fields describing the stock action currently running.

    Backed by context variables, so concurrent actions in threads or tasks
    never see each other's entry or listing ids.
    """

    FIELDS = tuple(_CONTEXT_VARS)

    @classmethod
    def set(
        cls,
        *,
        correlation_id: str | None = None,
        operation: str | None = None,
        entry_id: str | None = None,
        listing_id: str | None = None,
    ) -> None:
        """Overwrite the given fields; ``None`` leaves a field as it was."""
        values = {
            "correlation_id": correlation_id,
            "operation": operation,
            "entry_id": entry_id,
            "listing_id": listing_id,
        }
        for name, value in values.items():
            if value is not None:
                _CONTEXT_VARS[name].set(value)

    @classmethod
    def get_all(cls) -> dict[str, str]:
        """Bound fields only; unset ones are left out."""
        return {
            name: var.get()
            for name, var in _CONTEXT_VARS.items()
            if var.get() is not None
        }

    @classmethod
    def clear(cls) -> None:
        for var in _CONTEXT_VARS.values():
            var.set(None)

    @classmethod
    def bind(cls, **fields: str | None) -> "_BoundContext":
        """Bind fields for the duration of a ``with`` block.

        Fields given as ``None`` are skipped, so an action without a
        listing keeps whatever ``listing_id`` an outer block bound.
        Unknown field names raise ``TypeError`` up front.
        """
        for name in fields:
            _context_var(name)
        return _BoundContext(fields)


class _BoundContext:
    def __init__(self, fields: dict[str, str | None]):
        self._fields = fields
        self._tokens: list[tuple[ContextVar[str | None], Token]] = []

    def __enter__(self) -> type[LogContext]:
        for name, value in self._fields.items():
            if value is not None:
                var = _CONTEXT_VARS[name]
                self._tokens.append((var, var.set(value)))
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

# Attributes every LogRecord has; anything else came in through ``extra``.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


class KernelJSONEncoder(json.JSONEncoder):
    """Encodes ids, timestamps, prices and status enums.

    Anything else is written as its ``str()`` so a log call never fails on
    an odd ``extra`` value. Also used by the error journal, so a journal
    line and a log line render the same value the same way.
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, (UUID, Decimal)):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        return str(obj)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())
        payload.update(
            (key, val)
            for key, val in vars(record).items()
            if key not in _RECORD_ATTRS and key not in payload
        )
        if record.exc_info and record.exc_info[1] is not None:
            payload.update(self._exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)
        return json.dumps(payload, cls=KernelJSONEncoder)

    @staticmethod
    def _exception_fields(exc: BaseException) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
        }
        code = getattr(exc, "code", None)
        if code is not None:
            fields["exc_code"] = code
        # TradeKernelError subclasses keep their details as public attributes
        for key, val in vars(exc).items():
            if not key.startswith("_") and key != "code":
                fields[f"exc_{key}"] = val
        return fields


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------

_LOGGER_PREFIX = "trade_kernel"

_configured = False
_lock = threading.Lock()


def get_logger(name: str) -> logging.Logger:
    """Logger for ``name`` under the ``trade_kernel`` hierarchy."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: TextIO | None = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach a JSON handler to the ``trade_kernel`` logger.

    Only the first call has any effect; later calls return without
    touching the handler or level. Records do not propagate to the root
    logger.
    """
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    target = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    target.setFormatter(StructuredFormatter())

    kernel_logger = logging.getLogger(_LOGGER_PREFIX)
    kernel_logger.setLevel(level)
    kernel_logger.propagate = False
    kernel_logger.addHandler(target)


def reset_logging() -> None:
    """Detach handlers so the next ``configure_logging`` call applies. Tests only."""
    global _configured
    with _lock:
        _configured = False
    kernel_logger = logging.getLogger(_LOGGER_PREFIX)
    kernel_logger.handlers.clear()
    kernel_logger.setLevel(logging.WARNING)
