"""
Module: apurement_kernel.logging_config
Responsibility: One JSON line per kernel log record, carrying the ledger
    context (correlation, actor, SA, EA) of the operation that emitted it.
Architecture position: Kernel > infrastructure.  Imported by every layer;
    imports only apurement_kernel.exceptions.

Record shape:
    ts, level, logger, message (the event name, e.g. ``allocation_created``),
    the bound context fields, then the ``extra`` fields of the call.
    Quantities are rendered as fixed-point strings ("10.526", never
    "1.0526E+1").  A kernel error, passed as ``extra={"error": exc}`` or as
    exc_info, is flattened into ``error_code``, ``error_category``,
    ``error_type``, ``error_message`` and one ``error_<field>`` per
    context attribute of the exception.
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
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any, Iterator
from uuid import UUID

from apurement_kernel.exceptions import ApurementKernelError

CONTEXT_FIELDS = ("correlation_id", "actor_id", "sa_id", "ea_id")

# Replaced, never mutated in place
_context: ContextVar[dict[str, str]] = ContextVar("apurement_log_context", default={})


class LogContext:
    """Ledger fields stamped on every record logged while they are bound."""

    @staticmethod
    def current() -> dict[str, str]:
        return dict(_context.get())

    @staticmethod
    @contextmanager
    def bind(**fields: object) -> Iterator[None]:
        """
        Bind context fields for the duration of the block.

        None values are skipped, so an outer binding shows through.  Nested
        binds override field by field and the previous values come back on
        exit.
        """
        unknown = sorted(set(fields) - set(CONTEXT_FIELDS))
        if unknown:
            raise TypeError(f"Unknown log context field(s): {', '.join(unknown)}")
        merged = dict(_context.get())
        merged.update({k: str(v) for k, v in fields.items() if v is not None})
        token = _context.set(merged)
        try:
            yield
        finally:
            _context.reset(token)

    @staticmethod
    def clear() -> None:
        _context.set({})


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _error_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "error_type": type(exc).__name__,
        "error_message": str(exc),
    }
    if isinstance(exc, ApurementKernelError):
        fields["error_code"] = exc.code
        fields["error_category"] = exc.category
        for key, value in vars(exc).items():
            if not key.startswith("_"):
                fields[f"error_{key}"] = value
    return fields


_RECORD_ATTRIBUTES: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "asctime", "taskName"}


class StructuredFormatter(logging.Formatter):
    """Formats each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_context.get())

        for key, value in vars(record).items():
            if key in _RECORD_ATTRIBUTES:
                continue
            if key == "error" and isinstance(value, BaseException):
                payload.update(_error_fields(value))
            else:
                payload[key] = value

        if record.exc_info and record.exc_info[1] is not None:
            for key, value in _error_fields(record.exc_info[1]).items():
                payload.setdefault(key, value)
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


_LOGGER_NAME = "apurement_kernel"
_HANDLER_MARK = "_apurement_kernel_handler"


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the apurement_kernel namespace."""
    return logging.getLogger(f"{_LOGGER_NAME}.{name}")


class _StderrHandler(logging.StreamHandler):
    """Writes to whatever sys.stderr is when the record is emitted."""

    @property
    def stream(self):
        return sys.stderr

    @stream.setter
    def stream(self, value):
        pass


def _kernel_handlers(kernel_logger: logging.Logger) -> list[logging.Handler]:
    return [h for h in kernel_logger.handlers if getattr(h, _HANDLER_MARK, False)]


def configure_logging(
    *,
    level: int | None = None,
    stream: Any = None,
    handler: logging.Handler | None = None,
    replace: bool = True,
) -> logging.Handler:
    """
    Route apurement_kernel records through StructuredFormatter.

    The handler installed by an earlier call is replaced; handlers added by
    anyone else stay attached.  With ``replace=False`` an existing kernel
    handler is kept and returned unchanged.  ``level`` None keeps the
    current level, INFO the first time.

    Returns:
        The kernel handler in place after the call.
    """
    kernel_logger = logging.getLogger(_LOGGER_NAME)
    installed = _kernel_handlers(kernel_logger)
    if installed and not replace:
        return installed[0]
    for old in installed:
        kernel_logger.removeHandler(old)

    if handler is None:
        handler = logging.StreamHandler(stream) if stream is not None else _StderrHandler()
    handler.setFormatter(StructuredFormatter())
    setattr(handler, _HANDLER_MARK, True)
    kernel_logger.addHandler(handler)
    kernel_logger.propagate = False

    if level is not None:
        kernel_logger.setLevel(level)
    elif kernel_logger.level == logging.NOTSET:
        kernel_logger.setLevel(logging.INFO)
    return handler


def reset_logging() -> None:
    """Remove the kernel handler and restore logger defaults. FOR TESTING ONLY."""
    kernel_logger = logging.getLogger(_LOGGER_NAME)
    for old in _kernel_handlers(kernel_logger):
        kernel_logger.removeHandler(old)
    kernel_logger.setLevel(logging.NOTSET)
    kernel_logger.propagate = True
