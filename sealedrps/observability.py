"""
SEALEDRPS Observability

Structured logging with correlation IDs and layer tagging.

Every component asks :func:`get_logger` for a :class:`GameLogger` tagged with
its :class:`GameLayer`. A logger owns exactly one :class:`StructuredHandler`,
which turns each record into a :class:`LogEvent` and writes it to stderr as
one JSON object (or one text line) per record:

    logger.info("Move accepted", match_id=x, player=p)
    -> {"level": "info", "layer": "match", "message": "Move accepted",
        "correlation_id": "corr-...", "context": {"match_id": ..., ...}}

The correlation ID lives in a context variable. The CLI sets a fresh one for
each command, so every record and every domain event produced by that command
carries it.

Plaintext moves are never passed to the logger; only identities, handles and
the revealed byte after resolution.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import time
import traceback
import uuid
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from functools import wraps
from typing import Any, Callable, Dict, Iterator, Optional, TypeVar

correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)


class LogLevel(Enum):
    """Log severity levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class GameLayer(Enum):
    """Subsystems, used to categorize log records."""
    CODEC = "codec"
    COPROCESSOR = "coprocessor"
    ATTESTATION = "attestation"
    MATCH = "match"
    RESOLUTION = "resolution"
    REGISTRY = "registry"
    CLUB = "club"
    DRIVER = "driver"
    STORE = "store"
    CONFIG = "config"
    CLI = "cli"


# Attributes GameLogger attaches to each LogRecord, with their unset values.
_RECORD_EXTRAS: Dict[str, Any] = {
    "layer": "",
    "operation": "",
    "duration_ms": None,
    "error_code": "",
    "context": {},
}


@dataclass
class LogEvent:
    """One structured log line."""
    timestamp: str
    level: str
    logger: str
    message: str
    correlation_id: str = ""
    layer: str = ""
    operation: str = ""
    duration_ms: Optional[float] = None
    error_code: str = ""
    context: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[str] = None

    @classmethod
    def from_record(cls, record: logging.LogRecord) -> "LogEvent":
        extras = {name: getattr(record, name, unset) for name, unset in _RECORD_EXTRAS.items()}
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        event = cls(
            timestamp=created.isoformat(),
            level=record.levelname.lower(),
            logger=record.name,
            message=record.getMessage(),
            correlation_id=correlation_id_var.get(),
            **extras,
        )
        if record.exc_info:
            event.exception = "".join(traceback.format_exception(*record.exc_info))
        return event

    def to_dict(self) -> Dict[str, Any]:
        """Fields with a value; empty strings, empty context and None are left out."""
        return {
            name: value
            for name, value in asdict(self).items()
            if value is not None and value != "" and value != {}
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    def to_text(self) -> str:
        ctx = " ".join(f"{k}={v}" for k, v in sorted(self.context.items()))
        code = f" [{self.error_code}]" if self.error_code else ""
        line = f"{self.timestamp} {self.level.upper():8} {self.logger}{code} {self.message}"
        if ctx:
            line = f"{line} {ctx}"
        if self.exception:
            line = f"{line}\n{self.exception}"
        return line


class StructuredHandler(logging.Handler):
    """Writes each record as JSON (``fmt="json"``) or a text line (``fmt="text"``)."""

    def __init__(self, stream: Any = None, fmt: str = "json"):
        super().__init__()
        self._stream = stream
        self.fmt = fmt

    @property
    def stream(self) -> Any:
        # looked up on every write so a replaced sys.stderr is honoured
        return self._stream or sys.stderr

    def format_event(self, event: LogEvent) -> str:
        return event.to_text() if self.fmt == "text" else event.to_json()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.stream.write(self.format_event(LogEvent.from_record(record)) + "\n")
            self.stream.flush()
        except Exception:
            self.handleError(record)


class GameLogger:
    """
    Structured logger for SEALEDRPS components.

    Records are tagged with the component's layer and the current correlation
    ID. Keyword arguments other than the tagging fields become the record's
    ``context``. Level and message are positional-only, so ``level`` and
    ``message`` are ordinary context keys.
    """

    def __init__(
        self,
        name: str,
        layer: GameLayer,
        level: LogLevel = LogLevel.INFO,
        fmt: str = "json",
    ):
        self.name = name
        self.layer = layer
        self._logger = logging.getLogger(f"sealedrps.{layer.value}.{name}")
        self._logger.setLevel(level.value.upper())

        for handler in self._logger.handlers:
            if isinstance(handler, StructuredHandler):
                handler.fmt = fmt
                break
        else:
            self._logger.addHandler(StructuredHandler(fmt=fmt))

    def _log(
        self,
        level: int,
        message: str,
        /,
        operation: str = "",
        error_code: str = "",
        duration_ms: Optional[float] = None,
        exc_info: bool = False,
        **context: Any,
    ) -> None:
        self._logger.log(
            level,
            message,
            exc_info=exc_info,
            extra=dict(
                layer=self.layer.value,
                operation=operation,
                error_code=error_code,
                duration_ms=duration_ms,
                context=context,
            ),
        )

    def debug(self, message: str, /, **context: Any) -> None:
        self._log(logging.DEBUG, message, **context)

    def info(self, message: str, /, **context: Any) -> None:
        self._log(logging.INFO, message, **context)

    def warning(self, message: str, /, error_code: str = "", **context: Any) -> None:
        self._log(logging.WARNING, message, error_code=error_code, **context)

    def error(
        self,
        message: str,
        /,
        error_code: str = "",
        exc_info: bool = False,
        **context: Any,
    ) -> None:
        self._log(logging.ERROR, message, error_code=error_code, exc_info=exc_info, **context)

    def operation(
        self,
        name: str,
        duration_ms: float,
        /,
        success: bool = True,
        **context: Any,
    ) -> None:
        """Record how long ``name`` took; a failed run is logged as a warning."""
        if success:
            level, outcome = logging.INFO, "completed"
        else:
            level, outcome = logging.WARNING, "failed"
        self._log(
            level,
            f"Operation {name} {outcome}",
            operation=name,
            duration_ms=round(duration_ms, 3),
            **context,
        )


def generate_correlation_id() -> str:
    return "corr-" + uuid.uuid4().hex[:12]


def set_correlation_id(correlation_id: str) -> contextvars.Token:
    """Bind ``correlation_id`` to the current context; reset with the token."""
    return correlation_id_var.set(correlation_id)


def get_logger(name: str, layer: GameLayer) -> GameLogger:
    """Get a logger for a component, configured from ``observability.*``."""
    from sealedrps.config import get_config

    obs = get_config().observability
    return GameLogger(name, layer, LogLevel(obs.log_level.get()), fmt=obs.log_format.get())


T = TypeVar("T")


@contextmanager
def _timing(logger: GameLogger, name: str) -> Iterator[None]:
    start = time.monotonic()
    try:
        yield
    except Exception:
        logger.operation(name, (time.monotonic() - start) * 1000, success=False)
        raise
    logger.operation(name, (time.monotonic() - start) * 1000)


def timed_operation(
    logger: GameLogger,
    operation_name: str,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Log each call's duration and outcome as ``operation_name``."""
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            with _timing(logger, operation_name):
                return func(*args, **kwargs)
        return wrapper
    return decorator
