"""
Structured logging for the burst buffer controller.

Every message carries a flat dict of fields (job id, operation, command
outcome, ...) next to the human-readable text. Fields are attached to the
stdlib ``LogRecord`` as ``record.fields`` and rendered by the formatter,
so handlers installed by the host see the same data.

Ambient fields set with ``trace_context()`` live in a ``ContextVar`` and
are therefore private to the asyncio task that set them: concurrent
staging workers never see each other's job ids.
"""

from __future__ import annotations

import json
import logging
import sys
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .config.logging import LoggingConfig

DEFAULT_LOGGER_NAME = "lod_burst_buffer"

# =============================================================================
# Context
# =============================================================================


@dataclass(frozen=True)
class LogContext:
    """Fields added to every record logged inside a trace context."""

    trace_id: str | None = None
    job_id: int | None = None
    operation: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        fields = {
            key: value
            for key, value in (("trace_id", self.trace_id), ("job_id", self.job_id), ("operation", self.operation))
            if value is not None
        }
        fields.update(self.extra)
        return fields

    def with_update(self, **kwargs) -> LogContext:
        """Copy with the known fields replaced and anything else merged into extra."""
        known = {k: kwargs.pop(k) for k in ("trace_id", "job_id", "operation") if k in kwargs}
        extra = {**self.extra, **kwargs.pop("extra", {}), **kwargs}
        return replace(self, extra=extra, **known)


_current_context: ContextVar[LogContext] = ContextVar("lod_log_context", default=LogContext())


# =============================================================================
# Typed Records
# =============================================================================


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class CommandLog:
    """One finished staging tool invocation."""

    job_id: int
    operation: str
    argv: list[str]
    timestamp: str = field(default_factory=_utc_now)
    timeout_ms: int | None = None
    status: str | None = None
    exit_code: int | None = None
    duration_ms: float | None = None
    output_preview: str | None = None

    @property
    def success(self) -> bool:
        return self.status == "success"

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class TransitionLog:
    """One lifecycle state change of a staging record."""

    job_id: int
    from_state: str
    to_state: str
    timestamp: str = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# =============================================================================
# Logger
# =============================================================================


class StructuredLogger:
    """
    Thin wrapper over a stdlib logger that logs message + fields.

    Example:
        ```python
        logger = StructuredLogger("lod_burst_buffer", level="DEBUG")
        with logger.trace_context(job_id=42, operation="stage_in"):
            logger.info("Stage-in complete", nodes="n[1-4]")
        ```
    """

    def __init__(
        self,
        name: str = DEFAULT_LOGGER_NAME,
        level: str = "INFO",
        json_output: bool = False,
        log_file: Path | None = None,
        log_command_output: bool = True,
    ):
        self.name = name
        self.json_output = json_output
        self.log_command_output = log_command_output

        self._logger = logging.getLogger(name)
        self._logger.setLevel(level.upper())

        # Replace only the handler this class installed earlier
        for handler in list(self._logger.handlers):
            if getattr(handler, "_lod_handler", False):
                self._logger.removeHandler(handler)
                handler.close()

        handler = logging.FileHandler(log_file) if log_file is not None else logging.StreamHandler(sys.stderr)
        handler.setFormatter(JSONFormatter() if json_output else TextFormatter())
        handler._lod_handler = True  # type: ignore[attr-defined]
        self._logger.addHandler(handler)

    @property
    def context(self) -> LogContext:
        """Ambient context of the current task."""
        return _current_context.get()

    @contextmanager
    def trace_context(self, trace_id: str | None = None, **kwargs) -> Iterator[str]:
        """
        Scope ambient fields to a block.

        Args:
            trace_id: Correlation id (generated if not given)
            **kwargs: job_id, operation or any extra field

        Yields:
            The trace id in effect
        """
        trace_id = trace_id or generate_trace_id()
        token = _current_context.set(_current_context.get().with_update(trace_id=trace_id, **kwargs))
        try:
            yield trace_id
        finally:
            _current_context.reset(token)

    def _log(self, level: int, message: str, fields: dict[str, Any], event_type: str | None = None) -> None:
        if not self._logger.isEnabledFor(level):
            return
        merged = _current_context.get().to_dict()
        if event_type:
            merged["event_type"] = event_type
        merged.update(fields)
        self._logger.log(level, message, extra={"fields": merged}, stacklevel=3)

    def debug(self, message: str, **fields) -> None:
        self._log(logging.DEBUG, message, fields)

    def info(self, message: str, **fields) -> None:
        self._log(logging.INFO, message, fields)

    def warning(self, message: str, **fields) -> None:
        self._log(logging.WARNING, message, fields)

    def error(self, message: str, **fields) -> None:
        self._log(logging.ERROR, message, fields)

    def log_command(self, command: CommandLog) -> None:
        """Successful commands at INFO, everything else at WARNING."""
        fields = command.to_dict()
        if not self.log_command_output:
            fields.pop("output_preview", None)
        message = f"{command.operation} for JobId={command.job_id} {command.status}"
        if command.duration_ms is not None:
            message = f"{message} ({command.duration_ms:.0f}ms)"
        self._log(logging.INFO if command.success else logging.WARNING, message, fields, "command")

    def log_transition(self, transition: TransitionLog) -> None:
        self._log(
            logging.DEBUG,
            f"JobId={transition.job_id} {transition.from_state} -> {transition.to_state}",
            transition.to_dict(),
            "transition",
        )

    def log_error(self, error: Exception, message: str | None = None, **fields) -> None:
        """Log an exception; BurstBufferError code and context are included."""
        data: dict[str, Any] = {"error_type": type(error).__name__, "error_message": str(error)}
        code = getattr(error, "code", None)
        if code is not None:
            data["error_code"] = getattr(code, "value", str(code))
        context = getattr(error, "context", None)
        if context is not None and hasattr(context, "to_dict"):
            data["error_context"] = context.to_dict()
        data.update(fields)
        self._log(logging.ERROR, message or f"Error: {error}", data, "error")


# =============================================================================
# Formatters
# =============================================================================


def _record_time(record: logging.LogRecord) -> datetime:
    return datetime.fromtimestamp(record.created, tz=timezone.utc)


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": _record_time(record).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(getattr(record, "fields", {}))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class TextFormatter(logging.Formatter):
    """``HH:MM:SS.mmm LEVEL name: message key=value ...``"""

    def format(self, record: logging.LogRecord) -> str:
        line = f"{_record_time(record):%H:%M:%S.%f}"[:-3]
        text = f"{line} {record.levelname:8} {record.name}: {record.getMessage()}"
        fields = getattr(record, "fields", None)
        if fields:
            text += " " + " ".join(f"{k}={v}" for k, v in fields.items())
        if record.exc_info:
            text += "\n" + self.formatException(record.exc_info)
        return text


# =============================================================================
# Utilities
# =============================================================================


def generate_trace_id() -> str:
    return f"trace_{uuid.uuid4().hex[:16]}"


def truncate_for_log(text: str, max_length: int = 200) -> str:
    """Shorten long tool output, noting the original length."""
    if len(text) <= max_length:
        return text
    return f"{text[:max_length]}... ({len(text)} chars total)"


@dataclass
class Timer:
    """Monotonic stopwatch reporting milliseconds."""

    started: float = field(default_factory=time.perf_counter)
    stopped: float | None = None

    def stop(self) -> float:
        self.stopped = time.perf_counter()
        return self.elapsed_ms

    @property
    def elapsed_ms(self) -> float:
        end = self.stopped if self.stopped is not None else time.perf_counter()
        return (end - self.started) * 1000


@contextmanager
def timed() -> Iterator[Timer]:
    """Time a block; the timer is stopped on exit, even on error."""
    timer = Timer()
    try:
        yield timer
    finally:
        timer.stop()


# =============================================================================
# Default Logger
# =============================================================================

_default_logger: StructuredLogger | None = None


def get_logger(name: str = DEFAULT_LOGGER_NAME) -> StructuredLogger:
    """Return the default logger, creating it on first use."""
    global _default_logger
    if _default_logger is None or _default_logger.name != name:
        _default_logger = StructuredLogger(name)
    return _default_logger


def configure_logging(config: LoggingConfig | None = None, **kwargs: Any) -> StructuredLogger:
    """Build the default logger from a LoggingConfig; kwargs override it."""
    global _default_logger
    if config is not None:
        kwargs.setdefault("level", config.level)
        kwargs.setdefault("json_output", config.format == "json")
        kwargs.setdefault("log_file", config.log_file)
        kwargs.setdefault("log_command_output", config.log_command_output)
    _default_logger = StructuredLogger(**kwargs)
    return _default_logger


__all__ = [
    "DEFAULT_LOGGER_NAME",
    "LogContext",
    "CommandLog",
    "TransitionLog",
    "StructuredLogger",
    "JSONFormatter",
    "TextFormatter",
    "Timer",
    "timed",
    "generate_trace_id",
    "truncate_for_log",
    "get_logger",
    "configure_logging",
]
