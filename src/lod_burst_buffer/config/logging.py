"""
Logging configuration.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import get_args

from .base import LogFormat, LogLevel

LOG_LEVELS: tuple[str, ...] = get_args(LogLevel)
LOG_FORMATS: tuple[str, ...] = get_args(LogFormat)


@dataclass
class LoggingConfig:
    """How the controller logs.

    ``log_commands`` emits one record per staging tool invocation;
    ``log_command_output`` adds a truncated copy of the tool's output to it.
    """

    level: LogLevel = "INFO"
    format: LogFormat = "text"
    log_file: Path | None = None

    log_commands: bool = True
    log_command_output: bool = True

    def __post_init__(self):
        if self.level not in LOG_LEVELS:
            raise ValueError(f"Invalid log level: {self.level}. Must be one of {LOG_LEVELS}")
        if self.format not in LOG_FORMATS:
            raise ValueError(f"Invalid log format: {self.format}. Must be one of {LOG_FORMATS}")
        if isinstance(self.log_file, str):
            self.log_file = Path(self.log_file) if self.log_file else None


__all__ = ["LoggingConfig", "LOG_LEVELS", "LOG_FORMATS"]
