"""
Staging tool configuration.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .base import DEFAULT_CONFIG_PATH, DEFAULT_OTHER_TIMEOUT, DEFAULT_TOOL_PATH


@dataclass
class StagingConfig:
    """Configuration for the external staging tool and its workers."""

    # Tool invocation
    tool_path: str | None = None
    other_timeout: int | None = None
    default_config_path: Path = DEFAULT_CONFIG_PATH
    debug_flag: bool = False

    # Concurrency
    max_workers: int = 16

    # Behavior
    report_stage_in_failure: bool = False

    # Shutdown
    kill_grace_seconds: float = 5.0
    shutdown_poll_interval: float = 0.1

    def __post_init__(self):
        if self.tool_path is not None and not self.tool_path.strip():
            self.tool_path = None
        if self.other_timeout is not None and self.other_timeout < 0:
            raise ValueError("other_timeout cannot be negative")
        if isinstance(self.default_config_path, str):
            self.default_config_path = Path(self.default_config_path)
        if self.max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        if self.kill_grace_seconds < 0:
            raise ValueError("kill_grace_seconds cannot be negative")
        if self.shutdown_poll_interval <= 0:
            raise ValueError("shutdown_poll_interval must be positive")

    @property
    def effective_tool_path(self) -> str:
        """Executable to run; the default install location when unset."""
        return self.tool_path or DEFAULT_TOOL_PATH

    @property
    def timeout_ms(self) -> int:
        """Per-invocation timeout in milliseconds. Zero falls back to the default."""
        return (self.other_timeout or DEFAULT_OTHER_TIMEOUT) * 1000


__all__ = ["StagingConfig"]
