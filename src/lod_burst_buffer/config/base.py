"""
Base types for configuration.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
LogFormat = Literal["text", "json"]

DEFAULT_TOOL_PATH = "/usr/sbin/lod"
DEFAULT_CONFIG_PATH = Path("/etc/lod.conf")

# Seconds allowed for setup, stage-in, stage-out and teardown commands.
DEFAULT_OTHER_TIMEOUT = 300


__all__ = [
    "LogLevel",
    "LogFormat",
    "DEFAULT_TOOL_PATH",
    "DEFAULT_CONFIG_PATH",
    "DEFAULT_OTHER_TIMEOUT",
]
