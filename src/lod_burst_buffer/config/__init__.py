"""
Configuration system for lod-burst-buffer.

This package provides typed configuration classes with:
- Dataclass-based settings with validation
- Environment variable loading
- YAML/TOML file loading
"""

from .base import DEFAULT_CONFIG_PATH, DEFAULT_OTHER_TIMEOUT, DEFAULT_TOOL_PATH, LogFormat, LogLevel
from .logging import LoggingConfig
from .settings import Settings, configure, get_settings, load_env
from .staging import StagingConfig

__all__ = [
    # Types
    "LogLevel",
    "LogFormat",
    # Defaults
    "DEFAULT_TOOL_PATH",
    "DEFAULT_CONFIG_PATH",
    "DEFAULT_OTHER_TIMEOUT",
    # Section configs
    "StagingConfig",
    "LoggingConfig",
    # Master config
    "Settings",
    # Global functions
    "get_settings",
    "configure",
    "load_env",
]
