"""
Settings master configuration and global helpers.
"""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
from dotenv import find_dotenv, load_dotenv

from ..config_schema import CONFIG_SCHEMA
from ..errors import ConfigError
from .logging import LoggingConfig
from .staging import StagingConfig


def _flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


# Environment variable suffix -> (section, attribute, converter)
ENV_VARS: dict[str, tuple[str, str, Callable[[str], Any]]] = {
    "TOOL_PATH": ("staging", "tool_path", str),
    "OTHER_TIMEOUT": ("staging", "other_timeout", int),
    "DEFAULT_CONFIG_PATH": ("staging", "default_config_path", Path),
    "DEBUG": ("staging", "debug_flag", _flag),
    "MAX_WORKERS": ("staging", "max_workers", int),
    "REPORT_STAGE_IN_FAILURE": ("staging", "report_stage_in_failure", _flag),
    "LOG_LEVEL": ("logging", "level", str.upper),
    "LOG_FORMAT": ("logging", "format", str.lower),
    "LOG_FILE": ("logging", "log_file", Path),
}


def _read_yaml(path: Path) -> dict[str, Any]:
    import yaml

    with open(path) as f:
        return yaml.safe_load(f) or {}


def _read_toml(path: Path) -> dict[str, Any]:
    import tomllib

    with open(path, "rb") as f:
        return tomllib.load(f)


_READERS: dict[str, Callable[[Path], dict[str, Any]]] = {
    ".yaml": _read_yaml,
    ".yml": _read_yaml,
    ".toml": _read_toml,
}


@dataclass
class Settings:
    """
    Master configuration for the burst buffer controller.

    Sections can be built programmatically, read from ``LOD_*`` environment
    variables, or loaded from a YAML/TOML file whose content is checked
    against CONFIG_SCHEMA first.
    """

    staging: StagingConfig = field(default_factory=StagingConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_env(cls, prefix: str = "LOD_") -> Settings:
        """
        Load settings from environment variables.

        Example:
            LOD_TOOL_PATH=/opt/lod/bin/lod
            LOD_OTHER_TIMEOUT=600
            LOD_LOG_LEVEL=DEBUG
        """
        overrides: dict[str, dict[str, Any]] = {"staging": {}, "logging": {}}
        for suffix, (section, attr, convert) in ENV_VARS.items():
            raw = os.getenv(f"{prefix}{suffix}")
            if not raw:
                continue
            try:
                overrides[section][attr] = convert(raw)
            except ValueError as e:
                raise ConfigError(f"Invalid environment configuration: {prefix}{suffix}: {e}", cause=e) from e

        # Section constructors validate the combined values
        try:
            return cls(
                staging=StagingConfig(**overrides["staging"]),
                logging=LoggingConfig(**overrides["logging"]),
            )
        except ValueError as e:
            raise ConfigError(f"Invalid environment configuration: {e}", cause=e) from e

    @classmethod
    def from_file(cls, path: str | Path) -> Settings:
        """
        Load settings from a YAML (.yaml/.yml) or TOML (.toml) file.

        Raises:
            FileNotFoundError: If the file does not exist
            ConfigError: On an unknown suffix or invalid content
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        reader = _READERS.get(path.suffix.lower())
        if reader is None:
            raise ConfigError(f"Unsupported config file format: {path.suffix.lower()}")
        return cls._from_dict(reader(path))

    @classmethod
    def default(cls) -> Settings:
        return cls()

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> Settings:
        try:
            jsonschema.validate(instance=data, schema=CONFIG_SCHEMA)
        except jsonschema.ValidationError as e:
            raise ConfigError(f"Configuration validation failed: {e.message}", cause=e) from e

        try:
            return cls(
                staging=StagingConfig(**data.get("staging", {})),
                logging=LoggingConfig(**data.get("logging", {})),
            )
        except ValueError as e:
            raise ConfigError(f"Configuration validation failed: {e}", cause=e) from e

    def to_dict(self) -> dict[str, Any]:
        """Plain-data copy, with paths as strings."""
        return {
            name: {k: str(v) if isinstance(v, Path) else v for k, v in dataclasses.asdict(section).items()}
            for name, section in (("staging", self.staging), ("logging", self.logging))
        }


# =============================================================================
# Global Settings & Helpers
# =============================================================================

_global_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the global settings instance, creating from the environment if needed."""
    global _global_settings
    if _global_settings is None:
        _global_settings = Settings.from_env()
    return _global_settings


def configure(settings: Settings | None = None, **sections) -> Settings:
    """
    Configure global settings.

    Args:
        settings: Settings object to use globally
        **sections: Replace whole sections (``staging=``, ``logging=``)

    Returns:
        The configured Settings object
    """
    global _global_settings

    if settings is not None:
        _global_settings = settings
    current = get_settings()

    for name, value in sections.items():
        if name not in ("staging", "logging"):
            raise ConfigError(f"Unknown settings section: {name}")
        setattr(current, name, value)
    return current


def load_env(path: str | None = None, *, override: bool = False) -> bool:
    """
    Load environment variables from a .env file.

    Args:
        path: Path to a .env file; searched from the working directory if omitted
        override: Whether values in the file replace existing variables

    Returns:
        True if a .env file was found and loaded
    """
    env_path = path or find_dotenv(usecwd=True)
    if not env_path:
        return False
    return load_dotenv(env_path, override=override)


__all__ = ["Settings", "ENV_VARS", "get_settings", "configure", "load_env"]
