"""
JSON schemas for configuration validation.
"""

STAGING_SCHEMA = {
    "type": "object",
    "properties": {
        "tool_path": {"type": ["string", "null"]},
        "other_timeout": {"type": ["integer", "null"], "minimum": 0},
        "default_config_path": {"type": "string"},
        "debug_flag": {"type": "boolean"},
        "max_workers": {"type": "integer", "minimum": 1},
        "report_stage_in_failure": {"type": "boolean"},
        "kill_grace_seconds": {"type": "number", "minimum": 0.0},
        "shutdown_poll_interval": {"type": "number", "exclusiveMinimum": 0.0},
    },
    "additionalProperties": False,
}

LOGGING_SCHEMA = {
    "type": "object",
    "properties": {
        "level": {"type": "string", "enum": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]},
        "format": {"type": "string", "enum": ["text", "json"]},
        "log_file": {"type": ["string", "null"]},
        "log_commands": {"type": "boolean"},
        "log_command_output": {"type": "boolean"},
    },
    "additionalProperties": False,
}

CONFIG_SCHEMA = {
    "type": "object",
    "properties": {
        "staging": STAGING_SCHEMA,
        "logging": LOGGING_SCHEMA,
    },
}
