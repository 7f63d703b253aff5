"""
lod-burst-buffer: Lustre On Demand burst buffer staging controller.

Parses ``#LOD`` directives from job scripts and drives the external
``lod`` tool through setup, stage-in, stage-out and teardown for each
job, reporting progress back to the host scheduler.
"""

from .cancellation import CancellationToken
from .commands import (
    CommandBuilder,
    ToolVerb,
    build_setup_command,
    build_stage_in_command,
    build_stage_out_command,
    build_teardown_command,
)
from .config import LoggingConfig, Settings, StagingConfig, configure, get_settings, load_env
from .controller import BurstBufferController, StageTestResult
from .directives import (
    StagingOptions,
    StagingOptionsBuilder,
    TransferSpec,
    extract_directives,
    parse_directives,
    parse_script,
)
from .dispatch import StagingPhase, WorkerPool
from .errors import (
    BurstBufferError,
    ConfigError,
    ErrorCode,
    InvalidRequestError,
    InvalidTransitionError,
    MissingRecordError,
    StagingCommandError,
)
from .executor import CommandExecutor, CommandResult, CommandStatus, SubprocessExecutor
from .host import PLUGIN_TYPE, HostJob, InMemorySchedulerHost, JobSubmission, SchedulerHost
from .jobs import VALID_TRANSITIONS, InMemoryJobStore, JobRecord, JobStore, StagingState
from .logging import StructuredLogger, configure_logging, get_logger
from .registry import TrackedInvocation, TrackingRegistry
from .scheduler import StageInScheduler
from .worker import StagingWorker

__version__ = "0.1.0"

__all__ = [
    # Controller
    "BurstBufferController",
    "StageTestResult",
    "PLUGIN_TYPE",
    # Directives
    "StagingOptions",
    "StagingOptionsBuilder",
    "TransferSpec",
    "extract_directives",
    "parse_directives",
    "parse_script",
    # Records
    "StagingState",
    "JobRecord",
    "VALID_TRANSITIONS",
    "JobStore",
    "InMemoryJobStore",
    # Commands
    "ToolVerb",
    "CommandBuilder",
    "build_setup_command",
    "build_stage_in_command",
    "build_stage_out_command",
    "build_teardown_command",
    # Execution
    "CommandStatus",
    "CommandResult",
    "CommandExecutor",
    "SubprocessExecutor",
    "CancellationToken",
    "TrackedInvocation",
    "TrackingRegistry",
    "StagingPhase",
    "WorkerPool",
    "StageInScheduler",
    "StagingWorker",
    # Host
    "HostJob",
    "JobSubmission",
    "SchedulerHost",
    "InMemorySchedulerHost",
    # Config
    "Settings",
    "StagingConfig",
    "LoggingConfig",
    "get_settings",
    "configure",
    "load_env",
    # Errors
    "ErrorCode",
    "BurstBufferError",
    "InvalidRequestError",
    "StagingCommandError",
    "MissingRecordError",
    "InvalidTransitionError",
    "ConfigError",
    # Logging
    "StructuredLogger",
    "get_logger",
    "configure_logging",
]
