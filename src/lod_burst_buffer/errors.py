"""
Error taxonomy for lod-burst-buffer.

Every error raised by this package derives from BurstBufferError and
carries an ErrorCode plus an ErrorContext naming the job, operation and
command it concerns. Failed tool invocations are not raised: workers turn
them into StagingCommandError via error_from_result() for logging.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar

if TYPE_CHECKING:
    from .executor import CommandResult


class ErrorCode(str, Enum):
    """Stable codes, grouped by area."""

    # Submission (1xxx)
    INVALID_REQUEST = "ERR_1000"

    # Staging tool (2xxx)
    STAGING_COMMAND_FAILED = "ERR_2000"
    STAGING_TIMEOUT = "ERR_2001"
    STAGING_ABNORMAL_EXIT = "ERR_2002"

    # Records and lifecycle (3xxx)
    MISSING_RECORD = "ERR_3000"
    INVALID_TRANSITION = "ERR_3001"

    # Configuration (6xxx)
    CONFIG_ERROR = "ERR_6000"

    INTERNAL_ERROR = "ERR_9000"


@dataclass
class ErrorContext:
    """What the error was about."""

    job_id: int | None = None
    operation: str | None = None
    argv: list[str] | None = None
    exit_code: int | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        extra = data.pop("extra")
        return {**data, **extra}


class BurstBufferError(Exception):
    """
    Base exception for all burst buffer errors.

    Attributes:
        code: Error code for programmatic handling
        message: Human-readable error message
        context: Job/operation/command the error concerns
        cause: Underlying exception, if any
    """

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    default_message: ClassVar[str] = "Burst buffer error"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: ErrorCode | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        self.message = message or self.default_message
        super().__init__(self.message)
        if code is not None:
            self.code = code
        self.context = context or ErrorContext()
        self.cause = cause

    def __str__(self) -> str:
        text = f"[{self.code.value}] {self.message}"
        if self.context.job_id is not None:
            text += f" (job_id={self.context.job_id})"
        return text

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": type(self).__name__,
            "code": self.code.value,
            "message": self.message,
            "context": self.context.to_dict(),
            "cause": str(self.cause) if self.cause else None,
        }


class InvalidRequestError(BurstBufferError):
    """Malformed ``#LOD`` directives; the job is rejected at submission."""

    code = ErrorCode.INVALID_REQUEST
    default_message = "Invalid burst buffer request"

    def __init__(self, message: str | None = None, *, directive: str | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.directive = directive


class StagingCommandError(BurstBufferError):
    """The staging tool failed, timed out or was killed by a signal."""

    code = ErrorCode.STAGING_COMMAND_FAILED
    default_message = "Staging command failed"

    def __init__(self, message: str | None = None, *, output: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.output = output


class MissingRecordError(BurstBufferError):
    """No cached staging record (or host job) for a job id."""

    code = ErrorCode.MISSING_RECORD
    default_message = "Burst buffer record not found"

    def __init__(self, message: str | None = None, *, job_id: int | None = None, **kwargs):
        message = message or self.default_message
        if job_id is not None:
            message = f"{message}: JobId={job_id}"
            kwargs.setdefault("context", ErrorContext(job_id=job_id))
        super().__init__(message, **kwargs)


class InvalidTransitionError(BurstBufferError, ValueError):
    """A state write the transition table does not allow."""

    code = ErrorCode.INVALID_TRANSITION
    default_message = "Invalid state transition"


class ConfigError(BurstBufferError):
    """Invalid configuration value or file."""

    code = ErrorCode.CONFIG_ERROR
    default_message = "Invalid configuration"


# Most specific first
_RESULT_CODES: tuple[tuple[str, ErrorCode, str], ...] = (
    ("timed_out", ErrorCode.STAGING_TIMEOUT, "timed out"),
    ("signaled", ErrorCode.STAGING_ABNORMAL_EXIT, "terminated abnormally"),
)


def error_from_result(
    result: CommandResult,
    *,
    job_id: int | None = None,
    operation: str | None = None,
    argv: list[str] | None = None,
) -> StagingCommandError:
    """
    Describe a failed command result as a StagingCommandError.

    The code reflects how the command ended: timeout, abnormal
    termination, or a plain non-zero exit status.
    """
    name = operation or "command"
    code = ErrorCode.STAGING_COMMAND_FAILED
    message = f"{name} exited with status {result.exit_code}"
    for attr, result_code, verb in _RESULT_CODES:
        if getattr(result, attr):
            code, message = result_code, f"{name} {verb}"
            break

    return StagingCommandError(
        message,
        output=result.output,
        code=code,
        context=ErrorContext(
            job_id=job_id,
            operation=operation,
            argv=list(argv) if argv else None,
            exit_code=result.exit_code,
        ),
    )


__all__ = [
    "ErrorCode",
    "ErrorContext",
    "BurstBufferError",
    "InvalidRequestError",
    "StagingCommandError",
    "MissingRecordError",
    "InvalidTransitionError",
    "ConfigError",
    "error_from_result",
]
