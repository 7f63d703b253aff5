"""
Tests for the error taxonomy.
"""
import pytest

from lod_burst_buffer.errors import (
    # Base
    ErrorCode,
    ErrorContext,
    BurstBufferError,
    # Request errors
    InvalidRequestError,
    # Staging errors
    StagingCommandError,
    # State errors
    MissingRecordError,
    InvalidTransitionError,
    # Config errors
    ConfigError,
    # Utilities
    error_from_result,
)
from lod_burst_buffer.executor import CommandResult, CommandStatus


class TestErrorContext:
    """Test ErrorContext dataclass."""

    def test_to_dict(self):
        ctx = ErrorContext(
            job_id=42,
            operation="stage_in",
            argv=["lod", "stage_in"],
            exit_code=1,
            extra={"node": "n1"},
        )

        d = ctx.to_dict()

        assert d["job_id"] == 42
        assert d["operation"] == "stage_in"
        assert d["exit_code"] == 1
        assert d["node"] == "n1"


class TestBurstBufferError:
    """Test the base exception."""

    def test_defaults(self):
        error = BurstBufferError("Something broke")

        assert error.code == ErrorCode.INTERNAL_ERROR
        assert error.message == "Something broke"
        assert error.cause is None
        assert str(error) == "[ERR_9000] Something broke"

    def test_str_includes_job(self):
        error = BurstBufferError("Failed", context=ErrorContext(job_id=7))
        assert str(error) == "[ERR_9000] Failed (job_id=7)"

    def test_code_override(self):
        error = BurstBufferError("Oops", code=ErrorCode.CONFIG_ERROR)
        assert error.code == ErrorCode.CONFIG_ERROR

    def test_to_dict(self):
        cause = OSError("no such file")
        error = BurstBufferError("Failed", cause=cause)

        d = error.to_dict()

        assert d["error_type"] == "BurstBufferError"
        assert d["code"] == "ERR_9000"
        assert d["cause"] == "no such file"


class TestSpecificErrors:
    """Test the concrete error types."""

    def test_invalid_request(self):
        error = InvalidRequestError("stage_in requires source and destination", directive="#LOD stage_in")

        assert error.code == ErrorCode.INVALID_REQUEST
        assert error.directive == "#LOD stage_in"
        assert isinstance(error, BurstBufferError)

    def test_missing_record(self):
        error = MissingRecordError(job_id=12)

        assert error.code == ErrorCode.MISSING_RECORD
        assert error.message == "Burst buffer record not found: JobId=12"
        assert error.context.job_id == 12

    def test_invalid_transition_is_value_error(self):
        error = InvalidTransitionError("Invalid transition: pending -> running")

        assert isinstance(error, ValueError)
        assert error.code == ErrorCode.INVALID_TRANSITION

    def test_config_error(self):
        with pytest.raises(BurstBufferError):
            raise ConfigError("bad value")


class TestErrorFromResult:
    """Test mapping command results to errors."""

    def test_non_zero_exit(self):
        result = CommandResult(status=CommandStatus.FAILURE, exit_code=3, output="bad device")

        error = error_from_result(result, job_id=5, operation="setup", argv=["lod", "start"])

        assert isinstance(error, StagingCommandError)
        assert error.code == ErrorCode.STAGING_COMMAND_FAILED
        assert error.message == "setup exited with status 3"
        assert error.output == "bad device"
        assert error.context.argv == ["lod", "start"]
        assert error.context.exit_code == 3

    def test_timeout(self):
        result = CommandResult(
            status=CommandStatus.FAILURE,
            exit_code=-9,
            signaled=True,
            timed_out=True,
        )

        error = error_from_result(result, operation="stage_out")

        assert error.code == ErrorCode.STAGING_TIMEOUT
        assert error.message == "stage_out timed out"

    def test_signaled(self):
        result = CommandResult(status=CommandStatus.FAILURE, exit_code=-11, signaled=True)

        error = error_from_result(result)

        assert error.code == ErrorCode.STAGING_ABNORMAL_EXIT
        assert error.message == "command terminated abnormally"
