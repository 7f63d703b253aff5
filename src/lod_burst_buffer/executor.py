"""
External command execution.

This module provides:
- CommandStatus / CommandResult: tri-state outcome of one invocation
- CommandExecutor: interface the workers call
- SubprocessExecutor: runs the staging tool with asyncio subprocesses

An invocation ends in exactly one of three ways: the tool exited 0
(SUCCESS), it exited non-zero, died from a signal or timed out
(FAILURE), or its cancellation token fired first (CANCELLED).
"""

from __future__ import annotations

import asyncio
import contextlib
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from .cancellation import CancellationToken
from .config.base import DEFAULT_TOOL_PATH
from .logging import StructuredLogger, get_logger, timed

# Exit code reported when the tool cannot be started at all
EXEC_FAILED_EXIT_CODE = 127


class CommandStatus(str, Enum):
    """How an invocation ended."""

    SUCCESS = "success"
    FAILURE = "failure"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one staging tool invocation."""

    status: CommandStatus
    exit_code: int | None = None
    output: str = ""
    signaled: bool = False
    timed_out: bool = False
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == CommandStatus.SUCCESS

    @property
    def cancelled(self) -> bool:
        return self.status == CommandStatus.CANCELLED

    @classmethod
    def cancelled_result(cls, output: str = "") -> CommandResult:
        return cls(status=CommandStatus.CANCELLED, output=output)


class CommandExecutor(ABC):
    """Runs staging tool command lines."""

    @abstractmethod
    async def run(
        self,
        argv: Sequence[str],
        *,
        timeout_ms: int,
        token: CancellationToken | None = None,
        name: str | None = None,
    ) -> CommandResult:
        """Run argv and wait for it to finish, time out or be cancelled."""
        ...

    @property
    @abstractmethod
    def running_count(self) -> int:
        """Number of commands currently running."""
        ...

    @abstractmethod
    def shutdown(self) -> None:
        """Refuse new commands from now on."""
        ...

    @abstractmethod
    def reopen(self) -> None:
        """Accept commands again after a shutdown."""
        ...


class SubprocessExecutor(CommandExecutor):
    """Executor backed by ``asyncio.create_subprocess_exec``.

    The configured tool path is executed while ``argv[0]`` is passed to
    the process unchanged. Standard error is merged into the captured
    output. On timeout the process is killed; on cancellation it is sent
    SIGTERM and then killed if it has not exited after ``kill_grace_seconds``.
    """

    def __init__(
        self,
        tool_path: str = DEFAULT_TOOL_PATH,
        *,
        kill_grace_seconds: float = 5.0,
        logger: StructuredLogger | None = None,
    ):
        self.tool_path = tool_path
        self.kill_grace_seconds = kill_grace_seconds
        self._logger = logger or get_logger()
        self._running = 0
        self._shutdown = False

    @property
    def running_count(self) -> int:
        return self._running

    def shutdown(self) -> None:
        self._shutdown = True

    def reopen(self) -> None:
        self._shutdown = False

    async def run(
        self,
        argv: Sequence[str],
        *,
        timeout_ms: int,
        token: CancellationToken | None = None,
        name: str | None = None,
    ) -> CommandResult:
        token = token or CancellationToken.none()
        name = name or (argv[-1] if argv else "command")

        if self._shutdown:
            self._logger.warning("Shutdown in progress, not running command", operation=name)
            return CommandResult.cancelled_result("shutdown in progress")
        if token.is_cancelled:
            return CommandResult.cancelled_result()

        self._running += 1
        try:
            with timed() as timer:
                result = await self._execute(list(argv), timeout_ms / 1000.0, token, name)
            return CommandResult(
                status=result.status,
                exit_code=result.exit_code,
                output=result.output,
                signaled=result.signaled,
                timed_out=result.timed_out,
                duration_ms=timer.elapsed_ms,
            )
        finally:
            self._running -= 1

    async def _execute(
        self,
        argv: list[str],
        timeout: float,
        token: CancellationToken,
        name: str,
    ) -> CommandResult:
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                executable=self.tool_path,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            self._logger.error(f"Unable to execute {self.tool_path}", operation=name, error=str(e))
            return CommandResult(
                status=CommandStatus.FAILURE,
                exit_code=EXEC_FAILED_EXIT_CODE,
                output=str(e),
            )

        communicate = asyncio.ensure_future(proc.communicate())
        cancelled = asyncio.ensure_future(token.wait())
        try:
            done, _ = await asyncio.wait(
                {communicate, cancelled},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            # The awaiting task itself was cancelled; don't leave the tool behind
            await self._kill(proc)
            communicate.cancel()
            raise
        finally:
            cancelled.cancel()

        if communicate in done:
            stdout, _ = communicate.result()
            return self._result(proc.returncode, stdout)

        if cancelled in done:
            self._logger.info("Terminating command", operation=name, pid=proc.pid)
            await self._terminate(proc)
            stdout = await self._drain(communicate)
            return CommandResult(
                status=CommandStatus.CANCELLED,
                exit_code=proc.returncode,
                output=_decode(stdout),
                signaled=proc.returncode is not None and proc.returncode < 0,
            )

        self._logger.warning(f"Command timed out after {timeout:.0f}s", operation=name, pid=proc.pid)
        await self._kill(proc)
        stdout = await self._drain(communicate)
        return CommandResult(
            status=CommandStatus.FAILURE,
            exit_code=proc.returncode,
            output=_decode(stdout),
            signaled=True,
            timed_out=True,
        )

    @staticmethod
    def _result(returncode: int | None, stdout: bytes | None) -> CommandResult:
        if returncode == 0:
            return CommandResult(status=CommandStatus.SUCCESS, exit_code=0, output=_decode(stdout))
        return CommandResult(
            status=CommandStatus.FAILURE,
            exit_code=returncode,
            output=_decode(stdout),
            signaled=returncode is not None and returncode < 0,
        )

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        with contextlib.suppress(ProcessLookupError):
            proc.terminate()
        try:
            await asyncio.wait_for(proc.wait(), timeout=self.kill_grace_seconds)
        except asyncio.TimeoutError:
            await self._kill(proc)

    @staticmethod
    async def _kill(proc: asyncio.subprocess.Process) -> None:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        await proc.wait()

    async def _drain(self, communicate: asyncio.Future) -> bytes:
        """Collect whatever output the stopped process left behind."""
        done, _ = await asyncio.wait({communicate}, timeout=self.kill_grace_seconds)
        if communicate not in done:
            # A child of the tool still holds the pipe open
            communicate.cancel()
            return b""
        stdout, _ = communicate.result()
        return stdout or b""


def _decode(data: bytes | None) -> str:
    return (data or b"").decode("utf-8", "replace").rstrip()


__all__ = [
    "CommandStatus",
    "CommandResult",
    "CommandExecutor",
    "SubprocessExecutor",
    "EXEC_FAILED_EXIT_CODE",
]
