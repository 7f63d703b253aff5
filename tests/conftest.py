"""
Shared test fixtures and fakes for lod-burst-buffer tests.

This module provides:
- FakeExecutor: scripted staging tool outcomes per verb, with optional blocking
- Host job factories and sample directive scripts
- Settings pointing at a temporary default tool configuration
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

import pytest

from lod_burst_buffer.cancellation import CancellationToken
from lod_burst_buffer.config import LoggingConfig, Settings, StagingConfig
from lod_burst_buffer.controller import BurstBufferController
from lod_burst_buffer.executor import CommandExecutor, CommandResult, CommandStatus
from lod_burst_buffer.host import HostJob, InMemorySchedulerHost

# =============================================================================
# Sample Directives
# =============================================================================

SETUP_AND_STAGE_IN = "#LOD setup mdtdevs=a ostdevs=b\n#LOD stage_in source=/a destination=/b"

FULL_LIFECYCLE = (
    "#LOD setup mdtdevs=/dev/sdb ostdevs=/dev/sdc\n"
    "#LOD stage_in source=/home/u/in destination=/lod/in\n"
    "#LOD stage_out source=/lod/out destination=/home/u/out\n"
    "#LOD stop"
)

SETUP_AND_STOP = "#LOD setup mdtdevs=a ostdevs=b\n#LOD stop"

SAMPLE_SCRIPT = """#!/bin/bash
#SBATCH -N 2
#LOD setup node=n[1-2] mdtdevs=/dev/sdb ostdevs=/dev/sdc
#LOD stage_in source=/home/u/in destination=/lod/in
srun ./app
#LOD stop
"""


# =============================================================================
# Fake Executor
# =============================================================================


@dataclass
class FakeCall:
    """One recorded executor invocation."""

    argv: list[str]
    timeout_ms: int
    name: str | None

    @property
    def verb(self) -> str:
        return self.argv[-1]


class FakeExecutor(CommandExecutor):
    """Executor that never spawns processes.

    Outcomes are scripted per verb (``start``, ``stage_in``, ``stage_out``,
    ``stop``); unscripted verbs succeed. A blocked verb waits until its gate
    is opened or its cancellation token fires; with ``ignore_token`` it
    waits for the gate alone, like a tool that shrugs off SIGTERM.
    """

    def __init__(self):
        self.outcomes: dict[str, CommandResult] = {}
        self.calls: list[FakeCall] = []
        self._gates: dict[str, asyncio.Event] = {}
        self._deaf: set[str] = set()
        self._started: dict[str, asyncio.Event] = {}
        self._running = 0
        self._shutdown = False

    def fail(self, verb: str, output: str = "boom", exit_code: int = 1) -> None:
        self.outcomes[verb] = CommandResult(
            status=CommandStatus.FAILURE,
            exit_code=exit_code,
            output=output,
        )

    def block(self, verb: str, *, ignore_token: bool = False) -> asyncio.Event:
        gate = asyncio.Event()
        self._gates[verb] = gate
        if ignore_token:
            self._deaf.add(verb)
        return gate

    def started(self, verb: str) -> asyncio.Event:
        return self._started.setdefault(verb, asyncio.Event())

    @property
    def verbs(self) -> list[str]:
        return [call.verb for call in self.calls]

    def argv_for(self, verb: str) -> list[str]:
        return next(call.argv for call in self.calls if call.verb == verb)

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
        verb = argv[-1]
        self.calls.append(FakeCall(argv=list(argv), timeout_ms=timeout_ms, name=name))
        self.started(verb).set()
        if self._shutdown:
            return CommandResult.cancelled_result("shutdown in progress")

        token = token or CancellationToken.none()
        self._running += 1
        try:
            gate = self._gates.get(verb)
            if gate is not None and verb in self._deaf:
                await gate.wait()
            elif gate is not None:
                opened = asyncio.ensure_future(gate.wait())
                cancelled = asyncio.ensure_future(token.wait())
                done, pending = await asyncio.wait(
                    {opened, cancelled}, return_when=asyncio.FIRST_COMPLETED
                )
                for task in pending:
                    task.cancel()
                if cancelled in done:
                    return CommandResult.cancelled_result()
            return self.outcomes.get(
                verb,
                CommandResult(status=CommandStatus.SUCCESS, exit_code=0, output=f"{verb} ok"),
            )
        finally:
            self._running -= 1


# =============================================================================
# Factories
# =============================================================================


def make_host_job(
    job_id: int = 1,
    burst_buffer: str | None = SETUP_AND_STAGE_IN,
    start_time: float = 100.0,
    **kwargs,
) -> HostJob:
    """Create a pending host job with directives."""
    return HostJob(job_id=job_id, burst_buffer=burst_buffer, start_time=start_time, user_id=1000, **kwargs)


def make_settings(config_path: Path, **staging) -> Settings:
    """Settings with a given default tool configuration path."""
    return Settings(
        staging=StagingConfig(default_config_path=config_path, **staging),
        logging=LoggingConfig(level="DEBUG"),
    )


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def default_config(tmp_path) -> Path:
    """An existing default tool configuration file."""
    path = tmp_path / "lod.conf"
    path.write_text("# lod defaults\n")
    return path


@pytest.fixture
def missing_config(tmp_path) -> Path:
    """A default tool configuration path that does not exist."""
    return tmp_path / "absent" / "lod.conf"


@pytest.fixture
def settings(default_config) -> Settings:
    return make_settings(default_config)


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def host() -> InMemorySchedulerHost:
    return InMemorySchedulerHost()


@pytest.fixture
def make_controller(host, fake_executor, default_config):
    """Factory for controllers wired to the fake executor and in-memory host."""

    def _make(**staging) -> BurstBufferController:
        return BurstBufferController(
            host,
            settings=make_settings(default_config, **staging),
            executor=fake_executor,
        )

    return _make
