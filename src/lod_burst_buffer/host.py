"""
Host scheduler interface.

The controller runs inside a larger scheduler that owns the job queue
and job records. It only needs to look jobs up, report staging problems
on them and ask for another scheduling pass.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

PLUGIN_TYPE = "burst_buffer/lod"

# Host-visible state reasons
REASON_BURST_BUFFER_OP = "BurstBufferOperation"
REASON_TEARDOWN_FAILED = "TeardownFailed"


@dataclass
class HostJob:
    """The host's view of a job, as far as staging is concerned."""

    job_id: int
    user_id: int | None = None
    account: str | None = None
    partition: str | None = None
    qos: str | None = None

    # Directive text extracted at submission
    burst_buffer: str | None = None

    # Scheduling
    pending: bool = True
    start_time: float = 0.0
    array_placeholder: bool = False

    # Node lists
    requested_nodes: str | None = None
    allocated_nodes: str | None = None

    # Fields the controller reports back on
    state_reason: str | None = None
    state_desc: str | None = None
    stage_out_in_progress: bool = False

    @property
    def has_directives(self) -> bool:
        return bool(self.burst_buffer)

    def set_failure(self, reason: str, description: str) -> None:
        self.state_reason = reason
        self.state_desc = description


@dataclass
class JobSubmission:
    """A job request before the host accepts it."""

    script: str | None = None
    user_id: int | None = None
    burst_buffer: str | None = None


class SchedulerHost(ABC):
    """Services the controller needs from the host scheduler."""

    @abstractmethod
    def find_job(self, job_id: int) -> HostJob | None:
        """Look up a job; None once the host has forgotten it."""
        ...

    @abstractmethod
    def request_schedule(self) -> None:
        """Ask for a scheduling pass soon (e.g. after stage-in finished)."""
        ...


class InMemorySchedulerHost(SchedulerHost):
    """Dictionary-backed host for embedding and tests."""

    def __init__(self, jobs: list[HostJob] | None = None):
        self._jobs: dict[int, HostJob] = {}
        self.schedule_requests = 0
        for job in jobs or []:
            self.add_job(job)

    def add_job(self, job: HostJob) -> HostJob:
        self._jobs[job.job_id] = job
        return job

    def remove_job(self, job_id: int) -> HostJob | None:
        return self._jobs.pop(job_id, None)

    def find_job(self, job_id: int) -> HostJob | None:
        return self._jobs.get(job_id)

    def request_schedule(self) -> None:
        self.schedule_requests += 1

    def queue(self) -> list[HostJob]:
        """All known jobs in insertion order."""
        return list(self._jobs.values())


__all__ = [
    "PLUGIN_TYPE",
    "REASON_BURST_BUFFER_OP",
    "REASON_TEARDOWN_FAILED",
    "HostJob",
    "JobSubmission",
    "SchedulerHost",
    "InMemorySchedulerHost",
]
