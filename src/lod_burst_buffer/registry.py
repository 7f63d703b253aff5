"""
Tracking of in-flight staging invocations.

Each command a worker runs is registered for its duration so that job
cancellation and shutdown can find and stop it. Terminating an entry
marks it and fires its cancellation token; the worker checks the mark
once the command has returned and then leaves the job state alone.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from .cancellation import CancellationToken
from .logging import StructuredLogger, get_logger


@dataclass
class TrackedInvocation:
    """One registered command invocation."""

    task_id: str
    job_id: int
    operation: str
    token: CancellationToken = field(default_factory=CancellationToken)
    started_at: float = field(default_factory=time.time)
    terminated: bool = False

    def terminate(self, reason: str) -> None:
        self.terminated = True
        self.token.cancel(reason)


class TrackingRegistry:
    """Registry of tracked invocations keyed by task id."""

    def __init__(self, logger: StructuredLogger | None = None):
        self._entries: dict[str, TrackedInvocation] = {}
        self._lock = asyncio.Lock()
        self._logger = logger or get_logger()

    @asynccontextmanager
    async def track(self, task_id: str, job_id: int, operation: str) -> AsyncIterator[TrackedInvocation]:
        """Register an invocation for the duration of the block."""
        entry = TrackedInvocation(task_id=task_id, job_id=job_id, operation=operation)
        async with self._lock:
            if task_id in self._entries:
                raise ValueError(f"Task {task_id} is already tracked")
            self._entries[task_id] = entry
        try:
            yield entry
        finally:
            async with self._lock:
                self._entries.pop(task_id, None)

    async def terminate(self, task_id: str, reason: str = "terminated") -> bool:
        """Terminate one invocation. Returns False if it is not tracked."""
        async with self._lock:
            entry = self._entries.get(task_id)
            if entry is None:
                return False
            entry.terminate(reason)
        self._logger.info("Terminated invocation", job_id=entry.job_id, operation=entry.operation)
        return True

    async def terminate_job(
        self,
        job_id: int,
        reason: str = "job cancelled",
        *,
        operations: set[str] | None = None,
    ) -> int:
        """Terminate the invocations of one job, optionally only some operations."""
        async with self._lock:
            entries = [
                e
                for e in self._entries.values()
                if e.job_id == job_id and (operations is None or e.operation in operations)
            ]
            for entry in entries:
                entry.terminate(reason)
        for entry in entries:
            self._logger.info("Terminated invocation", job_id=job_id, operation=entry.operation)
        return len(entries)

    async def terminate_all(self, reason: str = "shutdown") -> int:
        """Terminate every tracked invocation."""
        async with self._lock:
            entries = list(self._entries.values())
            for entry in entries:
                entry.terminate(reason)
        if entries:
            self._logger.info(f"Terminated {len(entries)} invocations", reason=reason)
        return len(entries)

    async def get(self, task_id: str) -> TrackedInvocation | None:
        async with self._lock:
            return self._entries.get(task_id)

    async def count(self, job_id: int | None = None) -> int:
        async with self._lock:
            if job_id is None:
                return len(self._entries)
            return sum(1 for e in self._entries.values() if e.job_id == job_id)


__all__ = ["TrackedInvocation", "TrackingRegistry"]
