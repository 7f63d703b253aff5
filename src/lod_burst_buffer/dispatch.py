"""
Bounded worker pool for staging work.

Work is grouped by phase. Each phase group has its own queue served by
at most ``max_workers`` consumer tasks, started on the first submit.
A job may have at most one queued or running item per phase group;
a second submit for the same job and group is refused.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

from .logging import StructuredLogger, get_logger

WorkFactory = Callable[[], Awaitable[None]]


class StagingPhase(str, Enum):
    """Phase groups; teardown runs in the stage-out group."""

    STAGE_IN = "stage_in"
    STAGE_OUT = "stage_out"


@dataclass
class _WorkItem:
    phase: StagingPhase
    job_id: int
    operation: str
    factory: WorkFactory


class WorkerPool:
    """Per-phase queues with a fixed number of consumers each."""

    def __init__(self, max_workers: int = 16, logger: StructuredLogger | None = None):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.max_workers = max_workers
        self._logger = logger or get_logger()
        self._queues: dict[StagingPhase, asyncio.Queue[_WorkItem]] = {}
        self._consumers: dict[StagingPhase, list[asyncio.Task]] = {}
        self._in_flight: dict[StagingPhase, set[int]] = {phase: set() for phase in StagingPhase}
        self._outstanding = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._stopped = False

    @property
    def accepting(self) -> bool:
        """False between stop() and reopen()."""
        return not self._stopped

    @property
    def outstanding(self) -> int:
        """Items queued or running across all phase groups."""
        return self._outstanding

    def in_flight(self, job_id: int, phase: StagingPhase | None = None) -> bool:
        """Check if a job has queued or running work (in one group, or any)."""
        if phase is not None:
            return job_id in self._in_flight[phase]
        return any(job_id in jobs for jobs in self._in_flight.values())

    def submit(
        self,
        phase: StagingPhase,
        job_id: int,
        factory: WorkFactory,
        *,
        operation: str | None = None,
    ) -> bool:
        """Queue work for a job. Returns False if refused."""
        if self._stopped:
            self._logger.warning("Worker pool stopped, dropping work", job_id=job_id, phase=phase.value)
            return False
        if job_id in self._in_flight[phase]:
            self._logger.debug("Work already in flight", job_id=job_id, phase=phase.value)
            return False

        self._in_flight[phase].add(job_id)
        self._outstanding += 1
        self._idle.clear()
        self._queue(phase).put_nowait(_WorkItem(phase, job_id, operation or phase.value, factory))
        return True

    def _queue(self, phase: StagingPhase) -> asyncio.Queue[_WorkItem]:
        queue = self._queues.get(phase)
        if queue is None:
            queue = asyncio.Queue()
            self._queues[phase] = queue
            self._consumers[phase] = [
                asyncio.create_task(self._consume(queue), name=f"lod-{phase.value}-{i}")
                for i in range(self.max_workers)
            ]
        return queue

    async def _consume(self, queue: asyncio.Queue[_WorkItem]) -> None:
        while True:
            item = await queue.get()
            try:
                with self._logger.trace_context(job_id=item.job_id, operation=item.operation):
                    await item.factory()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._logger.log_error(
                    e,
                    f"{item.operation} worker for JobId={item.job_id} failed",
                    job_id=item.job_id,
                    operation=item.operation,
                )
            finally:
                self._in_flight[item.phase].discard(item.job_id)
                self._outstanding -= 1
                if self._outstanding == 0:
                    self._idle.set()
                queue.task_done()

    async def wait_idle(self) -> None:
        """Wait until no work is queued or running."""
        await self._idle.wait()

    async def stop(self) -> None:
        """Cancel the consumers. Queued work that has not started is dropped."""
        self._stopped = True
        tasks = [t for consumers in self._consumers.values() for t in consumers]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._consumers.clear()
        self._queues.clear()
        for jobs in self._in_flight.values():
            jobs.clear()
        self._outstanding = 0
        self._idle.set()

    def reopen(self) -> None:
        """Accept work again after stop(). Consumers restart on the next submit."""
        self._stopped = False


__all__ = ["StagingPhase", "WorkerPool", "WorkFactory"]
