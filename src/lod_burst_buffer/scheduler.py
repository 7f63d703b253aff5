"""
Stage-in scheduling.

Called once per host scheduling cycle with the host's job queue. Picks
the pending jobs whose staging can start, orders them by expected start
time and hands each to the worker pool after claiming it.
"""

from __future__ import annotations

from collections.abc import Iterable
from functools import partial

from .dispatch import StagingPhase, WorkerPool
from .host import HostJob
from .jobs import JobStore, StagingState
from .logging import StructuredLogger, get_logger
from .worker import StagingWorker


class StageInScheduler:
    """Selects and dispatches jobs for stage-in."""

    def __init__(
        self,
        *,
        store: JobStore,
        pool: WorkerPool,
        worker: StagingWorker,
        logger: StructuredLogger | None = None,
    ):
        self.store = store
        self.pool = pool
        self.worker = worker
        self._logger = logger or get_logger()

    async def candidates(self, job_queue: Iterable[HostJob]) -> list[HostJob]:
        """Jobs eligible for stage-in, ordered by expected start time."""
        eligible: list[HostJob] = []
        for job in job_queue:
            if not job.pending or not job.start_time or not job.burst_buffer:
                continue
            if job.array_placeholder:
                continue

            record = await self.store.get(job.job_id)
            if record is None:
                continue

            if record.state == StagingState.COMPLETE:
                # Job requeued
                record = await self.store.transition(
                    job.job_id, StagingState.PENDING, expected={StagingState.COMPLETE}
                )
                if record is None:
                    continue
                self._logger.info("Requeued job reset to pending", job_id=job.job_id)
            elif StagingState.POST_RUN <= record.state <= StagingState.TEARDOWN:
                # Requeued job still staging out
                continue

            if record.state >= StagingState.STAGING_IN:
                continue
            eligible.append(job)

        # sort() is stable, so queue order breaks ties
        eligible.sort(key=lambda j: j.start_time)
        return eligible

    async def try_stage_in(self, job_queue: Iterable[HostJob]) -> list[int]:
        """Claim and dispatch eligible jobs. Returns the dispatched job ids."""
        dispatched: list[int] = []
        if not self.pool.accepting:
            self._logger.warning("Worker pool stopped, no stage-in dispatched")
            return dispatched
        for job in await self.candidates(job_queue):
            if self.pool.in_flight(job.job_id, StagingPhase.STAGE_IN):
                continue
            claimed = await self.store.transition(
                job.job_id, StagingState.STAGING_IN, expected={StagingState.PENDING}
            )
            if claimed is None:
                continue
            if not self.pool.submit(
                StagingPhase.STAGE_IN,
                job.job_id,
                partial(self.worker.run_stage_in, job.job_id),
                operation="stage_in",
            ):
                self._logger.error("Stage-in could not be dispatched", job_id=job.job_id)
                # Release the claim so a later cycle can retry
                await self.store.transition(
                    job.job_id, StagingState.PENDING, expected={StagingState.STAGING_IN}
                )
                continue
            dispatched.append(job.job_id)

        if dispatched:
            self._logger.debug(f"Dispatched stage-in for {len(dispatched)} jobs", job_ids=dispatched)
        return dispatched


__all__ = ["StageInScheduler"]
