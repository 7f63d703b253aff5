"""
Burst buffer controller.

This module provides the BurstBufferController, the object a host
scheduler embeds to drive Lustre On Demand staging for its jobs:

- Submission validation and lazy record registration
- Stage-in scheduling and stage-in status tests
- Job begin, stage-out, cancellation and their status tests
- Orderly shutdown of running staging commands

Example:
    ```python
    host = InMemorySchedulerHost()
    async with BurstBufferController(host) as controller:
        controller.validate_submission(submission)
        await controller.register_job(job)
        await controller.try_stage_in(host.queue())
    ```
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Iterable
from enum import IntEnum
from functools import partial
from typing import Any

from .config import Settings, get_settings
from .directives import extract_directives, parse_directives
from .dispatch import StagingPhase, WorkerPool
from .errors import InvalidRequestError, MissingRecordError
from .executor import CommandExecutor, SubprocessExecutor
from .host import PLUGIN_TYPE, REASON_BURST_BUFFER_OP, HostJob, JobSubmission, SchedulerHost
from .jobs import InMemoryJobStore, JobRecord, JobStore, StagingState
from .logging import StructuredLogger, configure_logging
from .registry import TrackingRegistry
from .scheduler import StageInScheduler
from .worker import StagingWorker

# Invocations that belong to the stage-in phase
STAGE_IN_OPERATIONS = frozenset({"setup", "stage_in"})


class StageTestResult(IntEnum):
    """Answer to the host's "is staging done?" questions."""

    ERROR = -1
    UNDERWAY = 0
    COMPLETE = 1


class BurstBufferController:
    """
    Per-job staging lifecycle controller.

    Owns the settings, record store, tracking registry, executor and
    worker pool. Nothing is shared between controller instances.
    """

    def __init__(
        self,
        host: SchedulerHost,
        *,
        settings: Settings | None = None,
        executor: CommandExecutor | None = None,
        store: JobStore | None = None,
        registry: TrackingRegistry | None = None,
        logger: StructuredLogger | None = None,
    ):
        self.host = host
        self.settings = settings or get_settings()
        self.logger = logger or configure_logging(self.settings.logging)

        staging = self.settings.staging
        self.executor = executor or SubprocessExecutor(
            staging.effective_tool_path,
            kill_grace_seconds=staging.kill_grace_seconds,
            logger=self.logger,
        )
        self.store = store or InMemoryJobStore(self.logger)
        self.registry = registry or TrackingRegistry(self.logger)
        self.worker = StagingWorker(
            store=self.store,
            host=self.host,
            executor=self.executor,
            registry=self.registry,
            settings=self.settings,
            logger=self.logger,
        )
        self.pool = WorkerPool(staging.max_workers, logger=self.logger)
        self.scheduler = StageInScheduler(
            store=self.store,
            pool=self.pool,
            worker=self.worker,
            logger=self.logger,
        )
        self._started = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        # Re-arm after an earlier stop()
        self.executor.reopen()
        self.pool.reopen()
        self._trace("init", tool_path=self.settings.staging.effective_tool_path)

    async def stop(self) -> None:
        """Stop running commands, wait for them to exit and drop all records."""
        self._trace("fini")
        self.executor.shutdown()
        await self.registry.terminate_all()

        last_count = 0
        while (count := self.executor.running_count) > 0:
            if last_count and last_count != count:
                self.logger.info(f"{PLUGIN_TYPE}: waiting for {count} running processes")
            last_count = count
            await asyncio.sleep(self.settings.staging.shutdown_poll_interval)

        await self.pool.stop()
        await self.store.clear()
        self._started = False

    async def __aenter__(self) -> BurstBufferController:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def validate_submission(self, submission: JobSubmission) -> str | None:
        """
        Copy the script's directives into the submission and validate them.

        Returns:
            The submission's directive text (None if it has none)

        Raises:
            InvalidRequestError: If a directive is incomplete
        """
        extracted = extract_directives(submission.script)
        if extracted:
            if submission.burst_buffer:
                submission.burst_buffer = f"{submission.burst_buffer}\n{extracted}"
            else:
                submission.burst_buffer = extracted

        try:
            parse_directives(
                submission.burst_buffer,
                default_config_path=self.settings.staging.default_config_path,
            )
        except InvalidRequestError as e:
            self.logger.log_error(e, "Rejected burst buffer request", user_id=submission.user_id)
            raise
        return submission.burst_buffer

    async def register_job(self, host_job: HostJob) -> JobRecord | None:
        """Return the cached record of an accepted job, creating it on first use."""
        if not host_job.has_directives:
            return None

        existing = await self.store.get(host_job.job_id)
        if existing is not None:
            return existing

        options = parse_directives(
            host_job.burst_buffer,
            default_config_path=self.settings.staging.default_config_path,
        )
        if options is None:
            return None

        record, created = await self.store.get_or_create(
            host_job.job_id,
            lambda: JobRecord(
                job_id=host_job.job_id,
                user_id=host_job.user_id,
                account=host_job.account,
                partition=host_job.partition,
                qos=host_job.qos,
                options=options,
            ),
        )
        if created:
            self.logger.debug("Registered staging record", job_id=host_job.job_id)
        return record

    # ------------------------------------------------------------------
    # Stage-in
    # ------------------------------------------------------------------

    async def try_stage_in(self, job_queue: Iterable[HostJob]) -> list[int]:
        """Start stage-in for pending jobs. Returns the dispatched job ids."""
        self._trace("try_stage_in")
        return await self.scheduler.try_stage_in(job_queue)

    async def test_stage_in(self, host_job: HostJob) -> StageTestResult:
        if not host_job.has_directives:
            return StageTestResult.COMPLETE

        record = await self.store.get(host_job.job_id)
        if record is None:
            self.logger.debug("Staging record not found", job_id=host_job.job_id)
            return StageTestResult.ERROR
        if record.state <= StagingState.STAGING_IN:
            return StageTestResult.UNDERWAY
        if record.state == StagingState.STAGE_IN_FAIL:
            return StageTestResult.ERROR
        return StageTestResult.COMPLETE

    def get_est_start(self, host_job: HostJob) -> float:
        """Staging capacity is never reserved ahead, so any job could start now."""
        return time.time()

    # ------------------------------------------------------------------
    # Job run
    # ------------------------------------------------------------------

    async def job_begin(self, host_job: HostJob) -> bool:
        """Mark a staged-in job as running. False refuses the job start."""
        if not host_job.has_directives:
            return True

        record = await self.store.get(host_job.job_id)
        if record is None:
            error = MissingRecordError("No burst buffer record", job_id=host_job.job_id)
            self.logger.log_error(error, job_id=host_job.job_id)
            host_job.set_failure(REASON_BURST_BUFFER_OP, "Could not find burst buffer record")
            return False
        if record.state == StagingState.RUNNING:
            return True

        running = await self.store.transition(
            host_job.job_id, StagingState.RUNNING, expected={StagingState.STAGED_IN}
        )
        if running is None:
            self.logger.warning(
                f"Job cannot begin in state {record.state.label}",
                job_id=host_job.job_id,
            )
            return False
        return True

    # ------------------------------------------------------------------
    # Stage-out / teardown
    # ------------------------------------------------------------------

    async def start_stage_out(self, host_job: HostJob) -> None:
        """Begin stage-out, or go straight to teardown when there is nothing to stage."""
        self._trace("start_stage_out", job_id=host_job.job_id)

        record = await self.store.get(host_job.job_id)
        if record is None:
            self.logger.info("Staging record not found", job_id=host_job.job_id)
            return

        if record.state < StagingState.RUNNING or not record.options.wants_stage_out:
            await self.registry.terminate_job(
                host_job.job_id, "stage-out requested", operations=set(STAGE_IN_OPERATIONS)
            )
            await self._begin_teardown(host_job.job_id)
        elif record.state < StagingState.POST_RUN:
            if not self.pool.accepting:
                self.logger.warning("Worker pool stopped, stage-out not started", job_id=host_job.job_id)
                return
            post_run = await self.store.transition(
                host_job.job_id, StagingState.POST_RUN, expected={StagingState.RUNNING}
            )
            if post_run is None:
                return
            host_job.stage_out_in_progress = True
            host_job.state_desc = f"{PLUGIN_TYPE}: Stage-out in progress"
            self.pool.submit(
                StagingPhase.STAGE_OUT,
                host_job.job_id,
                partial(self.worker.run_stage_out, host_job.job_id),
                operation="stage_out",
            )

    def test_post_run(self, host_job: HostJob) -> StageTestResult:
        return StageTestResult.COMPLETE

    async def test_stage_out(self, host_job: HostJob) -> StageTestResult:
        if not host_job.has_directives:
            return StageTestResult.COMPLETE

        record = await self.store.get(host_job.job_id)
        if record is None:
            self.logger.debug("Staging record not found", job_id=host_job.job_id)
            return StageTestResult.COMPLETE
        if record.state == StagingState.PENDING:
            # Staging never started before the job ended
            return StageTestResult.COMPLETE
        if record.state < StagingState.POST_RUN:
            return StageTestResult.ERROR
        if record.state > StagingState.STAGING_OUT:
            return StageTestResult.COMPLETE
        return StageTestResult.UNDERWAY

    async def job_cancel(self, host_job: HostJob) -> None:
        """Stop any staging of a cancelled job and release its filesystem."""
        self._trace("job_cancel", job_id=host_job.job_id)

        record = await self.store.get(host_job.job_id)
        if record is None:
            self.logger.info("Staging record not found", job_id=host_job.job_id)
            return

        if record.state == StagingState.PENDING:
            # Nothing to clean up
            await self.store.transition(
                host_job.job_id, StagingState.COMPLETE, expected={StagingState.PENDING}
            )
        elif record.state < StagingState.POST_RUN:
            await self.registry.terminate_job(
                host_job.job_id, "job cancelled", operations=set(STAGE_IN_OPERATIONS)
            )
            await self._begin_teardown(host_job.job_id)

    async def _begin_teardown(self, job_id: int) -> None:
        if not self.pool.accepting:
            self.logger.warning("Worker pool stopped, teardown not started", job_id=job_id)
            return
        record = await self.store.transition(job_id, StagingState.TEARDOWN, strict=False)
        if record is None or record.state != StagingState.TEARDOWN:
            return
        self.pool.submit(
            StagingPhase.STAGE_OUT,
            job_id,
            partial(self.worker.run_teardown, job_id),
            operation="teardown",
        )

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    async def terminate(self, job_id: int) -> int:
        """Terminate every running invocation of a job."""
        return await self.registry.terminate_job(job_id, "terminated by host")

    async def purge_job(self, job_id: int) -> bool:
        """Drop the record of a finished job with no work in flight."""
        record = await self.store.get(job_id)
        if record is None or not record.state.is_terminal:
            return False
        if self.pool.in_flight(job_id) or await self.registry.count(job_id):
            return False
        return await self.store.delete(job_id)

    async def status(self) -> list[dict[str, Any]]:
        """Snapshot of every cached record."""
        return [record.to_dict() for record in await self.store.list()]

    async def wait_idle(self) -> None:
        """Wait until no staging work is queued or running."""
        await self.pool.wait_idle()

    def _trace(self, operation: str, **kwargs: Any) -> None:
        if self.settings.staging.debug_flag:
            self.logger.info(f"{PLUGIN_TYPE}: {operation}", **kwargs)
        else:
            self.logger.debug(f"{PLUGIN_TYPE}: {operation}", **kwargs)


__all__ = ["BurstBufferController", "StageTestResult", "PLUGIN_TYPE"]
