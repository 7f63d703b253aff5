"""
Staging workers.

A StagingWorker runs the tool invocations of one phase for one job and
writes the outcome back into the record store and onto the host job.
Every state write is a compare-and-set against the state the worker
expects, so a job that was cancelled or requeued while a command ran is
left alone.
"""

from __future__ import annotations

import uuid

from .commands import (
    build_setup_command,
    build_stage_in_command,
    build_stage_out_command,
    build_teardown_command,
)
from .config import Settings
from .errors import error_from_result
from .executor import CommandExecutor, CommandResult
from .host import (
    PLUGIN_TYPE,
    REASON_BURST_BUFFER_OP,
    REASON_TEARDOWN_FAILED,
    HostJob,
    SchedulerHost,
)
from .jobs import JobStore, StagingState
from .logging import CommandLog, StructuredLogger, get_logger, truncate_for_log
from .registry import TrackingRegistry


class StagingWorker:
    """Runs setup, stage-in, stage-out and teardown for jobs."""

    def __init__(
        self,
        *,
        store: JobStore,
        host: SchedulerHost,
        executor: CommandExecutor,
        registry: TrackingRegistry,
        settings: Settings,
        logger: StructuredLogger | None = None,
    ):
        self.store = store
        self.host = host
        self.executor = executor
        self.registry = registry
        self.settings = settings
        self._logger = logger or get_logger()

    # ------------------------------------------------------------------
    # Stage-in
    # ------------------------------------------------------------------

    async def run_stage_in(self, job_id: int) -> None:
        """Set up the filesystem and stage data in for a claimed job."""
        record = await self.store.get(job_id)
        if record is None:
            self._logger.error("Unable to find staging record", job_id=job_id, operation="stage_in")
            return
        host_job = self.host.find_job(job_id)
        if host_job is None:
            self._logger.error("Unable to find job record", job_id=job_id, operation="stage_in")
            return
        if record.state != StagingState.STAGING_IN:
            self._logger.debug(f"Stage-in skipped in state {record.state.label}", job_id=job_id)
            return

        options = record.options

        if options.wants_setup:
            argv = build_setup_command(options, host_job.requested_nodes)
            result = await self._invoke(job_id, "setup", argv)
            if result is None:
                return
            if not result.ok:
                await self._stage_in_failed(host_job, "setup", result, argv)
                return
            await self.store.mark_setup_started(job_id)

            record = await self.store.get(job_id)
            if record is None or record.state != StagingState.STAGING_IN:
                self._logger.info("Job left stage-in during setup", job_id=job_id)
                return

        if options.wants_stage_in:
            argv = build_stage_in_command(options, host_job.requested_nodes)
            result = await self._invoke(job_id, "stage_in", argv)
            if result is None:
                return
            if not result.ok:
                await self._stage_in_failed(host_job, "stage_in", result, argv)
                return

        staged = await self.store.transition(
            job_id, StagingState.STAGED_IN, expected={StagingState.STAGING_IN}
        )
        if staged is None:
            self._logger.info("Job left stage-in before it completed", job_id=job_id)
            return

        self._logger.info(f"Stage-in complete for JobId={job_id}", job_id=job_id)
        if self.host.find_job(job_id) is None:
            self._logger.error("Unable to find job record", job_id=job_id, operation="stage_in")
            return
        self.host.request_schedule()

    async def _stage_in_failed(
        self,
        host_job: HostJob,
        operation: str,
        result: CommandResult,
        argv: list[str],
    ) -> None:
        job_id = host_job.job_id
        error = error_from_result(result, job_id=job_id, operation=operation, argv=argv)
        self._logger.log_error(error, job_id=job_id, output=truncate_for_log(result.output))

        if not self.settings.staging.report_stage_in_failure:
            return
        failed = await self.store.transition(
            job_id, StagingState.STAGE_IN_FAIL, expected={StagingState.STAGING_IN}
        )
        if failed is not None:
            host_job.set_failure(REASON_BURST_BUFFER_OP, f"{PLUGIN_TYPE}: stage_in: {result.output}")

    # ------------------------------------------------------------------
    # Stage-out / teardown
    # ------------------------------------------------------------------

    async def run_stage_out(self, job_id: int) -> None:
        """Stage data out of a finished job, then tear the filesystem down."""
        record = await self.store.transition(
            job_id, StagingState.STAGING_OUT, expected={StagingState.POST_RUN}
        )
        if record is None:
            self._logger.info("Stage-out skipped, job is not in post_run", job_id=job_id)
            return

        host_job = self.host.find_job(job_id)
        options = record.options
        argv = build_stage_out_command(options, host_job.allocated_nodes if host_job else None)
        result = await self._invoke(job_id, "stage_out", argv)
        if result is None:
            return

        if not result.ok:
            error = error_from_result(result, job_id=job_id, operation="stage_out", argv=argv)
            self._logger.log_error(error, job_id=job_id, output=truncate_for_log(result.output))
            if host_job is not None:
                host_job.set_failure(REASON_BURST_BUFFER_OP, f"{PLUGIN_TYPE}: post_run: {result.output}")
            return

        staged = await self.store.transition(
            job_id, StagingState.STAGED_OUT, expected={StagingState.STAGING_OUT}
        )
        if staged is None or not options.wants_stage_out:
            return

        tearing_down = await self.store.transition(
            job_id, StagingState.TEARDOWN, expected={StagingState.STAGED_OUT}
        )
        if tearing_down is not None:
            await self.run_teardown(job_id)

    async def run_teardown(self, job_id: int) -> None:
        """Stop the filesystem if this job started one, then finish the record."""
        record = await self.store.get(job_id)
        if record is None or record.state != StagingState.TEARDOWN:
            self._logger.debug("Teardown skipped, job is not in teardown", job_id=job_id)
            return

        host_job = self.host.find_job(job_id)
        if host_job is None:
            self._logger.warning("Unable to find job record for teardown", job_id=job_id)

        options = record.options
        if options.wants_setup and record.started_setup and options.needs_stop:
            argv = build_teardown_command(options, host_job.allocated_nodes if host_job else None)
            result = await self._invoke(job_id, "teardown", argv)
            if result is None:
                # State is left alone, the stage-out marker is not
                if host_job is not None:
                    host_job.stage_out_in_progress = False
                return
            if not result.ok:
                error = error_from_result(result, job_id=job_id, operation="teardown", argv=argv)
                self._logger.log_error(error, job_id=job_id, output=truncate_for_log(result.output))
                await self.store.transition(
                    job_id, StagingState.TEARDOWN_FAIL, expected={StagingState.TEARDOWN}
                )
                if host_job is not None:
                    host_job.set_failure(REASON_TEARDOWN_FAILED, f"{PLUGIN_TYPE}: teardown: {result.output}")
                    host_job.stage_out_in_progress = False
                return

        await self.store.transition(job_id, StagingState.COMPLETE, expected={StagingState.TEARDOWN})
        if host_job is not None:
            host_job.state_desc = None
            host_job.stage_out_in_progress = False
        self._logger.info(f"Teardown complete for JobId={job_id}", job_id=job_id)

    # ------------------------------------------------------------------
    # Invocation
    # ------------------------------------------------------------------

    async def _invoke(self, job_id: int, operation: str, argv: list[str]) -> CommandResult | None:
        """Run one tracked command. Returns None if it was terminated externally."""
        staging = self.settings.staging
        task_id = f"{operation}-{job_id}-{uuid.uuid4().hex[:8]}"

        if staging.debug_flag:
            self._logger.debug("Running command", job_id=job_id, operation=operation, argv=argv)

        async with self.registry.track(task_id, job_id, operation) as entry:
            result = await self.executor.run(
                argv,
                timeout_ms=staging.timeout_ms,
                token=entry.token,
                name=operation,
            )
            terminated = entry.terminated

        if self.settings.logging.log_commands:
            self._logger.log_command(
                CommandLog(
                    job_id=job_id,
                    operation=operation,
                    argv=list(argv),
                    timeout_ms=staging.timeout_ms,
                    status=result.status.value,
                    exit_code=result.exit_code,
                    duration_ms=result.duration_ms,
                    output_preview=truncate_for_log(result.output) if result.output else None,
                )
            )

        if terminated or result.cancelled:
            self._logger.info(f"{operation} for JobId={job_id} terminated", job_id=job_id)
            return None
        return result


__all__ = ["StagingWorker"]
