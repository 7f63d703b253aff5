"""
Tests for the bounded worker pool.
"""

import asyncio

import pytest

from lod_burst_buffer.dispatch import StagingPhase, WorkerPool


class TestWorkerPool:
    """Test queueing, bounding and in-flight tracking."""

    def test_rejects_zero_workers(self):
        with pytest.raises(ValueError):
            WorkerPool(0)

    @pytest.mark.asyncio
    async def test_runs_submitted_work(self):
        pool = WorkerPool(2)
        ran = []

        async def work():
            ran.append(1)

        assert pool.submit(StagingPhase.STAGE_IN, 1, work)
        await asyncio.wait_for(pool.wait_idle(), timeout=1.0)

        assert ran == [1]
        assert not pool.in_flight(1)
        await pool.stop()

    @pytest.mark.asyncio
    async def test_one_item_per_job_and_phase(self):
        pool = WorkerPool(2)
        gate = asyncio.Event()

        async def work():
            await gate.wait()

        assert pool.submit(StagingPhase.STAGE_IN, 1, work)
        assert not pool.submit(StagingPhase.STAGE_IN, 1, work)
        assert pool.submit(StagingPhase.STAGE_OUT, 1, work)
        assert pool.in_flight(1, StagingPhase.STAGE_IN)
        assert pool.in_flight(1)

        gate.set()
        await asyncio.wait_for(pool.wait_idle(), timeout=1.0)
        assert pool.submit(StagingPhase.STAGE_IN, 1, work)
        await asyncio.wait_for(pool.wait_idle(), timeout=1.0)
        await pool.stop()

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self):
        pool = WorkerPool(2)
        running = 0
        peak = 0

        async def work():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.02)
            running -= 1

        for job_id in range(6):
            pool.submit(StagingPhase.STAGE_IN, job_id, work)
        await asyncio.wait_for(pool.wait_idle(), timeout=2.0)

        assert peak == 2
        await pool.stop()

    @pytest.mark.asyncio
    async def test_failing_work_does_not_kill_consumer(self):
        pool = WorkerPool(1)
        ran = []

        async def broken():
            raise RuntimeError("worker bug")

        async def work():
            ran.append(True)

        pool.submit(StagingPhase.STAGE_OUT, 1, broken, operation="teardown")
        pool.submit(StagingPhase.STAGE_OUT, 2, work)
        await asyncio.wait_for(pool.wait_idle(), timeout=1.0)

        assert ran == [True]
        assert pool.outstanding == 0
        await pool.stop()

    @pytest.mark.asyncio
    async def test_stop_refuses_new_work(self):
        pool = WorkerPool(1)
        gate = asyncio.Event()

        async def work():
            await gate.wait()

        pool.submit(StagingPhase.STAGE_IN, 1, work)
        await asyncio.sleep(0)
        await pool.stop()

        assert not pool.in_flight(1)
        assert not pool.submit(StagingPhase.STAGE_IN, 2, work)
        await asyncio.wait_for(pool.wait_idle(), timeout=1.0)
        assert not pool.accepting

    @pytest.mark.asyncio
    async def test_reopen_after_stop(self):
        pool = WorkerPool(1)
        ran = []

        async def work():
            ran.append(True)

        await pool.stop()
        pool.reopen()

        assert pool.accepting
        assert pool.submit(StagingPhase.STAGE_OUT, 1, work)
        await asyncio.wait_for(pool.wait_idle(), timeout=1.0)
        assert ran == [True]
        await pool.stop()
