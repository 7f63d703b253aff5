"""
Tests for the staging lifecycle state machine and the record store.
"""

import pytest

from lod_burst_buffer.directives import StagingOptions
from lod_burst_buffer.errors import ErrorCode, InvalidTransitionError
from lod_burst_buffer.jobs import (
    VALID_TRANSITIONS,
    InMemoryJobStore,
    JobRecord,
    StagingState,
)


class TestStagingState:
    """Test state ordering and classification."""

    def test_ordering(self):
        order = [
            StagingState.PENDING,
            StagingState.STAGING_IN,
            StagingState.STAGE_IN_FAIL,
            StagingState.STAGED_IN,
            StagingState.RUNNING,
            StagingState.POST_RUN,
            StagingState.STAGING_OUT,
            StagingState.STAGED_OUT,
            StagingState.TEARDOWN,
            StagingState.TEARDOWN_FAIL,
            StagingState.COMPLETE,
        ]
        assert order == sorted(order)
        assert list(StagingState) == order

    def test_terminal_states(self):
        terminal = {s for s in StagingState if s.is_terminal}
        assert terminal == {StagingState.COMPLETE, StagingState.TEARDOWN_FAIL}

    def test_terminal_states_only_reached_from_teardown(self):
        for source, targets in VALID_TRANSITIONS.items():
            if source in (StagingState.TEARDOWN, StagingState.PENDING):
                continue
            assert StagingState.TEARDOWN_FAIL not in targets
            assert StagingState.COMPLETE not in targets

    def test_label(self):
        assert StagingState.STAGE_IN_FAIL.label == "stage_in_fail"


class TestJobRecord:
    """Test copy-on-write transitions."""

    def test_defaults(self):
        record = JobRecord(job_id=7)
        assert record.state == StagingState.PENDING
        assert record.started_setup is False
        assert record.options == StagingOptions()

    def test_valid_transition_returns_new_record(self):
        record = JobRecord(job_id=7)
        staged = record.transition_to(StagingState.STAGING_IN)

        assert staged.state == StagingState.STAGING_IN
        assert record.state == StagingState.PENDING
        assert staged.updated_at >= record.updated_at

    def test_same_state_is_noop(self):
        record = JobRecord(job_id=7, state=StagingState.STAGING_IN)
        assert record.transition_to(StagingState.STAGING_IN) is record

    def test_invalid_transition_raises(self):
        record = JobRecord(job_id=7, state=StagingState.PENDING)

        with pytest.raises(InvalidTransitionError) as exc_info:
            record.transition_to(StagingState.RUNNING)

        assert exc_info.value.code == ErrorCode.INVALID_TRANSITION
        assert "pending -> running" in str(exc_info.value)
        assert isinstance(exc_info.value, ValueError)

    def test_requeue_only_regression(self):
        complete = JobRecord(job_id=7, state=StagingState.COMPLETE)
        assert complete.can_transition_to(StagingState.PENDING)
        assert not JobRecord(job_id=7, state=StagingState.STAGED_IN).can_transition_to(
            StagingState.STAGING_IN
        )

    def test_requeue_resets_setup_flag(self):
        """A requeued job must not inherit the previous run's filesystem."""
        complete = JobRecord(job_id=7, state=StagingState.COMPLETE).with_setup_started()

        requeued = complete.transition_to(StagingState.PENDING)

        assert requeued.state == StagingState.PENDING
        assert requeued.started_setup is False

    def test_released_claim_returns_to_pending(self):
        claimed = JobRecord(job_id=7, state=StagingState.STAGING_IN)

        assert claimed.transition_to(StagingState.PENDING).state == StagingState.PENDING
        assert not JobRecord(job_id=7, state=StagingState.STAGED_IN).can_transition_to(
            StagingState.PENDING
        )

    def test_teardown_fail_is_final(self):
        record = JobRecord(job_id=7, state=StagingState.TEARDOWN_FAIL)
        for state in StagingState:
            if state != StagingState.TEARDOWN_FAIL:
                assert not record.can_transition_to(state)

    def test_with_setup_started(self):
        record = JobRecord(job_id=7)
        started = record.with_setup_started()

        assert started.started_setup is True
        assert started.with_setup_started() is started

    def test_to_dict(self):
        d = JobRecord(job_id=7, user_id=1000, state=StagingState.RUNNING).to_dict()

        assert d["job_id"] == 7
        assert d["state"] == "running"
        assert d["options"]["wants_setup"] is False


class TestInMemoryJobStore:
    """Test the lock-guarded record store."""

    @pytest.mark.asyncio
    async def test_get_or_create(self):
        store = InMemoryJobStore()

        record, created = await store.get_or_create(1, lambda: JobRecord(job_id=1))
        again, created_again = await store.get_or_create(1, lambda: JobRecord(job_id=1, user_id=5))

        assert created is True
        assert created_again is False
        assert again is record
        assert await store.get(1) is record

    @pytest.mark.asyncio
    async def test_factory_must_match_id(self):
        store = InMemoryJobStore()
        with pytest.raises(ValueError):
            await store.get_or_create(1, lambda: JobRecord(job_id=2))

    @pytest.mark.asyncio
    async def test_transition(self):
        store = InMemoryJobStore()
        await store.get_or_create(1, lambda: JobRecord(job_id=1))

        updated = await store.transition(1, StagingState.STAGING_IN)

        assert updated.state == StagingState.STAGING_IN
        assert (await store.get(1)).state == StagingState.STAGING_IN

    @pytest.mark.asyncio
    async def test_transition_missing_record(self):
        store = InMemoryJobStore()
        assert await store.transition(1, StagingState.STAGING_IN) is None

    @pytest.mark.asyncio
    async def test_compare_and_set(self):
        """Only one of two competing claims succeeds."""
        store = InMemoryJobStore()
        await store.get_or_create(1, lambda: JobRecord(job_id=1))

        first = await store.transition(1, StagingState.STAGING_IN, expected={StagingState.PENDING})
        second = await store.transition(1, StagingState.STAGING_IN, expected={StagingState.PENDING})

        assert first is not None
        assert second is None

    @pytest.mark.asyncio
    async def test_strict_and_lenient(self):
        store = InMemoryJobStore()
        await store.get_or_create(1, lambda: JobRecord(job_id=1, state=StagingState.POST_RUN))

        with pytest.raises(InvalidTransitionError):
            await store.transition(1, StagingState.TEARDOWN)
        assert await store.transition(1, StagingState.TEARDOWN, strict=False) is None
        assert (await store.get(1)).state == StagingState.POST_RUN

    @pytest.mark.asyncio
    async def test_mark_setup_started(self):
        store = InMemoryJobStore()
        await store.get_or_create(1, lambda: JobRecord(job_id=1))

        updated = await store.mark_setup_started(1)

        assert updated.started_setup is True
        assert await store.mark_setup_started(2) is None

    @pytest.mark.asyncio
    async def test_requeue_clears_setup_under_lock(self):
        store = InMemoryJobStore()
        await store.get_or_create(1, lambda: JobRecord(job_id=1, state=StagingState.COMPLETE))
        await store.mark_setup_started(1)

        requeued = await store.transition(1, StagingState.PENDING, expected={StagingState.COMPLETE})

        assert requeued.started_setup is False
        assert (await store.get(1)).started_setup is False

    @pytest.mark.asyncio
    async def test_delete(self):
        store = InMemoryJobStore()
        await store.get_or_create(1, lambda: JobRecord(job_id=1))

        assert await store.delete(1) is True
        assert await store.delete(1) is False

    @pytest.mark.asyncio
    async def test_list_and_count(self):
        store = InMemoryJobStore()
        for job_id, state in [(3, StagingState.COMPLETE), (1, StagingState.PENDING), (2, StagingState.RUNNING)]:
            await store.get_or_create(job_id, lambda j=job_id, s=state: JobRecord(job_id=j, state=s))

        assert [r.job_id for r in await store.list()] == [1, 2, 3]
        assert await store.count() == 3

        await store.clear()
        assert await store.count() == 0
