"""
Job store implementations.

This module provides the JobStore interface and an in-memory
implementation holding the cached staging records keyed by job id.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable

from ..logging import StructuredLogger, TransitionLog, get_logger
from .types import JobRecord, StagingState


class JobStore(ABC):
    """Abstract interface for staging record storage.

    Every state write goes through ``transition`` so that concurrent
    workers serialize on the store and never overwrite each other.
    """

    @abstractmethod
    async def get(self, job_id: int) -> JobRecord | None:
        """Get a record by job id."""
        ...

    @abstractmethod
    async def get_or_create(
        self,
        job_id: int,
        factory: Callable[[], JobRecord],
    ) -> tuple[JobRecord, bool]:
        """Get the cached record or create it with factory.

        Returns:
            Tuple of (record, created)
        """
        ...

    @abstractmethod
    async def delete(self, job_id: int) -> bool:
        """Delete a record. Returns True if deleted."""
        ...

    @abstractmethod
    async def list(self) -> list[JobRecord]:
        """List all records, ordered by job id."""
        ...

    @abstractmethod
    async def transition(
        self,
        job_id: int,
        new_state: StagingState,
        *,
        expected: Iterable[StagingState] | None = None,
        strict: bool = True,
    ) -> JobRecord | None:
        """Atomically move a record to new_state.

        Args:
            job_id: Record to update
            new_state: Target state
            expected: When given, the write only happens if the current
                state is one of these (compare-and-set)
            strict: When False, an illegal transition returns None
                instead of raising

        Returns:
            The updated record, or None if the record is missing or the
            current state did not match

        Raises:
            InvalidTransitionError: If strict and the transition is illegal
        """
        ...

    @abstractmethod
    async def mark_setup_started(self, job_id: int) -> JobRecord | None:
        """Note that the setup command of a job succeeded."""
        ...

    @abstractmethod
    async def count(self) -> int:
        """Count cached records."""
        ...

    @abstractmethod
    async def clear(self) -> None:
        """Drop every record."""
        ...


class InMemoryJobStore(JobStore):
    """In-memory record cache guarded by a single asyncio.Lock.

    The lock is held only for the read-modify-write of a record, never
    across a staging command.
    """

    def __init__(self, logger: StructuredLogger | None = None):
        self._jobs: dict[int, JobRecord] = {}
        self._lock = asyncio.Lock()
        self._logger = logger or get_logger()

    async def get(self, job_id: int) -> JobRecord | None:
        async with self._lock:
            return self._jobs.get(job_id)

    async def get_or_create(
        self,
        job_id: int,
        factory: Callable[[], JobRecord],
    ) -> tuple[JobRecord, bool]:
        async with self._lock:
            existing = self._jobs.get(job_id)
            if existing is not None:
                return existing, False
            job = factory()
            if job.job_id != job_id:
                raise ValueError(f"Factory built JobId={job.job_id}, expected JobId={job_id}")
            self._jobs[job_id] = job
            return job, True

    async def delete(self, job_id: int) -> bool:
        async with self._lock:
            return self._jobs.pop(job_id, None) is not None

    async def list(self) -> list[JobRecord]:
        async with self._lock:
            return sorted(self._jobs.values(), key=lambda j: j.job_id)

    async def transition(
        self,
        job_id: int,
        new_state: StagingState,
        *,
        expected: Iterable[StagingState] | None = None,
        strict: bool = True,
    ) -> JobRecord | None:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            if expected is not None and job.state not in set(expected):
                return None
            if not strict and not job.can_transition_to(new_state):
                return None
            updated = job.transition_to(new_state)
            self._jobs[job_id] = updated

        if updated is not job:
            self._logger.log_transition(
                TransitionLog(job_id=job_id, from_state=job.state.label, to_state=new_state.label)
            )
        return updated

    async def mark_setup_started(self, job_id: int) -> JobRecord | None:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            updated = job.with_setup_started()
            self._jobs[job_id] = updated
            return updated

    async def count(self) -> int:
        async with self._lock:
            return len(self._jobs)

    async def clear(self) -> None:
        async with self._lock:
            self._jobs.clear()


__all__ = [
    "JobStore",
    "InMemoryJobStore",
]
