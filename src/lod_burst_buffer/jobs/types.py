"""
Staging job types.

This module defines the StagingState enum and the JobRecord dataclass
that together form the per-job staging lifecycle.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from enum import IntEnum
from typing import Any

from ..directives import StagingOptions
from ..errors import ErrorContext, InvalidTransitionError


class StagingState(IntEnum):
    """Staging lifecycle states, ordered so that range checks are meaningful.

    State transitions:
    - PENDING -> STAGING_IN (claimed by the stage-in scheduler)
    - STAGING_IN -> STAGED_IN (setup and stage-in succeeded)
    - STAGING_IN -> STAGE_IN_FAIL (stage-in failure, when reported)
    - STAGED_IN -> RUNNING (job began)
    - RUNNING -> POST_RUN -> STAGING_OUT -> STAGED_OUT (stage-out)
    - * -> TEARDOWN (cancel, or end of a job that needs no stage-out)
    - TEARDOWN -> COMPLETE | TEARDOWN_FAIL
    - COMPLETE -> PENDING (job requeued)
    - STAGING_IN -> PENDING (claim released, stage-in never dispatched)
    """

    PENDING = 0
    STAGING_IN = 1
    STAGE_IN_FAIL = 2
    STAGED_IN = 3
    RUNNING = 4
    POST_RUN = 5
    STAGING_OUT = 6
    STAGED_OUT = 7
    TEARDOWN = 8
    TEARDOWN_FAIL = 9
    COMPLETE = 10

    @property
    def label(self) -> str:
        return self.name.lower()

    @property
    def is_terminal(self) -> bool:
        """Check if this is a terminal state."""
        return self in {StagingState.COMPLETE, StagingState.TEARDOWN_FAIL}


# Valid state transitions
VALID_TRANSITIONS: dict[StagingState, set[StagingState]] = {
    # A job cancelled before it was ever claimed completes directly.
    StagingState.PENDING: {StagingState.STAGING_IN, StagingState.TEARDOWN, StagingState.COMPLETE},
    StagingState.STAGING_IN: {
        StagingState.STAGED_IN,
        StagingState.STAGE_IN_FAIL,
        StagingState.TEARDOWN,
        # Claim released when stage-in could not be dispatched
        StagingState.PENDING,
    },
    StagingState.STAGE_IN_FAIL: {StagingState.TEARDOWN},
    StagingState.STAGED_IN: {StagingState.RUNNING, StagingState.TEARDOWN},
    StagingState.RUNNING: {StagingState.POST_RUN, StagingState.TEARDOWN},
    StagingState.POST_RUN: {StagingState.STAGING_OUT},
    StagingState.STAGING_OUT: {StagingState.STAGED_OUT},
    StagingState.STAGED_OUT: {StagingState.TEARDOWN},
    StagingState.TEARDOWN: {StagingState.COMPLETE, StagingState.TEARDOWN_FAIL},
    # Requeue only
    StagingState.COMPLETE: {StagingState.PENDING},
    StagingState.TEARDOWN_FAIL: set(),
}


@dataclass(frozen=True)
class JobRecord:
    """Cached staging record of one host job.

    Records are immutable; every change produces a new record that the
    store swaps in under its lock.
    """

    # Identity
    job_id: int
    user_id: int | None = None
    account: str | None = None
    partition: str | None = None
    qos: str | None = None

    # Lifecycle
    state: StagingState = StagingState.PENDING
    options: StagingOptions = field(default_factory=StagingOptions)
    started_setup: bool = False

    # Timestamps
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    def can_transition_to(self, new_state: StagingState) -> bool:
        """Check if a write of new_state is allowed (same-state writes are)."""
        return new_state == self.state or new_state in VALID_TRANSITIONS.get(self.state, set())

    def transition_to(self, new_state: StagingState) -> JobRecord:
        """Create a new JobRecord in new_state.

        Raises:
            InvalidTransitionError: If the transition is not allowed
        """
        if new_state == self.state:
            return self
        if not self.can_transition_to(new_state):
            raise InvalidTransitionError(
                f"Invalid transition: {self.state.label} -> {new_state.label}",
                context=ErrorContext(job_id=self.job_id),
            )
        if new_state == StagingState.PENDING:
            # Requeued or released: the next run sets up its own filesystem
            return replace(self, state=new_state, started_setup=False, updated_at=time.time())
        return replace(self, state=new_state, updated_at=time.time())

    def with_setup_started(self) -> JobRecord:
        """Create a new JobRecord noting that the setup command succeeded."""
        if self.started_setup:
            return self
        return replace(self, started_setup=True, updated_at=time.time())

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "job_id": self.job_id,
            "user_id": self.user_id,
            "account": self.account,
            "partition": self.partition,
            "qos": self.qos,
            "state": self.state.label,
            "options": self.options.to_dict(),
            "started_setup": self.started_setup,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


__all__ = [
    "StagingState",
    "JobRecord",
    "VALID_TRANSITIONS",
]
