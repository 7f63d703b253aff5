"""
Staging record system.

This package provides the per-job staging lifecycle:
- JobRecord: Cached staging state of one host job
- StagingState: Ordered lifecycle states and legal transitions
- JobStore: Lock-guarded record cache with compare-and-set transitions
"""

from .types import (
    StagingState,
    JobRecord,
    VALID_TRANSITIONS,
)
from .store import (
    JobStore,
    InMemoryJobStore,
)

__all__ = [
    "StagingState",
    "JobRecord",
    "VALID_TRANSITIONS",
    "JobStore",
    "InMemoryJobStore",
]
