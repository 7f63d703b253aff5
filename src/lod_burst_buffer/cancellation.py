"""Cancellation tokens for staging tool invocations.

A token is created for every tracked invocation and handed to the
executor. Cancelling it asks the executor to stop the running process;
the worker that launched the command then sees a CANCELLED outcome
instead of a failure.

- Token uses asyncio.Event internally for async-friendly waiting
- Cancellation is idempotent and remembers the first reason given
- ``CancellationToken.none()`` is a shared token that never fires
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field


@dataclass
class CancellationToken:
    """Mutable token for cooperative cancellation of one invocation.

    Usage:
        token = CancellationToken()
        result = await executor.run(argv, timeout_ms=300_000, token=token)

        # From elsewhere (job cancel, shutdown):
        token.cancel("job cancelled")
    """

    _event: asyncio.Event = field(default_factory=asyncio.Event, init=False)
    _noop: bool = field(default=False, init=False, repr=False)
    reason: str | None = field(default=None, init=False)
    cancelled_at: float | None = field(default=None, init=False)

    @property
    def is_cancelled(self) -> bool:
        """Check if cancellation was requested."""
        if self._noop:
            return False
        return self._event.is_set()

    def cancel(self, reason: str | None = None) -> None:
        """Request cancellation (idempotent)."""
        if self._noop or self._event.is_set():
            return
        self.reason = reason
        self.cancelled_at = time.time()
        self._event.set()

    async def wait(self) -> None:
        """Block until cancel() is called. Never returns for the no-op token."""
        if self._noop:
            await asyncio.Future()
            return
        await self._event.wait()

    @classmethod
    def none(cls) -> CancellationToken:
        """Return the shared no-op token (never cancels)."""
        global _NEVER_CANCEL
        if _NEVER_CANCEL is None:
            token = cls()
            token._noop = True
            _NEVER_CANCEL = token
        return _NEVER_CANCEL


# Created lazily so that no event loop is needed at import time
_NEVER_CANCEL: CancellationToken | None = None


__all__ = ["CancellationToken"]
