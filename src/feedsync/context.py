"""
Call context — deadline and cancellation for sync calls.

Every remote and cache call accepts an optional ``CallContext``. The
orchestrator checks it between stages and the HTTP client turns the
remaining time into a per-request timeout.

Usage:
    ctx = CallContext.with_timeout(30)
    service.refresh(1, 50, ctx=ctx)

    # from another thread
    ctx.cancel()
"""

from __future__ import annotations

import threading
import time
from typing import Optional

from .errors import SyncCancelledError


class CallContext:
    """Deadline plus cancellation token shared by one logical call.

    Args:
        deadline: Absolute ``time.monotonic()`` value after which the
            call is considered expired. ``None`` means no deadline.
    """

    def __init__(self, deadline: Optional[float] = None) -> None:
        self.deadline = deadline
        self._cancelled = threading.Event()

    @classmethod
    def with_timeout(cls, seconds: float) -> "CallContext":
        """Create a context that expires ``seconds`` from now."""
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self) -> None:
        """Signal cancellation to everyone holding this context."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None without one."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def check(self, stage: str) -> None:
        """Raise if the call was cancelled or ran out of time.

        Args:
            stage: Stage about to start, used in the error message.

        Raises:
            SyncCancelledError: When cancelled or past the deadline.
        """
        if self.cancelled:
            raise SyncCancelledError(stage, "cancelled")
        if self.expired:
            raise SyncCancelledError(stage, "deadline exceeded")


def check_context(ctx: Optional[CallContext], stage: str) -> None:
    """``ctx.check(stage)`` that tolerates a missing context."""
    if ctx is not None:
        ctx.check(stage)
