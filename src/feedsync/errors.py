"""
Error taxonomy for feedsync.

Every failure carries the stage it happened in, so a single message
tells the caller both where the sync stopped and why:

    fetch subscriptions from feedbin: list subscriptions failed with status 500

The orchestrator re-raises lower-level errors with its own stage
prepended (see ``wrap_stage``). The class of the error never changes on
the way up.
"""

from __future__ import annotations

from typing import Optional, TypeVar

E = TypeVar("E", bound="FeedsyncError")


class FeedsyncError(Exception):
    """Base class for every error raised by feedsync.

    Args:
        stage: Short description of the step that failed.
        cause: Human-readable cause. Defaults to the chained exception text.
    """

    def __init__(self, stage: str, cause: Optional[str] = None) -> None:
        self.stage = stage
        self.cause = cause
        super().__init__(self._render())

    def _render(self) -> str:
        if self.cause:
            return f"{self.stage}: {self.cause}"
        return self.stage


class RemoteFetchError(FeedsyncError):
    """Network or API failure while talking to the remote service."""

    def __init__(
        self,
        stage: str,
        cause: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(stage, cause)


class AuthenticationError(RemoteFetchError):
    """The remote service rejected the configured credentials."""


class DecodeError(FeedsyncError):
    """The remote service returned a payload we cannot understand."""


class CacheError(FeedsyncError):
    """Persistence failure in the cache store."""


class CacheWriteError(CacheError):
    """A cache write (insert, update, migration) failed."""


class CacheReadError(CacheError):
    """A cache read failed or returned an unparseable value."""


class ValidationError(FeedsyncError, ValueError):
    """An argument (filter, search query, setting) is invalid."""


class ConfigError(ValidationError):
    """Runtime configuration is incomplete or inconsistent."""


class SyncCancelledError(FeedsyncError):
    """The caller's deadline passed or the call was cancelled."""


def wrap_stage(exc: E, stage: str) -> E:
    """Build a copy of ``exc`` with ``stage`` prepended to its message.

    The returned error has the same class as ``exc`` so callers can keep
    catching by kind. Extra attributes (status codes) are carried over.

    Args:
        exc: The lower-level feedsync error.
        stage: Description of the enclosing stage.

    Returns:
        A new error of the same type, ready to ``raise ... from exc``.
    """
    wrapped = exc.__class__.__new__(exc.__class__)
    wrapped.__dict__.update(exc.__dict__)
    wrapped.stage = stage
    wrapped.cause = str(exc)
    Exception.__init__(wrapped, wrapped._render())
    return wrapped
