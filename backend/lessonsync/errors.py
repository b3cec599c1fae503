"""Failure taxonomy for the sync engine.

None of these escape the component that raised them: reconciliation and
submission failures are recovered locally, and only ``AuthSessionMissing``
changes the top-level application state.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for engine failures."""


class CacheCorruptionError(SyncError):
    """A cached JSON entry could not be parsed."""

    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f"Cached entry '{key}' is unreadable: {reason}")
        self.key = key


class NetworkTimeout(SyncError):
    """A failsafe deadline elapsed before a network response arrived."""

    def __init__(self, operation: str, deadline: float) -> None:
        super().__init__(f"{operation} did not finish within {deadline:.1f}s")
        self.operation = operation
        self.deadline = deadline


class RemoteWriteFailure(SyncError):
    """The remote state service rejected a read or write."""


class ValidationError(SyncError, ValueError):
    """A submitted response failed local validation."""


class AuthSessionMissing(SyncError):
    """No identity could be resolved for the session."""


__all__ = [
    "AuthSessionMissing",
    "CacheCorruptionError",
    "NetworkTimeout",
    "RemoteWriteFailure",
    "SyncError",
    "ValidationError",
]
