"""
Error taxonomy for synchronization runs.

A missing watermark and an empty change set are not errors and have no class
here; they map to the floor value and to a zero-row run respectively.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for failures surfaced by a synchronization run."""

    retryable: bool = False

    def __init__(self, message: str, *, source_name: str | None = None) -> None:
        super().__init__(message)
        self.source_name = source_name


class TransientStoreError(SyncError):
    """Watermark or destination storage is unreachable; safe to re-run."""

    retryable = True


class ConstraintViolation(SyncError):
    """Conflicting identifiers or another integrity failure while applying rows."""


class ConcurrentRunError(SyncError):
    """Another run currently holds the lock for the same source."""

    retryable = True


__all__ = [
    "ConcurrentRunError",
    "ConstraintViolation",
    "SyncError",
    "TransientStoreError",
]
