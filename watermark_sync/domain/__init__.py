"""
Domain package for watermark-sync.

Exports the record models, the change set value and the error taxonomy used
across stores, sync steps and the orchestrator.
"""

from watermark_sync.domain.errors import (
    ConcurrentRunError,
    ConstraintViolation,
    SyncError,
    TransientStoreError,
)
from watermark_sync.domain.models import (
    ApplyStats,
    ChangeSet,
    DestinationRecord,
    RunState,
    SourceRecord,
    SyncResult,
    WatermarkEntry,
    as_naive_utc,
)

__all__ = [
    "ApplyStats",
    "ChangeSet",
    "ConcurrentRunError",
    "ConstraintViolation",
    "DestinationRecord",
    "RunState",
    "SourceRecord",
    "SyncError",
    "SyncResult",
    "TransientStoreError",
    "WatermarkEntry",
    "as_naive_utc",
]
