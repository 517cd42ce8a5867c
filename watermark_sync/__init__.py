"""
watermark-sync - incremental replication driven by a persisted high-water mark.

Each run reads the stored marker for a source, selects the rows modified
strictly after it, upserts them into the destination by primary key and then
advances the marker to the highest timestamp it applied:

- Watermark store: one marker per tracked source
- Change selector: `last_modified > marker`
- Upsert applier: insert-or-overwrite by id
- Watermark advancer: commit max(last_modified) of the applied rows
- Orchestrator: sequencing, transaction boundary and failure policy
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from watermark_sync.config import Settings, get_settings
from watermark_sync.domain import (
    ChangeSet,
    ConcurrentRunError,
    ConstraintViolation,
    DestinationRecord,
    RunState,
    SourceRecord,
    SyncError,
    SyncResult,
    TransientStoreError,
    WatermarkEntry,
)
from watermark_sync.orchestrator import SyncOrchestrator, run_sync
from watermark_sync.stores import SyncStores, in_memory_stores, postgres_stores
from watermark_sync.utils.logging import configure_logging, get_logger

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Domain
    "ChangeSet",
    "DestinationRecord",
    "RunState",
    "SourceRecord",
    "SyncResult",
    "WatermarkEntry",
    # Errors
    "ConcurrentRunError",
    "ConstraintViolation",
    "SyncError",
    "TransientStoreError",
    # Orchestration
    "SyncOrchestrator",
    "run_sync",
    # Stores
    "SyncStores",
    "in_memory_stores",
    "postgres_stores",
    # Logging
    "configure_logging",
    "get_logger",
]
