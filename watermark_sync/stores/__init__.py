"""
Stores package for watermark-sync.

Re-exports the storage protocols and the concrete in-memory and PostgreSQL
backends so downstream code can import from `watermark_sync.stores` directly.
"""

from watermark_sync.stores.abstract import (
    AbstractWatermarkStore,
    DestinationDataset,
    SourceDataset,
    SyncStores,
    WatermarkStore,
)
from watermark_sync.stores.memory import (
    InMemoryDestination,
    InMemorySource,
    InMemoryWatermarkStore,
    in_memory_stores,
)
from watermark_sync.stores.postgres import (
    PostgresDestination,
    PostgresSource,
    PostgresWatermarkStore,
    advisory_lock,
    create_schema,
    postgres_stores,
)

__all__ = [
    # Protocols
    "AbstractWatermarkStore",
    "DestinationDataset",
    "SourceDataset",
    "SyncStores",
    "WatermarkStore",
    # In-memory
    "InMemoryDestination",
    "InMemorySource",
    "InMemoryWatermarkStore",
    "in_memory_stores",
    # PostgreSQL
    "PostgresDestination",
    "PostgresSource",
    "PostgresWatermarkStore",
    "advisory_lock",
    "create_schema",
    "postgres_stores",
]
