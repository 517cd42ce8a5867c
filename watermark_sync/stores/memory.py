"""
In-process stores.

Useful for tests and for embedding a sync in another process. Every store
guards its state with a lock so a concurrent reader sees either the old or the
new value, never a partial write. `in_memory_stores` wires them together with a
snapshot/restore transaction so apply + advance stay all-or-nothing.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Generator, Iterable, List, Optional, Sequence, Tuple

from watermark_sync.domain.models import (
    DestinationRecord,
    SourceRecord,
    WatermarkEntry,
    as_naive_utc,
)
from watermark_sync.stores.abstract import AbstractWatermarkStore, SyncStores


class InMemoryWatermarkStore(AbstractWatermarkStore):
    def __init__(self, initial: Optional[Dict[str, datetime]] = None) -> None:
        self._lock = threading.Lock()
        self._entries: Dict[str, datetime] = {
            name: as_naive_utc(value) for name, value in (initial or {}).items()
        }

    def get(self, source_name: str) -> Optional[datetime]:
        with self._lock:
            return self._entries.get(source_name)

    def set(self, source_name: str, marker_value: datetime) -> None:
        with self._lock:
            self._entries[source_name] = as_naive_utc(marker_value)

    def entries(self) -> List[WatermarkEntry]:
        with self._lock:
            return [
                WatermarkEntry(source_name=name, marker_value=value)
                for name, value in sorted(self._entries.items())
            ]

    def snapshot(self) -> Dict[str, datetime]:
        with self._lock:
            return dict(self._entries)

    def restore(self, state: Dict[str, datetime]) -> None:
        with self._lock:
            self._entries = dict(state)


class InMemorySource:
    """
    Mutable stand-in for the source table.

    `put` plays the role of the upstream producer: it inserts or replaces a row
    and is responsible for bumping `last_modified`.
    """

    def __init__(self, records: Iterable[SourceRecord] = ()) -> None:
        self._lock = threading.Lock()
        self._rows: Dict[int, SourceRecord] = {record.id: record for record in records}

    def put(self, record: SourceRecord) -> None:
        with self._lock:
            self._rows[record.id] = record

    def get(self, record_id: int) -> Optional[SourceRecord]:
        with self._lock:
            return self._rows.get(record_id)

    def changed_since(self, marker_value: datetime) -> List[SourceRecord]:
        with self._lock:
            return [row for row in self._rows.values() if row.last_modified > marker_value]


class InMemoryDestination:
    def __init__(self, records: Iterable[DestinationRecord] = ()) -> None:
        self._lock = threading.Lock()
        self._rows: Dict[int, DestinationRecord] = {record.id: record for record in records}

    def upsert(self, records: Sequence[DestinationRecord]) -> Tuple[int, int]:
        # Stage on a copy and swap, so a failure mid-batch leaves nothing behind.
        with self._lock:
            staged = dict(self._rows)
            inserted = updated = 0
            for record in records:
                if record.id in staged:
                    updated += 1
                else:
                    inserted += 1
                staged[record.id] = record
            self._rows = staged
        return inserted, updated

    def get(self, record_id: int) -> Optional[DestinationRecord]:
        with self._lock:
            return self._rows.get(record_id)

    def count(self) -> int:
        with self._lock:
            return len(self._rows)

    def rows(self) -> List[DestinationRecord]:
        with self._lock:
            return sorted(self._rows.values(), key=lambda row: row.id)

    def snapshot(self) -> Dict[int, DestinationRecord]:
        with self._lock:
            return dict(self._rows)

    def restore(self, state: Dict[int, DestinationRecord]) -> None:
        with self._lock:
            self._rows = dict(state)


def in_memory_stores(
    source: Optional[InMemorySource] = None,
    destination: Optional[InMemoryDestination] = None,
    watermarks: Optional[InMemoryWatermarkStore] = None,
) -> SyncStores:
    """
    Bundle in-memory stores with a transaction that rolls both the destination
    and the watermarks back to their pre-run state on any exception.
    """
    source = source if source is not None else InMemorySource()
    destination = destination if destination is not None else InMemoryDestination()
    watermarks = watermarks if watermarks is not None else InMemoryWatermarkStore()

    @contextmanager
    def transaction() -> Generator[None, None, None]:
        rows_before = destination.snapshot()
        marks_before = watermarks.snapshot()
        try:
            yield
        except BaseException:
            destination.restore(rows_before)
            watermarks.restore(marks_before)
            raise

    return SyncStores(
        source=source,
        destination=destination,
        watermarks=watermarks,
        transaction=transaction,
        transactional=True,
    )


__all__ = [
    "InMemoryDestination",
    "InMemorySource",
    "InMemoryWatermarkStore",
    "in_memory_stores",
]
