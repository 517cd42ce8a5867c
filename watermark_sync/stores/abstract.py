"""
Storage interfaces for watermark-sync.

The orchestrator only talks to these protocols; concrete backends (in-memory,
PostgreSQL) implement them and are injected through a SyncStores bundle.
"""

from __future__ import annotations

import abc
from contextlib import nullcontext
from dataclasses import dataclass, field
from datetime import datetime
from typing import (
    Callable,
    ContextManager,
    Iterable,
    List,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    runtime_checkable,
)

from watermark_sync.domain.models import DestinationRecord, SourceRecord, WatermarkEntry


@runtime_checkable
class WatermarkStore(Protocol):
    """
    Durable keyed storage of the last successfully loaded marker per source.
    """

    def get(self, source_name: str) -> Optional[datetime]:
        """
        Return the current marker for `source_name`, or None if never seeded/committed.
        """
        ...

    def set(self, source_name: str, marker_value: datetime) -> None:
        """
        Create the entry if absent, otherwise overwrite it, in one atomic step.
        """
        ...

    def entries(self) -> List[WatermarkEntry]:
        """List every tracked entry."""
        ...


@runtime_checkable
class SourceDataset(Protocol):
    """Readable collection of SourceRecord, queryable by `last_modified > X`."""

    def changed_since(self, marker_value: datetime) -> Iterable[SourceRecord]:
        """Yield every row whose last_modified is strictly greater than `marker_value`."""
        ...


@runtime_checkable
class DestinationDataset(Protocol):
    """Read/write collection of DestinationRecord supporting upsert-by-identifier."""

    def upsert(self, records: Sequence[DestinationRecord]) -> Tuple[int, int]:
        """
        Insert or fully overwrite each record by id.

        Returns
        -------
        tuple[int, int]
            Number of inserted rows and number of updated rows.
        """
        ...

    def get(self, record_id: int) -> Optional[DestinationRecord]:
        ...

    def count(self) -> int:
        ...


class AbstractWatermarkStore(abc.ABC):
    """
    Optional ABC helper for class-based watermark stores.
    """

    @abc.abstractmethod
    def get(self, source_name: str) -> Optional[datetime]:  # pragma: no cover - interface only
        raise NotImplementedError

    @abc.abstractmethod
    def set(self, source_name: str, marker_value: datetime) -> None:  # pragma: no cover
        raise NotImplementedError

    @abc.abstractmethod
    def entries(self) -> List[WatermarkEntry]:  # pragma: no cover - interface only
        raise NotImplementedError


def _no_transaction() -> ContextManager[None]:
    return nullcontext()


def _no_lock(source_name: str) -> ContextManager[None]:
    del source_name
    return nullcontext()


@dataclass
class SyncStores:
    """
    The collaborators one orchestrator works against.

    `transaction` opens the all-or-nothing boundary around apply + advance.
    Backends without a shared transactional resource keep the no-op default;
    the orchestrator then relies on apply-before-advance ordering.
    `transactional` tells the orchestrator whether a failed apply was rolled
    back; leave it False unless `transaction` really undoes destination writes.

    `run_lock` is the mutual-exclusion hook for one source. The default does
    nothing: callers are expected to serialize runs per source themselves.
    """

    source: SourceDataset
    destination: DestinationDataset
    watermarks: WatermarkStore
    transaction: Callable[[], ContextManager[object]] = field(default=_no_transaction)
    run_lock: Callable[[str], ContextManager[object]] = field(default=_no_lock)
    transactional: bool = False


__all__ = [
    "AbstractWatermarkStore",
    "DestinationDataset",
    "SourceDataset",
    "SyncStores",
    "WatermarkStore",
]
