"""
Domain models for watermark-sync.

Defines the row shapes aligned with `stores/postgres.py::create_schema` (source
orders, replicated orders and watermark entries), the transient change set
selected by one run, and the result contract returned by the orchestrator.

Timestamps are held as naive UTC, matching the `TIMESTAMP` columns.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, Iterator, List, Optional, TypedDict

from pydantic import BaseModel, Field, field_validator


def as_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values pass through."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class SourceRecord(BaseModel):
    """
    Representation of a single row in the source `orders` table.

    The source system owns `last_modified` and must bump it on every change to
    a payload field; a row changed without a bump is never reselected.
    """

    id: int = Field(..., description="Primary key (order id).")
    customer_id: int = Field(..., description="Owning customer reference.")
    amount: Decimal = Field(..., description="Order amount.")
    last_modified: datetime = Field(..., description="Last modification timestamp.")

    model_config = {
        "frozen": True,
        "populate_by_name": True,
        "arbitrary_types_allowed": False,
    }

    @field_validator("last_modified")
    @classmethod
    def _normalise_last_modified(cls, value: datetime) -> datetime:
        return as_naive_utc(value)

    def payload(self) -> Dict[str, Any]:
        """Business fields, i.e. everything except the identifier and timestamp."""
        return self.model_dump(exclude={"id", "last_modified"})


class DestinationRecord(SourceRecord):
    """
    Replicated projection of a SourceRecord held in the destination table.
    """

    @classmethod
    def from_source(cls, record: SourceRecord) -> "DestinationRecord":
        return cls(**record.model_dump())


class WatermarkEntry(BaseModel):
    """
    Synchronization progress for one named source.
    """

    source_name: str = Field(..., description="Tracked source (unique key).")
    marker_value: datetime = Field(..., description="Highest last_modified already loaded.")

    model_config = {"frozen": True}

    @field_validator("marker_value")
    @classmethod
    def _normalise_marker(cls, value: datetime) -> datetime:
        return as_naive_utc(value)


class ChangeSet:
    """
    Rows selected by one run as changed since the stored marker.

    Only exists for the duration of one invocation. No ordering is implied.
    """

    def __init__(self, records: Iterable[SourceRecord] = ()) -> None:
        self._records: List[SourceRecord] = list(records)
        self._released = False

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[SourceRecord]:
        return iter(self._records)

    def __repr__(self) -> str:
        return f"ChangeSet(rows={len(self._records)}, released={self._released})"

    @property
    def is_empty(self) -> bool:
        return not self._records

    @property
    def released(self) -> bool:
        return self._released

    def ids(self) -> List[int]:
        return [record.id for record in self._records]

    def max_marker(self) -> Optional[datetime]:
        """Candidate new marker; None when nothing was selected."""
        if not self._records:
            return None
        return max(record.last_modified for record in self._records)

    def release(self) -> None:
        """Drop the staged rows."""
        self._records = []
        self._released = True


@dataclass(frozen=True)
class ApplyStats:
    """Outcome of merging one change set into the destination."""

    inserted: int = 0
    updated: int = 0

    @property
    def applied(self) -> int:
        return self.inserted + self.updated


class RunState(str, enum.Enum):
    """States a single synchronization invocation moves through."""

    START = "START"
    MARKER_READ = "MARKER_READ"
    SELECTED = "SELECTED"
    APPLIED = "APPLIED"
    ADVANCED = "ADVANCED"
    DONE = "DONE"
    FAILED = "FAILED"


class SyncResult(TypedDict, total=False):
    """
    Outcome of one `run_sync` invocation.

    `new_marker` is None when the marker was left unchanged.
    """

    source_name: str
    status: str
    state: str
    transitions: List[str]
    failed_at: Optional[str]
    rows_applied: int
    inserted: int
    updated: int
    previous_marker: Optional[str]
    new_marker: Optional[str]
    marker_changed: bool
    duration_seconds: float
    peak_rss_bytes: Optional[int]
    error: Optional[str]
    error_type: Optional[str]
    retryable: Optional[bool]
    partial_write: bool
    notes: Optional[str]


__all__ = [
    "ApplyStats",
    "ChangeSet",
    "DestinationRecord",
    "RunState",
    "SourceRecord",
    "SyncResult",
    "WatermarkEntry",
    "as_naive_utc",
]
