"""
Upsert application of a change set into the destination.
"""

from __future__ import annotations

from collections import Counter

from watermark_sync.domain.errors import ConstraintViolation
from watermark_sync.domain.models import ApplyStats, ChangeSet, DestinationRecord
from watermark_sync.stores.abstract import DestinationDataset
from watermark_sync.utils.logging import get_logger

log = get_logger(__name__)


class UpsertApplier:
    """
    Merge a ChangeSet into the destination by primary key.

    Existing ids are fully overwritten (payload and `last_modified`), unknown
    ids are inserted. The destination's `upsert` primitive owns the
    insert-vs-update decision; the whole batch is handed over in one call so
    the store can commit or roll it back as a unit.
    """

    def __init__(self, destination: DestinationDataset) -> None:
        self._destination = destination

    def apply(self, changeset: ChangeSet) -> ApplyStats:
        if changeset.is_empty:
            return ApplyStats()

        counts = Counter(changeset.ids())
        duplicates = sorted(record_id for record_id, seen in counts.items() if seen > 1)
        if duplicates:
            raise ConstraintViolation(f"change set contains duplicate ids: {duplicates}")

        rows = [DestinationRecord.from_source(record) for record in changeset]
        inserted, updated = self._destination.upsert(rows)
        stats = ApplyStats(inserted=inserted, updated=updated)
        if stats.applied != len(rows):
            raise ConstraintViolation(
                f"destination acknowledged {stats.applied} of {len(rows)} rows"
            )

        log.debug("Change set applied", extra={"inserted": inserted, "updated": updated})
        return stats


__all__ = ["UpsertApplier"]
