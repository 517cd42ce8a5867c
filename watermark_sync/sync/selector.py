"""
Change selection: which source rows are new since the stored marker.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from watermark_sync.domain.models import ChangeSet, as_naive_utc
from watermark_sync.stores.abstract import SourceDataset
from watermark_sync.utils.logging import get_logger

log = get_logger(__name__)

# Lower than any real last_modified; used when no watermark exists yet.
DEFAULT_FLOOR = datetime(2000, 1, 1)


class ChangeSelector:
    """
    Select every SourceRecord with `last_modified` strictly greater than the marker.

    The comparison must stay strict: with `>=` the row sitting exactly on the
    marker would be reselected on every run. Markers and the floor are compared
    as naive UTC, like the records themselves.
    """

    def __init__(self, source: SourceDataset, floor: datetime = DEFAULT_FLOOR) -> None:
        self._source = source
        self.floor = as_naive_utc(floor)

    def effective_marker(self, marker_value: Optional[datetime]) -> datetime:
        return self.floor if marker_value is None else as_naive_utc(marker_value)

    def select(self, marker_value: Optional[datetime]) -> ChangeSet:
        effective = self.effective_marker(marker_value)
        if marker_value is None:
            log.info("No watermark stored; selecting from floor", extra={"floor": str(effective)})
        changeset = ChangeSet(
            record for record in self._source.changed_since(effective)
            if record.last_modified > effective
        )
        log.debug(
            "Change set selected",
            extra={"marker": str(effective), "rows": len(changeset)},
        )
        return changeset


__all__ = ["DEFAULT_FLOOR", "ChangeSelector"]
