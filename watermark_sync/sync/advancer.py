"""
Watermark advancement after a change set has been applied.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from watermark_sync.domain.models import ChangeSet
from watermark_sync.stores.abstract import WatermarkStore


class WatermarkAdvancer:
    """
    Commit the highest `last_modified` of an applied change set as the new marker.

    Must only run once the apply step is durable. An empty change set leaves
    the stored marker untouched, it is never reset to the floor. Every selected
    row lies strictly above the marker it was selected with, so the committed
    value never moves backwards.
    """

    def __init__(self, store: WatermarkStore) -> None:
        self._store = store

    def advance(self, source_name: str, changeset: ChangeSet) -> Optional[datetime]:
        """
        Returns the committed marker, or None when the marker was left unchanged.
        """
        candidate = changeset.max_marker()
        if candidate is None:
            return None
        self._store.set(source_name, candidate)
        return candidate


__all__ = ["WatermarkAdvancer"]
