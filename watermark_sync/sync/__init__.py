"""
Sync steps: change selection, upsert application and watermark advancement.
"""

from watermark_sync.sync.advancer import WatermarkAdvancer
from watermark_sync.sync.applier import UpsertApplier
from watermark_sync.sync.selector import DEFAULT_FLOOR, ChangeSelector

__all__ = [
    "DEFAULT_FLOOR",
    "ChangeSelector",
    "UpsertApplier",
    "WatermarkAdvancer",
]
