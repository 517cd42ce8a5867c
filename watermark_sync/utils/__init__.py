"""
Utilities package for watermark-sync.

Exports shared helpers for logging and profiling. Keep this package
lightweight and free of sync-specific logic.
"""

from watermark_sync.utils.logging import configure_logging, get_logger
from watermark_sync.utils.profiler import ProfileStats, profile_block

__all__ = [
    "configure_logging",
    "get_logger",
    "ProfileStats",
    "profile_block",
]
