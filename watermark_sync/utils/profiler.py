"""
Profiling utilities for watermark-sync.

Wraps one synchronization run to record wall-clock duration and resident
memory, which the orchestrator copies into the run result.

Usage:
    from watermark_sync.utils.profiler import profile_block

    with profile_block("sync:orders") as stats:
        orchestrator.run_sync("orders")

    print(stats.duration_seconds, stats.peak_rss_bytes)
"""

from __future__ import annotations

import contextlib
import time
from dataclasses import dataclass, field
from typing import Any, Generator, Optional

import psutil


@dataclass
class ProfileStats:
    """
    Container for profiling measurements.
    """

    label: str
    start_ts: float = field(default=0.0)
    end_ts: float = field(default=0.0)
    duration_seconds: float = field(default=0.0)
    peak_rss_bytes: Optional[int] = field(default=None)
    extra: dict[str, Any] = field(default_factory=dict)


@contextlib.contextmanager
def profile_block(label: str) -> Generator[ProfileStats, None, None]:
    """
    Context manager measuring duration (perf_counter) and RSS (psutil).

    The RSS figure is the larger of the start and end samples; runs are short
    and sequential so no background sampler is used. Stats are filled in even
    when the block raises.
    """
    stats = ProfileStats(label=label)
    process = psutil.Process()
    rss_before = process.memory_info().rss

    stats.start_ts = time.perf_counter()
    try:
        yield stats
    finally:
        stats.end_ts = time.perf_counter()
        stats.duration_seconds = stats.end_ts - stats.start_ts
        stats.peak_rss_bytes = max(rss_before, process.memory_info().rss)


__all__ = ["ProfileStats", "profile_block"]
