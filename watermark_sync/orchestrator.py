"""
Synchronization orchestrator: one incremental run per invocation.

Usage (example from a scheduler job):
    from watermark_sync.orchestrator import run_sync

    result = run_sync("orders")
    print(result["rows_applied"], result["new_marker"])

Each run walks START -> MARKER_READ -> SELECTED -> APPLIED -> ADVANCED -> DONE
and lands in FAILED on any SyncError. Apply and advance share one transaction
when the stores provide one; otherwise apply is completed before the marker
moves, so an interrupted run is safe to repeat. A failed apply against stores
that are not `transactional` is reported as a partial write needing manual
reconciliation.

At most one run per source may be in flight. The stores' `run_lock` hook is
the only guard; by default it does nothing and serialization is the caller's
job.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Literal, Optional

from watermark_sync.config import get_settings
from watermark_sync.domain.errors import SyncError
from watermark_sync.domain.models import ApplyStats, ChangeSet, RunState, SyncResult
from watermark_sync.infrastructure.db_factory import PoolManager
from watermark_sync.stores.abstract import SyncStores
from watermark_sync.stores.postgres import postgres_stores
from watermark_sync.sync.advancer import WatermarkAdvancer
from watermark_sync.sync.applier import UpsertApplier
from watermark_sync.sync.selector import DEFAULT_FLOOR, ChangeSelector
from watermark_sync.utils.logging import get_logger
from watermark_sync.utils.profiler import profile_block

log = get_logger(__name__)

FailurePolicy = Literal["strict", "tolerant"]

_PARTIAL_WRITE_NOTE = (
    "Partial write: the destination was not written transactionally and may hold "
    "part of this change set. Watermark left unchanged; manual reconciliation required."
)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass
class _Run:
    """Bookkeeping for one invocation."""

    source_name: str
    state: RunState = RunState.START
    transitions: List[str] = field(default_factory=lambda: [RunState.START.value])
    previous_marker: Optional[datetime] = None
    new_marker: Optional[datetime] = None
    stats: ApplyStats = field(default_factory=ApplyStats)
    apply_started: bool = False

    def move(self, state: RunState) -> None:
        self.state = state
        self.transitions.append(state.value)
        log.debug(
            f"[SYNC STATE] {self.source_name} -> {state.value}",
            extra={"source_name": self.source_name, "state": state.value},
        )


class SyncOrchestrator:
    """
    Sequence marker read, selection, apply and advance for one source.

    Parameters
    ----------
    stores : SyncStores
        Injected source, destination and watermark stores plus the transaction
        and run-lock hooks.
    floor : datetime | None
        Marker used when the source has no watermark yet.
    failure_policy : "strict" | "tolerant"
        strict re-raises the SyncError; tolerant reports it in the result.
    """

    def __init__(
        self,
        stores: SyncStores,
        floor: Optional[datetime] = None,
        failure_policy: FailurePolicy = "strict",
    ) -> None:
        if failure_policy not in ("strict", "tolerant"):
            raise ValueError(f"Unknown failure policy '{failure_policy}'")
        self._stores = stores
        self.failure_policy = failure_policy
        self._selector = ChangeSelector(stores.source, floor=floor or DEFAULT_FLOOR)
        self._applier = UpsertApplier(stores.destination)
        self._advancer = WatermarkAdvancer(stores.watermarks)

    def run_sync(self, source_name: str) -> SyncResult:
        run = _Run(source_name=source_name)
        log.info(f"[SYNC START] {source_name}", extra={"source_name": source_name})

        with profile_block(f"sync:{source_name}") as profile:
            try:
                with self._stores.run_lock(source_name):
                    self._execute(run)
            except SyncError as exc:
                failed_at = run.state
                run.move(RunState.FAILED)
                log.exception(
                    f"[SYNC FAILED] {source_name}",
                    extra={
                        "source_name": source_name,
                        "failed_at": failed_at.value,
                        "retryable": exc.retryable,
                    },
                )
                # Without a rolling-back transaction a failed apply may have
                # left some rows written.
                partial_write = (
                    not self._stores.transactional
                    and run.apply_started
                    and failed_at is RunState.SELECTED
                )
                if partial_write:
                    log.warning(
                        f"[SYNC PARTIAL WRITE] {source_name}: destination may hold part of "
                        "the change set; manual reconciliation required",
                        extra={"source_name": source_name, "error_type": type(exc).__name__},
                    )
                if self.failure_policy == "strict":
                    raise
                result = self._result(run)
                result.update(
                    status="failed",
                    failed_at=failed_at.value,
                    error=str(exc),
                    error_type=type(exc).__name__,
                    retryable=exc.retryable,
                    partial_write=partial_write,
                    notes=(
                        _PARTIAL_WRITE_NOTE
                        if partial_write
                        else "Run failed; watermark left unchanged."
                    ),
                )
            else:
                result = self._result(run)
                result["status"] = "success"
                if not result["marker_changed"]:
                    result["notes"] = "No changed rows; watermark unchanged."

        result["duration_seconds"] = round(profile.duration_seconds, 3)
        result["peak_rss_bytes"] = profile.peak_rss_bytes
        if result["status"] == "success":
            log.info(
                f"[SYNC SUCCESS] {source_name}",
                extra={
                    "source_name": source_name,
                    "rows_applied": result["rows_applied"],
                    "new_marker": result["new_marker"],
                },
            )
        return result

    def _execute(self, run: _Run) -> None:
        run.previous_marker = self._stores.watermarks.get(run.source_name)
        run.move(RunState.MARKER_READ)

        changeset: ChangeSet = self._selector.select(run.previous_marker)
        run.move(RunState.SELECTED)
        log.info(
            f"[SYNC SELECTED] {run.source_name}: {len(changeset)} changed row(s)",
            extra={
                "source_name": run.source_name,
                "rows": len(changeset),
                "marker": _iso(self._selector.effective_marker(run.previous_marker)),
            },
        )

        try:
            if changeset.is_empty:
                run.move(RunState.APPLIED)
                run.move(RunState.ADVANCED)
            else:
                with self._stores.transaction():
                    run.apply_started = True
                    run.stats = self._applier.apply(changeset)
                    run.move(RunState.APPLIED)
                    run.new_marker = self._advancer.advance(run.source_name, changeset)
                    run.move(RunState.ADVANCED)
        finally:
            changeset.release()

        run.move(RunState.DONE)

    @staticmethod
    def _result(run: _Run) -> SyncResult:
        return SyncResult(
            source_name=run.source_name,
            state=run.state.value,
            transitions=list(run.transitions),
            rows_applied=run.stats.applied if run.state is RunState.DONE else 0,
            inserted=run.stats.inserted if run.state is RunState.DONE else 0,
            updated=run.stats.updated if run.state is RunState.DONE else 0,
            previous_marker=_iso(run.previous_marker),
            new_marker=_iso(run.new_marker) if run.state is RunState.DONE else None,
            marker_changed=run.state is RunState.DONE and run.new_marker is not None,
        )


def run_sync(
    source_name: str,
    failure_policy: Optional[FailurePolicy] = None,
    use_run_lock: Optional[bool] = None,
) -> SyncResult:
    """
    Run one synchronization for `source_name` against the configured database.

    Parameters
    ----------
    source_name : str
        Watermark key of the tracked source.
    failure_policy : "strict" | "tolerant" | None
        Defaults to settings.failure_policy.
    use_run_lock : bool | None
        Guard the run with a PostgreSQL advisory lock. Defaults to settings.use_run_lock.

    Returns
    -------
    SyncResult
        Rows applied and the new marker (None when unchanged), or the failure details
        under the tolerant policy.
    """
    settings = get_settings()
    policy = failure_policy or settings.failure_policy
    with PoolManager().connection() as conn:
        stores = postgres_stores(conn, settings=settings, use_run_lock=use_run_lock)
        orchestrator = SyncOrchestrator(
            stores, floor=settings.watermark_floor, failure_policy=policy
        )
        return orchestrator.run_sync(source_name)


__all__ = [
    "FailurePolicy",
    "SyncOrchestrator",
    "run_sync",
]
