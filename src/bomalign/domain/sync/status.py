"""Run progress tracking and terminal status derivation."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

from bomalign.domain.model import SyncCounters, SyncRunStatus

if TYPE_CHECKING:
    from bomalign.domain.model import SyncRun


def derive_terminal_status(counters: SyncCounters) -> SyncRunStatus:
    """Status of a run that scanned to completion without being cancelled or tripped."""

    if counters.items_synced == 0 and counters.items_scanned > 0:
        return SyncRunStatus.FAILED
    if counters.items_failed > 0 and counters.items_synced > 0:
        return SyncRunStatus.PARTIAL_SUCCESS
    return SyncRunStatus.SUCCESS


@dataclass(slots=True)
class SyncProgress:
    counters: SyncCounters = field(default_factory=SyncCounters)
    batches_processed: int = 0
    batches_lost: int = 0
    consecutive_lost: int = 0

    def record_item(self, *, ok: bool, differences: int = 0) -> None:
        self.counters.items_scanned += 1
        if ok:
            self.counters.items_synced += 1
            self.counters.differences_found += differences
        else:
            self.counters.items_failed += 1

    def record_lost_batch(self, size: int) -> None:
        self.batches_lost += 1
        self.consecutive_lost += 1
        self.counters.items_scanned += size
        self.counters.items_failed += size

    def merge(self, batch: SyncProgress) -> None:
        """Add the counts of one committed batch."""

        self.counters.items_scanned += batch.counters.items_scanned
        self.counters.items_synced += batch.counters.items_synced
        self.counters.items_failed += batch.counters.items_failed
        self.counters.differences_found += batch.counters.differences_found
        self.batches_processed += 1
        self.consecutive_lost = 0

    def snapshot(self) -> SyncProgress:
        return SyncProgress(
            counters=replace(self.counters),
            batches_processed=self.batches_processed,
            batches_lost=self.batches_lost,
            consecutive_lost=self.consecutive_lost,
        )

    def as_dict(self) -> dict[str, int]:
        return {
            "items_scanned": self.counters.items_scanned,
            "items_synced": self.counters.items_synced,
            "items_failed": self.counters.items_failed,
            "differences_found": self.counters.differences_found,
            "batches_processed": self.batches_processed,
            "batches_lost": self.batches_lost,
        }


@dataclass(frozen=True, slots=True)
class SyncRunView:
    """A sync run as stored, plus live progress while it is still RUNNING."""

    run: SyncRun
    progress: SyncProgress | None = None

    @property
    def status(self) -> SyncRunStatus:
        return self.run.status
