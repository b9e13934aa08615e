"""Ports for persisting domain aggregates."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

from bomalign.domain.model import AlignmentRecord, BOMSnapshot, SyncRun

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime
    from uuid import UUID

    from bomalign.domain.model import AlignmentStatus, Fingerprint, Severity, SyncRunStatus
    from bomalign.domain.queries import AlignmentFilter, Page, PageRequest, SyncRunFilter


@runtime_checkable
class Repository[TEntity](Protocol):
    """Minimal repository contract for a persistent aggregate store."""

    def add(self, entity: TEntity) -> None: ...

    def get(self, entity_id: UUID) -> TEntity | None: ...


@runtime_checkable
class AlignmentRecordRepository(Repository[AlignmentRecord], Protocol):
    """Persistence contract for alignment records.

    Records are never deleted; the only mutation is the guarded status
    transition.
    """

    def list(self, query: AlignmentFilter, page: PageRequest) -> Page[AlignmentRecord]:
        """Return a page ordered by severity rank desc, created_at desc, id asc."""
        ...

    def transition(
        self,
        record_id: UUID,
        *,
        expected: AlignmentStatus,
        status: AlignmentStatus,
        resolved_value: str | None,
        updated_at: datetime,
    ) -> bool:
        """Move the record to ``status`` only if it is currently ``expected``.

        Returns ``False`` when the guard did not match (including unknown ids).
        """
        ...

    def find_pending(self, fingerprint: Fingerprint) -> Iterable[AlignmentRecord]: ...

    def iter_pending(self) -> Iterable[AlignmentRecord]: ...

    def count_by_status(self) -> dict[AlignmentStatus, int]: ...

    def count_by_severity(self) -> dict[Severity, int]: ...


@runtime_checkable
class SyncRunRepository(Repository[SyncRun], Protocol):
    """Persistence contract for the sync run log."""

    def list(self, query: SyncRunFilter, page: PageRequest) -> Page[SyncRun]:
        """Return a page ordered by started_at desc, id asc."""
        ...

    def finalize(self, run: SyncRun) -> bool:
        """Write the terminal state of ``run`` if the stored run is still RUNNING."""
        ...

    def find_running(self) -> SyncRun | None:
        """Return the earliest started run still stored as RUNNING."""
        ...

    def latest_started_at(self, statuses: Iterable[SyncRunStatus]) -> datetime | None: ...

    def latest_ended_at(self) -> datetime | None: ...

    def count_by_status(self) -> dict[SyncRunStatus, int]: ...


@runtime_checkable
class BOMSnapshotRepository(Repository[BOMSnapshot], Protocol):
    """Repository contract for BOM snapshots."""


__all__ = [
    "AlignmentRecordRepository",
    "BOMSnapshotRepository",
    "Repository",
    "SyncRunRepository",
]
