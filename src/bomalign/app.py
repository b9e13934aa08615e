"""Application orchestration entry points.

``ReconciliationService`` is the facade consumed by the CLI (and any other
outer layer). ``build_service`` wires it to the configured adapters.
"""

from __future__ import annotations

from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from bomalign.adapters.authoritative import HttpAuthoritativeSource
from bomalign.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemyReconciliationUnitOfWork,
    is_started,
    startup,
)
from bomalign.config.classification import get_rule_table
from bomalign.config.sync import get_sync_config
from bomalign.domain.diff import compare_boms
from bomalign.domain.errors import NotFoundError, ValidationError
from bomalign.domain.events import LoggingEventPublisher
from bomalign.domain.model import ResolutionStrategy
from bomalign.domain.resolution import AlignmentService
from bomalign.domain.sync import SyncOrchestrator

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from uuid import UUID

    from bomalign.config.sync import SyncConfig
    from bomalign.domain.classification import RuleTable
    from bomalign.domain.diff import DiffResult
    from bomalign.domain.events import EventPublisher
    from bomalign.domain.model import (
        AlignmentRecord,
        BOMSnapshot,
        Dimension,
        SyncFilters,
        SyncMode,
        SyncRun,
    )
    from bomalign.domain.ports import AuthoritativeSource, UnitOfWorkFactory
    from bomalign.domain.queries import (
        AlignmentFilter,
        AlignmentStatistics,
        BomHealth,
        Page,
        PageRequest,
        SyncRunFilter,
    )
    from bomalign.domain.resolution import BatchResult, ResolutionRequest
    from bomalign.domain.sync import SyncRunView


log = getLogger(__name__)


@dataclass(slots=True)
class ReconciliationService:
    """Sync, resolution and comparison operations behind one object."""

    orchestrator: SyncOrchestrator
    alignments: AlignmentService
    unit_of_work_factory: UnitOfWorkFactory

    # Sync runs -----------------------------------------------------------------

    async def start_sync_run(
        self,
        mode: SyncMode,
        filters: SyncFilters | None = None,
        *,
        triggered_by: str = "system",
    ) -> SyncRun:
        return await self.orchestrator.start(mode, filters, triggered_by=triggered_by)

    async def run_sync(
        self,
        mode: SyncMode,
        filters: SyncFilters | None = None,
        *,
        triggered_by: str = "system",
    ) -> SyncRun:
        """Start a sync run and wait until it reaches a terminal status."""

        return await self.orchestrator.run(mode, filters, triggered_by=triggered_by)

    def get_sync_run_status(self, run_id: UUID) -> SyncRunView:
        return self.orchestrator.status(run_id)

    def cancel_sync_run(self, run_id: UUID) -> SyncRun:
        return self.orchestrator.cancel(run_id)

    def list_sync_runs(self, query: SyncRunFilter, page: PageRequest) -> Page[SyncRun]:
        page.validate(max_page_size=self.alignments.max_page_size)
        with self.unit_of_work_factory() as uow:
            return uow.repositories.sync_runs.list(query, page)

    # Alignment records -------------------------------------------------------

    def list_alignment_records(
        self, query: AlignmentFilter, page: PageRequest
    ) -> Page[AlignmentRecord]:
        return self.alignments.list_records(query, page)

    def get_alignment_record(self, record_id: UUID) -> AlignmentRecord:
        return self.alignments.get_record(record_id)

    def apply_resolution(self, record_id: UUID, value: str | None = None) -> AlignmentRecord:
        return self.alignments.apply_resolution(record_id, value)

    def batch_apply(
        self,
        record_ids: Iterable[UUID],
        *,
        strategy: ResolutionStrategy = ResolutionStrategy.AUTHORITATIVE,
    ) -> BatchResult:
        return self.alignments.batch_apply(record_ids, strategy=strategy)

    def resolve(self, request: ResolutionRequest) -> AlignmentRecord | BatchResult:
        return self.alignments.resolve(request)

    def ignore(self, record_id: UUID) -> AlignmentRecord:
        return self.alignments.ignore(record_id)

    def alignment_statistics(self) -> AlignmentStatistics:
        return self.alignments.statistics()

    def bom_health(self) -> list[BomHealth]:
        return self.alignments.bom_health()

    # BOM snapshots -------------------------------------------------------------

    def add_snapshot(self, snapshot: BOMSnapshot) -> BOMSnapshot:
        with self.unit_of_work_factory() as uow:
            uow.repositories.snapshots.add(snapshot)
            uow.commit()
        log.info("Stored BOM snapshot %s (%s items)", snapshot.id, len(snapshot.items))
        return snapshot

    def compare_snapshots(
        self,
        snapshot_ids: Sequence[UUID],
        baseline_index: int,
        dimensions: Iterable[Dimension | str],
    ) -> DiffResult:
        """Load stored snapshots in the given order and diff them against the baseline."""

        if len(snapshot_ids) < 2:
            raise ValidationError("At least two snapshots are required for a comparison")
        snapshots: list[BOMSnapshot] = []
        with self.unit_of_work_factory() as uow:
            for snapshot_id in snapshot_ids:
                snapshot = uow.repositories.snapshots.get(snapshot_id)
                if snapshot is None:
                    raise NotFoundError(f"BOM snapshot {snapshot_id} not found")
                snapshots.append(snapshot)
        result = compare_boms(snapshots, baseline_index, dimensions)
        log.info(
            "Compared %s snapshots against baseline %s: %s differences",
            len(snapshots),
            baseline_index,
            len(result.differences),
        )
        return result


def build_service(
    *,
    source: AuthoritativeSource | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    publisher: EventPublisher | None = None,
    rules: RuleTable | None = None,
    sync_config: SyncConfig | None = None,
) -> ReconciliationService:
    """Wire the service to the configured adapters, starting the database if needed."""

    if unit_of_work_factory is None:
        if not is_started():
            startup()
        unit_of_work_factory = SqlAlchemyReconciliationUnitOfWork
    effective_config = sync_config or get_sync_config()
    effective_publisher = publisher or LoggingEventPublisher()

    orchestrator = SyncOrchestrator(
        source=source or HttpAuthoritativeSource(),
        unit_of_work_factory=unit_of_work_factory,
        rules=rules or get_rule_table(),
        publisher=effective_publisher,
        policy=effective_config.policy,
    )
    alignments = AlignmentService(
        unit_of_work_factory=unit_of_work_factory,
        publisher=effective_publisher,
        max_page_size=effective_config.max_page_size,
    )
    return ReconciliationService(
        orchestrator=orchestrator,
        alignments=alignments,
        unit_of_work_factory=unit_of_work_factory,
    )

