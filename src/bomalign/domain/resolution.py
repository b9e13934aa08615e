"""Alignment record lifecycle: listing, resolution and reporting.

Every status change goes through ``AlignmentRecordRepository.transition``,
a compare-and-set on the stored status. Two callers racing on the same
PENDING record therefore cannot both win; the loser sees ``InvalidStateError``.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from bomalign.domain.errors import (
    ErrorPayload,
    InvalidStateError,
    NotFoundError,
    ReconciliationError,
    ValidationError,
)
from bomalign.domain.events import AlignmentIgnored, AlignmentResolved
from bomalign.domain.model import (
    AlignmentStatus,
    ResolutionStrategy,
    Severity,
    SyncRunStatus,
    utcnow,
)
from bomalign.domain.queries import (
    MAX_PAGE_SIZE,
    AlignmentStatistics,
    BomHealth,
)

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime
    from uuid import UUID

    from bomalign.domain.events import EventPublisher
    from bomalign.domain.model import AlignmentRecord
    from bomalign.domain.ports import UnitOfWorkFactory
    from bomalign.domain.queries import AlignmentFilter, Page, PageRequest

log = getLogger(__name__)

_SUCCESSFUL_RUNS = (SyncRunStatus.SUCCESS, SyncRunStatus.PARTIAL_SUCCESS)


@dataclass(frozen=True, slots=True)
class SingleResolution:
    """Align one record, optionally with an explicit value."""

    record_id: UUID
    value: str | None = None


@dataclass(frozen=True, slots=True)
class BatchResolution:
    """Align several records independently using ``strategy`` to pick each value."""

    record_ids: tuple[UUID, ...]
    strategy: ResolutionStrategy = ResolutionStrategy.AUTHORITATIVE


type ResolutionRequest = SingleResolution | BatchResolution


@dataclass(frozen=True, slots=True)
class BatchItemResult:
    record_id: UUID
    ok: bool
    error: ErrorPayload | None = None

    def as_dict(self) -> dict[str, object]:
        return {
            "record_id": str(self.record_id),
            "ok": self.ok,
            "error": self.error.as_dict() if self.error else None,
        }


@dataclass(frozen=True, slots=True)
class BatchResult:
    results: tuple[BatchItemResult, ...] = field(default_factory=tuple[BatchItemResult, ...])

    @property
    def succeeded(self) -> int:
        return sum(1 for result in self.results if result.ok)

    @property
    def failed(self) -> int:
        return len(self.results) - self.succeeded

    def as_dict(self) -> dict[str, object]:
        return {
            "results": [result.as_dict() for result in self.results],
            "succeeded": self.succeeded,
            "failed": self.failed,
        }


@dataclass(slots=True)
class AlignmentService:
    """Resolution operations over persisted alignment records."""

    unit_of_work_factory: UnitOfWorkFactory
    publisher: EventPublisher
    max_page_size: int = MAX_PAGE_SIZE

    def list_records(self, query: AlignmentFilter, page: PageRequest) -> Page[AlignmentRecord]:
        page.validate(max_page_size=self.max_page_size)
        with self.unit_of_work_factory() as uow:
            return uow.repositories.alignments.list(query, page)

    def get_record(self, record_id: UUID) -> AlignmentRecord:
        with self.unit_of_work_factory() as uow:
            record = uow.repositories.alignments.get(record_id)
        if record is None:
            raise NotFoundError(f"Alignment record {record_id} not found")
        return record

    def apply_resolution(
        self,
        record_id: UUID,
        value: str | None = None,
        *,
        at: datetime | None = None,
    ) -> AlignmentRecord:
        """Align a PENDING record; ``value`` defaults to the authoritative value."""

        return self._align(
            record_id, value=value, strategy=ResolutionStrategy.AUTHORITATIVE, at=at
        )

    def batch_apply(
        self,
        record_ids: Iterable[UUID],
        *,
        strategy: ResolutionStrategy = ResolutionStrategy.AUTHORITATIVE,
        at: datetime | None = None,
    ) -> BatchResult:
        """Align each record independently; earlier successes are never rolled back."""

        results: list[BatchItemResult] = []
        for record_id in record_ids:
            try:
                self._align(record_id, value=None, strategy=strategy, at=at)
            except ReconciliationError as exc:
                log.info("Batch resolution of %s failed: %s", record_id, exc.message)
                results.append(BatchItemResult(record_id, ok=False, error=exc.as_payload()))
            else:
                results.append(BatchItemResult(record_id, ok=True))
        outcome = BatchResult(tuple(results))
        log.info(
            "Batch resolution finished: succeeded=%s, failed=%s",
            outcome.succeeded,
            outcome.failed,
        )
        return outcome

    def resolve(self, request: ResolutionRequest) -> AlignmentRecord | BatchResult:
        match request:
            case SingleResolution(record_id=record_id, value=value):
                return self.apply_resolution(record_id, value)
            case BatchResolution(record_ids=record_ids, strategy=strategy):
                return self.batch_apply(record_ids, strategy=strategy)

    def ignore(self, record_id: UUID, *, at: datetime | None = None) -> AlignmentRecord:
        """Close a PENDING record as IGNORED, keeping the local value."""

        updated_at = at or utcnow()
        with self.unit_of_work_factory() as uow:
            repository = uow.repositories.alignments
            record = self._require_pending(repository.get(record_id), record_id)
            if not repository.transition(
                record_id,
                expected=AlignmentStatus.PENDING,
                status=AlignmentStatus.IGNORED,
                resolved_value=None,
                updated_at=updated_at,
            ):
                raise _lost_race(record_id)
            uow.commit()
            record = repository.get(record_id) or record
        log.info(
            "Ignored alignment record %s (%s.%s)", record_id, record.part_number, record.field_name
        )
        self.publisher.publish(
            AlignmentIgnored(
                record_id=record.id,
                part_number=record.part_number,
                field_name=record.field_name,
                occurred_at=updated_at,
            )
        )
        return record

    def statistics(self) -> AlignmentStatistics:
        with self.unit_of_work_factory() as uow:
            by_status = uow.repositories.alignments.count_by_status()
            by_severity = uow.repositories.alignments.count_by_severity()
            run_counts = uow.repositories.sync_runs.count_by_status()
            last_sync_at = uow.repositories.sync_runs.latest_ended_at()

        finished = sum(
            count for status, count in run_counts.items() if status is not SyncRunStatus.RUNNING
        )
        successful = sum(run_counts.get(status, 0) for status in _SUCCESSFUL_RUNS)
        return AlignmentStatistics(
            total=sum(by_status.values()),
            by_status={status: by_status.get(status, 0) for status in AlignmentStatus},
            by_severity={severity: by_severity.get(severity, 0) for severity in Severity},
            last_sync_at=last_sync_at,
            sync_success_rate=(successful / finished) if finished else None,
        )

    def bom_health(self) -> list[BomHealth]:
        """Pending differences per affected BOM, sorted by BOM reference."""

        counts: defaultdict[str, Counter[Severity]] = defaultdict(Counter)
        with self.unit_of_work_factory() as uow:
            for record in uow.repositories.alignments.iter_pending():
                for reference in record.affected_bom_references:
                    counts[reference][record.severity] += 1
        return [
            BomHealth(
                bom_reference=reference,
                pending_by_severity={
                    severity: counts[reference][severity] for severity in Severity
                },
            )
            for reference in sorted(counts)
        ]

    def _align(
        self,
        record_id: UUID,
        *,
        value: str | None,
        strategy: ResolutionStrategy,
        at: datetime | None,
    ) -> AlignmentRecord:
        updated_at = at or utcnow()
        with self.unit_of_work_factory() as uow:
            repository = uow.repositories.alignments
            record = self._require_pending(repository.get(record_id), record_id)
            resolved_value = value if value is not None else _strategy_value(record, strategy)
            if not repository.transition(
                record_id,
                expected=AlignmentStatus.PENDING,
                status=AlignmentStatus.ALIGNED,
                resolved_value=resolved_value,
                updated_at=updated_at,
            ):
                raise _lost_race(record_id)
            uow.commit()
            record = repository.get(record_id) or record
        log.info(
            "Aligned record %s (%s.%s) to %r",
            record_id,
            record.part_number,
            record.field_name,
            resolved_value,
        )
        self.publisher.publish(
            AlignmentResolved(
                record_id=record.id,
                part_number=record.part_number,
                field_name=record.field_name,
                resolved_value=resolved_value,
                occurred_at=updated_at,
            )
        )
        return record

    @staticmethod
    def _require_pending(record: AlignmentRecord | None, record_id: UUID) -> AlignmentRecord:
        if record is None:
            raise NotFoundError(f"Alignment record {record_id} not found")
        if not record.is_pending:
            raise InvalidStateError(f"Alignment record {record_id} is already {record.status}")
        return record


def _strategy_value(record: AlignmentRecord, strategy: ResolutionStrategy) -> str:
    match strategy:
        case ResolutionStrategy.AUTHORITATIVE:
            chosen = record.authoritative_value
        case ResolutionStrategy.LOCAL:
            chosen = record.local_value
    if chosen is None:
        raise ValidationError(
            f"Alignment record {record.id} has no {strategy} value; pass an explicit value"
        )
    return chosen


def _lost_race(record_id: UUID) -> InvalidStateError:
    return InvalidStateError(f"Alignment record {record_id} was resolved concurrently")


__all__ = [
    "AlignmentService",
    "BatchItemResult",
    "BatchResolution",
    "BatchResult",
    "ResolutionRequest",
    "SingleResolution",
]
