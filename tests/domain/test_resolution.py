from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Unpack
from uuid import uuid4

import pytest

from bomalign.domain.errors import (
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
    SyncCounters,
    SyncMode,
    SyncRun,
    SyncRunStatus,
)
from bomalign.domain.queries import AlignmentFilter, PageRequest
from bomalign.domain.resolution import (
    AlignmentService,
    BatchResolution,
    BatchResult,
    SingleResolution,
)
from tests.helpers.fakes import InMemoryStore, RecordingPublisher
from tests.helpers.records import BASE_TIME, make_record

if TYPE_CHECKING:
    from uuid import UUID

    from tests.helpers.records import RecordOverrides


@pytest.fixture
def service(store: InMemoryStore, publisher: RecordingPublisher) -> AlignmentService:
    return AlignmentService(unit_of_work_factory=store.unit_of_work, publisher=publisher)


def _seed(store: InMemoryStore, **overrides: Unpack[RecordOverrides]) -> UUID:
    record = make_record(**overrides)
    store.unit_of_work().repositories.alignments.add(record)
    return record.id


def test_apply_resolution_defaults_to_authoritative_value(
    service: AlignmentService, store: InMemoryStore, publisher: RecordingPublisher
) -> None:
    record_id = _seed(store)
    at = datetime(2025, 6, 1, tzinfo=UTC)

    record = service.apply_resolution(record_id, at=at)

    assert record.status is AlignmentStatus.ALIGNED
    assert record.resolved_value == "1.20"
    assert record.last_updated_at == at
    assert store.records[record.id].status is AlignmentStatus.ALIGNED
    [event] = publisher.of_type(AlignmentResolved)
    assert event.record_id == record.id
    assert event.resolved_value == "1.20"


def test_apply_resolution_with_explicit_value(
    service: AlignmentService, store: InMemoryStore
) -> None:
    record_id = _seed(store)

    record = service.apply_resolution(record_id, "1.10")

    assert record.resolved_value == "1.10"


def test_apply_resolution_unknown_record(service: AlignmentService) -> None:
    with pytest.raises(NotFoundError):
        service.apply_resolution(uuid4())


def test_second_resolution_is_invalid_state(
    service: AlignmentService, store: InMemoryStore, publisher: RecordingPublisher
) -> None:
    record_id = _seed(store)
    service.apply_resolution(record_id)

    with pytest.raises(InvalidStateError):
        service.apply_resolution(record_id, "2.00")
    with pytest.raises(InvalidStateError):
        service.ignore(record_id)

    assert store.records[record_id].resolved_value == "1.20"
    assert len(publisher.events) == 1


def test_ignore_keeps_local_value(
    service: AlignmentService, store: InMemoryStore, publisher: RecordingPublisher
) -> None:
    record_id = _seed(store)

    record = service.ignore(record_id)

    assert record.status is AlignmentStatus.IGNORED
    assert record.resolved_value is None
    assert record.local_value == "1.00"
    assert [type(event) for event in publisher.events] == [AlignmentIgnored]


def test_missing_authoritative_value_needs_explicit_value(
    service: AlignmentService, store: InMemoryStore
) -> None:
    record_id = _seed(store, authoritative_value=None)

    with pytest.raises(ValidationError):
        service.apply_resolution(record_id)

    assert store.records[record_id].is_pending


def test_concurrent_resolutions_have_one_winner(
    service: AlignmentService, store: InMemoryStore, publisher: RecordingPublisher
) -> None:
    record_id = _seed(store)
    barrier = threading.Barrier(2)
    outcomes: list[str] = []
    outcomes_lock = threading.Lock()

    def resolve(value: str) -> None:
        barrier.wait()
        try:
            service.apply_resolution(record_id, value)
        except ReconciliationError as exc:
            result = exc.kind
        else:
            result = "ok"
        with outcomes_lock:
            outcomes.append(result)

    threads = [threading.Thread(target=resolve, args=(value,)) for value in ("A", "B")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes) == ["InvalidState", "ok"]
    assert store.records[record_id].resolved_value in {"A", "B"}
    assert len(publisher.of_type(AlignmentResolved)) == 1


def test_batch_apply_reports_each_item(
    service: AlignmentService, store: InMemoryStore
) -> None:
    first = _seed(store)
    closed = _seed(store, part_number="C-200")
    service.ignore(closed)
    missing = uuid4()

    result = service.batch_apply([first, closed, missing])

    assert result.succeeded == 1
    assert result.failed == 2
    assert [item.ok for item in result.results] == [True, False, False]
    kinds = [item.error.kind for item in result.results if item.error]
    assert kinds == ["InvalidState", "NotFound"]
    assert store.records[first].status is AlignmentStatus.ALIGNED


def test_batch_apply_local_strategy(service: AlignmentService, store: InMemoryStore) -> None:
    record_id = _seed(store)

    service.batch_apply([record_id], strategy=ResolutionStrategy.LOCAL)

    assert store.records[record_id].resolved_value == "1.00"


def test_resolve_dispatches_on_request_type(
    service: AlignmentService, store: InMemoryStore
) -> None:
    single = _seed(store)
    batched = _seed(store, part_number="C-200")

    record = service.resolve(SingleResolution(single, value="9.99"))
    batch = service.resolve(BatchResolution((batched,)))

    assert not isinstance(record, BatchResult)
    assert record.resolved_value == "9.99"
    assert isinstance(batch, BatchResult)
    assert batch.succeeded == 1


def test_list_records_orders_and_filters(service: AlignmentService, store: InMemoryStore) -> None:
    low = _seed(store, severity=Severity.LOW, created_at=BASE_TIME + timedelta(hours=2))
    high_old = _seed(store, severity=Severity.HIGH, created_at=BASE_TIME)
    high_new = _seed(
        store,
        severity=Severity.HIGH,
        field_name="lifecycle_status",
        created_at=BASE_TIME + timedelta(hours=1),
    )

    page = service.list_records(AlignmentFilter(), PageRequest(page=1, page_size=10))
    assert [record.id for record in page.items] == [high_new, high_old, low]
    assert page.total == 3

    filtered = service.list_records(
        AlignmentFilter.parse(severity="high", field_name="price"), PageRequest()
    )
    assert [record.id for record in filtered.items] == [high_old]


def test_list_records_pagination(service: AlignmentService, store: InMemoryStore) -> None:
    for offset in range(5):
        _seed(store, part_number=f"P-{offset}", created_at=BASE_TIME + timedelta(minutes=offset))

    page = service.list_records(AlignmentFilter(), PageRequest(page=2, page_size=2))

    assert page.total == 5
    assert page.total_pages == 3
    assert [record.part_number for record in page.items] == ["P-2", "P-1"]


@pytest.mark.parametrize("page", [PageRequest(page=0), PageRequest(page_size=0)])
def test_list_records_rejects_bad_pages(service: AlignmentService, page: PageRequest) -> None:
    with pytest.raises(ValidationError):
        service.list_records(AlignmentFilter(), page)


def test_page_size_cap_is_configurable(store: InMemoryStore, publisher: RecordingPublisher) -> None:
    capped = AlignmentService(
        unit_of_work_factory=store.unit_of_work, publisher=publisher, max_page_size=10
    )

    with pytest.raises(ValidationError):
        capped.list_records(AlignmentFilter(), PageRequest(page_size=11))


def test_filter_parse_rejects_unknown_values() -> None:
    with pytest.raises(ValidationError):
        AlignmentFilter.parse(severity="urgent")
    with pytest.raises(ValidationError):
        AlignmentFilter.parse(created_from=BASE_TIME, created_to=BASE_TIME - timedelta(days=1))


def test_statistics(service: AlignmentService, store: InMemoryStore) -> None:
    _seed(store, severity=Severity.CRITICAL)
    closed = _seed(store, severity=Severity.LOW)
    service.ignore(closed)
    runs = store.unit_of_work().repositories.sync_runs
    for status in (SyncRunStatus.SUCCESS, SyncRunStatus.FAILED, SyncRunStatus.PARTIAL_SUCCESS):
        run = SyncRun(mode=SyncMode.FULL, triggered_by="tests")
        run.finish(status, SyncCounters())
        runs.add(run)
    runs.add(SyncRun(mode=SyncMode.FULL, triggered_by="tests"))

    statistics = service.statistics()

    assert statistics.total == 2
    assert statistics.by_status[AlignmentStatus.PENDING] == 1
    assert statistics.by_status[AlignmentStatus.IGNORED] == 1
    assert statistics.by_status[AlignmentStatus.ALIGNED] == 0
    assert statistics.by_severity[Severity.CRITICAL] == 1
    assert statistics.sync_success_rate == pytest.approx(2 / 3)
    assert statistics.last_sync_at is not None


def test_statistics_without_runs(service: AlignmentService) -> None:
    statistics = service.statistics()

    assert statistics.total == 0
    assert statistics.sync_success_rate is None
    assert statistics.last_sync_at is None


def test_bom_health_counts_pending_per_bom(
    service: AlignmentService, store: InMemoryStore
) -> None:
    _seed(store, severity=Severity.CRITICAL, affected_bom_references=frozenset({"BOM-A"}))
    _seed(
        store,
        part_number="C-2",
        severity=Severity.LOW,
        affected_bom_references=frozenset({"BOM-A", "BOM-B"}),
    )
    closed = _seed(store, part_number="C-3", affected_bom_references=frozenset({"BOM-C"}))
    service.ignore(closed)

    health = {entry.bom_reference: entry for entry in service.bom_health()}

    assert sorted(health) == ["BOM-A", "BOM-B"]
    assert health["BOM-A"].pending_total == 2
    assert not health["BOM-A"].healthy
    assert health["BOM-B"].healthy
