from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import insert
from sqlalchemy.exc import IntegrityError

from bomalign.adapters.sqlalchemy.mappings import bom_usage_table, catalog_attribute_table
from bomalign.domain.model import (
    AlignmentStatus,
    LineItem,
    Severity,
    SyncCounters,
    SyncFilters,
    SyncMode,
    SyncRun,
    SyncRunStatus,
)
from bomalign.domain.queries import AlignmentFilter, PageRequest, SyncRunFilter
from tests.helpers.records import BASE_TIME, make_record, make_snapshot

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy.engine import Engine

    from bomalign.adapters.sqlalchemy import SqlAlchemyReconciliationUnitOfWork

    UnitOfWorkFactory = Callable[[], SqlAlchemyReconciliationUnitOfWork]


def test_alignment_record_round_trip(sqlite_unit_of_work: UnitOfWorkFactory) -> None:
    run = SyncRun(mode=SyncMode.FULL, triggered_by="tests")
    record = make_record(
        affected_bom_references=frozenset({"BOM-B", "BOM-A"}),
        local_value=None,
    )
    record.sync_run_id = run.id

    with sqlite_unit_of_work() as uow:
        uow.repositories.sync_runs.add(run)
        uow.commit()
    with sqlite_unit_of_work() as uow:
        uow.repositories.alignments.add(record)
        uow.commit()

    with sqlite_unit_of_work() as uow:
        loaded = uow.repositories.alignments.get(record.id)

    assert loaded is not None
    assert loaded.affected_bom_references == frozenset({"BOM-A", "BOM-B"})
    assert loaded.local_value is None
    assert loaded.severity is Severity.HIGH
    assert loaded.status is AlignmentStatus.PENDING
    assert loaded.created_at == BASE_TIME
    assert loaded.created_at.tzinfo is not None
    assert loaded.sync_run_id == run.id


def test_list_orders_by_severity_then_newest(sqlite_unit_of_work: UnitOfWorkFactory) -> None:
    low = make_record(severity=Severity.LOW, created_at=BASE_TIME + timedelta(hours=3))
    critical = make_record(severity=Severity.CRITICAL, created_at=BASE_TIME)
    high_old = make_record(part_number="C-1", created_at=BASE_TIME)
    high_new = make_record(part_number="C-2", created_at=BASE_TIME + timedelta(hours=1))
    with sqlite_unit_of_work() as uow:
        for record in (low, critical, high_old, high_new):
            uow.repositories.alignments.add(record)
        uow.commit()

    with sqlite_unit_of_work() as uow:
        page = uow.repositories.alignments.list(AlignmentFilter(), PageRequest(page_size=3))
        filtered = uow.repositories.alignments.list(
            AlignmentFilter(
                severity=Severity.HIGH,
                created_from=BASE_TIME + timedelta(minutes=30),
            ),
            PageRequest(),
        )

    assert [record.id for record in page.items] == [critical.id, high_new.id, high_old.id]
    assert page.total == 4
    assert page.total_pages == 2
    assert [record.id for record in filtered.items] == [high_new.id]


def test_transition_is_compare_and_set(sqlite_unit_of_work: UnitOfWorkFactory) -> None:
    record = make_record()
    with sqlite_unit_of_work() as uow:
        uow.repositories.alignments.add(record)
        uow.commit()
    at = BASE_TIME + timedelta(days=1)

    with sqlite_unit_of_work() as first, sqlite_unit_of_work() as second:
        assert first.repositories.alignments.transition(
            record.id,
            expected=AlignmentStatus.PENDING,
            status=AlignmentStatus.ALIGNED,
            resolved_value="1.20",
            updated_at=at,
        )
        first.commit()
        assert not second.repositories.alignments.transition(
            record.id,
            expected=AlignmentStatus.PENDING,
            status=AlignmentStatus.IGNORED,
            resolved_value=None,
            updated_at=at,
        )

    with sqlite_unit_of_work() as uow:
        loaded = uow.repositories.alignments.get(record.id)
    assert loaded is not None
    assert loaded.status is AlignmentStatus.ALIGNED
    assert loaded.resolved_value == "1.20"
    assert loaded.last_updated_at == at


def test_transition_refreshes_loaded_record(sqlite_unit_of_work: UnitOfWorkFactory) -> None:
    record = make_record()
    with sqlite_unit_of_work() as uow:
        uow.repositories.alignments.add(record)
        uow.commit()

    with sqlite_unit_of_work() as uow:
        repository = uow.repositories.alignments
        loaded = repository.get(record.id)
        assert repository.transition(
            record.id,
            expected=AlignmentStatus.PENDING,
            status=AlignmentStatus.IGNORED,
            resolved_value=None,
            updated_at=BASE_TIME,
        )
        assert loaded is not None
        assert loaded.status is AlignmentStatus.IGNORED


def test_pending_queries_and_counts(sqlite_unit_of_work: UnitOfWorkFactory) -> None:
    pending = make_record()
    other_field = make_record(field_name="lifecycle_status", severity=Severity.CRITICAL)
    closed = make_record(status=AlignmentStatus.ALIGNED, resolved_value="1.20")
    with sqlite_unit_of_work() as uow:
        for record in (pending, other_field, closed):
            uow.repositories.alignments.add(record)
        uow.commit()

    with sqlite_unit_of_work() as uow:
        repository = uow.repositories.alignments
        found = repository.find_pending(("R-100", "price"))
        all_pending = repository.iter_pending()
        by_status = repository.count_by_status()
        by_severity = repository.count_by_severity()

    assert [record.id for record in found] == [pending.id]
    assert {record.id for record in all_pending} == {pending.id, other_field.id}
    assert by_status == {AlignmentStatus.PENDING: 2, AlignmentStatus.ALIGNED: 1}
    assert by_severity == {Severity.HIGH: 2, Severity.CRITICAL: 1}


def test_sync_run_finalize_once(sqlite_unit_of_work: UnitOfWorkFactory) -> None:
    filters = SyncFilters.build(part_numbers=["R-1"], since=BASE_TIME)
    run = SyncRun(mode=SyncMode.MANUAL, triggered_by="tests", filters=filters)
    with sqlite_unit_of_work() as uow:
        uow.repositories.sync_runs.add(run)
        uow.commit()

    run.finish(
        SyncRunStatus.PARTIAL_SUCCESS,
        SyncCounters(items_scanned=4, items_synced=3, items_failed=1, differences_found=2),
    )
    with sqlite_unit_of_work() as uow:
        assert uow.repositories.sync_runs.finalize(run)
        uow.commit()
    with sqlite_unit_of_work() as uow:
        assert not uow.repositories.sync_runs.finalize(run)
        loaded = uow.repositories.sync_runs.get(run.id)

    assert loaded is not None
    assert loaded.status is SyncRunStatus.PARTIAL_SUCCESS
    assert loaded.filters == filters
    assert (loaded.items_scanned, loaded.items_failed, loaded.differences_found) == (4, 1, 2)
    assert loaded.ended_at == run.ended_at


def test_sync_run_listing_and_aggregates(sqlite_unit_of_work: UnitOfWorkFactory) -> None:
    older = SyncRun(mode=SyncMode.FULL, triggered_by="cron", started_at=BASE_TIME)
    older.finish(SyncRunStatus.SUCCESS, SyncCounters(), at=BASE_TIME + timedelta(minutes=5))
    newer = SyncRun(
        mode=SyncMode.INCREMENTAL,
        triggered_by="cli",
        started_at=BASE_TIME + timedelta(hours=1),
    )
    newer.finish(SyncRunStatus.FAILED, SyncCounters(), at=BASE_TIME + timedelta(hours=2))
    with sqlite_unit_of_work() as uow:
        uow.repositories.sync_runs.add(older)
        uow.repositories.sync_runs.add(newer)
        uow.commit()

    with sqlite_unit_of_work() as uow:
        runs = uow.repositories.sync_runs
        everything = runs.list(SyncRunFilter(), PageRequest())
        from_cron = runs.list(SyncRunFilter.parse(triggered_by="cron"), PageRequest())
        latest_success = runs.latest_started_at([SyncRunStatus.SUCCESS])
        latest_cancelled = runs.latest_started_at([SyncRunStatus.CANCELLED])
        latest_end = runs.latest_ended_at()
        counts = runs.count_by_status()

    assert [run.id for run in everything.items] == [newer.id, older.id]
    assert [run.id for run in from_cron.items] == [older.id]
    assert latest_success == BASE_TIME
    assert latest_cancelled is None
    assert latest_end == BASE_TIME + timedelta(hours=2)
    assert counts == {SyncRunStatus.SUCCESS: 1, SyncRunStatus.FAILED: 1}


def test_find_running_returns_the_oldest_unfinished_run(
    sqlite_unit_of_work: UnitOfWorkFactory,
) -> None:
    finished = SyncRun(mode=SyncMode.FULL, triggered_by="cron", started_at=BASE_TIME)
    finished.finish(SyncRunStatus.SUCCESS, SyncCounters(), at=BASE_TIME + timedelta(minutes=1))
    older = SyncRun(
        mode=SyncMode.FULL, triggered_by="cron", started_at=BASE_TIME + timedelta(hours=1)
    )
    newer = SyncRun(
        mode=SyncMode.FULL, triggered_by="cli", started_at=BASE_TIME + timedelta(hours=2)
    )
    with sqlite_unit_of_work() as uow:
        assert uow.repositories.sync_runs.find_running() is None
        for run in (finished, newer, older):
            uow.repositories.sync_runs.add(run)
        uow.commit()

    with sqlite_unit_of_work() as uow:
        running = uow.repositories.sync_runs.find_running()

    assert running is not None
    assert running.id == older.id
    assert running.status is SyncRunStatus.RUNNING


def test_snapshot_keeps_line_item_order(sqlite_unit_of_work: UnitOfWorkFactory) -> None:
    snapshot = make_snapshot(
        "rev-A",
        LineItem(part_number="U-1", quantity=1, unit_cost=2.5, supplier="Acme"),
        LineItem(part_number="C-1", quantity=4, unit_cost=0.05, compliance_status="RoHS"),
        LineItem(part_number="R-1", quantity=10, unit_cost=0.01),
    )
    with sqlite_unit_of_work() as uow:
        uow.repositories.snapshots.add(snapshot)
        uow.commit()

    with sqlite_unit_of_work() as uow:
        loaded = uow.repositories.snapshots.get(snapshot.id)
        assert loaded is not None
        items = [(item.part_number, item.quantity, item.unit_cost) for item in loaded.items]
        compliance = loaded.items[1].compliance_status

    assert items == [("U-1", 1.0, 2.5), ("C-1", 4.0, 0.05), ("R-1", 10.0, 0.01)]
    assert compliance == "RoHS"


def test_snapshot_line_items_are_unique_per_part(
    sqlite_unit_of_work: UnitOfWorkFactory,
) -> None:
    snapshot = make_snapshot("rev-A", LineItem(part_number="R-1"))
    snapshot.items.append(LineItem(part_number="R-1"))

    with sqlite_unit_of_work() as uow:
        uow.repositories.snapshots.add(snapshot)
        with pytest.raises(IntegrityError):
            uow.commit()


def test_local_catalog_reads_catalog_tables(
    sqlite_engine: Engine, sqlite_unit_of_work: UnitOfWorkFactory
) -> None:
    with sqlite_engine.begin() as connection:
        connection.execute(
            insert(catalog_attribute_table),
            [
                {"part_number": "R-1", "field_name": "price", "value": "1.00"},
                {"part_number": "R-1", "field_name": "specification", "value": None},
            ],
        )
        connection.execute(
            insert(bom_usage_table),
            [
                {"bom_reference": "BOM-A", "part_number": "R-1"},
                {"bom_reference": "BOM-B", "part_number": "R-1"},
                {"bom_reference": "BOM-B", "part_number": "C-1"},
            ],
        )

    with sqlite_unit_of_work() as uow:
        catalog = uow.repositories.catalog
        assert catalog.get_local_value("R-1", "price") == "1.00"
        assert catalog.get_local_value("R-1", "specification") is None
        assert catalog.get_local_value("R-9", "price") is None
        assert catalog.affected_bom_references("R-1") == frozenset({"BOM-A", "BOM-B"})
        assert catalog.affected_bom_references("R-9") == frozenset()
