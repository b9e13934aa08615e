"""Repository implementations backed by SQLAlchemy sessions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, cast

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import SQLAlchemyError

from bomalign.adapters.sqlalchemy.mappings import (
    alignment_record_table,
    bom_usage_table,
    catalog_attribute_table,
    sync_run_table,
)
from bomalign.domain.model import (
    AlignmentRecord,
    AlignmentStatus,
    BOMSnapshot,
    Severity,
    SyncRun,
    SyncRunStatus,
)
from bomalign.domain.ports import LocalCatalogError
from bomalign.domain.queries import Page

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime
    from uuid import UUID

    from sqlalchemy import ColumnElement, CursorResult, Select
    from sqlalchemy.orm import Session

    from bomalign.domain.classification import FieldValue
    from bomalign.domain.model import Fingerprint
    from bomalign.domain.queries import AlignmentFilter, PageRequest, SyncRunFilter


def _paginate[TEntity](
    session: Session,
    stmt: Select[tuple[TEntity]],
    conditions: list[ColumnElement[bool]],
    page: PageRequest,
) -> Page[TEntity]:
    stmt = stmt.where(*conditions)
    total = session.execute(
        select(func.count()).select_from(stmt.order_by(None).subquery())
    ).scalar_one()
    items = session.execute(stmt.offset(page.offset).limit(page.page_size)).scalars().all()
    return Page(items=tuple(items), total=total, page=page.page, page_size=page.page_size)


_SEVERITY_RANK = case(
    *((alignment_record_table.c.severity == severity, severity.rank) for severity in Severity),
    else_=0,
)


class SqlAlchemyAlignmentRecordRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: AlignmentRecord) -> None:
        self.session.add(entity)

    def get(self, entity_id: UUID) -> AlignmentRecord | None:
        return self.session.get(AlignmentRecord, entity_id)

    def list(self, query: AlignmentFilter, page: PageRequest) -> Page[AlignmentRecord]:
        table = alignment_record_table
        conditions: list[ColumnElement[bool]] = []
        if query.severity is not None:
            conditions.append(table.c.severity == query.severity)
        if query.status is not None:
            conditions.append(table.c.status == query.status)
        if query.part_number is not None:
            conditions.append(table.c.part_number == query.part_number)
        if query.field_name is not None:
            conditions.append(table.c.field_name == query.field_name)
        if query.created_from is not None:
            conditions.append(table.c.created_at >= query.created_from)
        if query.created_to is not None:
            conditions.append(table.c.created_at <= query.created_to)

        stmt = select(AlignmentRecord).order_by(
            _SEVERITY_RANK.desc(), table.c.created_at.desc(), table.c.id.asc()
        )
        return _paginate(self.session, stmt, conditions, page)

    def transition(
        self,
        record_id: UUID,
        *,
        expected: AlignmentStatus,
        status: AlignmentStatus,
        resolved_value: str | None,
        updated_at: datetime,
    ) -> bool:
        stmt = (
            update(alignment_record_table)
            .where(alignment_record_table.c.id == record_id)
            .where(alignment_record_table.c.status == expected)
            .values(status=status, resolved_value=resolved_value, last_updated_at=updated_at)
        )
        result = cast("CursorResult[Any]", self.session.execute(stmt))
        if result.rowcount != 1:
            return False
        # refresh a copy already loaded into this session
        self.session.get(AlignmentRecord, record_id, populate_existing=True)
        return True

    def find_pending(self, fingerprint: Fingerprint) -> list[AlignmentRecord]:
        part_number, field_name = fingerprint
        stmt = (
            select(AlignmentRecord)
            .where(alignment_record_table.c.part_number == part_number)
            .where(alignment_record_table.c.field_name == field_name)
            .where(alignment_record_table.c.status == AlignmentStatus.PENDING)
        )
        return list(self.session.execute(stmt).scalars())

    def iter_pending(self) -> list[AlignmentRecord]:
        stmt = select(AlignmentRecord).where(
            alignment_record_table.c.status == AlignmentStatus.PENDING
        )
        return list(self.session.execute(stmt).scalars())

    def count_by_status(self) -> dict[AlignmentStatus, int]:
        column = alignment_record_table.c.status
        rows = self.session.execute(select(column, func.count()).group_by(column)).all()
        return {AlignmentStatus(status): count for status, count in rows}

    def count_by_severity(self) -> dict[Severity, int]:
        column = alignment_record_table.c.severity
        rows = self.session.execute(select(column, func.count()).group_by(column)).all()
        return {Severity(severity): count for severity, count in rows}


class SqlAlchemySyncRunRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: SyncRun) -> None:
        self.session.add(entity)

    def get(self, entity_id: UUID) -> SyncRun | None:
        return self.session.get(SyncRun, entity_id)

    def list(self, query: SyncRunFilter, page: PageRequest) -> Page[SyncRun]:
        table = sync_run_table
        conditions: list[ColumnElement[bool]] = []
        if query.mode is not None:
            conditions.append(table.c.mode == query.mode)
        if query.status is not None:
            conditions.append(table.c.status == query.status)
        if query.triggered_by is not None:
            conditions.append(table.c.triggered_by == query.triggered_by)

        stmt = select(SyncRun).order_by(table.c.started_at.desc(), table.c.id.asc())
        return _paginate(self.session, stmt, conditions, page)

    def finalize(self, run: SyncRun) -> bool:
        stmt = (
            update(sync_run_table)
            .where(sync_run_table.c.id == run.id)
            .where(sync_run_table.c.status == SyncRunStatus.RUNNING)
            .values(
                status=run.status,
                ended_at=run.ended_at,
                items_scanned=run.items_scanned,
                items_synced=run.items_synced,
                items_failed=run.items_failed,
                differences_found=run.differences_found,
                error_message=run.error_message,
            )
        )
        result = cast("CursorResult[Any]", self.session.execute(stmt))
        return result.rowcount == 1

    def find_running(self) -> SyncRun | None:
        table = sync_run_table
        stmt = (
            select(SyncRun)
            .where(table.c.status == SyncRunStatus.RUNNING)
            .order_by(table.c.started_at.asc(), table.c.id.asc())
            .limit(1)
        )
        return self.session.scalars(stmt).first()

    def latest_started_at(self, statuses: Iterable[SyncRunStatus]) -> datetime | None:
        stmt = select(func.max(sync_run_table.c.started_at)).where(
            sync_run_table.c.status.in_(list(statuses))
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def latest_ended_at(self) -> datetime | None:
        stmt = select(func.max(sync_run_table.c.ended_at))
        return self.session.execute(stmt).scalar_one_or_none()

    def count_by_status(self) -> dict[SyncRunStatus, int]:
        column = sync_run_table.c.status
        rows = self.session.execute(select(column, func.count()).group_by(column)).all()
        return {SyncRunStatus(status): count for status, count in rows}


class SqlAlchemyBOMSnapshotRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: BOMSnapshot) -> None:
        self.session.add(entity)

    def get(self, entity_id: UUID) -> BOMSnapshot | None:
        return self.session.get(BOMSnapshot, entity_id)


class SqlAlchemyLocalCatalog:
    """Read view over the catalog tables maintained by the catalog application."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def get_local_value(self, part_number: str, field_name: str) -> FieldValue:
        stmt = (
            select(catalog_attribute_table.c.value)
            .where(catalog_attribute_table.c.part_number == part_number)
            .where(catalog_attribute_table.c.field_name == field_name)
        )
        try:
            return self.session.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise LocalCatalogError(
                f"Could not read {field_name!r} for part {part_number!r}: {exc}"
            ) from exc

    def affected_bom_references(self, part_number: str) -> frozenset[str]:
        stmt = select(bom_usage_table.c.bom_reference).where(
            bom_usage_table.c.part_number == part_number
        )
        try:
            return frozenset(self.session.execute(stmt).scalars())
        except SQLAlchemyError as exc:
            raise LocalCatalogError(
                f"Could not read BOM usage for part {part_number!r}: {exc}"
            ) from exc
