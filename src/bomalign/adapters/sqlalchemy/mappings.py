"""SQLAlchemy mapping metadata for the reconciliation domain model."""

from __future__ import annotations

import json
import logging
import uuid
from datetime import UTC, datetime
from functools import cache
from typing import TYPE_CHECKING, Any, cast

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Dialect,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
    orm,
)
from sqlalchemy.ext.orderinglist import ordering_list
from sqlalchemy.orm import configure_mappers, relationship

from bomalign.domain.model import (
    AlignmentRecord,
    AlignmentStatus,
    BOMSnapshot,
    DifferenceType,
    LineItem,
    Severity,
    SyncFilters,
    SyncMode,
    SyncRun,
    SyncRunStatus,
)

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

log = logging.getLogger(__name__)

UUIDColumnType = Uuid[uuid.UUID]


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


class StringSetType(TypeDecorator[frozenset[str]]):
    """Stores a set of strings as a sorted JSON array."""

    impl = String
    cache_ok = True

    def process_bind_param(self, value: frozenset[str] | None, dialect: Dialect) -> str | None:
        _ = dialect
        if value is None:
            return None
        return json.dumps(sorted(value))

    def process_result_value(self, value: str | None, dialect: Dialect) -> frozenset[str]:
        _ = dialect
        if value is None:
            return frozenset()
        loaded = json.loads(value)
        if not isinstance(loaded, list):
            return frozenset()
        items = cast(list[Any], loaded)
        return frozenset(item for item in items if isinstance(item, str))


class SyncFiltersType(TypeDecorator[SyncFilters]):
    impl = String
    cache_ok = True

    def process_bind_param(self, value: SyncFilters | None, dialect: Dialect) -> str | None:
        _ = dialect
        if value is None:
            return None
        return json.dumps(value.as_dict())

    def process_result_value(self, value: str | None, dialect: Dialect) -> SyncFilters:
        _ = dialect
        if value is None:
            return SyncFilters()
        loaded = json.loads(value)
        if not isinstance(loaded, dict):
            return SyncFilters()
        return SyncFilters.from_dict(cast(dict[str, object], loaded))


mapper_registry = orm.registry()
mapper_registry.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_label)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_label)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# Reconciliation tables -------------------------------------------------------

sync_run_table = Table(
    "sync_run",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("mode", Enum(SyncMode, native_enum=False), nullable=False),
    Column("triggered_by", String, nullable=False),
    Column("filters", SyncFiltersType, nullable=False),
    Column("started_at", UTCDateTime(), nullable=False),
    Column("ended_at", UTCDateTime(), nullable=True),
    Column("status", Enum(SyncRunStatus, native_enum=False), nullable=False),
    Column("items_scanned", Integer, nullable=False, default=0),
    Column("items_synced", Integer, nullable=False, default=0),
    Column("items_failed", Integer, nullable=False, default=0),
    Column("differences_found", Integer, nullable=False, default=0),
    Column("error_message", String, nullable=True),
    Index("ix_sync_run_started_at", "started_at"),
)

alignment_record_table = Table(
    "alignment_record",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("part_number", String, nullable=False),
    Column("field_name", String, nullable=False),
    Column("authoritative_value", String, nullable=True),
    Column("local_value", String, nullable=True),
    Column("severity", Enum(Severity, native_enum=False), nullable=False),
    Column("difference_type", Enum(DifferenceType, native_enum=False), nullable=False),
    Column("recommended_resolution", String, nullable=False),
    Column("affected_bom_references", StringSetType, nullable=False),
    Column("status", Enum(AlignmentStatus, native_enum=False), nullable=False),
    Column("resolved_value", String, nullable=True),
    Column(
        "sync_run_id",
        UUIDColumnType,
        ForeignKey("sync_run.id", ondelete="SET NULL"),
        nullable=True,
    ),
    Column("created_at", UTCDateTime(), nullable=False),
    Column("last_updated_at", UTCDateTime(), nullable=False),
    CheckConstraint(
        "(status = 'ALIGNED' AND resolved_value IS NOT NULL)"
        " OR (status <> 'ALIGNED' AND resolved_value IS NULL)",
        name="resolved_value_matches_status",
    ),
    Index("ix_alignment_record_fingerprint", "part_number", "field_name", "status"),
    Index("ix_alignment_record_created_at", "created_at"),
)

bom_snapshot_table = Table(
    "bom_snapshot",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("name", String, nullable=False),
    Column("created_at", UTCDateTime(), nullable=False),
)

bom_line_item_table = Table(
    "bom_line_item",
    mapper_registry.metadata,
    Column("id", Integer, key="_id", primary_key=True, autoincrement=True),
    Column(
        "snapshot_id",
        UUIDColumnType,
        ForeignKey("bom_snapshot.id", ondelete="CASCADE"),
        key="_snapshot_id",
        nullable=False,
    ),
    Column("position", Integer, key="_position", nullable=False),
    Column("part_number", String, nullable=False),
    Column("description", String, nullable=False, default=""),
    Column("quantity", Float, nullable=False),
    Column("unit_cost", Float, nullable=False),
    Column("supplier", String, nullable=True),
    Column("compliance_status", String, nullable=True),
)
bom_line_item_table.append_constraint(
    UniqueConstraint(
        bom_line_item_table.c._snapshot_id,  # noqa: SLF001
        bom_line_item_table.c.part_number,
    )
)

# Local catalog tables --------------------------------------------------------
#
# Written by the catalog application; this service only reads them.

catalog_attribute_table = Table(
    "catalog_attribute",
    mapper_registry.metadata,
    Column("part_number", String, primary_key=True),
    Column("field_name", String, primary_key=True),
    Column("value", String, nullable=True),
)

bom_usage_table = Table(
    "bom_usage",
    mapper_registry.metadata,
    Column("bom_reference", String, primary_key=True),
    Column("part_number", String, primary_key=True),
    Index("ix_bom_usage_part_number", "part_number"),
)


@cache
def start_mappers() -> orm.registry:
    """Configure SQLAlchemy mappers for the domain model."""

    log.info("Starting SQLAlchemy mappers")

    mapper_registry.map_imperatively(SyncRun, sync_run_table)
    mapper_registry.map_imperatively(AlignmentRecord, alignment_record_table)
    mapper_registry.map_imperatively(LineItem, bom_line_item_table)
    mapper_registry.map_imperatively(
        BOMSnapshot,
        bom_snapshot_table,
        properties={
            "items": relationship(
                LineItem,
                order_by=bom_line_item_table.c._position,  # noqa: SLF001
                collection_class=ordering_list("_position"),
                cascade="all, delete-orphan",
                lazy="selectin",
            ),
        },
    )

    configure_mappers()
    return mapper_registry


def create_all_tables(engine: Engine) -> None:
    """Create database tables for the mapped metadata."""

    log.info("Creating all tables")
    mapper_registry.metadata.create_all(engine)
