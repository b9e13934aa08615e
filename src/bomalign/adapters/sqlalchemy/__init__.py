"""SQLAlchemy adapter package for bomalign."""

from __future__ import annotations

from .mappings import create_all_tables, mapper_registry, start_mappers
from .repositories import (
    SqlAlchemyAlignmentRecordRepository,
    SqlAlchemyBOMSnapshotRepository,
    SqlAlchemyLocalCatalog,
    SqlAlchemySyncRunRepository,
)
from .unit_of_work import SqlAlchemyReconciliationUnitOfWork, shutdown, startup

__all__ = [
    "SqlAlchemyAlignmentRecordRepository",
    "SqlAlchemyBOMSnapshotRepository",
    "SqlAlchemyLocalCatalog",
    "SqlAlchemyReconciliationUnitOfWork",
    "SqlAlchemySyncRunRepository",
    "create_all_tables",
    "mapper_registry",
    "shutdown",
    "start_mappers",
    "startup",
]
