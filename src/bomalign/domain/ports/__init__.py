"""Domain port definitions for adapters."""

from __future__ import annotations

from .persistence import (
    AlignmentRecordRepository,
    BOMSnapshotRepository,
    Repository,
    SyncRunRepository,
)
from .source import (
    AuthoritativeSource,
    LocalCatalog,
    LocalCatalogError,
    SourceBatch,
    SourceItem,
)
from .unit_of_work import (
    ReconciliationRepositories,
    ReconciliationUnitOfWork,
    RepositoryCollection,
    UnitOfWork,
    UnitOfWorkFactory,
)

__all__ = [
    "AlignmentRecordRepository",
    "AuthoritativeSource",
    "BOMSnapshotRepository",
    "LocalCatalog",
    "LocalCatalogError",
    "ReconciliationRepositories",
    "ReconciliationUnitOfWork",
    "Repository",
    "RepositoryCollection",
    "SourceBatch",
    "SourceItem",
    "SyncRunRepository",
    "UnitOfWork",
    "UnitOfWorkFactory",
]
