"""Public domain model surface."""

from __future__ import annotations

from bomalign.domain.model.alignment import AlignmentRecord, Fingerprint, alignment_sort_key
from bomalign.domain.model.bom import BOMSnapshot, LineItem
from bomalign.domain.model.entity import Entity, new_id, utcnow
from bomalign.domain.model.enums import (
    AlignmentStatus,
    ChangeType,
    DifferenceType,
    Dimension,
    ResolutionStrategy,
    Severity,
    SyncMode,
    SyncRunStatus,
)
from bomalign.domain.model.sync_run import SyncCounters, SyncFilters, SyncRun

__all__ = [  # noqa: RUF022
    # base
    "Entity",
    "new_id",
    "utcnow",
    # alignment
    "AlignmentRecord",
    "Fingerprint",
    "alignment_sort_key",
    # sync
    "SyncCounters",
    "SyncFilters",
    "SyncRun",
    # bom
    "BOMSnapshot",
    "LineItem",
    # enums
    "AlignmentStatus",
    "ChangeType",
    "DifferenceType",
    "Dimension",
    "ResolutionStrategy",
    "Severity",
    "SyncMode",
    "SyncRunStatus",
]
