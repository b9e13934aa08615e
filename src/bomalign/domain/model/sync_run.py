"""Sync run log entries and the filters that scope a run."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from bomalign.domain.errors import InvalidStateError
from bomalign.domain.model.entity import Entity, utcnow
from bomalign.domain.model.enums import SyncMode, SyncRunStatus

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping


@dataclass(frozen=True, slots=True)
class SyncFilters:
    """Scope of a sync run, passed through to the authoritative source."""

    part_numbers: frozenset[str] = frozenset()
    bom_ids: frozenset[str] = frozenset()
    since: datetime | None = None

    @classmethod
    def build(
        cls,
        *,
        part_numbers: Iterable[str] = (),
        bom_ids: Iterable[str] = (),
        since: datetime | None = None,
    ) -> SyncFilters:
        return cls(
            part_numbers=frozenset(pn.strip() for pn in part_numbers if pn.strip()),
            bom_ids=frozenset(bom.strip() for bom in bom_ids if bom.strip()),
            since=since,
        )

    @property
    def is_selective(self) -> bool:
        """Whether the filters name explicit parts or BOMs."""
        return bool(self.part_numbers or self.bom_ids)

    def as_dict(self) -> dict[str, object]:
        return {
            "part_numbers": sorted(self.part_numbers),
            "bom_ids": sorted(self.bom_ids),
            "since": self.since.isoformat() if self.since else None,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> SyncFilters:
        raw_since = payload.get("since")
        raw_parts = payload.get("part_numbers") or ()
        raw_boms = payload.get("bom_ids") or ()
        return cls.build(
            part_numbers=[str(value) for value in raw_parts] if isinstance(raw_parts, list) else (),
            bom_ids=[str(value) for value in raw_boms] if isinstance(raw_boms, list) else (),
            since=datetime.fromisoformat(raw_since) if isinstance(raw_since, str) else None,
        )


@dataclass(slots=True)
class SyncCounters:
    items_scanned: int = 0
    items_synced: int = 0
    items_failed: int = 0
    differences_found: int = 0

    @property
    def failure_rate(self) -> float:
        if self.items_scanned == 0:
            return 0.0
        return self.items_failed / self.items_scanned


@dataclass(eq=False, kw_only=True)
class SyncRun(Entity):
    """Log entry for one reconciliation pass.

    Created as RUNNING when the pass starts and finalised exactly once; a
    terminal run is never modified again.
    """

    mode: SyncMode
    triggered_by: str
    filters: SyncFilters = field(default_factory=SyncFilters)
    started_at: datetime = field(default_factory=utcnow)
    ended_at: datetime | None = None
    status: SyncRunStatus = SyncRunStatus.RUNNING
    items_scanned: int = 0
    items_synced: int = 0
    items_failed: int = 0
    differences_found: int = 0
    error_message: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def finish(
        self,
        status: SyncRunStatus,
        counters: SyncCounters,
        *,
        at: datetime | None = None,
        error_message: str | None = None,
    ) -> None:
        if self.is_terminal:
            raise InvalidStateError(f"Sync run {self.id} is already {self.status}")
        if not status.is_terminal:
            raise ValueError(f"Cannot finish a sync run with non-terminal status {status}")
        ended_at = at or utcnow()
        if ended_at < self.started_at:
            raise ValueError("Sync run cannot end before it started")
        self.status = status
        self.ended_at = ended_at
        self.items_scanned = counters.items_scanned
        self.items_synced = counters.items_synced
        self.items_failed = counters.items_failed
        self.differences_found = counters.differences_found
        self.error_message = error_message
