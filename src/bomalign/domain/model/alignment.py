"""Alignment records: detected field-level differences and their lifecycle."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from bomalign.domain.errors import InvalidStateError
from bomalign.domain.model.entity import Entity, utcnow
from bomalign.domain.model.enums import AlignmentStatus, DifferenceType, Severity

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

type Fingerprint = tuple[str, str]


@dataclass(eq=False, kw_only=True)
class AlignmentRecord(Entity):
    """One difference between the local catalog and the authoritative source.

    Records are never deleted. ``PENDING`` is the only non-terminal status; a
    difference that shows up again after a record was closed produces a new
    record rather than reopening this one.
    """

    part_number: str
    field_name: str
    authoritative_value: str | None
    local_value: str | None
    severity: Severity
    difference_type: DifferenceType
    recommended_resolution: str
    affected_bom_references: frozenset[str]
    status: AlignmentStatus = AlignmentStatus.PENDING
    resolved_value: str | None = None
    sync_run_id: UUID | None = None
    created_at: datetime = field(default_factory=utcnow)
    last_updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        self.affected_bom_references = frozenset(self.affected_bom_references)
        if not self.affected_bom_references:
            raise ValueError("alignment record needs at least one affected BOM reference")
        if (self.status is AlignmentStatus.ALIGNED) != (self.resolved_value is not None):
            raise ValueError("resolved_value must be set exactly when status is ALIGNED")

    @property
    def fingerprint(self) -> Fingerprint:
        return (self.part_number, self.field_name)

    @property
    def is_pending(self) -> bool:
        return self.status is AlignmentStatus.PENDING

    def align(self, value: str, *, at: datetime | None = None) -> None:
        """Close the record as ALIGNED with ``value`` as the agreed value."""

        self._require_pending(AlignmentStatus.ALIGNED)
        self.status = AlignmentStatus.ALIGNED
        self.resolved_value = value
        self.last_updated_at = at or utcnow()

    def ignore(self, *, at: datetime | None = None) -> None:
        """Close the record as IGNORED, consciously keeping the divergence."""

        self._require_pending(AlignmentStatus.IGNORED)
        self.status = AlignmentStatus.IGNORED
        self.last_updated_at = at or utcnow()

    def _require_pending(self, target: AlignmentStatus) -> None:
        if self.status is not AlignmentStatus.PENDING:
            raise InvalidStateError(
                f"Alignment record {self.id} is {self.status}; cannot move to {target}"
            )


def alignment_sort_key(record: AlignmentRecord) -> tuple[int, float, int]:
    """Key ordering records by severity desc, created_at desc, then id asc."""

    return (-record.severity.rank, -record.created_at.timestamp(), record.id.int)
