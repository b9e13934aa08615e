"""Query objects shared by repositories and the service layer."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from bomalign.domain.errors import ValidationError
from bomalign.domain.model import AlignmentStatus, Severity, SyncMode, SyncRunStatus

if TYPE_CHECKING:
    from datetime import datetime

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 500


@dataclass(frozen=True, slots=True)
class PageRequest:
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE

    def validate(self, *, max_page_size: int = MAX_PAGE_SIZE) -> PageRequest:
        if self.page < 1:
            raise ValidationError(f"Page must be >= 1, got {self.page}")
        if not 1 <= self.page_size <= max_page_size:
            raise ValidationError(
                f"Page size must be between 1 and {max_page_size}, got {self.page_size}"
            )
        return self

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


@dataclass(frozen=True, slots=True)
class Page[T]:
    items: tuple[T, ...]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.page_size) if self.total else 0


def _parse_enum[E: (Severity, AlignmentStatus, SyncMode, SyncRunStatus)](
    enum_cls: type[E], value: str | E | None, label: str
) -> E | None:
    if value is None or isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value.strip().upper())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Unknown {label} {value!r}; expected one of {allowed}") from None


@dataclass(frozen=True, slots=True, kw_only=True)
class AlignmentFilter:
    severity: Severity | None = None
    status: AlignmentStatus | None = None
    part_number: str | None = None
    field_name: str | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None

    @classmethod
    def parse(
        cls,
        *,
        severity: str | Severity | None = None,
        status: str | AlignmentStatus | None = None,
        part_number: str | None = None,
        field_name: str | None = None,
        created_from: datetime | None = None,
        created_to: datetime | None = None,
    ) -> AlignmentFilter:
        """Build a filter from loosely typed input, rejecting unknown option values."""

        if created_from and created_to and created_from > created_to:
            raise ValidationError("created_from must not be after created_to")
        return cls(
            severity=_parse_enum(Severity, severity, "severity"),
            status=_parse_enum(AlignmentStatus, status, "status"),
            part_number=part_number or None,
            field_name=field_name or None,
            created_from=created_from,
            created_to=created_to,
        )


@dataclass(frozen=True, slots=True, kw_only=True)
class SyncRunFilter:
    mode: SyncMode | None = None
    status: SyncRunStatus | None = None
    triggered_by: str | None = None

    @classmethod
    def parse(
        cls,
        *,
        mode: str | SyncMode | None = None,
        status: str | SyncRunStatus | None = None,
        triggered_by: str | None = None,
    ) -> SyncRunFilter:
        return cls(
            mode=_parse_enum(SyncMode, mode, "sync mode"),
            status=_parse_enum(SyncRunStatus, status, "sync status"),
            triggered_by=triggered_by or None,
        )


@dataclass(frozen=True, slots=True)
class AlignmentStatistics:
    total: int
    by_status: dict[AlignmentStatus, int] = field(default_factory=dict[AlignmentStatus, int])
    by_severity: dict[Severity, int] = field(default_factory=dict[Severity, int])
    last_sync_at: datetime | None = None
    sync_success_rate: float | None = None


@dataclass(frozen=True, slots=True)
class BomHealth:
    bom_reference: str
    pending_by_severity: dict[Severity, int]

    @property
    def pending_total(self) -> int:
        return sum(self.pending_by_severity.values())

    @property
    def healthy(self) -> bool:
        return not (
            self.pending_by_severity.get(Severity.CRITICAL, 0)
            or self.pending_by_severity.get(Severity.HIGH, 0)
        )
