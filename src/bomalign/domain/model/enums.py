"""Domain enums (pure, dependency-light)."""

from __future__ import annotations

from enum import StrEnum


class Severity(StrEnum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        """Higher rank means higher impact."""
        return _SEVERITY_RANK[self]


_SEVERITY_RANK: dict[Severity, int] = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
}


class AlignmentStatus(StrEnum):
    PENDING = "PENDING"
    ALIGNED = "ALIGNED"
    IGNORED = "IGNORED"

    @property
    def is_terminal(self) -> bool:
        return self is not AlignmentStatus.PENDING


class DifferenceType(StrEnum):
    SPEC_CHANGE = "spec_change"
    PRICE_CHANGE = "price_change"
    STATUS_CHANGE = "status_change"


class SyncMode(StrEnum):
    FULL = "FULL"
    INCREMENTAL = "INCREMENTAL"
    MANUAL = "MANUAL"


class SyncRunStatus(StrEnum):
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    PARTIAL_SUCCESS = "PARTIAL_SUCCESS"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self is not SyncRunStatus.RUNNING


class Dimension(StrEnum):
    """Comparison axes supported by the BOM diff engine."""

    STRUCTURE = "structure"
    COST = "cost"
    COMPLIANCE = "compliance"
    SUPPLIER = "supplier"


class ChangeType(StrEnum):
    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"


class ResolutionStrategy(StrEnum):
    """Which side wins when a record is aligned without an explicit value."""

    AUTHORITATIVE = "authoritative"
    LOCAL = "local"
