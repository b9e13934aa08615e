"""Ports for reading the authoritative source and the local catalog."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import datetime

    from bomalign.domain.classification import FieldValue
    from bomalign.domain.model import SyncFilters


@dataclass(frozen=True, slots=True)
class SourceItem:
    """One part as reported by the authoritative source."""

    part_number: str
    attributes: Mapping[str, FieldValue] = field(default_factory=dict[str, "FieldValue"])
    updated_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class SourceBatch:
    """Page of items plus the cursor for the next page (``None`` when exhausted)."""

    items: tuple[SourceItem, ...]
    next_cursor: str | None = None


@runtime_checkable
class AuthoritativeSource(Protocol):
    """Read-only, paged access to the authoritative system."""

    async def fetch_batch(
        self,
        cursor: str | None,
        *,
        limit: int,
        filters: SyncFilters,
    ) -> SourceBatch:
        """Fetch the page at ``cursor``; raise ``UpstreamUnavailableError`` on failure."""
        ...

    def cursor_after(self, cursor: str | None, limit: int) -> str | None:
        """Cursor of the page following ``cursor`` when that page could not be fetched."""
        ...


class LocalCatalogError(Exception):
    """Raised when the local catalog cannot answer for a single part."""


@runtime_checkable
class LocalCatalog(Protocol):
    """Read-only view of the locally maintained parts catalog."""

    def get_local_value(self, part_number: str, field_name: str) -> FieldValue: ...

    def affected_bom_references(self, part_number: str) -> frozenset[str]: ...


__all__ = [
    "AuthoritativeSource",
    "LocalCatalog",
    "LocalCatalogError",
    "SourceBatch",
    "SourceItem",
]
