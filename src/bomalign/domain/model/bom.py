"""BOM snapshots used by the multi-source diff engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from bomalign.domain.errors import ValidationError
from bomalign.domain.model.entity import Entity, utcnow

if TYPE_CHECKING:
    from datetime import datetime


@dataclass(eq=False, kw_only=True)
class LineItem:
    part_number: str
    description: str = ""
    quantity: float = 1.0
    unit_cost: float = 0.0
    supplier: str | None = None
    compliance_status: str | None = None


@dataclass(eq=False, kw_only=True)
class BOMSnapshot(Entity):
    """Point-in-time, ordered set of BOM line items keyed by part number."""

    name: str
    items: list[LineItem] = field(default_factory=list["LineItem"])
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        seen: set[str] = set()
        for item in self.items:
            if item.part_number in seen:
                raise ValidationError(
                    f"Duplicate part number {item.part_number!r} in snapshot {self.name!r}"
                )
            seen.add(item.part_number)
