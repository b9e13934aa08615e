"""Multi-source BOM diff engine.

Compares N BOM snapshots against one baseline snapshot along the requested
dimensions. Every snapshot is indexed by part number once, so a comparison is
linear in the number of line items. Each non-baseline snapshot is compared
independently against the shared, read-only baseline index; with more than
one of them the comparisons run on a thread pool and are merged by snapshot
index, so the result never depends on completion order.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING

from bomalign.domain.classification import normalize_text
from bomalign.domain.errors import ValidationError
from bomalign.domain.model import ChangeType, Dimension

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence
    from uuid import UUID

    from bomalign.domain.model import BOMSnapshot, LineItem

type DimensionValue = str | float | None

_DIMENSION_ORDER: tuple[Dimension, ...] = tuple(Dimension)


@dataclass(frozen=True, slots=True)
class DimensionDelta:
    baseline_value: DimensionValue
    compare_value: DimensionValue
    delta: float

    def as_dict(self) -> dict[str, DimensionValue]:
        return {
            "baseline_value": self.baseline_value,
            "compare_value": self.compare_value,
            "delta": self.delta,
        }


@dataclass(frozen=True, slots=True)
class Difference:
    """One line item that differs between the baseline and one compare snapshot."""

    part_number: str
    snapshot_index: int
    snapshot_id: UUID
    change_type: ChangeType
    deltas: Mapping[Dimension, DimensionDelta]

    @property
    def affected_dimensions(self) -> tuple[Dimension, ...]:
        return tuple(dimension for dimension in _DIMENSION_ORDER if dimension in self.deltas)

    def as_dict(self) -> dict[str, object]:
        return {
            "part_number": self.part_number,
            "snapshot_index": self.snapshot_index,
            "snapshot_id": str(self.snapshot_id),
            "change_type": str(self.change_type),
            "affected_dimensions": [str(dimension) for dimension in self.affected_dimensions],
            "deltas": {
                str(dimension): self.deltas[dimension].as_dict()
                for dimension in self.affected_dimensions
            },
        }


@dataclass(frozen=True, slots=True)
class DiffResult:
    baseline_index: int
    dimensions: tuple[Dimension, ...]
    differences: tuple[Difference, ...]

    def count(self, change_type: ChangeType) -> int:
        return sum(1 for difference in self.differences if difference.change_type is change_type)

    @property
    def added(self) -> int:
        return self.count(ChangeType.ADDED)

    @property
    def removed(self) -> int:
        return self.count(ChangeType.REMOVED)

    @property
    def modified(self) -> int:
        return self.count(ChangeType.MODIFIED)

    @property
    def total_cost_delta(self) -> float:
        return sum(
            (
                difference.deltas[Dimension.COST].delta
                for difference in self.differences
                if Dimension.COST in difference.deltas
            ),
            start=0.0,
        )

    def as_dict(self) -> dict[str, object]:
        return {
            "baseline_index": self.baseline_index,
            "dimensions": [str(dimension) for dimension in self.dimensions],
            "summary": {
                "added": self.added,
                "removed": self.removed,
                "modified": self.modified,
                "total": len(self.differences),
                "total_cost_delta": self.total_cost_delta,
            },
            "differences": [difference.as_dict() for difference in self.differences],
        }


def parse_dimensions(dimensions: Iterable[Dimension | str]) -> tuple[Dimension, ...]:
    """Validate requested dimensions and return them deduplicated in canonical order."""

    requested: set[Dimension] = set()
    for dimension in dimensions:
        try:
            requested.add(Dimension(str(dimension).strip().lower()))
        except ValueError:
            allowed = ", ".join(member.value for member in Dimension)
            raise ValidationError(
                f"Unknown dimension {dimension!r}; expected one of {allowed}"
            ) from None
    if not requested:
        raise ValidationError("At least one comparison dimension is required")
    return tuple(dimension for dimension in _DIMENSION_ORDER if dimension in requested)


def compare_boms(
    snapshots: Sequence[BOMSnapshot],
    baseline_index: int,
    dimensions: Iterable[Dimension | str],
    *,
    max_workers: int | None = None,
) -> DiffResult:
    """Diff every snapshot except the baseline against ``snapshots[baseline_index]``."""

    if len(snapshots) < 2:
        raise ValidationError("At least two snapshots are required for a comparison")
    if not 0 <= baseline_index < len(snapshots):
        raise ValidationError(
            f"Baseline index {baseline_index} is out of range for {len(snapshots)} snapshots"
        )
    requested = parse_dimensions(dimensions)
    indexes = [_index(snapshot) for snapshot in snapshots]
    baseline = indexes[baseline_index]
    compare_indexes = [index for index in range(len(snapshots)) if index != baseline_index]

    def compare(index: int) -> list[Difference]:
        return _compare_pair(baseline, indexes[index], index, snapshots[index].id, requested)

    if len(compare_indexes) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            per_snapshot = list(executor.map(compare, compare_indexes))
    else:
        per_snapshot = [compare(index) for index in compare_indexes]

    differences = sorted(
        (difference for group in per_snapshot for difference in group),
        key=lambda difference: (difference.part_number, difference.snapshot_index),
    )
    return DiffResult(
        baseline_index=baseline_index,
        dimensions=requested,
        differences=tuple(differences),
    )


def _index(snapshot: BOMSnapshot) -> dict[str, LineItem]:
    lookup: dict[str, LineItem] = {}
    for item in snapshot.items:
        if item.part_number in lookup:
            raise ValidationError(
                f"Duplicate part number {item.part_number!r} in snapshot {snapshot.name!r}"
            )
        lookup[item.part_number] = item
    return lookup


def _compare_pair(
    baseline: Mapping[str, LineItem],
    candidate: Mapping[str, LineItem],
    snapshot_index: int,
    snapshot_id: UUID,
    dimensions: tuple[Dimension, ...],
) -> list[Difference]:
    differences: list[Difference] = []

    def emit(
        part_number: str,
        change_type: ChangeType,
        deltas: dict[Dimension, DimensionDelta],
    ) -> None:
        differences.append(
            Difference(
                part_number=part_number,
                snapshot_index=snapshot_index,
                snapshot_id=snapshot_id,
                change_type=change_type,
                deltas=deltas,
            )
        )

    structural = Dimension.STRUCTURE in dimensions
    with_cost = Dimension.COST in dimensions

    for part_number, base_item in baseline.items():
        other = candidate.get(part_number)
        if other is None:
            if structural:
                emit(part_number, ChangeType.REMOVED, _presence_deltas(base_item, None, with_cost))
            continue
        deltas = _item_deltas(base_item, other, dimensions)
        if deltas:
            emit(part_number, ChangeType.MODIFIED, deltas)

    if structural:
        for part_number, other in candidate.items():
            if part_number not in baseline:
                emit(part_number, ChangeType.ADDED, _presence_deltas(None, other, with_cost))

    return differences


def _presence_deltas(
    baseline: LineItem | None,
    candidate: LineItem | None,
    with_cost: bool,
) -> dict[Dimension, DimensionDelta]:
    base_quantity = baseline.quantity if baseline else None
    compare_quantity = candidate.quantity if candidate else None
    deltas = {
        Dimension.STRUCTURE: DimensionDelta(
            base_quantity,
            compare_quantity,
            (compare_quantity or 0.0) - (base_quantity or 0.0),
        )
    }
    if with_cost:
        base_cost = baseline.unit_cost if baseline else None
        compare_cost = candidate.unit_cost if candidate else None
        deltas[Dimension.COST] = DimensionDelta(
            base_cost,
            compare_cost,
            (compare_cost or 0.0) - (base_cost or 0.0),
        )
    return deltas


def _item_deltas(
    baseline: LineItem,
    candidate: LineItem,
    dimensions: tuple[Dimension, ...],
) -> dict[Dimension, DimensionDelta]:
    deltas: dict[Dimension, DimensionDelta] = {}
    for dimension in dimensions:
        match dimension:
            case Dimension.STRUCTURE:
                if baseline.quantity != candidate.quantity:
                    deltas[dimension] = DimensionDelta(
                        baseline.quantity,
                        candidate.quantity,
                        candidate.quantity - baseline.quantity,
                    )
            case Dimension.COST:
                if baseline.unit_cost != candidate.unit_cost:
                    deltas[dimension] = DimensionDelta(
                        baseline.unit_cost,
                        candidate.unit_cost,
                        candidate.unit_cost - baseline.unit_cost,
                    )
            case Dimension.COMPLIANCE:
                _categorical(
                    deltas, dimension, baseline.compliance_status, candidate.compliance_status
                )
            case Dimension.SUPPLIER:
                _categorical(deltas, dimension, baseline.supplier, candidate.supplier)
    return deltas


def _categorical(
    deltas: dict[Dimension, DimensionDelta],
    dimension: Dimension,
    baseline: str | None,
    candidate: str | None,
) -> None:
    if normalize_text(baseline) != normalize_text(candidate):
        deltas[dimension] = DimensionDelta(baseline, candidate, 1.0)


__all__ = [
    "DiffResult",
    "Difference",
    "DimensionDelta",
    "compare_boms",
    "parse_dimensions",
]
