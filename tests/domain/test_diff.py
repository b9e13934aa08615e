from __future__ import annotations

import pytest

from bomalign.domain.diff import compare_boms, parse_dimensions
from bomalign.domain.errors import ValidationError
from bomalign.domain.model import BOMSnapshot, ChangeType, Dimension, LineItem
from tests.helpers.records import make_snapshot


def _item(part_number: str, **values: object) -> LineItem:
    return LineItem(part_number=part_number, **values)  # type: ignore[arg-type]


@pytest.fixture
def baseline() -> BOMSnapshot:
    return make_snapshot(
        "rev-A",
        _item("R-1", quantity=4, unit_cost=0.10, supplier="Acme", compliance_status="RoHS"),
        _item("C-1", quantity=2, unit_cost=0.05, supplier="Acme"),
        _item("U-1", quantity=1, unit_cost=2.50),
    )


@pytest.fixture
def revision() -> BOMSnapshot:
    return make_snapshot(
        "rev-B",
        _item("R-1", quantity=6, unit_cost=0.10, supplier="acme ", compliance_status="rohs"),
        _item("C-1", quantity=2, unit_cost=0.07, supplier="Bolt"),
        _item("D-1", quantity=3, unit_cost=0.20),
    )


def test_structure_reports_added_removed_and_quantity_changes(
    baseline: BOMSnapshot, revision: BOMSnapshot
) -> None:
    result = compare_boms([baseline, revision], 0, ["structure"])

    by_part = {difference.part_number: difference for difference in result.differences}
    assert sorted(by_part) == ["D-1", "R-1", "U-1"]
    assert by_part["D-1"].change_type is ChangeType.ADDED
    assert by_part["U-1"].change_type is ChangeType.REMOVED
    assert by_part["R-1"].change_type is ChangeType.MODIFIED
    assert by_part["R-1"].deltas[Dimension.STRUCTURE].delta == 2
    assert by_part["U-1"].deltas[Dimension.STRUCTURE].delta == -1
    assert (result.added, result.removed, result.modified) == (1, 1, 1)


def test_cost_only_comparison_skips_presence_changes(
    baseline: BOMSnapshot, revision: BOMSnapshot
) -> None:
    result = compare_boms([baseline, revision], 0, [Dimension.COST])

    assert [difference.part_number for difference in result.differences] == ["C-1"]
    [difference] = result.differences
    assert difference.affected_dimensions == (Dimension.COST,)
    assert difference.deltas[Dimension.COST].delta == pytest.approx(0.02)


def test_cost_delta_of_added_and_removed_items(
    baseline: BOMSnapshot, revision: BOMSnapshot
) -> None:
    result = compare_boms([baseline, revision], 0, ["structure", "cost"])

    by_part = {difference.part_number: difference for difference in result.differences}
    assert by_part["D-1"].deltas[Dimension.COST].delta == pytest.approx(0.20)
    assert by_part["U-1"].deltas[Dimension.COST].delta == pytest.approx(-2.50)
    assert result.total_cost_delta == pytest.approx(0.20 - 2.50 + 0.02)


def test_categorical_dimensions_ignore_case_and_whitespace(
    baseline: BOMSnapshot, revision: BOMSnapshot
) -> None:
    result = compare_boms([baseline, revision], 0, ["supplier", "compliance"])

    [difference] = result.differences
    assert difference.part_number == "C-1"
    assert difference.affected_dimensions == (Dimension.SUPPLIER,)
    delta = difference.deltas[Dimension.SUPPLIER]
    assert (delta.baseline_value, delta.compare_value) == ("Acme", "Bolt")


def test_component_upgrade_scenario() -> None:
    baseline = make_snapshot(
        "workstation-v1",
        _item("CPU-001", quantity=1, unit_cost=350.0),
        _item("RAM-002", quantity=2, unit_cost=150.0, supplier="S1"),
    )
    upgrade = make_snapshot(
        "workstation-v2",
        _item("CPU-001", quantity=1, unit_cost=360.0),
        _item("RAM-002", quantity=2, unit_cost=150.0, supplier="S2"),
        _item("GPU-005", quantity=1, unit_cost=450.0),
    )

    result = compare_boms([baseline, upgrade], 0, ["structure", "cost", "supplier"])

    assert (result.added, result.removed, result.modified) == (1, 0, 2)
    assert len(result.differences) == 3
    by_part = {difference.part_number: difference for difference in result.differences}
    assert by_part["GPU-005"].change_type is ChangeType.ADDED
    cpu = by_part["CPU-001"]
    assert cpu.change_type is ChangeType.MODIFIED
    assert cpu.affected_dimensions == (Dimension.COST,)
    assert cpu.deltas[Dimension.COST].delta == pytest.approx(10.0)
    ram = by_part["RAM-002"]
    assert ram.change_type is ChangeType.MODIFIED
    assert ram.affected_dimensions == (Dimension.SUPPLIER,)
    supplier = ram.deltas[Dimension.SUPPLIER]
    assert (supplier.baseline_value, supplier.compare_value) == ("S1", "S2")


def test_swapping_baseline_swaps_added_and_removed(
    baseline: BOMSnapshot, revision: BOMSnapshot
) -> None:
    forward = compare_boms([baseline, revision], 0, ["structure"])
    backward = compare_boms([baseline, revision], 1, ["structure"])

    assert (backward.added, backward.removed) == (forward.removed, forward.added)
    assert backward.modified == forward.modified
    assert len(backward.differences) == len(forward.differences)


def test_identical_snapshots_have_no_differences(baseline: BOMSnapshot) -> None:
    copy = make_snapshot("rev-A2", *baseline.items)

    result = compare_boms([baseline, copy], 0, list(Dimension))

    assert result.differences == ()
    assert result.total_cost_delta == 0.0


def test_several_snapshots_are_merged_in_a_stable_order(
    baseline: BOMSnapshot, revision: BOMSnapshot
) -> None:
    third = make_snapshot("rev-C", _item("R-1", quantity=4, unit_cost=0.10))

    result = compare_boms([revision, baseline, third], 1, ["structure"], max_workers=4)

    keys = [(entry.part_number, entry.snapshot_index) for entry in result.differences]
    assert keys == sorted(keys)
    assert ("C-1", 2) in keys
    assert ("D-1", 0) in keys
    assert all(difference.snapshot_index != 1 for difference in result.differences)
    assert result.baseline_index == 1
    assert {difference.snapshot_id for difference in result.differences} == {
        revision.id,
        third.id,
    }


def test_result_serialises_summary(baseline: BOMSnapshot, revision: BOMSnapshot) -> None:
    payload = compare_boms([baseline, revision], 0, ["cost", "structure"]).as_dict()

    assert payload["dimensions"] == ["structure", "cost"]
    summary = payload["summary"]
    assert isinstance(summary, dict)
    assert summary["total"] == 4


@pytest.mark.parametrize("baseline_index", [-1, 2])
def test_baseline_index_must_be_in_range(
    baseline: BOMSnapshot, revision: BOMSnapshot, baseline_index: int
) -> None:
    with pytest.raises(ValidationError, match="out of range"):
        compare_boms([baseline, revision], baseline_index, ["structure"])


def test_needs_at_least_two_snapshots(baseline: BOMSnapshot) -> None:
    with pytest.raises(ValidationError, match="two snapshots"):
        compare_boms([baseline], 0, ["structure"])


def test_parse_dimensions() -> None:
    expected = (Dimension.STRUCTURE, Dimension.COST)
    assert parse_dimensions(["COST", " structure", "cost"]) == expected
    with pytest.raises(ValidationError, match="Unknown dimension"):
        parse_dimensions(["weight"])
    with pytest.raises(ValidationError, match="At least one"):
        parse_dimensions([])


def test_duplicate_part_numbers_are_rejected() -> None:
    with pytest.raises(ValidationError, match="Duplicate part number"):
        make_snapshot("broken", _item("R-1"), _item("R-1"))
