from __future__ import annotations

from pathlib import Path  # noqa: TC003

import pytest

from bomalign.config import DEFAULT_RULE_TABLE, RulesFileError, get_rule_table, load_rule_table
from bomalign.domain.classification import NumericRule, TextRule, classify
from bomalign.domain.model import DifferenceType, Severity

WEIGHT_RULES = """
[tracked_fields]
weight_g = "weight"

[rules.weight]
kind = "numeric"
thresholds = [
    { min_relative_delta = 0.25, severity = "HIGH" },
    { min_relative_delta = 0.05, severity = "MEDIUM" },
]
difference_type = "spec_change"
"""


def _write(tmp_path: Path, content: str) -> Path:
    path = tmp_path / "rules.toml"
    path.write_text(content, encoding="utf-8")
    return path


def test_rules_file_merges_into_defaults(tmp_path: Path) -> None:
    table = load_rule_table(_write(tmp_path, WEIGHT_RULES))

    assert table.field_type_of("weight_g") == "weight"
    assert table.field_type_of("price") == "price"
    weight = table.rules["weight"]
    assert isinstance(weight, NumericRule)
    assert weight.difference_type is DifferenceType.SPEC_CHANGE

    outcome = classify("10", "11", "weight", rules=table)
    assert outcome.severity is Severity.MEDIUM


def test_rules_file_can_replace_defaults(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        """
replace = true

[tracked_fields]
notes = "notes"

[rules.notes]
kind = "text"
default_severity = "LOW"
equivalence_sets = [["n/a", "none"]]
""",
    )

    table = load_rule_table(path)

    assert set(table.rules) == {"notes"}
    assert table.field_type_of("price") is None
    notes = table.rules["notes"]
    assert isinstance(notes, TextRule)
    assert notes.default_severity is Severity.LOW
    assert not classify("N/A", "none", "notes", rules=table).differs


def test_rules_file_overrides_a_default_rule(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        """
[rules.price]
kind = "numeric"
thresholds = [{ min_relative_delta = 0.5, severity = "CRITICAL" }]
""",
    )

    table = load_rule_table(path)

    assert classify("1.00", "1.30", "price", rules=table).severity is Severity.LOW
    default = classify("1.00", "1.30", "price", rules=DEFAULT_RULE_TABLE)
    assert default.severity is Severity.CRITICAL


@pytest.mark.parametrize(
    ("content", "reason"),
    [
        ("[rules.price\n", "Invalid classification rules"),
        ('[rules.price]\nkind = "bogus"\n', "kind"),
        ('[rules.price]\nkind = "numeric"\nthresholds = []\n', "thresholds"),
        ('[tracked_fields]\nweight_g = "weight"\n', "unknown field types"),
        ("unexpected = 1\n", "unexpected"),
    ],
)
def test_invalid_rules_files_are_rejected(tmp_path: Path, content: str, reason: str) -> None:
    path = _write(tmp_path, content)

    with pytest.raises(RulesFileError, match=reason) as exc:
        load_rule_table(path)

    assert exc.value.path == path


def test_missing_rules_file(tmp_path: Path) -> None:
    with pytest.raises(RulesFileError):
        load_rule_table(tmp_path / "absent.toml")


def test_get_rule_table_uses_env_path(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.delenv("BOMALIGN_RULES_PATH", raising=False)
    monkeypatch.setenv("BOMALIGN_DATA_DIR", str(tmp_path / "empty"))
    assert get_rule_table() is DEFAULT_RULE_TABLE

    monkeypatch.setenv("BOMALIGN_RULES_PATH", str(_write(tmp_path, WEIGHT_RULES)))
    assert get_rule_table().field_type_of("weight_g") == "weight"


def test_get_rule_table_falls_back_to_data_dir(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.delenv("BOMALIGN_RULES_PATH", raising=False)
    monkeypatch.setenv("BOMALIGN_DATA_DIR", str(tmp_path))
    (tmp_path / "classification_rules.toml").write_text(WEIGHT_RULES, encoding="utf-8")

    assert get_rule_table().field_type_of("weight_g") == "weight"
