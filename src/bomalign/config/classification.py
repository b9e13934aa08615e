"""Classification rule tables: the shipped defaults and TOML overrides.

A rules file looks like::

    replace = false              # merge into the defaults (true: start empty)

    [tracked_fields]
    weight = "weight"            # catalog field name -> field type

    [rules.weight]
    kind = "numeric"
    thresholds = [
        { min_relative_delta = 0.25, severity = "HIGH" },
        { min_relative_delta = 0.05, severity = "MEDIUM" },
    ]
    difference_type = "spec_change"

Field types in the file override defaults of the same name.
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from bomalign.domain.classification import (
    FieldRule,
    LifecycleRule,
    NumericRule,
    RuleTable,
    SeverityThreshold,
    TextRule,
)
from bomalign.domain.model import DifferenceType, Severity

from .env import optional_env_var
from .errors import RulesFileError
from .storage import get_storage_config

RULES_PATH_ENV = "BOMALIGN_RULES_PATH"

LIFECYCLE_STATES = ("ACTIVE", "NRND", "PHASE_OUT", "EOL", "OBSOLETE")

DEFAULT_RULE_TABLE = RuleTable(
    rules={
        "price": NumericRule(
            thresholds=(
                SeverityThreshold(0.20, Severity.CRITICAL),
                SeverityThreshold(0.10, Severity.HIGH),
                SeverityThreshold(0.02, Severity.MEDIUM),
            ),
            below_threshold=Severity.LOW,
            difference_type=DifferenceType.PRICE_CHANGE,
        ),
        "lifecycle": LifecycleRule(
            states=LIFECYCLE_STATES,
            known_demotions=frozenset({("NRND", "ACTIVE"), ("EOL", "PHASE_OUT")}),
        ),
        "spec": TextRule(default_severity=Severity.HIGH),
    },
    tracked_fields={
        "price": "price",
        "lifecycle_status": "lifecycle",
        "specification": "spec",
        "description": "spec",
    },
)


class _RulesModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class _ThresholdModel(_RulesModel):
    min_relative_delta: float = Field(ge=0)
    severity: Severity


class _NumericRuleModel(_RulesModel):
    kind: Literal["numeric"]
    thresholds: list[_ThresholdModel] = Field(min_length=1)
    below_threshold: Severity = Severity.LOW
    unparseable_severity: Severity = Severity.HIGH
    difference_type: DifferenceType = DifferenceType.PRICE_CHANGE

    def build(self) -> NumericRule:
        return NumericRule(
            thresholds=tuple(
                SeverityThreshold(item.min_relative_delta, item.severity)
                for item in self.thresholds
            ),
            below_threshold=self.below_threshold,
            unparseable_severity=self.unparseable_severity,
            difference_type=self.difference_type,
        )


class _LifecycleRuleModel(_RulesModel):
    kind: Literal["lifecycle"]
    states: list[str] = Field(min_length=2)
    known_demotions: list[tuple[str, str]] = Field(default_factory=list[tuple[str, str]])
    single_step_severity: Severity = Severity.HIGH
    multi_step_severity: Severity = Severity.CRITICAL
    known_demotion_severity: Severity = Severity.MEDIUM
    unexpected_demotion_severity: Severity = Severity.LOW
    unknown_state_severity: Severity = Severity.HIGH
    difference_type: DifferenceType = DifferenceType.STATUS_CHANGE

    def build(self) -> LifecycleRule:
        return LifecycleRule(
            states=tuple(self.states),
            known_demotions=frozenset(self.known_demotions),
            single_step_severity=self.single_step_severity,
            multi_step_severity=self.multi_step_severity,
            known_demotion_severity=self.known_demotion_severity,
            unexpected_demotion_severity=self.unexpected_demotion_severity,
            unknown_state_severity=self.unknown_state_severity,
            difference_type=self.difference_type,
        )


class _TextRuleModel(_RulesModel):
    kind: Literal["text"]
    default_severity: Severity = Severity.HIGH
    equivalence_sets: list[list[str]] = Field(default_factory=list[list[str]])
    difference_type: DifferenceType = DifferenceType.SPEC_CHANGE

    def build(self) -> TextRule:
        return TextRule(
            default_severity=self.default_severity,
            equivalence_sets=tuple(frozenset(group) for group in self.equivalence_sets),
            difference_type=self.difference_type,
        )


_RuleModel = Annotated[
    _NumericRuleModel | _LifecycleRuleModel | _TextRuleModel,
    Field(discriminator="kind"),
]


class RulesDocument(_RulesModel):
    replace: bool = False
    tracked_fields: dict[str, str] = Field(default_factory=dict)
    rules: dict[str, _RuleModel] = Field(default_factory=dict)


def load_rule_table(path: Path, *, base: RuleTable = DEFAULT_RULE_TABLE) -> RuleTable:
    """Read ``path`` and merge it into ``base`` (or replace it when ``replace = true``)."""

    try:
        with path.open("rb") as handle:
            raw = tomllib.load(handle)
    except OSError as exc:
        raise RulesFileError(path, exc.strerror or str(exc)) from exc
    except tomllib.TOMLDecodeError as exc:
        raise RulesFileError(path, str(exc)) from exc

    try:
        document = RulesDocument.model_validate(raw)
        built: dict[str, FieldRule] = {name: rule.build() for name, rule in document.rules.items()}
    except (PydanticValidationError, ValueError) as exc:
        raise RulesFileError(path, str(exc)) from exc

    rules: dict[str, FieldRule] = {} if document.replace else dict(base.rules)
    rules.update(built)
    tracked: dict[str, str] = {} if document.replace else dict(base.tracked_fields)
    tracked.update(document.tracked_fields)
    try:
        return RuleTable(rules=rules, tracked_fields=tracked)
    except ValueError as exc:
        raise RulesFileError(path, str(exc)) from exc


def get_rule_table() -> RuleTable:
    """Rule table from ``BOMALIGN_RULES_PATH``, else the data directory, else the defaults."""

    raw_path = optional_env_var(RULES_PATH_ENV)
    if raw_path is not None:
        return load_rule_table(Path(raw_path).expanduser())
    fallback = get_storage_config().rules_path
    if fallback.is_file():
        return load_rule_table(fallback)
    return DEFAULT_RULE_TABLE
