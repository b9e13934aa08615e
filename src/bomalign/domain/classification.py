"""Field comparator and severity classifier.

``classify`` compares one field's local value with the authoritative value and
decides whether they differ, how severe the difference is, and what kind of
difference it is. The policy lives in a :class:`RuleTable` keyed by field type,
so thresholds and state orderings are data rather than code; the functions here
only implement the comparison mechanics for the three rule kinds.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, ClassVar

from bomalign.domain.errors import ValidationError
from bomalign.domain.model import DifferenceType, Severity

if TYPE_CHECKING:
    from collections.abc import Mapping

type FieldValue = str | int | float | None

ADOPT_AUTHORITATIVE = "Update the local value to match the authoritative source"
WITHIN_TOLERANCE = (
    "Difference is within tolerance; adopt the authoritative value at the next revision"
)
VERIFY_VALUE = "Values could not be compared reliably; verify with the authoritative source"
MORE_RESTRICTIVE = (
    "Authoritative lifecycle status is more restrictive; update the local status "
    "and review affected BOMs"
)
KNOWN_DEMOTION = "Authoritative lifecycle status was relaxed through a known transition; adopt it"
UNEXPECTED_DEMOTION = (
    "Authoritative lifecycle status demotion is unexpected and may be a source data error; "
    "verify before adopting"
)

_NUMBER_PATTERN = re.compile(
    r"^\s*(?:[A-Za-z]{1,3}\s*)?(?P<number>[-+]?\d+(?:\.\d+)?)\s*(?:[A-Za-z]{1,3})?\s*$"
)


class RuleKind(StrEnum):
    NUMERIC = "numeric"
    LIFECYCLE = "lifecycle"
    TEXT = "text"


@dataclass(frozen=True, slots=True)
class SeverityThreshold:
    """Relative deltas at or above ``min_relative_delta`` map to ``severity``."""

    min_relative_delta: float
    severity: Severity


@dataclass(frozen=True, slots=True)
class NumericRule:
    thresholds: tuple[SeverityThreshold, ...]
    below_threshold: Severity = Severity.LOW
    unparseable_severity: Severity = Severity.HIGH
    difference_type: DifferenceType = DifferenceType.PRICE_CHANGE

    kind: ClassVar[RuleKind] = RuleKind.NUMERIC

    def __post_init__(self) -> None:
        ordered = tuple(
            sorted(self.thresholds, key=lambda item: item.min_relative_delta, reverse=True)
        )
        object.__setattr__(self, "thresholds", ordered)
        previous_rank: int | None = None
        for threshold in ordered:
            if threshold.min_relative_delta < 0:
                raise ValueError("Severity thresholds must be non-negative")
            rank = threshold.severity.rank
            if previous_rank is not None and rank > previous_rank:
                raise ValueError("Larger thresholds must not map to lower severities")
            previous_rank = rank
        if previous_rank is not None and self.below_threshold.rank > previous_rank:
            raise ValueError("Severity below the lowest threshold must not exceed it")

    def severity_for(self, relative_delta: float) -> Severity:
        for threshold in self.thresholds:
            if relative_delta >= threshold.min_relative_delta:
                return threshold.severity
        return self.below_threshold


@dataclass(frozen=True, slots=True)
class LifecycleRule:
    """Ordered lifecycle states, least restrictive first."""

    states: tuple[str, ...]
    known_demotions: frozenset[tuple[str, str]] = frozenset()
    single_step_severity: Severity = Severity.HIGH
    multi_step_severity: Severity = Severity.CRITICAL
    known_demotion_severity: Severity = Severity.MEDIUM
    unexpected_demotion_severity: Severity = Severity.LOW
    unknown_state_severity: Severity = Severity.HIGH
    difference_type: DifferenceType = DifferenceType.STATUS_CHANGE

    kind: ClassVar[RuleKind] = RuleKind.LIFECYCLE

    def __post_init__(self) -> None:
        states = tuple(normalize_state(state) for state in self.states)
        if len(set(states)) != len(states):
            raise ValueError("Lifecycle states must be unique")
        object.__setattr__(self, "states", states)
        object.__setattr__(
            self,
            "known_demotions",
            frozenset(
                (normalize_state(source), normalize_state(target))
                for source, target in self.known_demotions
            ),
        )

    def position(self, state: str) -> int | None:
        try:
            return self.states.index(state)
        except ValueError:
            return None


@dataclass(frozen=True, slots=True)
class TextRule:
    default_severity: Severity = Severity.HIGH
    equivalence_sets: tuple[frozenset[str], ...] = ()
    difference_type: DifferenceType = DifferenceType.SPEC_CHANGE

    kind: ClassVar[RuleKind] = RuleKind.TEXT

    def __post_init__(self) -> None:
        normalized = tuple(
            frozenset(value for value in (normalize_text(item) for item in group) if value)
            for group in self.equivalence_sets
        )
        object.__setattr__(self, "equivalence_sets", normalized)

    def equivalent(self, left: str, right: str) -> bool:
        return any(left in group and right in group for group in self.equivalence_sets)


type FieldRule = NumericRule | LifecycleRule | TextRule


@dataclass(frozen=True, slots=True)
class RuleTable:
    """Classification policy: rules per field type, and which fields are tracked."""

    rules: Mapping[str, FieldRule]
    tracked_fields: Mapping[str, str] = field(default_factory=dict[str, str])

    def __post_init__(self) -> None:
        unknown = sorted(
            field_type
            for field_type in self.tracked_fields.values()
            if field_type not in self.rules
        )
        if unknown:
            raise ValueError(f"Tracked fields reference unknown field types: {', '.join(unknown)}")

    def rule(self, field_type: str) -> FieldRule:
        try:
            return self.rules[field_type]
        except KeyError:
            raise ValidationError(f"Unknown field type: {field_type}") from None

    def field_type_of(self, field_name: str) -> str | None:
        return self.tracked_fields.get(field_name)

    def is_tracked(self, field_name: str) -> bool:
        return field_name in self.tracked_fields


@dataclass(frozen=True, slots=True)
class Classification:
    differs: bool
    severity: Severity | None = None
    difference_type: DifferenceType | None = None
    recommendation: str | None = None
    relative_delta: float | None = None


NO_DIFFERENCE = Classification(differs=False)


def normalize_text(value: FieldValue) -> str | None:
    if value is None:
        return None
    text = str(value).strip().casefold()
    return text or None


def normalize_state(value: FieldValue) -> str:
    text = "" if value is None else str(value).strip()
    return re.sub(r"[\s\-]+", "_", text).upper()


def parse_number(value: FieldValue) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return float(value)
    match = _NUMBER_PATTERN.match(value.replace(",", ""))
    if match is None:
        return None
    return float(match.group("number"))


def relative_delta(local: float, authoritative: float) -> float:
    reference = abs(authoritative) or abs(local)
    if reference == 0:
        return 0.0
    return abs(authoritative - local) / reference


def classify(
    local: FieldValue,
    authoritative: FieldValue,
    field_type: str,
    *,
    rules: RuleTable,
) -> Classification:
    """Compare ``local`` against ``authoritative`` using the rule for ``field_type``."""

    rule = rules.rule(field_type)
    match rule:
        case NumericRule():
            return _classify_numeric(local, authoritative, rule)
        case LifecycleRule():
            return _classify_lifecycle(local, authoritative, rule)
        case TextRule():
            return _classify_text(local, authoritative, rule)


def _classify_numeric(
    local: FieldValue,
    authoritative: FieldValue,
    rule: NumericRule,
) -> Classification:
    if normalize_text(local) is None and normalize_text(authoritative) is None:
        return NO_DIFFERENCE
    local_number = parse_number(local)
    authoritative_number = parse_number(authoritative)
    if local_number is None or authoritative_number is None:
        return Classification(
            differs=True,
            severity=rule.unparseable_severity,
            difference_type=rule.difference_type,
            recommendation=VERIFY_VALUE,
        )
    if local_number == authoritative_number:
        return NO_DIFFERENCE
    delta = relative_delta(local_number, authoritative_number)
    severity = rule.severity_for(delta)
    return Classification(
        differs=True,
        severity=severity,
        difference_type=rule.difference_type,
        recommendation=(
            WITHIN_TOLERANCE if severity is rule.below_threshold else ADOPT_AUTHORITATIVE
        ),
        relative_delta=delta,
    )


def _classify_lifecycle(
    local: FieldValue,
    authoritative: FieldValue,
    rule: LifecycleRule,
) -> Classification:
    local_state = normalize_state(local)
    authoritative_state = normalize_state(authoritative)
    if local_state == authoritative_state:
        return NO_DIFFERENCE

    local_position = rule.position(local_state)
    authoritative_position = rule.position(authoritative_state)
    if local_position is None or authoritative_position is None:
        return Classification(
            differs=True,
            severity=rule.unknown_state_severity,
            difference_type=rule.difference_type,
            recommendation=VERIFY_VALUE,
        )

    step = authoritative_position - local_position
    if step > 0:
        severity = rule.single_step_severity if step == 1 else rule.multi_step_severity
        return Classification(
            differs=True,
            severity=severity,
            difference_type=rule.difference_type,
            recommendation=MORE_RESTRICTIVE,
        )
    if (local_state, authoritative_state) in rule.known_demotions:
        return Classification(
            differs=True,
            severity=rule.known_demotion_severity,
            difference_type=rule.difference_type,
            recommendation=KNOWN_DEMOTION,
        )
    return Classification(
        differs=True,
        severity=rule.unexpected_demotion_severity,
        difference_type=rule.difference_type,
        recommendation=UNEXPECTED_DEMOTION,
    )


def _classify_text(
    local: FieldValue,
    authoritative: FieldValue,
    rule: TextRule,
) -> Classification:
    local_text = normalize_text(local)
    authoritative_text = normalize_text(authoritative)
    if local_text == authoritative_text:
        return NO_DIFFERENCE
    if local_text is not None and authoritative_text is not None:
        if rule.equivalent(local_text, authoritative_text):
            return NO_DIFFERENCE
    return Classification(
        differs=True,
        severity=rule.default_severity,
        difference_type=rule.difference_type,
        recommendation=ADOPT_AUTHORITATIVE,
    )


__all__ = [
    "Classification",
    "FieldRule",
    "FieldValue",
    "LifecycleRule",
    "NumericRule",
    "RuleKind",
    "RuleTable",
    "SeverityThreshold",
    "TextRule",
    "classify",
    "normalize_state",
    "normalize_text",
    "parse_number",
    "relative_delta",
]
