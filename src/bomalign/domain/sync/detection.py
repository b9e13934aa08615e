"""Turn one authoritative item into alignment records."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING

from bomalign.domain.classification import classify
from bomalign.domain.model import AlignmentRecord, utcnow

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

    from bomalign.domain.classification import FieldValue, RuleTable
    from bomalign.domain.ports import ReconciliationRepositories, SourceItem

log = getLogger(__name__)


def as_text(value: FieldValue) -> str | None:
    """Storage representation of a field value."""

    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def detect_differences(
    item: SourceItem,
    *,
    repositories: ReconciliationRepositories,
    rules: RuleTable,
    sync_run_id: UUID | None = None,
    at: datetime | None = None,
) -> list[AlignmentRecord]:
    """Compare every tracked attribute of ``item`` with the local catalog.

    Returns the new records without adding them, so a catalog failure halfway
    through an item leaves nothing behind. Differences on parts that no BOM
    uses are skipped, as are repeats of a difference that is still PENDING
    with the same values.
    """

    catalog = repositories.catalog
    created_at = at or utcnow()
    references: frozenset[str] | None = None
    records: list[AlignmentRecord] = []

    for field_name, authoritative in sorted(item.attributes.items()):
        field_type = rules.field_type_of(field_name)
        if field_type is None:
            continue
        local = catalog.get_local_value(item.part_number, field_name)
        outcome = classify(local, authoritative, field_type, rules=rules)
        if not outcome.differs or outcome.severity is None or outcome.difference_type is None:
            continue

        if references is None:
            references = catalog.affected_bom_references(item.part_number)
        if not references:
            log.debug("Skipping %s.%s: part is not used by any BOM", item.part_number, field_name)
            continue

        authoritative_text = as_text(authoritative)
        local_text = as_text(local)
        if _is_duplicate(
            repositories,
            (item.part_number, field_name),
            authoritative_text,
            local_text,
        ):
            log.debug("Suppressing duplicate difference for %s.%s", item.part_number, field_name)
            continue

        records.append(
            AlignmentRecord(
                part_number=item.part_number,
                field_name=field_name,
                authoritative_value=authoritative_text,
                local_value=local_text,
                severity=outcome.severity,
                difference_type=outcome.difference_type,
                recommended_resolution=outcome.recommendation or "",
                affected_bom_references=references,
                sync_run_id=sync_run_id,
                created_at=created_at,
                last_updated_at=created_at,
            )
        )
    return records


def _is_duplicate(
    repositories: ReconciliationRepositories,
    fingerprint: tuple[str, str],
    authoritative: str | None,
    local: str | None,
) -> bool:
    return any(
        record.authoritative_value == authoritative and record.local_value == local
        for record in repositories.alignments.find_pending(fingerprint)
    )
