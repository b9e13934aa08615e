"""Domain events emitted by the reconciliation core and the publisher port."""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from bomalign.domain.model import utcnow

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime
    from uuid import UUID

    from bomalign.domain.model import SyncMode, SyncRunStatus

log = getLogger(__name__)


@dataclass(frozen=True, slots=True, kw_only=True)
class AlignmentResolved:
    record_id: UUID
    part_number: str
    field_name: str
    resolved_value: str
    occurred_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True, slots=True, kw_only=True)
class AlignmentIgnored:
    record_id: UUID
    part_number: str
    field_name: str
    occurred_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True, slots=True, kw_only=True)
class SyncRunCompleted:
    run_id: UUID
    mode: SyncMode
    status: SyncRunStatus
    items_scanned: int
    items_synced: int
    items_failed: int
    differences_found: int
    occurred_at: datetime = field(default_factory=utcnow)


type DomainEvent = AlignmentResolved | AlignmentIgnored | SyncRunCompleted


@runtime_checkable
class EventPublisher(Protocol):
    """Port for the notification/consumer layer."""

    def publish(self, event: DomainEvent) -> None: ...


class LoggingEventPublisher:
    """Publisher that records every event in the application log."""

    def publish(self, event: DomainEvent) -> None:
        log.info("Domain event %s: %s", type(event).__name__, event)


@dataclass(slots=True)
class FanOutEventPublisher:
    """Forward each event to every configured publisher in order."""

    publishers: tuple[EventPublisher, ...] = ()

    @classmethod
    def of(cls, publishers: Iterable[EventPublisher]) -> FanOutEventPublisher:
        return cls(publishers=tuple(publishers))

    def publish(self, event: DomainEvent) -> None:
        for publisher in self.publishers:
            publisher.publish(event)


if TYPE_CHECKING:
    _logging_check: EventPublisher = LoggingEventPublisher()
    _fan_out_check: EventPublisher = FanOutEventPublisher()
