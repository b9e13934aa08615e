"""Sync orchestrator: drives one reconciliation pass against the authoritative source.

At most one run is active per process. ``start`` claims the process-wide slot
with a lock-guarded compare-and-set, refuses while the run log still holds a
RUNNING entry, persists its own RUNNING entry and hands the scan to an asyncio
task. The scan fetches batches with a per-batch timeout and bounded
exponential backoff; a batch that stays unavailable is counted as failed items
and skipped. Batches are written from a worker thread so the event loop keeps
serving ``status`` and ``cancel``. Cancellation is cooperative and only
observed between batches, so an in-flight fetch always completes.
"""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from bomalign.domain.errors import (
    InvalidStateError,
    NotFoundError,
    SyncBusyError,
    UpstreamUnavailableError,
    ValidationError,
)
from bomalign.domain.events import SyncRunCompleted
from bomalign.domain.model import (
    SyncCounters,
    SyncFilters,
    SyncMode,
    SyncRun,
    SyncRunStatus,
    utcnow,
)
from bomalign.domain.ports import LocalCatalogError
from bomalign.domain.sync.cancellation import CancellationToken
from bomalign.domain.sync.detection import detect_differences
from bomalign.domain.sync.policy import SyncPolicy
from bomalign.domain.sync.status import SyncProgress, SyncRunView, derive_terminal_status

if TYPE_CHECKING:
    from uuid import UUID

    from bomalign.domain.classification import RuleTable
    from bomalign.domain.events import EventPublisher
    from bomalign.domain.ports import AuthoritativeSource, SourceBatch, UnitOfWorkFactory

log = getLogger(__name__)

_INCREMENTAL_BASELINE = (SyncRunStatus.SUCCESS, SyncRunStatus.PARTIAL_SUCCESS)
_ORPHANED_MESSAGE = "run was not active in this process"


@dataclass(slots=True)
class _ActiveRun:
    run: SyncRun
    token: CancellationToken
    progress: SyncProgress
    task: asyncio.Task[SyncRun] | None = None


@dataclass(slots=True)
class _RunSlot:
    """The one active run of this process, shared by every orchestrator."""

    lock: threading.Lock = field(default_factory=threading.Lock)
    active: _ActiveRun | None = None

    def find(self, run_id: UUID) -> _ActiveRun | None:
        with self.lock:
            active = self.active
        return active if active is not None and active.run.id == run_id else None


_SLOT = _RunSlot()


@dataclass(frozen=True, slots=True)
class _Outcome:
    status: SyncRunStatus
    error_message: str | None = None


class SyncOrchestrator:
    """Start, observe and cancel sync runs."""

    def __init__(
        self,
        *,
        source: AuthoritativeSource,
        unit_of_work_factory: UnitOfWorkFactory,
        rules: RuleTable,
        publisher: EventPublisher,
        policy: SyncPolicy | None = None,
    ) -> None:
        self.source = source
        self.unit_of_work_factory = unit_of_work_factory
        self.rules = rules
        self.publisher = publisher
        self.policy = policy or SyncPolicy()

    @property
    def active_run_id(self) -> UUID | None:
        with _SLOT.lock:
            return _SLOT.active.run.id if _SLOT.active else None

    async def start(
        self,
        mode: SyncMode,
        filters: SyncFilters | None = None,
        *,
        triggered_by: str = "system",
    ) -> SyncRun:
        """Persist a RUNNING sync run and schedule its scan on the running loop.

        Raises ``SyncBusyError`` while another run is active in this process or
        still stored as RUNNING, and ``ValidationError`` for a MANUAL run
        without explicit parts or BOMs.
        """

        requested = filters or SyncFilters()
        if mode is SyncMode.MANUAL and not requested.is_selective:
            raise ValidationError("Manual sync runs need at least one part number or BOM id")

        active = self._claim(mode, requested, triggered_by)
        try:
            active.run.filters = self._effective_filters(mode, requested)
            with self.unit_of_work_factory() as uow:
                runs = uow.repositories.sync_runs
                stored = runs.find_running()
                if stored is not None:
                    raise SyncBusyError(
                        f"Sync run {stored.id} is still stored as RUNNING; "
                        "cancel it before starting another"
                    )
                runs.add(active.run)
                uow.commit()
        except BaseException:
            self._release(active)
            raise

        log.info(
            "Started %s sync run %s (triggered by %s, filters=%s)",
            mode,
            active.run.id,
            triggered_by,
            active.run.filters.as_dict(),
        )
        task = asyncio.create_task(self._execute(active), name=f"sync-run-{active.run.id}")
        # a task cancelled before its first step never reaches _finalize
        task.add_done_callback(lambda _: self._release(active))
        active.task = task
        return active.run

    async def run(
        self,
        mode: SyncMode,
        filters: SyncFilters | None = None,
        *,
        triggered_by: str = "system",
    ) -> SyncRun:
        """Start a run and wait for it to finish."""

        run = await self.start(mode, filters, triggered_by=triggered_by)
        return await self.wait(run.id)

    async def wait(self, run_id: UUID) -> SyncRun:
        """Wait for an active run to finish; finished runs are returned as stored."""

        active = _SLOT.find(run_id)
        if active is not None and active.task is not None:
            return await active.task
        return self._load(run_id)

    def cancel(self, run_id: UUID) -> SyncRun:
        """Request cancellation; the run stops at its next batch boundary.

        A run stored as RUNNING that no scan in this process owns is left over
        from a process that died; it is finalised as CANCELLED straight away.
        """

        active = _SLOT.find(run_id)
        if active is not None:
            active.token.cancel()
            log.info("Cancellation requested for sync run %s", run_id)
            return active.run
        run = self._load(run_id)
        if run.is_terminal:
            raise InvalidStateError(
                f"Sync run {run_id} is {run.status}; only active runs can be cancelled"
            )
        return self._cancel_orphaned(run)

    def status(self, run_id: UUID) -> SyncRunView:
        active = _SLOT.find(run_id)
        if active is not None:
            return SyncRunView(run=active.run, progress=active.progress.snapshot())
        return SyncRunView(run=self._load(run_id))

    def _claim(self, mode: SyncMode, filters: SyncFilters, triggered_by: str) -> _ActiveRun:
        with _SLOT.lock:
            if _SLOT.active is not None:
                raise SyncBusyError(f"Sync run {_SLOT.active.run.id} is already running")
            active = _ActiveRun(
                run=SyncRun(mode=mode, triggered_by=triggered_by, filters=filters),
                token=CancellationToken(),
                progress=SyncProgress(),
            )
            _SLOT.active = active
            return active

    def _release(self, active: _ActiveRun) -> None:
        with _SLOT.lock:
            if _SLOT.active is active:
                _SLOT.active = None

    def _cancel_orphaned(self, run: SyncRun) -> SyncRun:
        run.finish(SyncRunStatus.CANCELLED, SyncCounters(), error_message=_ORPHANED_MESSAGE)
        with self.unit_of_work_factory() as uow:
            if not uow.repositories.sync_runs.finalize(run):
                raise InvalidStateError(f"Sync run {run.id} was already finalised")
            uow.commit()
        log.warning("Sync run %s had no active scan; marked it cancelled", run.id)
        return run

    def _effective_filters(self, mode: SyncMode, filters: SyncFilters) -> SyncFilters:
        if mode is not SyncMode.INCREMENTAL or filters.since is not None:
            return filters
        with self.unit_of_work_factory() as uow:
            since = uow.repositories.sync_runs.latest_started_at(_INCREMENTAL_BASELINE)
        if since is None:
            log.info("No previous successful sync run; incremental run scans everything")
            return filters
        return SyncFilters(part_numbers=filters.part_numbers, bom_ids=filters.bom_ids, since=since)

    def _load(self, run_id: UUID) -> SyncRun:
        with self.unit_of_work_factory() as uow:
            run = uow.repositories.sync_runs.get(run_id)
        if run is None:
            raise NotFoundError(f"Sync run {run_id} not found")
        return run

    async def _execute(self, active: _ActiveRun) -> SyncRun:
        try:
            outcome = await self._scan(active)
        except asyncio.CancelledError:
            self._finalize(active, _Outcome(SyncRunStatus.CANCELLED, "sync task was cancelled"))
            raise
        except Exception as exc:
            log.exception("Sync run %s failed unexpectedly", active.run.id)
            outcome = _Outcome(SyncRunStatus.FAILED, str(exc) or type(exc).__name__)
        self._finalize(active, outcome)
        return active.run

    async def _scan(self, active: _ActiveRun) -> _Outcome:
        run = active.run
        progress = active.progress
        batch_size = self.policy.batch_size
        cursor: str | None = None

        while True:
            if active.token.cancelled:
                return self._cancelled(run)

            batch = await self._fetch_with_retry(active, cursor)
            if active.token.cancelled:
                if batch is not None:
                    log.info("Sync run %s: discarding batch fetched after cancellation", run.id)
                return self._cancelled(run)

            if batch is None:
                progress.record_lost_batch(batch_size)
                log.warning(
                    "Sync run %s: batch at cursor %r lost, counting %s items as failed",
                    run.id,
                    cursor,
                    batch_size,
                )
                if self._breaker_tripped(progress):
                    return self._tripped(progress)
                if progress.consecutive_lost >= self.policy.max_consecutive_lost_batches:
                    return self._source_down(progress)
                cursor = self.source.cursor_after(cursor, batch_size)
                if cursor is None:
                    break
                continue

            progress.merge(await asyncio.to_thread(self._process_batch, active, batch))
            if self._breaker_tripped(progress):
                return self._tripped(progress)
            if batch.next_cursor is None:
                break
            cursor = batch.next_cursor

        if active.token.cancelled:
            return self._cancelled(run)
        return _Outcome(derive_terminal_status(progress.counters))

    async def _fetch_with_retry(self, active: _ActiveRun, cursor: str | None) -> SourceBatch | None:
        attempts = self.policy.max_attempts
        for attempt in range(1, attempts + 1):
            try:
                async with asyncio.timeout(self.policy.batch_timeout_seconds):
                    return await self.source.fetch_batch(
                        cursor,
                        limit=self.policy.batch_size,
                        filters=active.run.filters,
                    )
            except (UpstreamUnavailableError, TimeoutError) as exc:
                reason = str(exc) or type(exc).__name__
                log.warning(
                    "Sync run %s: fetch attempt %s/%s at cursor %r failed: %s",
                    active.run.id,
                    attempt,
                    attempts,
                    cursor,
                    reason,
                )
            if attempt == attempts or active.token.cancelled:
                break
            await asyncio.sleep(self.policy.backoff_for(attempt))
        return None

    def _process_batch(self, active: _ActiveRun, batch: SourceBatch) -> SyncProgress:
        """Record the batch's differences in one transaction and return its counts."""

        tally = SyncProgress()
        detected_at = utcnow()
        with self.unit_of_work_factory() as uow:
            for item in batch.items:
                try:
                    records = detect_differences(
                        item,
                        repositories=uow.repositories,
                        rules=self.rules,
                        sync_run_id=active.run.id,
                        at=detected_at,
                    )
                except LocalCatalogError as exc:
                    log.warning(
                        "Sync run %s: local catalog failed for %s: %s",
                        active.run.id,
                        item.part_number,
                        exc,
                    )
                    tally.record_item(ok=False)
                    continue
                for record in records:
                    uow.repositories.alignments.add(record)
                tally.record_item(ok=True, differences=len(records))
            uow.commit()
        return tally

    def _breaker_tripped(self, progress: SyncProgress) -> bool:
        counters = progress.counters
        return (
            counters.items_scanned >= self.policy.breaker_min_items
            and counters.failure_rate >= self.policy.breaker_threshold
        )

    def _tripped(self, progress: SyncProgress) -> _Outcome:
        message = (
            f"Circuit breaker tripped: {progress.counters.items_failed} of "
            f"{progress.counters.items_scanned} items failed"
        )
        log.error(message)
        return _Outcome(SyncRunStatus.FAILED, message)

    def _source_down(self, progress: SyncProgress) -> _Outcome:
        message = (
            f"Authoritative source unavailable: {progress.consecutive_lost} consecutive "
            "batches lost"
        )
        log.error(message)
        return _Outcome(SyncRunStatus.FAILED, message)

    @staticmethod
    def _cancelled(run: SyncRun) -> _Outcome:
        log.info("Sync run %s cancelled", run.id)
        return _Outcome(SyncRunStatus.CANCELLED)

    def _finalize(self, active: _ActiveRun, outcome: _Outcome) -> None:
        run = active.run
        try:
            run.finish(
                outcome.status,
                active.progress.counters,
                error_message=outcome.error_message,
            )
            with self.unit_of_work_factory() as uow:
                if not uow.repositories.sync_runs.finalize(run):
                    raise InvalidStateError(f"Sync run {run.id} was already finalised")
                uow.commit()
        finally:
            self._release(active)

        log.info(
            "Finished sync run %s: status=%s, scanned=%s, synced=%s, failed=%s, differences=%s",
            run.id,
            run.status,
            run.items_scanned,
            run.items_synced,
            run.items_failed,
            run.differences_found,
        )
        self.publisher.publish(
            SyncRunCompleted(
                run_id=run.id,
                mode=run.mode,
                status=run.status,
                items_scanned=run.items_scanned,
                items_synced=run.items_synced,
                items_failed=run.items_failed,
                differences_found=run.differences_found,
                occurred_at=run.ended_at or utcnow(),
            )
        )


__all__ = ["SyncOrchestrator"]
