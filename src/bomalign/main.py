#!/usr/bin/env python3

# ruff: noqa: T201

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from datetime import UTC, datetime
from logging import getLogger
from signal import SIGINT
from typing import TYPE_CHECKING
from uuid import UUID

from dotenv import load_dotenv

from bomalign.app import build_service
from bomalign.config.logging import configure_logging, level_from_env
from bomalign.domain.errors import ReconciliationError, ValidationError, error_payload
from bomalign.domain.model import Dimension, ResolutionStrategy, SyncFilters, SyncMode
from bomalign.domain.queries import DEFAULT_PAGE_SIZE, AlignmentFilter, PageRequest, SyncRunFilter

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from bomalign.app import ReconciliationService
    from bomalign.domain.model import AlignmentRecord, SyncRun
    from bomalign.domain.queries import AlignmentStatistics, BomHealth, Page
    from bomalign.domain.sync import SyncRunView

log = getLogger(__name__)


def _add_page_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--page", type=int, default=1, help="Page number, starting at 1")
    parser.add_argument(
        "--page-size",
        type=int,
        default=DEFAULT_PAGE_SIZE,
        help="Items per page (default: %(default)s)",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bomalign",
        description="Reconcile the local parts catalog against the authoritative source",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    sync = commands.add_parser("sync", help="Run one sync pass to completion")
    sync.add_argument(
        "--mode",
        choices=[mode.value.lower() for mode in SyncMode],
        default=SyncMode.INCREMENTAL.value.lower(),
    )
    sync.add_argument("--part", action="append", default=[], help="Part number (repeatable)")
    sync.add_argument("--bom", action="append", default=[], help="BOM id (repeatable)")
    sync.add_argument("--since", type=str, help="ISO-8601 timestamp (UTC) for changed parts")
    sync.add_argument("--triggered-by", default="cli")

    runs = commands.add_parser("runs", help="List sync runs, newest first")
    runs.add_argument("--mode")
    runs.add_argument("--status")
    runs.add_argument("--triggered-by")
    _add_page_arguments(runs)

    run = commands.add_parser("run", help="Show one sync run")
    run.add_argument("run_id")

    cancel = commands.add_parser("cancel", help="Cancel a sync run still marked RUNNING")
    cancel.add_argument("run_id")

    records = commands.add_parser("records", help="List alignment records")
    records.add_argument("--severity")
    records.add_argument("--status")
    records.add_argument("--part")
    records.add_argument("--field")
    records.add_argument("--from", dest="created_from", type=str)
    records.add_argument("--to", dest="created_to", type=str)
    _add_page_arguments(records)

    record = commands.add_parser("record", help="Show one alignment record")
    record.add_argument("record_id")

    resolve = commands.add_parser("resolve", help="Align one pending record")
    resolve.add_argument("record_id")
    resolve.add_argument("--value", help="Agreed value (default: authoritative value)")

    resolve_batch = commands.add_parser("resolve-batch", help="Align several pending records")
    resolve_batch.add_argument("record_ids", nargs="+")
    resolve_batch.add_argument(
        "--strategy",
        choices=[strategy.value for strategy in ResolutionStrategy],
        default=ResolutionStrategy.AUTHORITATIVE.value,
    )

    ignore = commands.add_parser("ignore", help="Ignore one pending record")
    ignore.add_argument("record_id")

    commands.add_parser("stats", help="Alignment statistics and BOM health")

    compare = commands.add_parser("compare", help="Diff stored BOM snapshots")
    compare.add_argument("snapshot_ids", nargs="+")
    compare.add_argument("--baseline", type=int, default=0, help="Index of the baseline snapshot")
    compare.add_argument(
        "--dimension",
        action="append",
        choices=[dimension.value for dimension in Dimension],
        help="Dimension to compare (repeatable, default: all)",
    )
    return parser


def _parse_iso_datetime(value: str) -> datetime:
    try:
        normalized = value.strip()
        if normalized.endswith("Z"):
            normalized = normalized[:-1] + "+00:00"
        dt = datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise ValidationError(f"Invalid ISO timestamp: {value}") from exc
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def _parse_uuid(value: str) -> UUID:
    try:
        return UUID(value)
    except ValueError as exc:
        raise ValidationError(f"Invalid id: {value!r}") from exc


def _optional_datetime(value: str | None) -> datetime | None:
    return _parse_iso_datetime(value) if value else None


# Serialisation ----------------------------------------------------------------


def record_as_dict(record: AlignmentRecord) -> dict[str, object]:
    return {
        "id": str(record.id),
        "part_number": record.part_number,
        "field_name": record.field_name,
        "authoritative_value": record.authoritative_value,
        "local_value": record.local_value,
        "severity": record.severity.value,
        "difference_type": record.difference_type.value,
        "recommended_resolution": record.recommended_resolution,
        "affected_bom_references": sorted(record.affected_bom_references),
        "status": record.status.value,
        "resolved_value": record.resolved_value,
        "sync_run_id": str(record.sync_run_id) if record.sync_run_id else None,
        "created_at": record.created_at.isoformat(),
        "last_updated_at": record.last_updated_at.isoformat(),
    }


def run_as_dict(run: SyncRun) -> dict[str, object]:
    return {
        "id": str(run.id),
        "mode": run.mode.value,
        "status": run.status.value,
        "triggered_by": run.triggered_by,
        "filters": run.filters.as_dict(),
        "started_at": run.started_at.isoformat(),
        "ended_at": run.ended_at.isoformat() if run.ended_at else None,
        "items_scanned": run.items_scanned,
        "items_synced": run.items_synced,
        "items_failed": run.items_failed,
        "differences_found": run.differences_found,
        "error_message": run.error_message,
    }


def view_as_dict(view: SyncRunView) -> dict[str, object]:
    payload = run_as_dict(view.run)
    payload["progress"] = view.progress.as_dict() if view.progress else None
    return payload


def page_as_dict[T](
    page: Page[T], item_as_dict: Callable[[T], dict[str, object]]
) -> dict[str, object]:
    return {
        "items": [item_as_dict(item) for item in page.items],
        "total": page.total,
        "page": page.page,
        "page_size": page.page_size,
        "total_pages": page.total_pages,
    }


def statistics_as_dict(
    statistics: AlignmentStatistics, health: list[BomHealth]
) -> dict[str, object]:
    return {
        "total": statistics.total,
        "by_status": {status.value: count for status, count in statistics.by_status.items()},
        "by_severity": {
            severity.value: count for severity, count in statistics.by_severity.items()
        },
        "last_sync_at": statistics.last_sync_at.isoformat() if statistics.last_sync_at else None,
        "sync_success_rate": statistics.sync_success_rate,
        "bom_health": [
            {
                "bom_reference": entry.bom_reference,
                "pending": {
                    severity.value: count for severity, count in entry.pending_by_severity.items()
                },
                "healthy": entry.healthy,
            }
            for entry in health
        ],
    }


# Commands ---------------------------------------------------------------------


async def _sync_until_done(
    service: ReconciliationService,
    mode: SyncMode,
    filters: SyncFilters,
    triggered_by: str,
) -> SyncRun:
    run = await service.start_sync_run(mode, filters, triggered_by=triggered_by)
    loop = asyncio.get_running_loop()

    def request_cancel() -> None:
        print("\nCancelling sync run (Ctrl+C)", file=sys.stderr)
        try:
            service.cancel_sync_run(run.id)
        except ReconciliationError as exc:
            log.warning("Could not cancel sync run %s: %s", run.id, exc.message)

    loop.add_signal_handler(SIGINT, request_cancel)
    try:
        return await service.orchestrator.wait(run.id)
    finally:
        loop.remove_signal_handler(SIGINT)


def _cmd_sync(service: ReconciliationService, args: argparse.Namespace) -> object:
    filters = SyncFilters.build(
        part_numbers=args.part,
        bom_ids=args.bom,
        since=_optional_datetime(args.since),
    )
    mode = SyncMode(args.mode.upper())
    run = asyncio.run(_sync_until_done(service, mode, filters, args.triggered_by))
    return run_as_dict(run)


def _cmd_runs(service: ReconciliationService, args: argparse.Namespace) -> object:
    query = SyncRunFilter.parse(mode=args.mode, status=args.status, triggered_by=args.triggered_by)
    page = service.list_sync_runs(query, PageRequest(args.page, args.page_size))
    return page_as_dict(page, run_as_dict)


def _cmd_run(service: ReconciliationService, args: argparse.Namespace) -> object:
    return view_as_dict(service.get_sync_run_status(_parse_uuid(args.run_id)))


def _cmd_cancel(service: ReconciliationService, args: argparse.Namespace) -> object:
    return run_as_dict(service.cancel_sync_run(_parse_uuid(args.run_id)))


def _cmd_records(service: ReconciliationService, args: argparse.Namespace) -> object:
    query = AlignmentFilter.parse(
        severity=args.severity,
        status=args.status,
        part_number=args.part,
        field_name=args.field,
        created_from=_optional_datetime(args.created_from),
        created_to=_optional_datetime(args.created_to),
    )
    page = service.list_alignment_records(query, PageRequest(args.page, args.page_size))
    return page_as_dict(page, record_as_dict)


def _cmd_record(service: ReconciliationService, args: argparse.Namespace) -> object:
    return record_as_dict(service.get_alignment_record(_parse_uuid(args.record_id)))


def _cmd_resolve(service: ReconciliationService, args: argparse.Namespace) -> object:
    record = service.apply_resolution(_parse_uuid(args.record_id), args.value)
    return record_as_dict(record)


def _cmd_resolve_batch(service: ReconciliationService, args: argparse.Namespace) -> object:
    record_ids = [_parse_uuid(value) for value in args.record_ids]
    result = service.batch_apply(record_ids, strategy=ResolutionStrategy(args.strategy))
    return result.as_dict()


def _cmd_ignore(service: ReconciliationService, args: argparse.Namespace) -> object:
    return record_as_dict(service.ignore(_parse_uuid(args.record_id)))


def _cmd_stats(service: ReconciliationService, args: argparse.Namespace) -> object:
    _ = args
    return statistics_as_dict(service.alignment_statistics(), service.bom_health())


def _cmd_compare(service: ReconciliationService, args: argparse.Namespace) -> object:
    snapshot_ids = [_parse_uuid(value) for value in args.snapshot_ids]
    dimensions = args.dimension or [dimension.value for dimension in Dimension]
    return service.compare_snapshots(snapshot_ids, args.baseline, dimensions).as_dict()


COMMANDS: dict[str, Callable[[ReconciliationService, argparse.Namespace], object]] = {
    "sync": _cmd_sync,
    "runs": _cmd_runs,
    "run": _cmd_run,
    "cancel": _cmd_cancel,
    "records": _cmd_records,
    "record": _cmd_record,
    "resolve": _cmd_resolve,
    "resolve-batch": _cmd_resolve_batch,
    "ignore": _cmd_ignore,
    "stats": _cmd_stats,
    "compare": _cmd_compare,
}


def _print_error(exc: BaseException) -> None:
    print(json.dumps(error_payload(exc).as_dict()), file=sys.stderr)


def main(
    argv: Sequence[str] | None = None,
    *,
    service_factory: Callable[[], ReconciliationService] = build_service,
) -> int:
    """Main application entry point; returns the process exit code."""

    args = _build_parser().parse_args(list(sys.argv[1:] if argv is None else argv))
    configure_logging(level=level_from_env())

    try:
        service = service_factory()
        payload = COMMANDS[args.command](service, args)
    except ValidationError as exc:
        _print_error(exc)
        return 2
    except Exception as exc:  # noqa: BLE001
        log.debug("Command %s failed", args.command, exc_info=True)
        _print_error(exc)
        return 1

    print(json.dumps(payload, indent=2, default=str))
    return 0


def run() -> None:
    load_dotenv()
    sys.exit(main())


if __name__ == "__main__":
    run()
